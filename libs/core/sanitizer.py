"""Turns untrusted model output into well-typed tasks.

Individual malformed records and dependency entries are dropped; an ambiguous
task identity (the same id twice) rejects the whole batch.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .models import Priority, Task, TaskStatus

PRIORITIES = {priority.value for priority in Priority}


class DuplicateIdError(ValueError):
    def __init__(self, duplicate_ids: Iterable[str]) -> None:
        self.duplicate_ids = sorted(set(duplicate_ids))
        super().__init__(
            "Validation failed: duplicate task IDs detected: " + ", ".join(self.duplicate_ids)
        )


def sanitize(records: Sequence[Any]) -> Tuple[List[Task], int]:
    """Return ``(tasks, invalid_dependencies_removed)`` for ``records``.

    Raises ``DuplicateIdError`` naming every colliding id when two structurally
    valid records share an id.
    """
    candidates: List[Task] = []
    seen: set[str] = set()
    duplicates: List[str] = []
    for record in records or []:
        task = parse_task_record(record)
        if task is None:
            continue
        if task.id in seen:
            duplicates.append(task.id)
            continue
        seen.add(task.id)
        candidates.append(task)
    if duplicates:
        raise DuplicateIdError(duplicates)

    # Dependencies may point forward in the input, so filtering waits for the full id set.
    removed = 0
    tasks: List[Task] = []
    for task in candidates:
        kept = [dep for dep in task.dependencies if dep in seen]
        removed += len(task.dependencies) - len(kept)
        tasks.append(task.model_copy(update={"dependencies": kept}))
    return tasks, removed


def parse_task_record(record: Any) -> Optional[Task]:
    if not isinstance(record, Mapping):
        return None
    task_id = _non_empty_text(record.get("id"))
    if task_id is None:
        return None
    description = _non_empty_text(record.get("description"))
    if description is None:
        return None
    priority = record.get("priority")
    if not isinstance(priority, str) or priority not in PRIORITIES:
        return None
    dependencies = record.get("dependencies")
    if not isinstance(dependencies, (list, tuple)):
        return None
    return Task(
        id=task_id,
        description=description,
        priority=Priority(priority),
        dependencies=_clean_dependencies(dependencies),
        status=TaskStatus.pending,
    )


def _clean_dependencies(values: Sequence[Any]) -> List[str]:
    # Entries are kept verbatim; " a " is not the id "a" and is dropped later as unknown.
    return [value for value in values if _non_empty_text(value) is not None]


def _non_empty_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None
