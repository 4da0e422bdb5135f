import random

import pytest

from libs.core import models, sanitizer


def _record(task_id, deps=None, priority="medium", description="do it"):
    return {
        "id": task_id,
        "description": description,
        "priority": priority,
        "dependencies": deps if deps is not None else [],
    }


def test_ghost_dependency_is_removed():
    tasks, removed = sanitizer.sanitize(
        [_record("1", []), _record("2", ["1"]), _record("3", ["1", "2", "ghost"])]
    )
    assert removed == 1
    assert tasks[2].dependencies == ["1", "2"]


def test_duplicate_t1_is_named():
    with pytest.raises(sanitizer.DuplicateIdError, match="t1"):
        sanitizer.sanitize([_record("t1"), _record("t1", description="again")])


def test_unknown_dependencies_are_removed_and_counted():
    tasks, removed = sanitizer.sanitize(
        [_record("a", ["ghost"]), _record("b", ["a", "ghost2"])]
    )
    assert removed == 2
    assert [task.dependencies for task in tasks] == [[], ["a"]]


def test_duplicate_ids_reject_the_batch():
    with pytest.raises(sanitizer.DuplicateIdError) as excinfo:
        sanitizer.sanitize([_record("x"), _record("y"), _record("x", description="again")])
    assert excinfo.value.duplicate_ids == ["x"]
    assert str(excinfo.value) == "Validation failed: duplicate task IDs detected: x"


def test_all_duplicate_ids_are_reported():
    with pytest.raises(sanitizer.DuplicateIdError) as excinfo:
        sanitizer.sanitize([_record("b"), _record("a"), _record("b"), _record("a")])
    assert excinfo.value.duplicate_ids == ["a", "b"]


def test_malformed_records_are_dropped():
    records = [
        "not a record",
        None,
        {"id": "no-desc", "priority": "low", "dependencies": []},
        _record("   "),
        _record("bad-priority", priority="urgent"),
        _record("upper-priority", priority="HIGH"),
        {"id": "no-deps", "description": "x", "priority": "low"},
        {"id": "deps-string", "description": "x", "priority": "low", "dependencies": "a"},
        {"id": 7, "description": "x", "priority": "low", "dependencies": []},
        _record("ok"),
    ]
    tasks, removed = sanitizer.sanitize(records)
    assert [task.id for task in tasks] == ["ok"]
    assert removed == 0


def test_malformed_record_does_not_count_as_duplicate():
    tasks, _ = sanitizer.sanitize([_record("a", priority="nope"), _record("a")])
    assert [task.id for task in tasks] == ["a"]


def test_fields_are_trimmed_and_status_is_pending():
    tasks, removed = sanitizer.sanitize(
        [_record(" a ", description="  write docs  "), _record("b", [" a ", "", 3])]
    )
    assert tasks[0].id == "a"
    assert tasks[0].description == "write docs"
    assert tasks[1].dependencies == []
    assert removed == 1
    assert all(task.status == models.TaskStatus.pending for task in tasks)


def test_forward_references_are_kept():
    tasks, removed = sanitizer.sanitize([_record("a", ["b"]), _record("b")])
    assert removed == 0
    assert tasks[0].dependencies == ["b"]


def test_self_dependency_is_kept():
    tasks, removed = sanitizer.sanitize([_record("a", ["a"])])
    assert removed == 0
    assert tasks[0].dependencies == ["a"]


def test_empty_input():
    assert sanitizer.sanitize([]) == ([], 0)


def test_random_batches_only_reference_known_ids():
    rng = random.Random(1234)
    for _ in range(50):
        ids = [f"t{index}" for index in range(rng.randint(1, 12))]
        pool = ids + ["ghost-1", "ghost-2"]
        records = [
            _record(task_id, [rng.choice(pool) for _ in range(rng.randint(0, 4))])
            for task_id in ids
        ]
        declared = sum(len(record["dependencies"]) for record in records)
        tasks, removed = sanitizer.sanitize(records)
        known = {task.id for task in tasks}
        assert all(dep in known for task in tasks for dep in task.dependencies)
        assert removed == declared - sum(len(task.dependencies) for task in tasks)
