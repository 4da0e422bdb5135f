from __future__ import annotations

from typing import List, Optional, Sequence

from .models import Job, ProcessingResult, Task


class StoreError(RuntimeError):
    pass


class DuplicateContentError(StoreError):
    def __init__(self, content_hash: str) -> None:
        self.content_hash = content_hash
        super().__init__(f"job already exists for content hash {content_hash}")


class JobNotFoundError(StoreError):
    pass


class TaskNotFoundError(StoreError):
    pass


class InvalidTransitionError(StoreError):
    pass


class JobStore:
    """Persistence contract consumed by the orchestrator and the HTTP layer."""

    def find_job_by_content_hash(self, content_hash: str) -> Optional[str]:  # pragma: no cover - interface
        raise NotImplementedError

    def create_job(self, job_id: str, transcript: str, content_hash: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def complete_job(self, job_id: str, result: ProcessingResult) -> None:  # pragma: no cover - interface
        """Persist ``result.tasks`` and move the job to ``done`` in one unit of work.

        Raises ``InvalidTransitionError``, leaving the job untouched, unless it is
        still ``processing``.
        """
        raise NotImplementedError

    def fail_job(self, job_id: str, message: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def get_job(self, job_id: str) -> Optional[Job]:  # pragma: no cover - interface
        raise NotImplementedError

    def save_tasks(self, job_id: str, tasks: Sequence[Task]) -> None:  # pragma: no cover - interface
        """Replace the task rows of a job that is still ``processing``."""
        raise NotImplementedError

    def list_processing_jobs(self) -> List[Job]:  # pragma: no cover - interface
        raise NotImplementedError

    def list_tasks(self, job_id: str) -> List[Task]:  # pragma: no cover - interface
        raise NotImplementedError

    def set_task_completion(
        self, job_id: str, task_id: str, completed: bool
    ) -> ProcessingResult:  # pragma: no cover - interface
        raise NotImplementedError
