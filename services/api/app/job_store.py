from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from libs.core import models, state_machine
from libs.core.store import (
    DuplicateContentError,
    InvalidTransitionError,
    JobNotFoundError,
    JobStore,
    TaskNotFoundError,
)
from .models import ActivityRecord, JobRecord, TaskRecord

SessionFactory = Callable[[], Session]


class SqlJobStore(JobStore):
    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    def find_job_by_content_hash(self, content_hash: str) -> Optional[str]:
        with self.session_factory() as db:
            record = db.query(JobRecord).filter(JobRecord.content_hash == content_hash).first()
            return record.id if record else None

    def create_job(self, job_id: str, transcript: str, content_hash: str) -> None:
        now = datetime.utcnow()
        with self.session_factory() as db:
            db.add(
                JobRecord(
                    id=job_id,
                    transcript=transcript,
                    content_hash=content_hash,
                    status=models.JobStatus.processing.value,
                    result=None,
                    error=None,
                    created_at=now,
                    updated_at=now,
                )
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateContentError(content_hash) from exc

    def complete_job(self, job_id: str, result: models.ProcessingResult) -> None:
        now = datetime.utcnow()
        with self.session_factory() as db:
            _transition(
                db,
                job_id,
                models.JobStatus.done,
                result=result.model_dump(mode="json"),
                updated_at=now,
            )
            _replace_tasks(db, job_id, result.tasks, now)
            db.commit()

    def fail_job(self, job_id: str, message: str) -> None:
        with self.session_factory() as db:
            _transition(
                db, job_id, models.JobStatus.error, error=message, updated_at=datetime.utcnow()
            )
            db.commit()

    def get_job(self, job_id: str) -> Optional[models.Job]:
        with self.session_factory() as db:
            record = db.query(JobRecord).filter(JobRecord.id == job_id).first()
            if not record:
                return None
            return _job_from_record(record)

    def save_tasks(self, job_id: str, tasks: Sequence[models.Task]) -> None:
        with self.session_factory() as db:
            record = _require_job(db, job_id)
            if models.JobStatus(record.status) != models.JobStatus.processing:
                raise InvalidTransitionError(
                    f"job {job_id} is {record.status}; its tasks are final"
                )
            _replace_tasks(db, job_id, tasks, datetime.utcnow())
            db.commit()

    def list_processing_jobs(self) -> List[models.Job]:
        with self.session_factory() as db:
            records = (
                db.query(JobRecord)
                .filter(JobRecord.status == models.JobStatus.processing.value)
                .order_by(JobRecord.created_at.asc())
                .all()
            )
            return [_job_from_record(record) for record in records]

    def list_tasks(self, job_id: str) -> List[models.Task]:
        with self.session_factory() as db:
            _require_job(db, job_id)
            records = (
                db.query(TaskRecord)
                .filter(TaskRecord.job_id == job_id)
                .order_by(TaskRecord.position.asc())
                .all()
            )
            return [_task_from_record(record) for record in records]

    def set_task_completion(
        self, job_id: str, task_id: str, completed: bool
    ) -> models.ProcessingResult:
        with self.session_factory() as db:
            job = _require_job(db, job_id)
            if models.JobStatus(job.status) != models.JobStatus.done or not job.result:
                raise InvalidTransitionError(f"job {job_id} has no completed result")
            task = (
                db.query(TaskRecord)
                .filter(TaskRecord.job_id == job_id, TaskRecord.task_id == task_id)
                .first()
            )
            if not task:
                raise TaskNotFoundError(f"task {task_id} not found in job {job_id}")
            current = models.TaskStatus(task.status)
            target = models.TaskStatus.completed if completed else models.TaskStatus.ready
            result = models.ProcessingResult.model_validate(job.result)
            if current == target:
                return result
            if not state_machine.validate_task_transition(current, target):
                raise InvalidTransitionError(
                    f"task {task_id} cannot move from {current.value} to {target.value}"
                )
            now = datetime.utcnow()
            task.status = target.value
            task.updated_at = now
            result = result.model_copy(
                update={
                    "tasks": [
                        item.model_copy(update={"status": target}) if item.id == task_id else item
                        for item in result.tasks
                    ]
                }
            )
            job.result = result.model_dump(mode="json")
            job.updated_at = now
            db.add(
                ActivityRecord(
                    job_id=job_id,
                    message=f"Task {task_id} marked {'completed' if completed else 'not completed'}",
                    created_at=now,
                )
            )
            db.commit()
            return result


def _require_job(db: Session, job_id: str) -> JobRecord:
    record = db.query(JobRecord).filter(JobRecord.id == job_id).first()
    if not record:
        raise JobNotFoundError(f"job {job_id} not found")
    return record


def _transition(db: Session, job_id: str, status: models.JobStatus, **values: Any) -> None:
    """Move a job to ``status`` only if it is still in the state that was validated."""
    record = _require_job(db, job_id)
    current = models.JobStatus(record.status)
    if not state_machine.validate_job_transition(current, status):
        raise InvalidTransitionError(
            f"job {job_id} cannot move from {current.value} to {status.value}"
        )
    updated = (
        db.query(JobRecord)
        .filter(JobRecord.id == job_id, JobRecord.status == current.value)
        .update({"status": status.value, **values}, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        raise InvalidTransitionError(f"job {job_id} was finished concurrently")


def _task_from_record(record: TaskRecord) -> models.Task:
    return models.Task(
        id=record.task_id,
        description=record.description,
        priority=record.priority,
        dependencies=record.dependencies or [],
        status=record.status,
    )


def _job_from_record(record: JobRecord) -> models.Job:
    return models.Job(
        id=record.id,
        transcript=record.transcript,
        content_hash=record.content_hash,
        status=record.status,
        result=models.ProcessingResult.model_validate(record.result) if record.result else None,
        error=record.error,
        created_at=record.created_at,
        updated_at=record.updated_at,
        activities=[
            models.JobActivity(message=activity.message, created_at=activity.created_at)
            for activity in record.activities
        ],
    )


def _replace_tasks(
    db: Session, job_id: str, tasks: Sequence[models.Task], now: datetime
) -> None:
    db.query(TaskRecord).filter(TaskRecord.job_id == job_id).delete()
    for position, task in enumerate(tasks):
        db.add(
            TaskRecord(
                job_id=job_id,
                task_id=task.id,
                position=position,
                description=task.description,
                priority=task.priority.value,
                dependencies=list(task.dependencies),
                status=task.status.value,
                created_at=now,
                updated_at=now,
            )
        )
