from __future__ import annotations

from typing import Dict, Set

from .models import JobStatus, TaskStatus

JOB_TRANSITIONS: Dict[JobStatus, Set[JobStatus]] = {
    JobStatus.processing: {JobStatus.done, JobStatus.error},
    JobStatus.done: set(),
    JobStatus.error: set(),
}

TASK_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.pending: {TaskStatus.ready, TaskStatus.blocked, TaskStatus.error},
    TaskStatus.ready: {TaskStatus.completed},
    TaskStatus.blocked: {TaskStatus.completed},
    TaskStatus.completed: {TaskStatus.ready},
    TaskStatus.error: set(),
}


def validate_job_transition(current: JobStatus, new: JobStatus) -> bool:
    return new in JOB_TRANSITIONS.get(current, set())


def validate_task_transition(current: TaskStatus, new: TaskStatus) -> bool:
    return new in TASK_TRANSITIONS.get(current, set())


def is_terminal(status: JobStatus) -> bool:
    return not JOB_TRANSITIONS.get(status)
