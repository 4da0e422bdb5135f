from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    processing = "processing"
    done = "done"
    error = "error"


class TaskStatus(str, Enum):
    pending = "pending"
    ready = "ready"
    blocked = "blocked"
    error = "error"
    completed = "completed"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class Task(BaseModel):
    id: str
    description: str
    priority: Priority
    dependencies: List[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.pending


class CycleReport(BaseModel):
    has_cycle: bool = False
    cycles: List[List[str]] = Field(default_factory=list)
    error_task_ids: Set[str] = Field(default_factory=set)


class SanitizationReport(BaseModel):
    invalid_dependencies_removed: int = Field(default=0, ge=0)
    tasks_marked_as_error: int = Field(default=0, ge=0)


class ProcessingResult(BaseModel):
    tasks: List[Task]
    circular_dependencies: List[List[str]] = Field(default_factory=list)
    sanitization_report: SanitizationReport = Field(default_factory=SanitizationReport)


class JobActivity(BaseModel):
    message: str
    created_at: datetime


class Job(BaseModel):
    id: str
    transcript: str
    content_hash: str
    status: JobStatus
    result: Optional[ProcessingResult] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    activities: List[JobActivity] = Field(default_factory=list)


class EventEnvelope(BaseModel):
    type: str
    version: str
    occurred_at: datetime
    correlation_id: str
    job_id: Optional[str] = None
    task_id: Optional[str] = None
    payload: Dict[str, Any]


class TranscriptSubmit(BaseModel):
    transcript: Optional[Any] = None


class SubmitResponse(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.processing
    message: Optional[str] = None


class JobStatusResponse(BaseModel):
    status: JobStatus
    result: Optional[ProcessingResult] = None
    error: Optional[str] = None


class TaskCompletionUpdate(BaseModel):
    completed: bool


class TaskCompletionResponse(BaseModel):
    status: str = "ok"
    result: ProcessingResult
