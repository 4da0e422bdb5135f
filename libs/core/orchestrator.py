from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable, Optional, Sequence

from prometheus_client import Counter, Histogram

from . import events, graph, idempotency, llm_provider, logging as core_logging, sanitizer
from .models import JobStatus, ProcessingResult, SanitizationReport
from .notifier import NullNotifier, Notifier
from .store import DuplicateContentError, InvalidTransitionError, JobStore

LOGGER = logging.getLogger(__name__)

NO_VALID_TASKS_MESSAGE = "No valid tasks extracted from transcript"

jobs_processed_total = Counter(
    "jobs_processed_total", "Jobs that reached a terminal state", ["outcome"]
)
job_processing_seconds = Histogram(
    "job_processing_seconds", "Wall time from processing start to terminal state"
)

Dispatch = Callable[[str, str], None]


class InvalidTranscriptError(ValueError):
    pass


class NoValidTasksError(ValueError):
    def __init__(self) -> None:
        super().__init__(NO_VALID_TASKS_MESSAGE)


@dataclass
class Submission:
    job_id: str
    created: bool


def build_processing_result(records: Sequence[Any]) -> ProcessingResult:
    """Sanitize untrusted records, detect cycles and resolve every task status."""
    tasks, invalid_removed = sanitizer.sanitize(records)
    if not tasks:
        raise NoValidTasksError()
    report = graph.detect_cycles(tasks)
    final_tasks = graph.resolve_statuses(tasks, report)
    return ProcessingResult(
        tasks=final_tasks,
        circular_dependencies=report.cycles,
        sanitization_report=SanitizationReport(
            invalid_dependencies_removed=invalid_removed,
            tasks_marked_as_error=len(report.error_task_ids),
        ),
    )


class TranscriptProcessor:
    """Runs one job from transcript to a terminal ``done`` or ``error`` state.

    ``process`` never raises: every failure, including a failing store, ends in
    an ``error`` transition or, if even that write fails, in a logged fault.
    """

    def __init__(
        self,
        provider: llm_provider.LLMProvider,
        store: JobStore,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.logger = core_logging.get_logger("orchestrator")

    def process(self, job_id: str, transcript: str) -> None:
        with core_logging.job_context(job_id):
            self._process(job_id, transcript)

    def _process(self, job_id: str, transcript: str) -> None:
        started = perf_counter()
        try:
            job = self.store.get_job(job_id)
            if job is None or job.status != JobStatus.processing:
                self.logger.info(
                    "job_processing_skipped", status=job.status.value if job else None
                )
                return
            self.logger.info("job_processing_started")
            records = llm_provider.generate_tasks(self.provider, transcript)
            self.logger.info("job_tasks_generated", record_count=len(records))
            result = build_processing_result(records)
            self.store.complete_job(job_id, result)
        except InvalidTransitionError:
            # Another run of this job reached a terminal state first.
            self.logger.info("job_already_finished")
            return
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or exc.__class__.__name__
            self.logger.error("job_failed", error=message)
            self._record_outcome("error", started)
            if self._fail(job_id, message):
                self.notifier.notify(job_id, events.JOB_FAILED, {"error": message})
            return
        self._record_outcome("done", started)
        core_logging.log_event(
            self.logger,
            "job_completed",
            {
                "job_id": job_id,
                "task_count": len(result.tasks),
                "cycle_count": len(result.circular_dependencies),
                "invalid_dependencies_removed": (
                    result.sanitization_report.invalid_dependencies_removed
                ),
            },
        )
        self.notifier.notify(
            job_id,
            events.JOB_COMPLETED,
            {
                "task_count": len(result.tasks),
                "cycle_count": len(result.circular_dependencies),
            },
        )

    def _fail(self, job_id: str, message: str) -> bool:
        try:
            self.store.fail_job(job_id, message)
        except Exception:  # noqa: BLE001
            LOGGER.exception("job_fail_persist_error", extra={"job_id": job_id})
            return False
        return True

    @staticmethod
    def _record_outcome(outcome: str, started: float) -> None:
        jobs_processed_total.labels(outcome=outcome).inc()
        job_processing_seconds.observe(perf_counter() - started)


def submit_transcript(store: JobStore, transcript: Any, dispatch: Dispatch) -> Submission:
    """Create a job for ``transcript`` unless identical content was already submitted.

    Two concurrent submissions of the same content may both miss the lookup; the
    loser of the uniqueness constraint is answered with the winner's job id.
    """
    if not isinstance(transcript, str) or not transcript.strip():
        raise InvalidTranscriptError("Invalid input: transcript must be a non-empty string")
    clean = idempotency.normalize_transcript(transcript)
    digest = idempotency.content_hash(clean)
    logger = core_logging.get_logger("orchestrator")

    existing = store.find_job_by_content_hash(digest)
    if existing:
        logger.info("job_resubmitted", job_id=existing)
        return Submission(job_id=existing, created=False)

    job_id = str(uuid.uuid4())
    try:
        store.create_job(job_id, clean, digest)
    except DuplicateContentError:
        winner = store.find_job_by_content_hash(digest)
        if not winner:
            raise
        logger.info("job_submission_raced", job_id=winner)
        return Submission(job_id=winner, created=False)

    logger.info("job_created", job_id=job_id)
    dispatch(job_id, clean)
    return Submission(job_id=job_id, created=True)
