from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import List

import redis
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_client import Counter, make_asgi_app

from libs.core import events, llm_provider, logging as core_logging, models, notifier, orchestrator
from libs.core.store import InvalidTransitionError, JobNotFoundError, TaskNotFoundError
from libs.core.worker_pool import WorkerPool
from .database import Base, SessionLocal, engine
from .job_store import SqlJobStore

core_logging.configure_logging("api")
logger = logging.getLogger("api.jobs")


def _parse_optional_float(value: str | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_optional_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
JOB_DISPATCH_MODE = os.getenv("JOB_DISPATCH_MODE", "inline").lower()
WORKER_POOL_SIZE = _parse_optional_int(os.getenv("WORKER_POOL_SIZE")) or 4
NOTIFICATIONS_ENABLED = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"
JOB_RECOVERY_ENABLED = os.getenv("JOB_RECOVERY_ENABLED", "true").lower() == "true"
MAX_TRANSCRIPT_CHARS = _parse_optional_int(os.getenv("MAX_TRANSCRIPT_CHARS")) or 200000
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "mock")
LLM_FALLBACK_ENABLED = os.getenv("LLM_FALLBACK_ENABLED", "false").lower() == "true"
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com")
OPENAI_TEMPERATURE = os.getenv("OPENAI_TEMPERATURE")
OPENAI_MAX_OUTPUT_TOKENS = os.getenv("OPENAI_MAX_OUTPUT_TOKENS")
OPENAI_TIMEOUT_S = os.getenv("OPENAI_TIMEOUT_S")
OPENAI_MAX_RETRIES = os.getenv("OPENAI_MAX_RETRIES")

redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
job_store = SqlJobStore(SessionLocal)
job_notifier = notifier.resolve_notifier(NOTIFICATIONS_ENABLED, REDIS_URL)
processor = orchestrator.TranscriptProcessor(
    llm_provider.resolve_provider(
        LLM_PROVIDER,
        api_key=OPENAI_API_KEY,
        model=OPENAI_MODEL,
        base_url=OPENAI_BASE_URL,
        temperature=_parse_optional_float(OPENAI_TEMPERATURE),
        max_output_tokens=_parse_optional_int(OPENAI_MAX_OUTPUT_TOKENS),
        timeout_s=_parse_optional_float(OPENAI_TIMEOUT_S),
        max_retries=_parse_optional_int(OPENAI_MAX_RETRIES),
        fallback_enabled=LLM_FALLBACK_ENABLED,
    ),
    job_store,
    job_notifier,
)
worker_pool = WorkerPool(processor.process, size=WORKER_POOL_SIZE, name="api-job-worker")

app = FastAPI(title="Dependency Engine API")

cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

jobs_created_total = Counter("jobs_created_total", "Jobs created")
jobs_deduplicated_total = Counter(
    "jobs_deduplicated_total", "Submissions answered with an existing job"
)


@app.on_event("startup")
def _startup() -> None:
    Base.metadata.create_all(bind=engine)
    if JOB_DISPATCH_MODE == "inline":
        worker_pool.start()
    if JOB_RECOVERY_ENABLED:
        _recover_jobs()


@app.on_event("shutdown")
def _shutdown() -> None:
    worker_pool.stop()
    engine.dispose()


def _dispatch(job_id: str, transcript: str) -> None:
    if JOB_DISPATCH_MODE == "redis":
        envelope = models.EventEnvelope(
            type=events.JOB_CREATED,
            version="1",
            occurred_at=datetime.utcnow(),
            correlation_id=job_id,
            job_id=job_id,
            payload={"job_id": job_id, "transcript": transcript},
        )
        redis_client.xadd(events.JOB_QUEUE_STREAM, {"data": envelope.model_dump_json()})
    else:
        worker_pool.submit(job_id, transcript)
    job_notifier.notify(job_id, events.JOB_CREATED)


def _recover_jobs() -> None:
    for job in job_store.list_processing_jobs():
        logger.info("job_recovered", extra={"job_id": job.id})
        _dispatch(job.id, job.transcript)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/submit", response_model=models.SubmitResponse, response_model_exclude_none=True)
def submit(body: models.TranscriptSubmit) -> JSONResponse:
    if isinstance(body.transcript, str) and len(body.transcript.strip()) > MAX_TRANSCRIPT_CHARS:
        raise HTTPException(status_code=413, detail="Transcript too long")
    try:
        submission = orchestrator.submit_transcript(job_store, body.transcript, _dispatch)
    except orchestrator.InvalidTranscriptError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if submission.created:
        jobs_created_total.inc()
        status_code = 202
        response = models.SubmitResponse(job_id=submission.job_id)
    else:
        jobs_deduplicated_total.inc()
        status_code = 200
        response = models.SubmitResponse(
            job_id=submission.job_id,
            message="Transcript already submitted, returning existing job ID",
        )
    return JSONResponse(
        status_code=status_code, content=response.model_dump(mode="json", exclude_none=True)
    )


@app.get(
    "/api/status/{job_id}",
    response_model=models.JobStatusResponse,
    response_model_exclude_none=True,
)
def get_status(job_id: str) -> models.JobStatusResponse:
    job = job_store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.status == models.JobStatus.done:
        return models.JobStatusResponse(status=job.status, result=job.result)
    if job.status == models.JobStatus.error:
        return models.JobStatusResponse(status=job.status, error=job.error)
    return models.JobStatusResponse(status=job.status)


@app.patch("/api/status/{job_id}/task/{task_id}", response_model=models.TaskCompletionResponse)
def update_task_completion(
    job_id: str, task_id: str, body: models.TaskCompletionUpdate
) -> models.TaskCompletionResponse:
    try:
        result = job_store.set_task_completion(job_id, task_id, body.completed)
    except (JobNotFoundError, TaskNotFoundError) as exc:
        raise HTTPException(status_code=404, detail="Job or task not found") from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    job_notifier.notify(
        job_id,
        events.TASK_UPDATED,
        {"task_id": task_id, "completed": body.completed},
    )
    return models.TaskCompletionResponse(result=result)


@app.get("/api/jobs/{job_id}/tasks", response_model=List[models.Task])
def get_tasks(job_id: str) -> List[models.Task]:
    try:
        return job_store.list_tasks(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc


@app.get("/api/jobs/{job_id}/activities", response_model=List[models.JobActivity])
def get_activities(job_id: str) -> List[models.JobActivity]:
    job = job_store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.activities


@app.get("/events/stream")
def stream_events(request: Request, job_id: str | None = None, once: bool = False):
    def event_generator():
        if once:
            yield "data: {}\n\n"
            return
        last_ids = {events.JOB_STREAM: "$", events.TASK_STREAM: "$"}
        while True:
            if request.client is None:
                break
            results = redis_client.xread(last_ids, block=1000, count=10)
            for stream_name, messages in results:
                for message_id, data in messages:
                    last_ids[stream_name] = message_id
                    payload = data.get("data")
                    if job_id and not _event_matches_job(payload, job_id):
                        continue
                    yield f"data: {payload}\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream")


def _event_matches_job(payload: str | None, job_id: str) -> bool:
    try:
        envelope = json.loads(payload or "{}")
    except json.JSONDecodeError:
        return False
    return isinstance(envelope, dict) and envelope.get("job_id") == job_id
