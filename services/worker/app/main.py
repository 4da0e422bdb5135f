from __future__ import annotations

import json
import logging
import os
import time
import uuid

import redis

from libs.core import events, llm_provider, logging as core_logging, notifier, orchestrator
from libs.core.worker_pool import WorkerPool
from services.api.app.database import Base, SessionLocal, engine
from services.api.app.job_store import SqlJobStore

core_logging.configure_logging("worker")
LOGGER = core_logging.get_logger("worker")
logger = logging.getLogger("worker.consumer")


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
WORKER_POOL_SIZE = _parse_optional_int(os.getenv("WORKER_POOL_SIZE")) or 4
NOTIFICATIONS_ENABLED = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"
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


def build_processor() -> orchestrator.TranscriptProcessor:
    provider = llm_provider.resolve_provider(
        LLM_PROVIDER,
        api_key=OPENAI_API_KEY,
        model=OPENAI_MODEL,
        base_url=OPENAI_BASE_URL,
        temperature=_parse_optional_float(OPENAI_TEMPERATURE),
        max_output_tokens=_parse_optional_int(OPENAI_MAX_OUTPUT_TOKENS),
        timeout_s=_parse_optional_float(OPENAI_TIMEOUT_S),
        max_retries=_parse_optional_int(OPENAI_MAX_RETRIES),
        fallback_enabled=LLM_FALLBACK_ENABLED,
    )
    return orchestrator.TranscriptProcessor(
        provider,
        SqlJobStore(SessionLocal),
        notifier.resolve_notifier(NOTIFICATIONS_ENABLED, REDIS_URL),
    )


def job_from_message(data: dict) -> tuple[str, str] | None:
    try:
        envelope = json.loads(data.get("data", "{}"))
    except json.JSONDecodeError:
        return None
    if not isinstance(envelope, dict) or envelope.get("type") != events.JOB_CREATED:
        return None
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        return None
    job_id = payload.get("job_id") or envelope.get("job_id")
    transcript = payload.get("transcript")
    if not isinstance(job_id, str) or not job_id or not isinstance(transcript, str):
        return None
    return job_id, transcript


def consume_batch(client: redis.Redis, pool: WorkerPool, group: str, consumer: str) -> int:
    messages = client.xreadgroup(
        group, consumer, {events.JOB_QUEUE_STREAM: ">"}, count=10, block=1000
    )
    dispatched = 0
    for _, entries in messages or []:
        for message_id, data in entries:
            job = job_from_message(data)
            if job is None:
                LOGGER.warning("job_message_ignored", message_id=message_id)
            else:
                pool.submit(*job)
                dispatched += 1
            client.xack(events.JOB_QUEUE_STREAM, group, message_id)
    return dispatched


def run() -> None:
    Base.metadata.create_all(bind=engine)
    group = "workers"
    consumer = str(uuid.uuid4())
    pool = WorkerPool(build_processor().process, size=WORKER_POOL_SIZE, name="job-worker")
    pool.start()
    try:
        redis_client.xgroup_create(events.JOB_QUEUE_STREAM, group, id="0-0", mkstream=True)
    except redis.ResponseError:
        pass
    try:
        while True:
            try:
                consume_batch(redis_client, pool, group, consumer)
            except Exception:  # noqa: BLE001
                logger.exception("worker_loop_error")
                time.sleep(1)
    finally:
        pool.stop()
        engine.dispose()


if __name__ == "__main__":
    run()
