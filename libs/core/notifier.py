from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import redis

from . import events
from .models import EventEnvelope

LOGGER = logging.getLogger(__name__)


class Notifier:
    def notify(
        self, job_id: str, event_type: str, payload: Optional[Dict[str, Any]] = None
    ) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class NullNotifier(Notifier):
    def notify(self, job_id: str, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        return


class RedisStreamNotifier(Notifier):
    """Appends an event envelope to the job or task stream; delivery is best effort."""

    def __init__(self, client: redis.Redis, maxlen: int = 10000) -> None:
        self.client = client
        self.maxlen = maxlen

    def notify(self, job_id: str, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        body = dict(payload or {})
        body.setdefault("job_id", job_id)
        envelope = EventEnvelope(
            type=event_type,
            version="1",
            occurred_at=datetime.utcnow(),
            correlation_id=body.get("correlation_id") or str(uuid.uuid4()),
            job_id=job_id,
            task_id=body.get("task_id"),
            payload=body,
        )
        try:
            self.client.xadd(
                events.stream_for_event(event_type),
                {"data": envelope.model_dump_json()},
                maxlen=self.maxlen,
                approximate=True,
            )
        except Exception:  # noqa: BLE001
            LOGGER.exception(
                "notification_failed", extra={"job_id": job_id, "event_type": event_type}
            )


def resolve_notifier(enabled: bool, redis_url: str) -> Notifier:
    if not enabled:
        return NullNotifier()
    return RedisStreamNotifier(redis.Redis.from_url(redis_url, decode_responses=True))
