"""
Fallback queue for booking submissions made while the store is unreachable.

Entries are tagged ``needs_reconciliation`` and are never authoritative for
slot uniqueness: the reconciliation task replays each one through the
orchestrator, which may still end in a conflict.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, time
import json
import logging
from typing import Optional

from redis import Redis

from ..core.config import settings
from ..core.redis_client import get_sync_redis, redis_guard
from ..core.ulid_helper import generate_ulid

logger = logging.getLogger(__name__)

NEEDS_RECONCILIATION = "needs_reconciliation"


@dataclass(frozen=True)
class DeferredSubmission:
    deferral_id: str
    subject_id: str
    resource_key: str
    booking_date: date
    time_slot: time
    deferred_at: datetime
    reservation_id: Optional[str] = None
    attempts: int = 0
    status: str = NEEDS_RECONCILIATION

    def to_json(self) -> str:
        data = asdict(self)
        data["booking_date"] = self.booking_date.isoformat()
        data["time_slot"] = self.time_slot.strftime("%H:%M:%S")
        data["deferred_at"] = self.deferred_at.isoformat()
        return json.dumps(data, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "DeferredSubmission":
        data = json.loads(raw)
        return cls(
            deferral_id=data["deferral_id"],
            subject_id=data["subject_id"],
            resource_key=data["resource_key"],
            booking_date=date.fromisoformat(data["booking_date"]),
            time_slot=time.fromisoformat(data["time_slot"]),
            deferred_at=datetime.fromisoformat(data["deferred_at"]),
            reservation_id=data.get("reservation_id"),
            attempts=int(data.get("attempts", 0)),
            status=data.get("status", NEEDS_RECONCILIATION),
        )


class DeferredSubmissionQueue:
    """FIFO on a Redis list."""

    def __init__(self, client: Redis, key: str):
        self.client = client
        self.key = key

    @classmethod
    def from_settings(cls) -> "DeferredSubmissionQueue":
        return cls(get_sync_redis(), settings.deferred_queue_key)

    def push(self, submission: DeferredSubmission) -> DeferredSubmission:
        with redis_guard("deferred_push"):
            self.client.rpush(self.key, submission.to_json())
        logger.info(
            "Deferred booking submission %s for reconciliation",
            submission.deferral_id,
            extra={"deferral_id": submission.deferral_id, "status": submission.status},
        )
        return submission

    def pop(self) -> Optional[DeferredSubmission]:
        with redis_guard("deferred_pop"):
            raw = self.client.lpop(self.key)
        if raw is None:
            return None
        try:
            return DeferredSubmission.from_json(raw)
        except (KeyError, TypeError, ValueError):
            logger.error("Dropping unreadable deferred submission entry")
            return None

    def size(self) -> int:
        with redis_guard("deferred_size"):
            return int(self.client.llen(self.key))


def new_deferral_id() -> str:
    return generate_ulid()
