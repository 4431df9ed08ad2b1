"""Shared synchronous Redis client and error translation."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
from typing import Iterator, Optional

from redis import Redis
from redis.exceptions import RedisError

from .config import settings
from .exceptions import InfrastructureException

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


def get_sync_redis() -> Redis:
    """Process-wide client; connections are opened lazily by the pool."""
    global _SYNC_REDIS
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is None:
            _SYNC_REDIS = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return _SYNC_REDIS


@contextmanager
def redis_guard(operation: str) -> Iterator[None]:
    """Raise InfrastructureException for any Redis failure inside the block."""
    try:
        yield
    except RedisError as exc:
        logger.warning(
            "redis_operation_failed",
            extra={"operation": operation, "error": str(exc), "error_type": type(exc).__name__},
        )
        raise InfrastructureException(
            "Reservation store is temporarily unavailable",
            code="INFRASTRUCTURE_UNAVAILABLE",
            details={"operation": operation},
        ) from exc
