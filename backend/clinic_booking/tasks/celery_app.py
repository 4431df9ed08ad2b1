# backend/clinic_booking/tasks/celery_app.py
"""
Celery application configuration for the clinic booking core.

This module sets up the Celery app with Redis as the broker and backend,
configures task serialization, timezone, and task registration. The beat
schedule drives the periodic reconciliation jobs; nothing in the service
layer schedules itself.
"""

import logging
import os
from typing import Any, Dict, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import settings

logger = logging.getLogger(__name__)

TASK_MODULES = ("clinic_booking.tasks.booking_tasks",)


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    # Priority: CELERY_BROKER_URL -> REDIS_URL -> settings.redis_url
    broker_url = os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or settings.redis_url
    result_backend = os.getenv("CELERY_RESULT_BACKEND") or broker_url

    celery_app = Celery(
        "clinic_booking",
        broker=broker_url,
        backend=result_backend,
        include=list(TASK_MODULES),
    )

    base_config: Dict[str, Any] = {
        # Serialization
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        # Beat schedules are expressed in clinic time
        "timezone": settings.clinic_timezone,
        "enable_utc": True,
        "task_track_started": True,
        "result_expires": 3600,
        "worker_prefetch_multiplier": 1,
        "worker_max_tasks_per_child": 1000,
        "task_soft_time_limit": 300,
        "task_time_limit": 600,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "task_default_retry_delay": 60,
        "task_max_retries": 3,
        "worker_hijack_root_logger": False,
        "worker_redirect_stdouts": True,
        "worker_redirect_stdouts_level": "INFO",
        "broker_transport_options": {
            "visibility_timeout": 3600,
            "polling_interval": 10.0,
        },
    }
    celery_app.conf.update(base_config)

    celery_app.conf.task_routes = {
        "clinic_booking.tasks.booking_tasks.dispatch_booking_notification": {
            "queue": "notifications"
        },
        "clinic_booking.tasks.booking_tasks.*": {"queue": "reconciliation"},
    }

    from .beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule()

    return celery_app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Use the API's log format in workers instead of Celery's own."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """
    Logs failures and retries by task name and id.

    Arguments are left out of the log lines: notification payloads carry
    subject identifiers.
    """

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            "Task %s[%s] failed: %s",
            self.name,
            task_id,
            exc,
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        retries = self.request.retries
        logger.warning(
            "Task %s[%s] retrying (attempt %d): %s",
            self.name,
            task_id,
            retries + 1,
            exc,
            extra={"task_id": task_id, "task_name": self.name, "retry_count": retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


celery_app.Task = cast(Type[Task], BaseTask)
