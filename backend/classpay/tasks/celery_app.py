# backend/classpay/tasks/celery_app.py
"""
Celery application configuration for ClassPay.

Redis is both broker and result backend; the beat schedule comes from
``beat_schedule.get_beat_schedule``.
"""

import logging
from typing import Any, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import settings
from ..core.log_config import configure_logging


def create_celery_app() -> Celery:
    broker_url = settings.get_celery_broker_url()

    celery_app = Celery("classpay", broker=broker_url, backend=broker_url)

    celery_app.conf.update(
        {
            # Task settings
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            # Worker settings
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            # Task execution settings
            "task_soft_time_limit": 300,  # 5 minutes soft limit
            "task_time_limit": 600,  # 10 minutes hard limit
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 60,
            "task_max_retries": 3,
            "result_expires": 3600,
            "worker_hijack_root_logger": False,
            "broker_transport_options": {"visibility_timeout": 3600},
        }
    )

    # Force import of task modules so tasks are registered even if autodiscovery fails
    celery_app.conf.imports = ("classpay.tasks.withdrawal_tasks",)
    celery_app.conf.task_routes = {
        "classpay.tasks.withdrawal_tasks.*": {"queue": "payments"},
    }

    from .beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule()

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    configure_logging()


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task that logs failures and retries with task context."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries} due to: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "retry_count": self.request.retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


# Register BaseTask as default task base for the app
celery_app.Task = cast(Type[Task], BaseTask)
