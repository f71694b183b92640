# backend/classpay/tasks/beat_schedule.py
"""Celery Beat schedule for ClassPay periodic tasks."""

from datetime import timedelta
from typing import Any, Dict

from ..core.config import settings


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    """
    Build the beat schedule.

    The auto-approve sweep interval is configurable because the grace period
    is counted in days; a coarse interval only delays approval slightly.
    """
    return {
        "auto-approve-withdrawals": {
            "task": "classpay.tasks.withdrawal_tasks.auto_approve_withdrawals",
            "schedule": timedelta(minutes=settings.withdrawal_auto_approve_sweep_minutes),
            "options": {"queue": "payments", "expires": 300},
        },
    }
