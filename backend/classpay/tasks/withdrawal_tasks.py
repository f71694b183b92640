"""
Celery tasks for withdrawals.

The auto-approve sweep itself lives in WithdrawalService; this task only
opens a session, runs it and reports the counts.
"""

import logging
from typing import Any, Callable, List, ParamSpec, Protocol, TypedDict, TypeVar, cast

from celery.result import AsyncResult
from sqlalchemy.orm import Session

from ..core.timezone_utils import utc_now
from ..database import SessionLocal
from ..services.withdrawal_service import WithdrawalService
from .celery_app import celery_app

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class AutoApproveJobResults(TypedDict):
    scanned: int
    approved: int
    failed: int
    failed_ids: List[str]
    processed_at: str


logger = logging.getLogger(__name__)


def build_withdrawal_service(db: Session) -> WithdrawalService:
    return WithdrawalService(db)


@typed_task(bind=True, name="classpay.tasks.withdrawal_tasks.auto_approve_withdrawals")
def auto_approve_withdrawals(self: Any) -> AutoApproveJobResults:
    """
    Approve PENDING withdrawals whose grace period has passed.

    Runs on the beat schedule. Per-withdrawal failures are counted by the
    sweep and never fail the task.
    """
    db: Session = SessionLocal()
    try:
        service = build_withdrawal_service(db)
        result = service.auto_approve_sweep()
    finally:
        db.close()

    if result.failed:
        logger.warning(f"Auto-approve sweep failed for {result.failed} withdrawal(s): {result.failed_ids}")
    return {
        "scanned": result.scanned,
        "approved": result.approved,
        "failed": result.failed,
        "failed_ids": result.failed_ids,
        "processed_at": utc_now().isoformat(),
    }
