# backend/tests/models/test_models.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from classpay.models.booking import Booking
from classpay.models.class_session import ClassSession, ClassSessionStatus
from classpay.models.withdrawal import WithdrawalStatus, can_transition


def test_scheduled_hours():
    start = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    assert Booking(start_time=start, end_time=start + timedelta(minutes=90)).scheduled_hours == Decimal("1.5")
    assert Booking(start_time=start, end_time=start - timedelta(hours=1)).scheduled_hours == Decimal("0")
    assert Booking(start_time=start, end_time=None).scheduled_hours == Decimal("0")


def test_scheduled_hours_with_naive_times():
    start = datetime(2026, 3, 1, 9, 0)

    assert Booking(start_time=start, end_time=start + timedelta(hours=2)).scheduled_hours == Decimal("2")


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("PENDING", WithdrawalStatus.APPROVED, True),
        ("PENDING", WithdrawalStatus.REJECTED, True),
        ("PENDING", WithdrawalStatus.PROCESSING, False),
        ("APPROVED", WithdrawalStatus.PROCESSING, True),
        ("PROCESSING", WithdrawalStatus.COMPLETED, True),
        ("PROCESSING", WithdrawalStatus.FAILED, True),
        ("COMPLETED", WithdrawalStatus.FAILED, False),
        ("REJECTED", WithdrawalStatus.APPROVED, False),
    ],
)
def test_withdrawal_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_admin_approval_requires_completed_session(db, booking):
    db.add(
        ClassSession(
            booking_id=booking.id,
            status=ClassSessionStatus.SCHEDULED.value,
            tutor_approved=False,
            admin_approved=True,
        )
    )

    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()
