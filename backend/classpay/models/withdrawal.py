# backend/classpay/models/withdrawal.py
"""Withdrawal requests: a user asking for part of their wallet to be paid out."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Directed transition graph. complete() is the one deliberate exception: a
# processor confirmation that money arrived wins over whatever we recorded.
WITHDRAWAL_TRANSITIONS: Dict[WithdrawalStatus, FrozenSet[WithdrawalStatus]] = {
    WithdrawalStatus.PENDING: frozenset({WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED}),
    WithdrawalStatus.APPROVED: frozenset({WithdrawalStatus.PROCESSING}),
    WithdrawalStatus.PROCESSING: frozenset({WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED}),
    WithdrawalStatus.REJECTED: frozenset(),
    WithdrawalStatus.COMPLETED: frozenset(),
    WithdrawalStatus.FAILED: frozenset(),
}

# Requested money that is no longer available to withdraw but has not left yet
ACTIVE_WITHDRAWAL_STATUSES: FrozenSet[WithdrawalStatus] = frozenset(
    {WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED, WithdrawalStatus.PROCESSING}
)


def can_transition(current: str, target: WithdrawalStatus) -> bool:
    return target in WITHDRAWAL_TRANSITIONS.get(WithdrawalStatus(current), frozenset())


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    method: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=WithdrawalStatus.PENDING.value)

    # Grace period captured at creation; NULL means auto-approval was off then
    auto_approve_after_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    approved_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    rejected_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stripe_payout_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Timestamps
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),
        Index("ix_withdrawals_user_role_status", "user_id", "role", "status"),
        Index("ix_withdrawals_status_requested_at", "status", "requested_at"),
    )

    def __repr__(self) -> str:
        return f"<Withdrawal(id={self.id}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"
