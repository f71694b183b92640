"""
Payment models for Stripe integration.

This module defines the money-side records ClassPay owns: the per-booking
Payment (with its commission split frozen at creation) and the PayoutAccount
that maps a user to the Stripe Connect account receiving their money.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base

MONEY = Numeric(12, 2)


class PaymentStatus(str, Enum):
    """Payment lifecycle statuses."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Payment(Base):
    """
    A payer's charge for one booking.

    Commission percentage, fixed fee and the resulting split are copied from
    the settings snapshot at creation and never recomputed, so later settings
    edits cannot change what was agreed. Once PAID the monetary columns are
    immutable; only the status may still move to REFUNDED.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    payer_id: Mapped[str] = mapped_column(String(26), nullable=False)
    payee_id: Mapped[str] = mapped_column(String(26), nullable=False)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    commission_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_fixed: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payee_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    stripe_charge_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Timestamps
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint("payee_amount >= 0", name="ck_payments_payee_amount_non_negative"),
        Index("ix_payments_payee_status", "payee_id", "status"),
        Index("ix_payments_payer_status", "payer_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"


class PayoutAccount(Base):
    """Stripe Connect account that receives transfers and payouts for a user."""

    __tablename__ = "payout_accounts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_payout_accounts_user_role"),)

    def __repr__(self) -> str:
        return f"<PayoutAccount(user_id={self.user_id}, role={self.role}, completed={self.onboarding_completed})>"
