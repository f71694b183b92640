# backend/classpay/models/class_session.py
"""
Class session model.

One session per booking. ``status`` only ever moves SCHEDULED -> COMPLETED or
SCHEDULED -> CANCELLED; tutor approval, admin approval and payment release are
boolean flags layered on a COMPLETED session rather than extra states.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base


class ClassSessionStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ClassSession(Base):
    __tablename__ = "class_sessions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ClassSessionStatus.SCHEDULED.value, index=True)

    tutor_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    admin_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Monotonic: never reset once true
    payment_released: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    actual_hours_taught: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_approved_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    stripe_transfer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    released_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Timestamps
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "NOT admin_approved OR (status = 'COMPLETED' AND tutor_approved)",
            name="ck_class_sessions_admin_requires_completion",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ClassSession(id={self.id}, status={self.status}, tutor={self.tutor_approved}, "
            f"admin={self.admin_approved}, released={self.payment_released})>"
        )
