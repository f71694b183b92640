# backend/classpay/models/booking.py
"""
Booking model.

Bookings are owned by the scheduling service; ClassPay only reads them to find
the assigned tutor (payee), the student (payer) and the scheduled duration
used for proration.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..core.timezone_utils import ensure_utc
from ..database import Base


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payer_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    payee_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def scheduled_hours(self) -> Decimal:
        """Scheduled length in hours; zero when the times are missing or inverted."""
        start = ensure_utc(self.start_time)
        end = ensure_utc(self.end_time)
        if start is None or end is None:
            return Decimal("0")
        seconds = max(0, int((end - start).total_seconds()))
        return Decimal(seconds) / Decimal(3600)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, payee={self.payee_id}, status={self.status})>"


__all__ = ["Booking", "BookingStatus"]
