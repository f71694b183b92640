# backend/classpay/repositories/booking_repository.py
"""Read-only access to bookings; booking CRUD belongs to the scheduling service."""

from sqlalchemy.orm import Session

from ..models.booking import Booking
from .base_repository import BaseRepository


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)
