# backend/classpay/repositories/class_session_repository.py
"""Repository for class sessions, including lookups through the owning booking."""

from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import Booking
from ..models.class_session import ClassSession, ClassSessionStatus
from .base_repository import BaseRepository


class ClassSessionRepository(BaseRepository[ClassSession]):
    def __init__(self, db: Session):
        super().__init__(db, ClassSession)

    def get_by_booking_id(self, booking_id: str) -> Optional[ClassSession]:
        try:
            session = self.db.query(ClassSession).filter(ClassSession.booking_id == booking_id).first()
            return cast(Optional[ClassSession], session)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get class session for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to get class session: {str(e)}")

    def list_for_payer(self, payer_id: str) -> List[ClassSession]:
        query = (
            self._build_query()
            .join(Booking, Booking.id == ClassSession.booking_id)
            .filter(Booking.payer_id == payer_id)
            .order_by(ClassSession.created_at.desc())
        )
        return self._execute_query(query)

    def list_for_payee(self, payee_id: str) -> List[ClassSession]:
        query = (
            self._build_query()
            .join(Booking, Booking.id == ClassSession.booking_id)
            .filter(Booking.payee_id == payee_id)
            .order_by(ClassSession.created_at.desc())
        )
        return self._execute_query(query)

    def list_approved_by(self, admin_id: str) -> List[ClassSession]:
        query = (
            self._build_query()
            .filter(ClassSession.admin_approved_by == admin_id)
            .order_by(ClassSession.admin_approved_at.desc())
        )
        return self._execute_query(query)

    def list_sessions(self, status: Optional[ClassSessionStatus] = None) -> List[ClassSession]:
        query = self._build_query()
        if status is not None:
            query = query.filter(ClassSession.status == status.value)
        return self._execute_query(query.order_by(ClassSession.created_at.desc()))
