# backend/classpay/services/class_session_service.py
"""
Class Session Service for ClassPay

State machine for the lesson behind a booking:

    SCHEDULED -> COMPLETED (payee marks the class taught)
    SCHEDULED -> CANCELLED (booking cancelled)

Approval and release are flags on a COMPLETED session. Completing or
approving a session drives the money side (payment confirmation and release)
from post-commit hooks, so a processor outage never rolls back the lesson
state.
"""

import logging
from typing import Any, List, Optional, assert_never

from sqlalchemy.orm import Session

from ..core.enums import WalletRole
from ..core.exceptions import (
    NotFoundException,
    PreconditionFailedException,
    RepositoryException,
    ValidationException,
)
from ..core.timezone_utils import utc_now
from ..models.booking import Booking
from ..models.class_session import ClassSession, ClassSessionStatus
from ..models.payment import PaymentStatus
from ..repositories.factory import RepositoryFactory
from ..schemas.release import ReleaseResult
from ..utils.money import ZERO, to_decimal
from .base import BaseService
from .notification_service import NotificationDispatcher, NotificationService
from .notification_templates import CLASS_APPROVED
from .payment_processor import PaymentProcessor, StripePaymentProcessor
from .payment_release_service import PaymentReleaseService
from .payment_service import PaymentService

logger = logging.getLogger(__name__)


class ClassSessionService(BaseService):
    """
    Service layer for class session lifecycle operations.

    Collaborating services are built from the same processor and notifier
    unless they are injected.
    """

    def __init__(
        self,
        db: Session,
        processor: Optional[PaymentProcessor] = None,
        notifier: Optional[NotificationDispatcher] = None,
        payment_service: Optional[PaymentService] = None,
        release_service: Optional[PaymentReleaseService] = None,
    ):
        super().__init__(db)
        processor = processor or StripePaymentProcessor()
        self.notifier = notifier or NotificationService()
        self.payment_service = payment_service or PaymentService(db, processor, self.notifier)
        self.release_service = release_service or PaymentReleaseService(db, processor, self.notifier)
        self.session_repository = RepositoryFactory.create_class_session_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    @BaseService.measure_operation("create_class_session")
    def create(self, booking_id: str) -> ClassSession:
        """Create the SCHEDULED session for a booking, or return the existing one."""
        if self.booking_repository.get_by_id(booking_id) is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")

        existing = self.session_repository.get_by_booking_id(booking_id)
        if existing is not None:
            return existing

        try:
            with self.transaction():
                session = self.session_repository.create(
                    booking_id=booking_id, status=ClassSessionStatus.SCHEDULED.value
                )
        except RepositoryException:
            # Lost a create race on the unique booking_id
            existing = self.session_repository.get_by_booking_id(booking_id)
            if existing is None:
                raise
            return existing

        self.log_operation("create_class_session", session_id=session.id, booking_id=booking_id)
        return session

    @BaseService.measure_operation("complete_class_session")
    def complete(
        self,
        session_id: str,
        acting_payee_id: str,
        notes: Optional[str] = None,
        actual_hours: Optional[Any] = None,
    ) -> ClassSession:
        """
        Mark a session as taught.

        Only the booking's payee may complete it. Completing an already
        completed session is a no-op. If the payment is already PAID the
        payee's share is released right after the commit.

        Raises:
            NotFoundException: unknown session
            PreconditionFailedException: wrong payee or session cancelled
            ValidationException: negative hours
        """
        session = self._get_or_404(session_id)
        booking = self._get_booking(session)

        if booking.payee_id != acting_payee_id:
            raise PreconditionFailedException(
                "Only the assigned payee can complete this class",
                code="NOT_ASSIGNED_PAYEE",
                details={"session_id": session_id},
            )
        if session.status == ClassSessionStatus.COMPLETED:
            return session
        if session.status == ClassSessionStatus.CANCELLED:
            raise PreconditionFailedException(
                "Cannot complete a cancelled class", details={"session_id": session_id}
            )

        values: dict = {
            "status": ClassSessionStatus.COMPLETED.value,
            "tutor_approved": True,
            "completed_at": utc_now(),
        }
        if notes is not None:
            values["notes"] = notes
        if actual_hours is not None:
            try:
                hours = to_decimal(actual_hours)
            except ValueError as exc:
                raise ValidationException("Hours taught must be a number", code="INVALID_HOURS") from exc
            if hours < ZERO:
                raise ValidationException("Hours taught must not be negative", code="INVALID_HOURS")
            values["actual_hours_taught"] = hours

        with self.transaction():
            won = self.session_repository.compare_and_set(
                session.id,
                ClassSession.status == ClassSessionStatus.SCHEDULED.value,
                values=values,
            )
        self.session_repository.refresh(session)
        if not won:
            if session.status == ClassSessionStatus.COMPLETED:
                return session
            raise PreconditionFailedException(
                f"Cannot complete a class in status {session.status}",
                details={"session_id": session_id},
            )

        payment = self.payment_repository.get_for_booking(session.booking_id)
        if payment is not None and payment.status == PaymentStatus.PAID:
            self._release_after_commit(session)

        self.log_operation("complete_class_session", session_id=session.id)
        return session

    @BaseService.measure_operation("approve_class_session")
    def approve(self, session_id: str, acting_admin_id: str, notes: Optional[str] = None) -> ClassSession:
        """
        Admin sign-off on a completed class.

        After the commit, each independently: confirm a still-PENDING payment,
        release the payee's share once the payment is PAID, and tell the payee
        the class was approved.

        Raises:
            NotFoundException: unknown session
            PreconditionFailedException: session not completed by the payee
        """
        session = self._get_or_404(session_id)
        if session.admin_approved:
            return session
        if session.status != ClassSessionStatus.COMPLETED or not session.tutor_approved:
            raise PreconditionFailedException(
                "Class must be completed by the payee before admin approval",
                code="SESSION_NOT_COMPLETED",
                details={"session_id": session_id, "status": session.status},
            )

        values: dict = {
            "admin_approved": True,
            "admin_approved_at": utc_now(),
            "admin_approved_by": acting_admin_id,
        }
        if notes is not None:
            values["notes"] = notes

        with self.transaction():
            won = self.session_repository.compare_and_set(
                session.id,
                ClassSession.status == ClassSessionStatus.COMPLETED.value,
                ClassSession.tutor_approved.is_(True),
                ClassSession.admin_approved.is_(False),
                values=values,
            )
        self.session_repository.refresh(session)
        if not won:
            if session.admin_approved:
                return session
            raise PreconditionFailedException(
                "Class must be completed by the payee before admin approval",
                code="SESSION_NOT_COMPLETED",
                details={"session_id": session_id, "status": session.status},
            )

        payment = self.payment_repository.get_for_booking(session.booking_id)
        if payment is not None and payment.status == PaymentStatus.PENDING:
            confirmed = self.run_post_commit_hook(
                "confirm_payment", self.payment_service.confirm_payment, payment.id
            )
            if confirmed is not None:
                payment = confirmed
        if payment is not None and payment.status == PaymentStatus.PAID:
            self._release_after_commit(session)

        booking = self.booking_repository.get_by_id(session.booking_id)
        if booking is not None:
            self.run_post_commit_hook(
                "notify_class_approved",
                self.notifier.send,
                CLASS_APPROVED.key,
                booking.payee_id,
                {"session_id": session.id, "notes": session.notes},
            )

        self.log_operation("approve_class_session", session_id=session.id, admin_id=acting_admin_id)
        return session

    @BaseService.measure_operation("cancel_class_session")
    def cancel(self, session_id: str) -> ClassSession:
        """SCHEDULED -> CANCELLED; called when the booking is cancelled."""
        session = self._get_or_404(session_id)
        if session.status == ClassSessionStatus.CANCELLED:
            return session
        if session.status != ClassSessionStatus.SCHEDULED:
            raise PreconditionFailedException(
                f"Cannot cancel a class in status {session.status}",
                details={"session_id": session_id},
            )

        with self.transaction():
            won = self.session_repository.compare_and_set(
                session.id,
                ClassSession.status == ClassSessionStatus.SCHEDULED.value,
                values={"status": ClassSessionStatus.CANCELLED.value, "cancelled_at": utc_now()},
            )
        self.session_repository.refresh(session)
        if not won and session.status != ClassSessionStatus.CANCELLED:
            raise PreconditionFailedException(
                f"Cannot cancel a class in status {session.status}",
                details={"session_id": session_id},
            )
        return session

    def get_session(self, session_id: str) -> ClassSession:
        return self._get_or_404(session_id)

    def list_sessions_for_user(self, user_id: str, role: WalletRole) -> List[ClassSession]:
        """Payers and payees see their bookings' sessions; admins see those they approved."""
        role = WalletRole(role)
        if role is WalletRole.PAYER:
            return self.session_repository.list_for_payer(user_id)
        elif role is WalletRole.PAYEE:
            return self.session_repository.list_for_payee(user_id)
        elif role is WalletRole.ADMIN:
            return self.session_repository.list_approved_by(user_id)
        else:
            assert_never(role)

    def list_sessions(self, status: Optional[ClassSessionStatus] = None) -> List[ClassSession]:
        return self.session_repository.list_sessions(status)

    def _release_after_commit(self, session: ClassSession) -> Optional[ReleaseResult]:
        result = self.run_post_commit_hook(
            "release_payment", self.release_service.release, session.id
        )
        if result is not None and not result.success:
            self.logger.warning(
                f"Release for session {session.id} did not complete: "
                f"{result.error_code} {result.error} (retryable={result.retryable})"
            )
        return result

    def _get_or_404(self, session_id: str) -> ClassSession:
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException(f"Class session {session_id} not found", code="SESSION_NOT_FOUND")
        return session

    def _get_booking(self, session: ClassSession) -> Booking:
        booking = self.booking_repository.get_by_id(session.booking_id)
        if booking is None:
            raise NotFoundException(
                f"Booking {session.booking_id} not found", code="BOOKING_NOT_FOUND"
            )
        return booking
