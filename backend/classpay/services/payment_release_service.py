# backend/classpay/services/payment_release_service.py
"""
Payment release engine.

Transfers a payee's share of a PAID payment to their connected account once
the class session behind it is completed. Release is safe to call any number
of times: the transfer carries the idempotency key ``release:{session_id}``
and the session is flagged released by a conditional update, so concurrent or
repeated calls produce at most one transfer.
"""

from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.enums import WalletRole
from ..core.exceptions import DomainException
from ..core.timezone_utils import utc_now
from ..models.booking import Booking
from ..models.class_session import ClassSession, ClassSessionStatus
from ..models.payment import Payment, PaymentStatus
from ..repositories.factory import RepositoryFactory
from ..schemas.release import ReleaseResult
from ..utils.money import ZERO, quantize_money, to_decimal
from .base import BaseService
from .commission import split_commission
from .notification_service import NotificationDispatcher, NotificationService
from .notification_templates import PAYMENT_RELEASED
from .payment_processor import PaymentProcessor, StripePaymentProcessor

logger = logging.getLogger(__name__)


def calculate_release_amount(
    session: ClassSession, payment: Payment, booking: Optional[Booking]
) -> Decimal:
    """
    Amount owed to the payee for a session.

    Without reported hours the payee gets the share frozen on the payment.
    With hours, the gross is prorated from the booking's hourly rate (the
    whole amount counts as one hour when the booking has no duration), capped
    at the amount charged, and split again with the payment's own commission
    rate.
    """
    base = quantize_money(payment.payee_amount)
    if session.actual_hours_taught is None:
        return base
    hours = to_decimal(session.actual_hours_taught)
    if hours <= ZERO:
        return base

    gross = to_decimal(payment.amount)
    scheduled = booking.scheduled_hours if booking is not None else ZERO
    hourly_rate = gross / scheduled if scheduled > ZERO else gross
    # Overtime is not billed to the payer, so a release never exceeds what was charged
    prorated = min(hourly_rate * hours, gross)

    split = split_commission(
        quantize_money(prorated), payment.commission_percentage, payment.commission_fixed
    )
    return split.payee_amount


class PaymentReleaseService(BaseService):
    """Moves earned money from the platform balance to the payee."""

    def __init__(
        self,
        db: Session,
        processor: Optional[PaymentProcessor] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        super().__init__(db)
        self.processor = processor or StripePaymentProcessor()
        self.notifier = notifier or NotificationService()
        self.session_repository = RepositoryFactory.create_class_session_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.payout_account_repository = RepositoryFactory.create_payout_account_repository(db)

    @BaseService.measure_operation("release_payment")
    def release(self, session_id: str) -> ReleaseResult:
        """
        Release the payee's share for a completed session.

        Precondition failures come back as an unsuccessful result rather than
        an exception, checked in order: session exists, session completed and
        tutor-approved, not already released, payment PAID, payee has a payout
        account. A second call after success returns ``already_released``.
        """
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            return self._failure("Class session not found", "SESSION_NOT_FOUND")
        if session.status != ClassSessionStatus.COMPLETED or not session.tutor_approved:
            return self._failure("Class session is not completed", "SESSION_NOT_COMPLETED")
        if session.payment_released:
            return ReleaseResult(success=True, already_released=True)

        booking = self.booking_repository.get_by_id(session.booking_id)
        payment = self.payment_repository.get_for_booking(session.booking_id)
        if payment is None or payment.status != PaymentStatus.PAID:
            return self._failure("Payment has not been completed", "PAYMENT_NOT_PAID")

        account = self.payout_account_repository.get_for_user(
            payment.payee_id, WalletRole.PAYEE.value
        )
        if account is None or not account.stripe_account_id:
            return self._failure(
                "Payee does not have a payout account set up", "PAYOUT_ACCOUNT_MISSING"
            )

        amount = calculate_release_amount(session, payment, booking)

        transfer_id: Optional[str] = None
        if amount > ZERO:
            try:
                transfer_id = self.processor.create_transfer(
                    amount,
                    payment.currency,
                    account.stripe_account_id,
                    {
                        "payment_id": payment.id,
                        "class_session_id": session.id,
                        "booking_id": session.booking_id,
                        "payee_id": payment.payee_id,
                    },
                    idempotency_key=f"release:{session.id}",
                )
            except DomainException as exc:
                self.logger.error(f"Transfer for session {session.id} failed: {exc.message}")
                return ReleaseResult(
                    success=False,
                    error=exc.message,
                    error_code=exc.code,
                    retryable=exc.retryable,
                    amount=amount,
                )
        else:
            self.logger.warning(f"Nothing to transfer for session {session.id}; marking released")

        with self.transaction():
            won = self.session_repository.compare_and_set(
                session.id,
                ClassSession.payment_released.is_(False),
                values={
                    "payment_released": True,
                    "payment_released_at": utc_now(),
                    "stripe_transfer_id": transfer_id,
                    "released_amount": amount,
                },
            )
        self.session_repository.refresh(session)

        if not won:
            self.logger.info(f"Session {session.id} was released concurrently")
            return ReleaseResult(success=True, already_released=True)

        if transfer_id:
            self.run_post_commit_hook(
                "notify_payment_released",
                self.notifier.send,
                PAYMENT_RELEASED.key,
                payment.payee_id,
                {
                    "amount": amount,
                    "currency": payment.currency,
                    "session_id": session.id,
                    "transfer_id": transfer_id,
                },
            )
        self.log_operation("release_payment", session_id=session.id, transfer_id=transfer_id)
        return ReleaseResult(success=True, transfer_id=transfer_id, amount=amount)

    @staticmethod
    def _failure(error: str, code: str, retryable: bool = False) -> ReleaseResult:
        return ReleaseResult(success=False, error=error, error_code=code, retryable=retryable)
