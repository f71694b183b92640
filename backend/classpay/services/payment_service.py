# backend/classpay/services/payment_service.py
"""
Payment ledger for ClassPay.

Owns the Payment lifecycle: PENDING -> PAID -> REFUNDED, or PENDING -> FAILED
(-> PAID when the payer retries the same intent).
Every transition is a conditional update guarded on the current status, so a
concurrent caller that loses the race sees the winner's record instead of
applying the transition twice. Processor calls and notifications run only
after the state change has committed.
"""

import logging
from typing import Any, List, Optional, assert_never

from sqlalchemy.orm import Session

from ..constants.payment_defaults import DEFAULT_CURRENCY
from ..core.enums import WalletRole
from ..core.exceptions import (
    ExternalConfirmationMismatchException,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
)
from ..core.timezone_utils import utc_now
from ..models.payment import Payment, PaymentStatus
from ..repositories.factory import RepositoryFactory
from ..utils.money import ZERO, quantize_money
from .base import BaseService
from .commission import split_commission
from .config_service import ConfigService
from .notification_service import NotificationDispatcher, NotificationService
from .notification_templates import PAYMENT_RECEIVED
from .payment_processor import PaymentProcessor, StripePaymentProcessor

logger = logging.getLogger(__name__)

INTENT_SUCCEEDED = "succeeded"

# A payer may retry a failed charge on the same intent
_CONFIRMABLE = (PaymentStatus.PENDING, PaymentStatus.FAILED)


class PaymentService(BaseService):
    """Creates, confirms, fails and refunds booking payments."""

    def __init__(
        self,
        db: Session,
        processor: Optional[PaymentProcessor] = None,
        notifier: Optional[NotificationDispatcher] = None,
        config_service: Optional[ConfigService] = None,
    ):
        super().__init__(db)
        self.processor = processor or StripePaymentProcessor()
        self.notifier = notifier or NotificationService()
        self.config_service = config_service or ConfigService(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    @BaseService.measure_operation("create_payment")
    def create_payment(
        self,
        booking_id: str,
        payer_id: str,
        payee_id: str,
        amount: Any,
        currency: str = DEFAULT_CURRENCY,
    ) -> Payment:
        """
        Record a PENDING payment for a booking and request a charge intent.

        The commission split is computed from the settings in force right now
        and frozen on the row. The charge intent is best-effort: if the
        processor is down the payment stays PENDING without an intent and can
        still be confirmed out of band.

        Raises:
            ValidationException: amount <= 0 or parties do not match the booking
            NotFoundException: booking does not exist
        """
        try:
            gross = quantize_money(amount)
        except ValueError as exc:
            raise ValidationException("Amount must be a number", code="INVALID_AMOUNT") from exc
        if gross <= ZERO:
            raise ValidationException("Amount must be greater than zero", code="INVALID_AMOUNT")

        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        if booking.payer_id != payer_id or booking.payee_id != payee_id:
            raise ValidationException(
                "Payer and payee must match the booking", code="BOOKING_PARTY_MISMATCH"
            )

        snapshot = self.config_service.get_payment_settings()
        split = split_commission(gross, snapshot.commission_percentage, snapshot.commission_fixed)

        with self.transaction():
            payment = self.payment_repository.create(
                booking_id=booking_id,
                payer_id=payer_id,
                payee_id=payee_id,
                amount=gross,
                currency=currency.upper(),
                commission_percentage=snapshot.commission_percentage,
                commission_fixed=snapshot.commission_fixed,
                commission_amount=split.commission_amount,
                payee_amount=split.payee_amount,
                status=PaymentStatus.PENDING.value,
            )

        intent_id = self.run_post_commit_hook(
            "create_charge_intent",
            self.processor.create_charge_intent,
            gross,
            payment.currency,
            {"payment_id": payment.id, "booking_id": booking_id},
            idempotency_key=f"payment:{payment.id}",
        )
        if intent_id:
            with self.transaction():
                payment.stripe_payment_intent_id = intent_id
        else:
            self.logger.warning(f"Payment {payment.id} created without a charge intent")

        self.log_operation("create_payment", payment_id=payment.id, booking_id=booking_id)
        return payment

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(
        self,
        payment_id: str,
        stripe_charge_id: Optional[str] = None,
        processor_status: Optional[str] = None,
    ) -> Payment:
        """
        Move a payment from PENDING (or FAILED) to PAID.

        Idempotent: a PAID payment is returned unchanged with no processor
        call and no notification. When the payment has a charge intent the
        processor must report it as ``succeeded``; ``processor_status`` lets a
        verified webhook supply that status instead of a round trip. A FAILED
        payment is confirmed only on that report, since the payer can retry
        the same intent after a decline.

        Raises:
            NotFoundException: unknown payment
            PreconditionFailedException: payment is REFUNDED, or FAILED with no intent
            ExternalConfirmationMismatchException: intent did not succeed
        """
        payment = self._get_or_404(payment_id)
        if payment.status == PaymentStatus.PAID:
            return payment
        if payment.status not in _CONFIRMABLE or (
            payment.status == PaymentStatus.FAILED and not payment.stripe_payment_intent_id
        ):
            raise PreconditionFailedException(
                f"Cannot confirm a payment in status {payment.status}",
                details={"payment_id": payment_id, "status": payment.status},
            )

        if payment.stripe_payment_intent_id:
            reported = processor_status or self.processor.get_intent_status(
                payment.stripe_payment_intent_id
            )
            if reported != INTENT_SUCCEEDED:
                raise ExternalConfirmationMismatchException(reported, payment_id=payment_id)

        values = {"status": PaymentStatus.PAID.value, "paid_at": utc_now()}
        if stripe_charge_id:
            values["stripe_charge_id"] = stripe_charge_id

        with self.transaction():
            won = self.payment_repository.compare_and_set(
                payment.id,
                Payment.status.in_([status.value for status in _CONFIRMABLE]),
                values=values,
            )
        self.payment_repository.refresh(payment)

        if not won:
            if payment.status == PaymentStatus.PAID:
                self.logger.info(f"Payment {payment_id} was confirmed concurrently")
                return payment
            raise PreconditionFailedException(
                f"Cannot confirm a payment in status {payment.status}",
                details={"payment_id": payment_id, "status": payment.status},
            )

        self.run_post_commit_hook(
            "notify_payment_received",
            self.notifier.send,
            PAYMENT_RECEIVED.key,
            payment.payee_id,
            {
                "amount": payment.amount,
                "currency": payment.currency,
                "booking_id": payment.booking_id,
                "payment_id": payment.id,
            },
        )
        self.log_operation("confirm_payment", payment_id=payment.id)
        return payment

    @BaseService.measure_operation("mark_payment_failed")
    def mark_payment_failed(self, payment_id: str) -> Payment:
        payment = self._get_or_404(payment_id)
        if payment.status == PaymentStatus.FAILED:
            return payment
        return self._transition(
            payment,
            PaymentStatus.PENDING,
            {"status": PaymentStatus.FAILED.value, "failed_at": utc_now()},
        )

    @BaseService.measure_operation("refund_payment")
    def refund_payment(self, payment_id: str) -> Payment:
        """PAID -> REFUNDED. Amount and commission columns are left as they were."""
        payment = self._get_or_404(payment_id)
        if payment.status == PaymentStatus.REFUNDED:
            return payment
        return self._transition(
            payment,
            PaymentStatus.PAID,
            {"status": PaymentStatus.REFUNDED.value, "refunded_at": utc_now()},
        )

    def get_payment(self, payment_id: str) -> Payment:
        return self._get_or_404(payment_id)

    def get_payment_for_booking(self, booking_id: str) -> Optional[Payment]:
        return self.payment_repository.get_for_booking(booking_id)

    def get_payment_by_intent(self, stripe_payment_intent_id: str) -> Optional[Payment]:
        return self.payment_repository.get_by_intent_id(stripe_payment_intent_id)

    def list_payments_for_user(self, user_id: str, role: WalletRole) -> List[Payment]:
        """
        Payments visible to a user in the given role.

        Admins see every PAID payment, since those are the ones that earned
        platform commission.
        """
        role = WalletRole(role)
        if role is WalletRole.PAYER:
            return self.payment_repository.list_for_payer(user_id)
        elif role is WalletRole.PAYEE:
            return self.payment_repository.list_for_payee(user_id)
        elif role is WalletRole.ADMIN:
            return self.payment_repository.list_by_status(PaymentStatus.PAID)
        else:
            assert_never(role)

    def _get_or_404(self, payment_id: str) -> Payment:
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
        return payment

    def _transition(self, payment: Payment, expected: PaymentStatus, values: dict) -> Payment:
        target = values["status"]
        if payment.status != expected:
            raise PreconditionFailedException(
                f"Cannot move payment from {payment.status} to {target}",
                details={"payment_id": payment.id, "status": payment.status},
            )
        with self.transaction():
            won = self.payment_repository.compare_and_set(
                payment.id, Payment.status == expected.value, values=values
            )
        self.payment_repository.refresh(payment)
        if not won and payment.status != target:
            raise PreconditionFailedException(
                f"Cannot move payment from {payment.status} to {target}",
                details={"payment_id": payment.id, "status": payment.status},
            )
        self.log_operation("payment_transition", payment_id=payment.id, status=target)
        return payment
