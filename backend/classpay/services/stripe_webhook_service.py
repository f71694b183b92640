# backend/classpay/services/stripe_webhook_service.py
"""
Stripe webhook routing for ClassPay.

Verified events are routed by type prefix to the payment ledger, the
withdrawal state machine, or the payout account records. Events that cannot
apply (unknown payment, out-of-order transition) are acknowledged and logged
so Stripe stops redelivering them; retryable failures propagate so the
endpoint answers non-2xx and Stripe tries again.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Union

from sqlalchemy.orm import Session
import stripe

from ..core.config import settings
from ..core.exceptions import ConfigurationException, DomainException, ValidationException
from ..models.payment import Payment
from ..models.withdrawal import Withdrawal
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_service import NotificationDispatcher
from .payment_processor import PaymentProcessor
from .payment_service import PaymentService
from .withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)


class StripeWebhookService(BaseService):
    """Applies Stripe webhook events to ClassPay state."""

    def __init__(
        self,
        db: Session,
        processor: Optional[PaymentProcessor] = None,
        notifier: Optional[NotificationDispatcher] = None,
        payment_service: Optional[PaymentService] = None,
        withdrawal_service: Optional[WithdrawalService] = None,
        webhook_secret: Optional[str] = None,
    ):
        super().__init__(db)
        self.payment_service = payment_service or PaymentService(db, processor, notifier)
        self.withdrawal_service = withdrawal_service or WithdrawalService(db, processor, notifier)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.payout_account_repository = RepositoryFactory.create_payout_account_repository(db)
        self.withdrawal_repository = RepositoryFactory.create_withdrawal_repository(db)
        if webhook_secret is None and settings.stripe_webhook_secret is not None:
            webhook_secret = settings.stripe_webhook_secret.get_secret_value()
        self.webhook_secret = webhook_secret

    def construct_event(self, payload: Union[str, bytes], signature: str) -> Dict[str, Any]:
        """
        Verify a webhook signature and parse the event.

        Raises:
            ConfigurationException: no webhook secret configured
            ValidationException: bad signature or malformed payload
        """
        if not self.webhook_secret:
            raise ConfigurationException("Webhook secret not configured", code="WEBHOOK_SECRET_MISSING")
        try:
            return stripe.Webhook.construct_event(
                payload.encode("utf-8") if isinstance(payload, str) else payload,
                signature,
                self.webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"Invalid webhook signature: {str(e)}")
            raise ValidationException("Invalid webhook signature", code="INVALID_SIGNATURE") from e
        except ValueError as e:
            self.logger.warning(f"Invalid webhook payload: {str(e)}")
            raise ValidationException("Invalid webhook payload", code="INVALID_PAYLOAD") from e

    @BaseService.measure_operation("handle_webhook_event")
    def handle_event(self, event: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Process an already-verified webhook event.

        Returns:
            ``{"success", "event_type", "handled"}``; ``handled`` is False for
            event types ClassPay does not act on.
        """
        event_type = event.get("type", "")
        data = (event.get("data") or {}).get("object") or {}
        self.logger.info(f"Processing webhook event: {event_type}")

        try:
            if event_type.startswith("payment_intent."):
                success = self._handle_payment_intent(event_type, data)
            elif event_type.startswith("charge."):
                success = self._handle_charge(event_type, data)
            elif event_type.startswith("payout."):
                success = self._handle_payout(event_type, data)
            elif event_type.startswith("account."):
                success = self._handle_account(event_type, data)
            else:
                self.logger.info(f"Unhandled webhook event type: {event_type}")
                return {"success": True, "event_type": event_type, "handled": False}
        except DomainException as e:
            if e.retryable:
                raise
            self.logger.warning(f"Webhook {event_type} not applied: {e.code}: {e.message}")
            return {"success": False, "event_type": event_type, "handled": True, "error": e.code}

        return {"success": success, "event_type": event_type, "handled": True}

    def _find_payment(self, intent: Mapping[str, Any]) -> Optional[Payment]:
        intent_id = intent.get("id")
        payment = self.payment_service.get_payment_by_intent(intent_id) if intent_id else None
        if payment is None:
            # The intent id is stored after the payment row commits, so an
            # early webhook can only be matched through its metadata.
            payment_id = (intent.get("metadata") or {}).get("payment_id")
            if payment_id:
                payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            self.logger.warning(f"Payment record not found for intent {intent_id}")
        return payment

    def _handle_payment_intent(self, event_type: str, intent: Mapping[str, Any]) -> bool:
        if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            return True
        payment = self._find_payment(intent)
        if payment is None:
            return False

        if event_type == "payment_intent.succeeded":
            self.payment_service.confirm_payment(
                payment.id,
                stripe_charge_id=intent.get("latest_charge"),
                processor_status=intent.get("status") or "succeeded",
            )
        else:
            self.payment_service.mark_payment_failed(payment.id)
        return True

    def _handle_charge(self, event_type: str, charge: Mapping[str, Any]) -> bool:
        if event_type != "charge.refunded":
            return True
        if not charge.get("refunded", True):
            self.logger.info(f"Partial refund on charge {charge.get('id')} left payment unchanged")
            return True
        payment = self._find_payment({"id": charge.get("payment_intent"), "metadata": charge.get("metadata")})
        if payment is None:
            return False
        self.payment_service.refund_payment(payment.id)
        return True

    def _find_withdrawal(self, payout: Mapping[str, Any]) -> Optional[Withdrawal]:
        payout_id = payout.get("id")
        withdrawal = self.withdrawal_repository.get_by_payout_id(payout_id) if payout_id else None
        if withdrawal is None:
            withdrawal_id = (payout.get("metadata") or {}).get("withdrawal_id")
            if withdrawal_id:
                withdrawal = self.withdrawal_repository.get_by_id(withdrawal_id)
        if withdrawal is None:
            self.logger.warning(f"Withdrawal not found for payout {payout_id}")
        return withdrawal

    def _handle_payout(self, event_type: str, payout: Mapping[str, Any]) -> bool:
        if event_type not in ("payout.paid", "payout.failed"):
            return True
        withdrawal = self._find_withdrawal(payout)
        if withdrawal is None:
            return False

        if event_type == "payout.paid":
            self.withdrawal_service.complete(withdrawal.id, stripe_payout_id=payout.get("id"))
        else:
            reason = payout.get("failure_message") or payout.get("failure_code")
            self.withdrawal_service.mark_failed(withdrawal.id, reason=reason)
        return True

    def _handle_account(self, event_type: str, account_data: Mapping[str, Any]) -> bool:
        """Onboarding is complete once the account can both charge and receive payouts."""
        if event_type != "account.updated":
            return True
        account_id = account_data.get("id")
        account = self.payout_account_repository.get_by_stripe_account_id(account_id) if account_id else None
        if account is None:
            self.logger.warning(f"Payout account not found for Stripe account {account_id}")
            return False

        completed = bool(account_data.get("charges_enabled")) and bool(
            account_data.get("payouts_enabled")
        )
        if account.onboarding_completed != completed:
            with self.transaction():
                account.onboarding_completed = completed
            self.logger.info(
                f"Payout account {account_id} ({account.role}) onboarding_completed={completed}"
            )
        return True
