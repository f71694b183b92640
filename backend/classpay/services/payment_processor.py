# backend/classpay/services/payment_processor.py
"""
Payment processor boundary.

Services depend on the ``PaymentProcessor`` protocol only. The Stripe
implementation converts Decimal amounts to integer cents, forwards
idempotency keys, and turns every ``stripe.StripeError`` (timeouts included)
into an ``ExternalServiceException`` so callers never see SDK types.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, Mapping, Optional, Protocol

import stripe

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    ConfigurationException,
    DomainException,
    ExternalServiceException,
)
from ..utils.money import to_cents

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):
    def create_charge_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        ...

    def get_intent_status(self, intent_id: str) -> str:
        ...

    def create_transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        ...

    def create_payout(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        ...


def _object_id(obj: Any) -> str:
    return obj.get("id") if isinstance(obj, dict) else getattr(obj, "id")


class StripePaymentProcessor:
    """
    ``PaymentProcessor`` backed by the Stripe SDK.

    Transfers go to the payee's connected account. Payouts to a connected
    account (``acct_...``) are created on that account; any other destination
    is treated as a bank account or card on the platform account.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.stripe_configured = False
        if self.config.stripe_secret_key:
            stripe.api_key = self.config.stripe_secret_key.get_secret_value()
            # Bounded timeout so a slow processor cannot hold a request open
            stripe.default_http_client = stripe.RequestsClient(
                timeout=self.config.stripe_timeout_seconds
            )
            stripe.max_network_retries = self.config.stripe_max_network_retries
            self.stripe_configured = True
        else:
            logger.warning("Stripe secret key not configured - processor calls will fail")

    def _check_stripe_configured(self) -> None:
        if not self.stripe_configured:
            raise ConfigurationException(
                "Stripe is not configured. Please set STRIPE_SECRET_KEY.",
                code="STRIPE_NOT_CONFIGURED",
            )

    @staticmethod
    def _request_options(idempotency_key: Optional[str]) -> Dict[str, Any]:
        return {"idempotency_key": idempotency_key} if idempotency_key else {}

    def _external_error(self, operation: str, exc: stripe.StripeError) -> DomainException:
        logger.error("Stripe error during %s: %s", operation, str(exc))
        if isinstance(exc, stripe.AuthenticationError):
            return ConfigurationException(
                "Stripe rejected the configured credentials", code="STRIPE_AUTH_FAILED"
            )
        return ExternalServiceException(
            f"Payment processor error during {operation}: {getattr(exc, 'user_message', None) or str(exc)}",
            code=getattr(exc, "code", None) or "PROCESSOR_ERROR",
            details={"operation": operation},
        )

    def create_charge_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        self._check_stripe_configured()
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(amount),
                currency=currency.lower(),
                metadata=dict(metadata),
                automatic_payment_methods={"enabled": True},
                **self._request_options(idempotency_key),
            )
        except stripe.StripeError as exc:
            raise self._external_error("create_charge_intent", exc) from exc
        return _object_id(intent)

    def get_intent_status(self, intent_id: str) -> str:
        self._check_stripe_configured()
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as exc:
            raise self._external_error("get_intent_status", exc) from exc
        return intent.get("status") if isinstance(intent, dict) else getattr(intent, "status")

    def create_transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        self._check_stripe_configured()
        try:
            transfer = stripe.Transfer.create(
                amount=to_cents(amount),
                currency=currency.lower(),
                destination=destination,
                metadata=dict(metadata),
                **self._request_options(idempotency_key),
            )
        except stripe.StripeError as exc:
            raise self._external_error("create_transfer", exc) from exc
        logger.info(
            "Created transfer",
            extra={"destination": destination, "amount": str(amount), "idempotency_key": idempotency_key},
        )
        return _object_id(transfer)

    def create_payout(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        self._check_stripe_configured()
        params: Dict[str, Any] = {
            "amount": to_cents(amount),
            "currency": currency.lower(),
            "metadata": dict(metadata),
        }
        if destination.startswith("acct_"):
            params["stripe_account"] = destination
        else:
            params["destination"] = destination
        try:
            payout = stripe.Payout.create(**params, **self._request_options(idempotency_key))
        except stripe.StripeError as exc:
            raise self._external_error("create_payout", exc) from exc
        return _object_id(payout)
