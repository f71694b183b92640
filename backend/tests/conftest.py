# backend/tests/conftest.py
"""
Pytest configuration for ClassPay.

Every test gets its own in-memory SQLite database, a fake payment processor
that behaves like Stripe's idempotent API, and a notifier that records what
would have been sent.
"""

import os

# Point the default engine at SQLite BEFORE any classpay imports
os.environ.setdefault("DATABASE_URL", "sqlite://")

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import ulid

import classpay.models  # noqa: F401  (register tables on Base.metadata)
from classpay.core.enums import WalletRole
from classpay.core.exceptions import ExternalServiceException
from classpay.database import Base
from classpay.models.booking import Booking
from classpay.models.payment import Payment, PaymentStatus, PayoutAccount
from classpay.utils.money import quantize_money

# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def db() -> Session:
    """Create a fresh in-memory database and session for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestSessionLocal()

    yield session

    session.rollback()
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


# ============================================================================
# External collaborators
# ============================================================================


@dataclass
class FakeProcessor:
    """
    In-memory PaymentProcessor.

    Like Stripe, a repeated idempotency key returns the object created by the
    first call instead of creating another one.
    """

    intent_status: str = "succeeded"
    fail_intent: Optional[Exception] = None
    fail_transfer: Optional[Exception] = None
    fail_payout: Optional[Exception] = None
    intents: List[Dict[str, Any]] = field(default_factory=list)
    transfers: List[Dict[str, Any]] = field(default_factory=list)
    payouts: List[Dict[str, Any]] = field(default_factory=list)
    status_lookups: List[str] = field(default_factory=list)
    _by_key: Dict[str, str] = field(default_factory=dict)

    def _idempotent(self, key: Optional[str], prefix: str, store: List[Dict[str, Any]], record: Dict[str, Any]) -> str:
        if key and key in self._by_key:
            return self._by_key[key]
        object_id = f"{prefix}_{len(store) + 1}"
        store.append({"id": object_id, "idempotency_key": key, **record})
        if key:
            self._by_key[key] = object_id
        return object_id

    def create_charge_intent(self, amount, currency, metadata, idempotency_key=None) -> str:
        if self.fail_intent:
            raise self.fail_intent
        return self._idempotent(
            idempotency_key, "pi", self.intents,
            {"amount": amount, "currency": currency, "metadata": dict(metadata)},
        )

    def get_intent_status(self, intent_id: str) -> str:
        self.status_lookups.append(intent_id)
        return self.intent_status

    def create_transfer(self, amount, currency, destination, metadata, idempotency_key=None) -> str:
        if self.fail_transfer:
            raise self.fail_transfer
        return self._idempotent(
            idempotency_key, "tr", self.transfers,
            {"amount": amount, "currency": currency, "destination": destination, "metadata": dict(metadata)},
        )

    def create_payout(self, amount, currency, destination, metadata, idempotency_key=None) -> str:
        if self.fail_payout:
            raise self.fail_payout
        return self._idempotent(
            idempotency_key, "po", self.payouts,
            {"amount": amount, "currency": currency, "destination": destination, "metadata": dict(metadata)},
        )


@dataclass
class RecordingNotifier:
    sent: List[Dict[str, Any]] = field(default_factory=list)

    def send(self, template_key: str, recipient: str, variables: Mapping[str, Any]) -> None:
        self.sent.append({"template": template_key, "recipient": recipient, "variables": dict(variables)})

    def templates(self) -> List[str]:
        return [item["template"] for item in self.sent]


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def processor_down() -> ExternalServiceException:
    return ExternalServiceException("Payment processor error: timeout", code="api_connection_error")


# ============================================================================
# Users and records
# ============================================================================


@pytest.fixture
def payer_id() -> str:
    return str(ulid.ULID())


@pytest.fixture
def payee_id() -> str:
    return str(ulid.ULID())


@pytest.fixture
def admin_id() -> str:
    return str(ulid.ULID())


@pytest.fixture
def make_booking(db: Session, payer_id: str, payee_id: str) -> Callable[..., Booking]:
    """Factory for bookings; two scheduled hours by default."""

    def _make(hours: float = 2, start: Optional[datetime] = None, **overrides: Any) -> Booking:
        start_time = start or datetime(2026, 1, 5, 15, 0, tzinfo=timezone.utc)
        booking = Booking(
            payer_id=overrides.pop("payer_id", payer_id),
            payee_id=overrides.pop("payee_id", payee_id),
            start_time=start_time,
            end_time=start_time + timedelta(hours=hours),
            **overrides,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def booking(make_booking) -> Booking:
    return make_booking()


@pytest.fixture
def make_payment(db: Session) -> Callable[..., Payment]:
    """Insert a payment row directly, bypassing the ledger, with a 10% split."""

    def _make(
        booking: Booking,
        amount: str = "100.00",
        status: PaymentStatus = PaymentStatus.PAID,
        commission_percentage: str = "10",
        commission_fixed: str = "0",
        **overrides: Any,
    ) -> Payment:
        gross = quantize_money(amount)
        commission = quantize_money(gross * Decimal(commission_percentage) / 100 + Decimal(commission_fixed))
        payment = Payment(
            booking_id=booking.id,
            payer_id=booking.payer_id,
            payee_id=booking.payee_id,
            amount=gross,
            currency="USD",
            commission_percentage=Decimal(commission_percentage),
            commission_fixed=Decimal(commission_fixed),
            commission_amount=commission,
            payee_amount=gross - commission,
            status=status.value,
            **overrides,
        )
        db.add(payment)
        db.commit()
        return payment

    return _make


@pytest.fixture
def payee_account(db: Session, payee_id: str) -> PayoutAccount:
    account = PayoutAccount(
        user_id=payee_id,
        role=WalletRole.PAYEE.value,
        stripe_account_id="acct_payee_123",
        onboarding_completed=True,
    )
    db.add(account)
    db.commit()
    return account
