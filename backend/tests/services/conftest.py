# backend/tests/services/conftest.py
"""Service fixtures wired to the fake processor and recording notifier."""

import pytest

from classpay.services.class_session_service import ClassSessionService
from classpay.services.config_service import ConfigService
from classpay.services.payment_release_service import PaymentReleaseService
from classpay.services.payment_service import PaymentService
from classpay.services.wallet_service import WalletService
from classpay.services.withdrawal_service import WithdrawalService

PLATFORM_PAYOUT_ACCOUNT = "ba_platform_001"


@pytest.fixture
def config_service(db):
    return ConfigService(db)


@pytest.fixture
def payment_service(db, processor, notifier, config_service):
    return PaymentService(db, processor, notifier, config_service)


@pytest.fixture
def release_service(db, processor, notifier):
    return PaymentReleaseService(db, processor, notifier)


@pytest.fixture
def session_service(db, processor, notifier, payment_service, release_service):
    return ClassSessionService(
        db,
        processor,
        notifier,
        payment_service=payment_service,
        release_service=release_service,
    )


@pytest.fixture
def wallet_service(db):
    return WalletService(db)


@pytest.fixture
def withdrawal_service(db, processor, notifier, config_service, wallet_service):
    return WithdrawalService(
        db,
        processor,
        notifier,
        config_service=config_service,
        wallet_service=wallet_service,
        platform_payout_account_id=PLATFORM_PAYOUT_ACCOUNT,
    )
