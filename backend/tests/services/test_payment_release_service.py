# backend/tests/services/test_payment_release_service.py
from decimal import Decimal

import pytest

from classpay.models.class_session import ClassSession, ClassSessionStatus
from classpay.models.payment import PaymentStatus
from classpay.services.payment_release_service import calculate_release_amount


@pytest.fixture
def make_session(db):
    def _make(booking, status=ClassSessionStatus.COMPLETED, actual_hours=None):
        session = ClassSession(
            booking_id=booking.id,
            status=status.value,
            tutor_approved=status == ClassSessionStatus.COMPLETED,
            actual_hours_taught=actual_hours,
        )
        db.add(session)
        db.commit()
        return session

    return _make


class TestPreconditions:
    def test_unknown_session(self, release_service):
        result = release_service.release("01ARZ3NDEKTSV4RRFFQ69G5FAV")

        assert result.success is False
        assert result.error_code == "SESSION_NOT_FOUND"

    def test_session_not_completed(self, release_service, make_session, make_payment, booking, payee_account):
        make_payment(booking)
        session = make_session(booking, status=ClassSessionStatus.SCHEDULED)

        result = release_service.release(session.id)

        assert result.success is False
        assert result.error_code == "SESSION_NOT_COMPLETED"

    def test_payment_not_paid(self, release_service, make_session, make_payment, booking, payee_account):
        make_payment(booking, status=PaymentStatus.PENDING)
        session = make_session(booking)

        result = release_service.release(session.id)

        assert result.error_code == "PAYMENT_NOT_PAID"
        assert result.retryable is False

    def test_payment_missing(self, release_service, make_session, booking, payee_account):
        session = make_session(booking)

        assert release_service.release(session.id).error_code == "PAYMENT_NOT_PAID"

    def test_payee_without_payout_account(self, release_service, processor, make_session, make_payment, booking):
        make_payment(booking)
        session = make_session(booking)

        result = release_service.release(session.id)

        assert result.error_code == "PAYOUT_ACCOUNT_MISSING"
        assert processor.transfers == []


class TestRelease:
    def test_transfers_payee_share_once(
        self, release_service, processor, notifier, make_session, make_payment, booking, payee_account
    ):
        payment = make_payment(booking, amount="100.00")
        session = make_session(booking)

        result = release_service.release(session.id)

        assert result.success is True
        assert result.transfer_id == "tr_1"
        assert result.amount == Decimal("90.00")
        transfer = processor.transfers[0]
        assert transfer["destination"] == "acct_payee_123"
        assert transfer["idempotency_key"] == f"release:{session.id}"
        assert transfer["metadata"]["payment_id"] == payment.id

        assert session.payment_released is True
        assert session.payment_released_at is not None
        assert session.stripe_transfer_id == "tr_1"
        assert session.released_amount == Decimal("90.00")
        assert notifier.templates() == ["PAYMENT_RELEASED"]

    def test_second_release_is_a_no_op(
        self, release_service, processor, notifier, make_session, make_payment, booking, payee_account
    ):
        make_payment(booking)
        session = make_session(booking)
        release_service.release(session.id)

        again = release_service.release(session.id)

        assert again.success is True
        assert again.already_released is True
        assert again.transfer_id is None
        assert len(processor.transfers) == 1
        assert len(notifier.sent) == 1

    def test_transfer_failure_is_retryable_and_retry_reuses_key(
        self, release_service, processor, processor_down, make_session, make_payment, booking, payee_account
    ):
        make_payment(booking)
        session = make_session(booking)
        processor.fail_transfer = processor_down

        failed = release_service.release(session.id)

        assert failed.success is False
        assert failed.retryable is True
        assert session.payment_released is False

        processor.fail_transfer = None
        retried = release_service.release(session.id)

        assert retried.success is True
        assert [t["idempotency_key"] for t in processor.transfers] == [f"release:{session.id}"]

    def test_losing_the_release_race_reports_already_released(
        self, release_service, notifier, make_session, make_payment, booking, payee_account, monkeypatch
    ):
        make_payment(booking)
        session = make_session(booking)
        monkeypatch.setattr(
            release_service.session_repository, "compare_and_set", lambda *args, **kwargs: False
        )

        result = release_service.release(session.id)

        assert result.success is True
        assert result.already_released is True
        assert notifier.sent == []

    def test_zero_share_is_marked_released_without_transfer(
        self, release_service, processor, notifier, make_session, make_payment, booking, payee_account
    ):
        make_payment(booking, amount="10.00", commission_percentage="100")
        session = make_session(booking)

        result = release_service.release(session.id)

        assert result.success is True
        assert result.transfer_id is None
        assert result.amount == Decimal("0.00")
        assert session.payment_released is True
        assert processor.transfers == []
        assert notifier.sent == []


class TestProration:
    def test_partial_hours_prorate_the_share(
        self, release_service, processor, make_session, make_payment, make_booking, payee_account
    ):
        booking = make_booking(hours=2)
        make_payment(booking, amount="100.00")
        session = make_session(booking, actual_hours=Decimal("1.5"))

        result = release_service.release(session.id)

        # 75.00 gross at 10% commission
        assert result.amount == Decimal("67.50")
        assert processor.transfers[0]["amount"] == Decimal("67.50")

    def test_extra_hours_are_capped_at_amount_charged(self, make_session, make_payment, make_booking):
        booking = make_booking(hours=2)
        payment = make_payment(booking, amount="100.00")
        session = make_session(booking, actual_hours=Decimal("3"))

        assert calculate_release_amount(session, payment, booking) == Decimal("90.00")

    def test_zero_length_booking_uses_full_amount_as_hourly_rate(
        self, make_session, make_payment, make_booking
    ):
        booking = make_booking(hours=0)
        payment = make_payment(booking, amount="100.00")
        session = make_session(booking, actual_hours=Decimal("0.5"))

        assert calculate_release_amount(session, payment, booking) == Decimal("45.00")

    def test_no_reported_hours_releases_frozen_share(self, make_session, make_payment, make_booking):
        booking = make_booking(hours=2)
        payment = make_payment(booking, amount="100.00", commission_fixed="2.50")
        session = make_session(booking)

        assert calculate_release_amount(session, payment, booking) == Decimal("87.50")

    def test_proration_uses_commission_frozen_on_payment(
        self, config_service, make_session, make_payment, make_booking
    ):
        booking = make_booking(hours=4)
        payment = make_payment(booking, amount="200.00", commission_percentage="20")
        session = make_session(booking, actual_hours=Decimal("2"))
        config_service.set_payment_settings({"commission_percentage": "50"})

        # 100.00 gross at the payment's 20%
        assert calculate_release_amount(session, payment, booking) == Decimal("80.00")
