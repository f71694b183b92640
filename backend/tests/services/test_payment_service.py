# backend/tests/services/test_payment_service.py
from decimal import Decimal

import pytest

from classpay.core.enums import WalletRole
from classpay.core.exceptions import (
    ExternalConfirmationMismatchException,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
)
from classpay.models.payment import PaymentStatus


class TestCreatePayment:
    def test_records_pending_payment_with_frozen_split(self, payment_service, processor, booking):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")

        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("100.00")
        assert payment.currency == "USD"
        assert payment.commission_percentage == Decimal("10")
        assert payment.commission_amount == Decimal("10.00")
        assert payment.payee_amount == Decimal("90.00")
        assert payment.stripe_payment_intent_id == "pi_1"

        intent = processor.intents[0]
        assert intent["idempotency_key"] == f"payment:{payment.id}"
        assert intent["metadata"]["payment_id"] == payment.id
        assert intent["amount"] == Decimal("100.00")

    def test_later_settings_change_does_not_rewrite_payment(
        self, payment_service, config_service, booking
    ):
        config_service.set_payment_settings({"commission_percentage": "20", "commission_fixed": "1"})
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "50")

        config_service.set_payment_settings({"commission_percentage": "5", "commission_fixed": "0"})
        reloaded = payment_service.get_payment(payment.id)

        assert reloaded.commission_percentage == Decimal("20")
        assert reloaded.commission_fixed == Decimal("1")
        assert reloaded.commission_amount == Decimal("11.00")
        assert reloaded.payee_amount == Decimal("39.00")

    @pytest.mark.parametrize("amount", ["0", "-5", "abc"])
    def test_rejects_non_positive_or_non_numeric_amount(self, payment_service, booking, amount):
        with pytest.raises(ValidationException) as exc_info:
            payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, amount)

        assert exc_info.value.code == "INVALID_AMOUNT"
        assert payment_service.get_payment_for_booking(booking.id) is None

    def test_unknown_booking(self, payment_service, payer_id, payee_id):
        with pytest.raises(NotFoundException):
            payment_service.create_payment("01ARZ3NDEKTSV4RRFFQ69G5FAV", payer_id, payee_id, "10")

    def test_parties_must_match_booking(self, payment_service, booking, admin_id):
        with pytest.raises(ValidationException) as exc_info:
            payment_service.create_payment(booking.id, booking.payer_id, admin_id, "10")

        assert exc_info.value.code == "BOOKING_PARTY_MISMATCH"

    def test_processor_outage_leaves_payment_pending_without_intent(
        self, payment_service, processor, processor_down, booking
    ):
        processor.fail_intent = processor_down

        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")

        assert payment.status == PaymentStatus.PENDING
        assert payment.stripe_payment_intent_id is None


class TestConfirmPayment:
    def test_pending_to_paid_notifies_payee(self, payment_service, processor, notifier, booking):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")

        confirmed = payment_service.confirm_payment(payment.id, stripe_charge_id="ch_1")

        assert confirmed.status == PaymentStatus.PAID
        assert confirmed.paid_at is not None
        assert confirmed.stripe_charge_id == "ch_1"
        assert processor.status_lookups == ["pi_1"]
        assert notifier.templates() == ["PAYMENT_RECEIVED"]
        assert notifier.sent[0]["recipient"] == booking.payee_id

    def test_confirm_is_idempotent(self, payment_service, processor, notifier, booking):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")
        first = payment_service.confirm_payment(payment.id)
        paid_at = first.paid_at

        second = payment_service.confirm_payment(payment.id)

        assert second.status == PaymentStatus.PAID
        assert second.paid_at == paid_at
        assert len(processor.status_lookups) == 1
        assert notifier.templates() == ["PAYMENT_RECEIVED"]

    def test_processor_status_mismatch_keeps_payment_pending(
        self, payment_service, processor, notifier, booking
    ):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")
        processor.intent_status = "requires_payment_method"

        with pytest.raises(ExternalConfirmationMismatchException) as exc_info:
            payment_service.confirm_payment(payment.id)

        assert exc_info.value.reported_status == "requires_payment_method"
        assert exc_info.value.retryable is True
        assert payment_service.get_payment(payment.id).status == PaymentStatus.PENDING
        assert notifier.sent == []

    def test_reported_status_skips_processor_lookup(self, payment_service, processor, booking):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")

        payment_service.confirm_payment(payment.id, processor_status="succeeded")

        assert processor.status_lookups == []

    def test_payment_without_intent_confirms_without_lookup(
        self, payment_service, processor, processor_down, booking
    ):
        processor.fail_intent = processor_down
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")

        confirmed = payment_service.confirm_payment(payment.id)

        assert confirmed.status == PaymentStatus.PAID
        assert processor.status_lookups == []

    def test_retried_intent_confirms_failed_payment(self, payment_service, processor, notifier, booking):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")
        payment_service.mark_payment_failed(payment.id)

        confirmed = payment_service.confirm_payment(payment.id, stripe_charge_id="ch_retry")

        assert confirmed.status == PaymentStatus.PAID
        assert confirmed.stripe_charge_id == "ch_retry"
        assert processor.status_lookups == ["pi_1"]
        assert notifier.templates() == ["PAYMENT_RECEIVED"]

    def test_failed_payment_stays_failed_while_intent_unpaid(self, payment_service, processor, booking):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")
        payment_service.mark_payment_failed(payment.id)
        processor.intent_status = "requires_payment_method"

        with pytest.raises(ExternalConfirmationMismatchException):
            payment_service.confirm_payment(payment.id)

        assert payment_service.get_payment(payment.id).status == PaymentStatus.FAILED

    def test_failed_payment_without_intent_cannot_be_confirmed(
        self, payment_service, processor, processor_down, booking
    ):
        processor.fail_intent = processor_down
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")
        payment_service.mark_payment_failed(payment.id)

        with pytest.raises(PreconditionFailedException):
            payment_service.confirm_payment(payment.id)

    def test_refunded_payment_cannot_be_confirmed(self, payment_service, processor, booking):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")
        payment_service.confirm_payment(payment.id)
        payment_service.refund_payment(payment.id)

        with pytest.raises(PreconditionFailedException):
            payment_service.confirm_payment(payment.id)

        assert processor.status_lookups == ["pi_1"]

    def test_concurrent_confirm_returns_winner_without_second_notice(
        self, payment_service, notifier, booking, monkeypatch
    ):
        payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")
        real_cas = payment_service.payment_repository.compare_and_set

        def _lose_race(entity_id, *criteria, values):
            # Another worker confirms first; this caller's update matches no row
            real_cas(entity_id, *criteria, values=values)
            return False

        monkeypatch.setattr(payment_service.payment_repository, "compare_and_set", _lose_race)

        result = payment_service.confirm_payment(payment.id)

        assert result.status == PaymentStatus.PAID
        assert notifier.sent == []

    def test_unknown_payment(self, payment_service):
        with pytest.raises(NotFoundException):
            payment_service.confirm_payment("01ARZ3NDEKTSV4RRFFQ69G5FAV")


class TestRefundAndFailure:
    def test_refund_keeps_amounts(self, payment_service, make_payment, booking):
        payment = make_payment(booking, amount="80.00")

        refunded = payment_service.refund_payment(payment.id)
        again = payment_service.refund_payment(payment.id)

        assert again.status == PaymentStatus.REFUNDED
        assert refunded.refunded_at is not None
        assert refunded.amount == Decimal("80.00")
        assert refunded.payee_amount == Decimal("72.00")

    def test_pending_payment_cannot_be_refunded(self, payment_service, make_payment, booking):
        payment = make_payment(booking, status=PaymentStatus.PENDING)

        with pytest.raises(PreconditionFailedException):
            payment_service.refund_payment(payment.id)

    def test_paid_payment_cannot_be_marked_failed(self, payment_service, make_payment, booking):
        payment = make_payment(booking)

        with pytest.raises(PreconditionFailedException):
            payment_service.mark_payment_failed(payment.id)

    def test_current_payment_skips_failed_attempts(self, payment_service, make_payment, booking):
        make_payment(booking, status=PaymentStatus.FAILED)
        retry = make_payment(booking, status=PaymentStatus.PENDING)

        assert payment_service.get_payment_for_booking(booking.id).id == retry.id


def test_list_payments_by_role(payment_service, make_payment, make_booking, payer_id, payee_id):
    first = make_payment(make_booking())
    second = make_payment(make_booking(), status=PaymentStatus.PENDING)

    assert {p.id for p in payment_service.list_payments_for_user(payer_id, WalletRole.PAYER)} == {
        first.id,
        second.id,
    }
    assert len(payment_service.list_payments_for_user(payee_id, "payee")) == 2
    admin_view = payment_service.list_payments_for_user("anyone", WalletRole.ADMIN)
    assert [p.id for p in admin_view] == [first.id]


def test_operations_are_measured(payment_service, booking):
    payment_service.reset_metrics()
    payment = payment_service.create_payment(booking.id, booking.payer_id, booking.payee_id, "100")
    payment_service.confirm_payment(payment.id)

    metrics = payment_service.get_metrics()

    assert metrics["confirm_payment"]["count"] == 1
    assert metrics["create_payment"]["success_rate"] == 1.0
