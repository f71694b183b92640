# backend/tests/services/test_notification_service.py
from decimal import Decimal

from jinja2 import UndefinedError
import pytest

from classpay.services.notification_service import NotificationService
from classpay.services.notification_templates import CLASS_APPROVED, PAYMENT_RELEASED, TEMPLATES


class RecordingSender:
    def __init__(self):
        self.delivered = []

    def deliver(self, notification):
        self.delivered.append(notification)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def service(sender):
    return NotificationService(sender)


def test_renders_and_delivers_payment_released(service, sender):
    service.send(
        PAYMENT_RELEASED.key,
        "payee-1",
        {"amount": Decimal("1234.5"), "currency": "USD", "session_id": "s1"},
    )

    [notification] = sender.delivered
    assert notification.recipient == "payee-1"
    assert notification.category == "payments"
    assert notification.subject == "$1,234.50 released to your account"
    assert "class session s1" in notification.body


def test_optional_text_is_left_out(service):
    with_notes = service.render(CLASS_APPROVED, "payee-1", {"session_id": "s1", "notes": "Well done"})
    without = service.render(CLASS_APPROVED, "payee-1", {"session_id": "s1", "notes": None})

    assert with_notes.body == "Class session s1 was approved: Well done"
    assert without.body == "Class session s1 was approved."


def test_rejection_reason(service, sender):
    service.send("WITHDRAWAL_REJECTED", "payee-1", {"amount": "20", "currency": "USD", "reason": "Duplicate"})

    assert sender.delivered[0].body == "Your withdrawal of $20.00 USD was rejected: Duplicate"


def test_missing_variable_is_an_error(service):
    with pytest.raises(UndefinedError):
        service.send(PAYMENT_RELEASED.key, "payee-1", {"amount": Decimal("1")})


def test_unknown_template(service):
    with pytest.raises(ValueError):
        service.send("NOPE", "payee-1", {})


def test_every_template_is_registered_under_its_key():
    assert set(TEMPLATES) == {
        "PAYMENT_RECEIVED",
        "PAYMENT_RELEASED",
        "CLASS_APPROVED",
        "WITHDRAWAL_APPROVED",
        "WITHDRAWAL_REJECTED",
    }
    assert all(key == template.key for key, template in TEMPLATES.items())
