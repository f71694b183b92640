from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class NotificationTemplate:
    key: str
    category: str
    title: str
    body_template: str
    email_subject_template: str


# Payee templates
PAYMENT_RECEIVED = NotificationTemplate(
    key="PAYMENT_RECEIVED",
    category="payments",
    title="Payment Received",
    body_template="Your student paid {{ amount | currency }} {{ currency }} for booking {{ booking_id }}.",
    email_subject_template="Payment received for booking {{ booking_id }}",
)

PAYMENT_RELEASED = NotificationTemplate(
    key="PAYMENT_RELEASED",
    category="payments",
    title="Earnings Released",
    body_template=(
        "{{ amount | currency }} {{ currency }} for class session {{ session_id }} "
        "is on its way to your payout account."
    ),
    email_subject_template="{{ amount | currency }} released to your account",
)

CLASS_APPROVED = NotificationTemplate(
    key="CLASS_APPROVED",
    category="lesson_updates",
    title="Class Approved",
    body_template=(
        "Class session {{ session_id }} was approved"
        "{% if notes %}: {{ notes }}{% else %}.{% endif %}"
    ),
    email_subject_template="Your class was approved",
)

# Withdrawal templates
WITHDRAWAL_APPROVED = NotificationTemplate(
    key="WITHDRAWAL_APPROVED",
    category="withdrawals",
    title="Withdrawal Approved",
    body_template="Your withdrawal of {{ amount | currency }} {{ currency }} was approved.",
    email_subject_template="Withdrawal approved",
)

WITHDRAWAL_REJECTED = NotificationTemplate(
    key="WITHDRAWAL_REJECTED",
    category="withdrawals",
    title="Withdrawal Rejected",
    body_template=(
        "Your withdrawal of {{ amount | currency }} {{ currency }} was rejected"
        "{% if reason %}: {{ reason }}{% else %}.{% endif %}"
    ),
    email_subject_template="Withdrawal rejected",
)

TEMPLATES: Dict[str, NotificationTemplate] = {
    template.key: template
    for template in (
        PAYMENT_RECEIVED,
        PAYMENT_RELEASED,
        CLASS_APPROVED,
        WITHDRAWAL_APPROVED,
        WITHDRAWAL_REJECTED,
    )
}
