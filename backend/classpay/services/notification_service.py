# backend/classpay/services/notification_service.py
"""
Notification dispatch for payment events.

Services only know the ``NotificationDispatcher`` protocol: a template key, a
recipient user id and the variables to render. Rendering happens here with
Jinja2; delivery is delegated to a ``NotificationSender`` so the email
provider stays outside this package.
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from jinja2 import Environment, StrictUndefined

from .notification_templates import TEMPLATES, NotificationTemplate

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def send(self, template_key: str, recipient: str, variables: Mapping[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class RenderedNotification:
    template_key: str
    recipient: str
    category: str
    title: str
    subject: str
    body: str


class NotificationSender(Protocol):
    def deliver(self, notification: RenderedNotification) -> None:
        ...


class LoggingNotificationSender:
    """Default sender: records the notification in the log instead of emailing it."""

    def deliver(self, notification: RenderedNotification) -> None:
        logger.info(
            "Notification %s to %s: %s",
            notification.template_key,
            notification.recipient,
            notification.subject,
        )


def _currency(value: Any) -> str:
    """Format a number as currency."""
    if isinstance(value, str):
        value = Decimal(value)
    return f"${value:,.2f}"


class NotificationService:
    """Renders the payment templates and hands them to a sender."""

    def __init__(self, sender: Optional[NotificationSender] = None):
        self.sender = sender or LoggingNotificationSender()
        self.env = Environment(
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = _currency

    def render(self, template: NotificationTemplate, recipient: str, variables: Mapping[str, Any]) -> RenderedNotification:
        context: Dict[str, Any] = dict(variables)
        return RenderedNotification(
            template_key=template.key,
            recipient=recipient,
            category=template.category,
            title=template.title,
            subject=self.env.from_string(template.email_subject_template).render(context),
            body=self.env.from_string(template.body_template).render(context),
        )

    def send(self, template_key: str, recipient: str, variables: Mapping[str, Any]) -> None:
        template = TEMPLATES.get(template_key)
        if template is None:
            raise ValueError(f"Unknown notification template: {template_key}")
        notification = self.render(template, recipient, variables)
        self.sender.deliver(notification)
        logger.debug("Dispatched %s to %s", template_key, recipient)
