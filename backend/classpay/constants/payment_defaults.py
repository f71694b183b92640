"""Default payment settings used until an admin saves the ``payments`` document."""

from __future__ import annotations

from typing import Any, Dict

PAYMENT_SETTINGS_KEY = "payments"

DEFAULT_CURRENCY = "USD"

PAYMENT_SETTINGS_DEFAULTS: Dict[str, Any] = {
    "commission_percentage": "10",
    "commission_fixed": "0",
    "auto_approve_after_days": 2,
    "minimum_withdraw_amount": "0",
    "withdraw_methods": ["Stripe Connect", "Bank Transfer"],
}
