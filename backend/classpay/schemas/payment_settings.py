"""Pydantic schema for the admin-editable payment settings document."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentSettings(BaseModel):
    """
    Immutable snapshot of the payment settings.

    Services read one snapshot per operation and copy the values they need
    onto the entity they create, so a later edit never rewrites history.
    """

    model_config = ConfigDict(frozen=True)

    commission_percentage: Decimal = Field(
        ..., ge=0, le=100, description="Platform share of each payment, in percent"
    )
    commission_fixed: Decimal = Field(..., ge=0, description="Flat platform fee per payment")
    auto_approve_after_days: Optional[int] = Field(
        None,
        ge=0,
        description="Grace period before PENDING withdrawals auto-approve; null disables",
    )
    minimum_withdraw_amount: Decimal = Field(Decimal("0"), ge=0)
    withdraw_methods: Tuple[str, ...] = Field(
        ..., min_length=1, description="Payout methods a user may pick when withdrawing"
    )

    @field_validator("withdraw_methods", mode="before")
    @classmethod
    def _strip_methods(cls, value: object) -> object:
        if isinstance(value, (list, tuple)):
            methods = tuple(str(item).strip() for item in value if str(item).strip())
            if len(set(methods)) != len(methods):
                raise ValueError("withdraw_methods must not contain duplicates")
            return methods
        return value
