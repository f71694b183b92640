"""
Commission splitting.

Pure arithmetic shared by payment creation and release proration. Amounts are
Decimals with two fractional digits and rounding is half-up, the way a
cashier rounds.
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any

from ..core.exceptions import ValidationException
from ..utils.money import ZERO, quantize_money, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CommissionSplit:
    commission_amount: Decimal
    payee_amount: Decimal
    # True when the flat fee alone ate the whole payment; the commission was capped
    fixed_fee_exceeds_amount: bool = False


def _coerce(name: str, value: Any) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError as exc:
        raise ValidationException(f"{name} must be a number", code="INVALID_AMOUNT") from exc


def split_commission(amount: Any, percentage: Any, fixed: Any) -> CommissionSplit:
    """
    Split a gross amount into platform commission and payee share.

    ``commission = round_half_up(amount * percentage / 100 + fixed)`` and the
    payee receives the remainder. When the fixed fee would push the commission
    above the gross amount, the commission is capped at the amount and the
    payee gets zero, so ``commission + payee == amount`` always holds.

    Raises:
        ValidationException: amount < 0, percentage outside [0, 100] or fixed < 0
    """
    gross = _coerce("amount", amount)
    pct = _coerce("percentage", percentage)
    flat = _coerce("fixed", fixed)

    if gross < ZERO:
        raise ValidationException("Amount must not be negative", code="INVALID_AMOUNT")
    if pct < ZERO or pct > HUNDRED:
        raise ValidationException(
            "Commission percentage must be between 0 and 100", code="INVALID_COMMISSION"
        )
    if flat < ZERO:
        raise ValidationException("Fixed commission must not be negative", code="INVALID_COMMISSION")

    gross = quantize_money(gross)
    commission = quantize_money(gross * pct / HUNDRED + flat)

    if commission > gross:
        logger.warning(
            "Commission %s exceeds payment amount %s (percentage=%s, fixed=%s); "
            "capping commission at the amount. Check the payment settings.",
            commission,
            gross,
            pct,
            flat,
        )
        return CommissionSplit(commission_amount=gross, payee_amount=quantize_money(ZERO), fixed_fee_exceeds_amount=True)

    return CommissionSplit(commission_amount=commission, payee_amount=gross - commission)
