"""Wallet read model (derived from payments and withdrawals, never stored)."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..core.enums import WalletRole


class WalletSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: WalletRole
    currency: str
    available_balance: Decimal
    pending_payouts: Decimal
    lifetime_earnings: Decimal
    total_withdrawn: Decimal
    # Only meaningful for PAYER wallets, where the balance is refund credit
    total_refunds: Optional[Decimal] = None
