# backend/classpay/services/wallet_service.py
"""
Wallet balance calculator.

A wallet is not stored anywhere: it is derived on every read from the
payments that credited a role and the withdrawals that debited it.

    available = max(0, lifetime - withdrawn - pending)

Sums run over unrounded Decimals; only the returned summary is rounded.
"""

from decimal import Decimal
import logging
from typing import Iterable, List, Optional, Tuple, assert_never

from sqlalchemy.orm import Session

from ..constants.payment_defaults import DEFAULT_CURRENCY
from ..core.enums import WalletRole
from ..models.payment import Payment, PaymentStatus
from ..models.withdrawal import ACTIVE_WITHDRAWAL_STATUSES, Withdrawal, WithdrawalStatus
from ..repositories.factory import RepositoryFactory
from ..schemas.wallet import WalletSummary
from ..utils.money import ZERO, quantize_money, to_decimal
from .base import BaseService

logger = logging.getLogger(__name__)


def _sum(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return total


class WalletService(BaseService):
    """Computes wallet summaries for payees, payers and the platform."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.withdrawal_repository = RepositoryFactory.create_withdrawal_repository(db)

    @BaseService.measure_operation("get_wallet_summary")
    def get_wallet_summary(self, user_id: str, role: WalletRole) -> WalletSummary:
        """
        Summarize one wallet.

        - PAYEE: earnings, the payee share of every PAID payment.
        - PAYER: refund credit, the full amount of every REFUNDED payment.
        - ADMIN: platform commission on every PAID payment. Admin withdrawals
          are pooled, so every admin sees the same balance.
        """
        role = WalletRole(role)
        lifetime, total_refunds = self._lifetime_credit(user_id, role)
        withdrawn, pending = self._debits(self._withdrawals(user_id, role))
        available = max(ZERO, lifetime - withdrawn - pending)

        return WalletSummary(
            user_id=user_id,
            role=role,
            currency=DEFAULT_CURRENCY,
            available_balance=quantize_money(available),
            pending_payouts=quantize_money(pending),
            lifetime_earnings=quantize_money(lifetime),
            total_withdrawn=quantize_money(withdrawn),
            total_refunds=quantize_money(total_refunds) if total_refunds is not None else None,
        )

    def get_available_balance(
        self, user_id: str, role: WalletRole, exclude_withdrawal_id: Optional[str] = None
    ) -> Decimal:
        """
        Available balance, optionally ignoring one withdrawal's hold.

        Excluding a still-active withdrawal answers "would this wallet cover
        it if it were not already counted".
        """
        if exclude_withdrawal_id is None:
            return self.get_wallet_summary(user_id, role).available_balance

        role = WalletRole(role)
        lifetime, _ = self._lifetime_credit(user_id, role)
        withdrawn, pending = self._debits(
            w for w in self._withdrawals(user_id, role) if w.id != exclude_withdrawal_id
        )
        return quantize_money(max(ZERO, lifetime - withdrawn - pending))

    @staticmethod
    def _debits(withdrawals: Iterable[Withdrawal]) -> Tuple[Decimal, Decimal]:
        """(completed, still active) withdrawal totals."""
        withdrawn = pending = ZERO
        for withdrawal in withdrawals:
            status = WithdrawalStatus(withdrawal.status)
            if status == WithdrawalStatus.COMPLETED:
                withdrawn += to_decimal(withdrawal.amount)
            elif status in ACTIVE_WITHDRAWAL_STATUSES:
                pending += to_decimal(withdrawal.amount)
        return withdrawn, pending

    def _lifetime_credit(self, user_id: str, role: WalletRole) -> Tuple[Decimal, Optional[Decimal]]:
        payments: List[Payment]
        if role is WalletRole.PAYEE:
            payments = self.payment_repository.list_for_payee(user_id, [PaymentStatus.PAID])
            return _sum(p.payee_amount for p in payments), None
        elif role is WalletRole.PAYER:
            payments = self.payment_repository.list_for_payer(user_id, [PaymentStatus.REFUNDED])
            refunds = _sum(p.amount for p in payments)
            return refunds, refunds
        elif role is WalletRole.ADMIN:
            payments = self.payment_repository.list_by_status(PaymentStatus.PAID)
            return _sum(p.commission_amount for p in payments), None
        else:
            assert_never(role)

    def _withdrawals(self, user_id: str, role: WalletRole) -> List[Withdrawal]:
        if role is WalletRole.PAYEE or role is WalletRole.PAYER:
            return self.withdrawal_repository.list_for_user(user_id, role.value)
        elif role is WalletRole.ADMIN:
            return self.withdrawal_repository.list_for_role(role.value)
        else:
            assert_never(role)
