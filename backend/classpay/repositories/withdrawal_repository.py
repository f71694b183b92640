# backend/classpay/repositories/withdrawal_repository.py
"""
Withdrawal Repository for ClassPay

Besides per-user listings this backs two hot paths: the wallet calculator,
which needs every withdrawal that reduces a balance, and the auto-approve
sweep, which scans PENDING rows that captured a grace period.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.withdrawal import Withdrawal, WithdrawalStatus
from .base_repository import BaseRepository


class WithdrawalRepository(BaseRepository[Withdrawal]):
    def __init__(self, db: Session):
        super().__init__(db, Withdrawal)

    def list_for_user(self, user_id: str, role: Optional[str] = None) -> List[Withdrawal]:
        query = self._build_query().filter(Withdrawal.user_id == user_id)
        if role is not None:
            query = query.filter(Withdrawal.role == role)
        return self._execute_query(query.order_by(Withdrawal.requested_at.desc()))

    def list_for_role(self, role: str) -> List[Withdrawal]:
        """Every withdrawal made against a role's pooled wallet (platform funds)."""
        query = self._build_query().filter(Withdrawal.role == role)
        return self._execute_query(query.order_by(Withdrawal.requested_at.desc()))

    def list_withdrawals(self, status: Optional[WithdrawalStatus] = None) -> List[Withdrawal]:
        query = self._build_query()
        if status is not None:
            query = query.filter(Withdrawal.status == status.value)
        return self._execute_query(query.order_by(Withdrawal.requested_at.desc()))

    def list_pending_with_grace_period(self) -> List[Withdrawal]:
        """PENDING withdrawals that opted into auto-approval when they were created."""
        query = (
            self._build_query()
            .filter(
                Withdrawal.status == WithdrawalStatus.PENDING.value,
                Withdrawal.auto_approve_after_days.isnot(None),
            )
            .order_by(Withdrawal.requested_at.asc())
        )
        return self._execute_query(query)

    def get_by_payout_id(self, stripe_payout_id: str) -> Optional[Withdrawal]:
        return self.find_one_by(stripe_payout_id=stripe_payout_id)
