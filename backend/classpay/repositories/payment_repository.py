"""
Payment Repository for ClassPay

Data access for per-booking payments and the Stripe Connect payout accounts
that receive released funds.
"""

import logging
from typing import Iterable, List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import Payment, PaymentStatus, PayoutAccount
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    """
    Repository for payment data access.

    Wallet totals are computed by the service from the rows returned here, so
    the list methods return full entities rather than SQL aggregates.
    """

    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_for_booking(self, booking_id: str) -> Optional[Payment]:
        """
        Get the current payment for a booking.

        A booking may accumulate FAILED attempts before a successful one, so the
        newest non-failed payment wins; the newest failed one is returned only
        when nothing else exists.
        """
        try:
            payments = (
                self.db.query(Payment)
                .filter(Payment.booking_id == booking_id)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to get payment for booking: {str(e)}")
        for payment in payments:
            if payment.status != PaymentStatus.FAILED:
                return cast(Payment, payment)
        return cast(Optional[Payment], payments[0] if payments else None)

    def get_by_intent_id(self, stripe_payment_intent_id: str) -> Optional[Payment]:
        try:
            payment = (
                self.db.query(Payment)
                .filter(Payment.stripe_payment_intent_id == stripe_payment_intent_id)
                .first()
            )
            return cast(Optional[Payment], payment)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment by intent id: {str(e)}")
            raise RepositoryException(f"Failed to get payment by intent id: {str(e)}")

    def list_for_payer(
        self, payer_id: str, statuses: Optional[Iterable[PaymentStatus]] = None
    ) -> List[Payment]:
        query = self._build_query().filter(Payment.payer_id == payer_id)
        if statuses is not None:
            query = query.filter(Payment.status.in_([s.value for s in statuses]))
        return self._execute_query(query.order_by(Payment.created_at.desc()))

    def list_for_payee(
        self, payee_id: str, statuses: Optional[Iterable[PaymentStatus]] = None
    ) -> List[Payment]:
        query = self._build_query().filter(Payment.payee_id == payee_id)
        if statuses is not None:
            query = query.filter(Payment.status.in_([s.value for s in statuses]))
        return self._execute_query(query.order_by(Payment.created_at.desc()))

    def list_by_status(self, status: PaymentStatus) -> List[Payment]:
        """All payments in one status, across every user (platform totals)."""
        query = self._build_query().filter(Payment.status == status.value)
        return self._execute_query(query)


class PayoutAccountRepository(BaseRepository[PayoutAccount]):
    """Stripe Connect accounts keyed by (user, role)."""

    def __init__(self, db: Session):
        super().__init__(db, PayoutAccount)

    def get_for_user(self, user_id: str, role: str) -> Optional[PayoutAccount]:
        try:
            account = (
                self.db.query(PayoutAccount)
                .filter(PayoutAccount.user_id == user_id, PayoutAccount.role == role)
                .first()
            )
            return cast(Optional[PayoutAccount], account)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payout account for user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to get payout account: {str(e)}")

    def get_by_stripe_account_id(self, stripe_account_id: str) -> Optional[PayoutAccount]:
        try:
            account = (
                self.db.query(PayoutAccount)
                .filter(PayoutAccount.stripe_account_id == stripe_account_id)
                .first()
            )
            return cast(Optional[PayoutAccount], account)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payout account by Stripe id: {str(e)}")
            raise RepositoryException(f"Failed to get payout account: {str(e)}")
