# backend/classpay/repositories/factory.py
"""
Repository Factory for ClassPay

Provides centralized creation of repository instances so services never
construct repositories directly.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .class_session_repository import ClassSessionRepository
    from .payment_repository import PaymentRepository, PayoutAccountRepository
    from .platform_config_repository import PlatformConfigRepository
    from .withdrawal_repository import WithdrawalRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_payout_account_repository(db: Session) -> "PayoutAccountRepository":
        from .payment_repository import PayoutAccountRepository

        return PayoutAccountRepository(db)

    @staticmethod
    def create_class_session_repository(db: Session) -> "ClassSessionRepository":
        from .class_session_repository import ClassSessionRepository

        return ClassSessionRepository(db)

    @staticmethod
    def create_withdrawal_repository(db: Session) -> "WithdrawalRepository":
        from .withdrawal_repository import WithdrawalRepository

        return WithdrawalRepository(db)

    @staticmethod
    def create_platform_config_repository(db: Session) -> "PlatformConfigRepository":
        from .platform_config_repository import PlatformConfigRepository

        return PlatformConfigRepository(db)
