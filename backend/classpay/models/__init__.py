from .booking import Booking, BookingStatus
from .class_session import ClassSession, ClassSessionStatus
from .payment import Payment, PaymentStatus, PayoutAccount
from .platform_config import PlatformConfig
from .withdrawal import Withdrawal, WithdrawalStatus

__all__ = [
    "Booking",
    "BookingStatus",
    "ClassSession",
    "ClassSessionStatus",
    "Payment",
    "PaymentStatus",
    "PayoutAccount",
    "PlatformConfig",
    "Withdrawal",
    "WithdrawalStatus",
]
