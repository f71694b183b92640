from .payment_settings import PaymentSettings
from .release import AutoApproveSweepResult, ReleaseResult
from .wallet import WalletSummary

__all__ = ["AutoApproveSweepResult", "PaymentSettings", "ReleaseResult", "WalletSummary"]
