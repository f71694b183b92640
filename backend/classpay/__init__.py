"""ClassPay: payments, payout releases and withdrawals for the tutoring marketplace."""

__version__ = "0.1.0"
