# backend/classpay/core/enums.py
"""
Core enums for ClassPay.

Status enums live next to the model that owns them; this module holds the
values shared across aggregates.
"""

from enum import Enum


class WalletRole(str, Enum):
    """
    Closed set of roles that own money in the system.

    PAYER wallets hold refund credit, PAYEE wallets hold tutoring earnings and
    the ADMIN wallet holds platform commission. Every wallet and withdrawal
    code path handles all three explicitly.
    """

    PAYER = "payer"
    PAYEE = "payee"
    ADMIN = "admin"


SYSTEM_ACTOR_ID = "SYSTEM"
