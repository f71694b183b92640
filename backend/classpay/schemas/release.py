"""Result types returned by the release engine and the withdrawal sweep."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class ReleaseResult(BaseModel):
    """
    Outcome of one release attempt.

    Precondition failures are reported here instead of raised, so post-commit
    hooks and retry jobs can inspect ``retryable`` and move on.
    """

    success: bool
    transfer_id: Optional[str] = None
    amount: Optional[Decimal] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    already_released: bool = False


class AutoApproveSweepResult(BaseModel):
    scanned: int = 0
    approved: int = 0
    failed: int = 0
    approved_ids: List[str] = Field(default_factory=list)
    failed_ids: List[str] = Field(default_factory=list)
