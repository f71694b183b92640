# backend/classpay/services/withdrawal_service.py
"""
Withdrawal Service for ClassPay

A withdrawal moves money out of a wallet:

    PENDING -> APPROVED -> PROCESSING -> COMPLETED
    PENDING -> REJECTED
    PROCESSING -> FAILED

Approval creates the processor payout right after the commit. Withdrawals
that captured a grace period at creation are approved by the periodic sweep
once that period has passed.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, List, Optional, assert_never

from sqlalchemy.orm import Session

from ..constants.payment_defaults import DEFAULT_CURRENCY
from ..core.config import settings
from ..core.enums import SYSTEM_ACTOR_ID, WalletRole
from ..core.exceptions import (
    ConfigurationException,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.withdrawal import Withdrawal, WithdrawalStatus, can_transition
from ..repositories.factory import RepositoryFactory
from ..schemas.release import AutoApproveSweepResult
from ..utils.money import ZERO, quantize_money
from .base import BaseService
from .config_service import ConfigService
from .notification_service import NotificationDispatcher, NotificationService
from .notification_templates import WITHDRAWAL_APPROVED, WITHDRAWAL_REJECTED
from .payment_processor import PaymentProcessor, StripePaymentProcessor
from .wallet_service import WalletService

logger = logging.getLogger(__name__)

# Statuses from which approve() has nothing left to do
_ALREADY_APPROVED = (
    WithdrawalStatus.APPROVED,
    WithdrawalStatus.PROCESSING,
    WithdrawalStatus.COMPLETED,
)


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing}\n{note}" if existing else note


class WithdrawalService(BaseService):
    """Service layer for withdrawal requests and their payouts."""

    def __init__(
        self,
        db: Session,
        processor: Optional[PaymentProcessor] = None,
        notifier: Optional[NotificationDispatcher] = None,
        config_service: Optional[ConfigService] = None,
        wallet_service: Optional[WalletService] = None,
        platform_payout_account_id: Optional[str] = None,
    ):
        super().__init__(db)
        self.processor = processor or StripePaymentProcessor()
        self.notifier = notifier or NotificationService()
        self.config_service = config_service or ConfigService(db)
        self.wallet_service = wallet_service or WalletService(db)
        self.platform_payout_account_id = (
            platform_payout_account_id or settings.platform_payout_account_id
        )
        self.withdrawal_repository = RepositoryFactory.create_withdrawal_repository(db)
        self.payout_account_repository = RepositoryFactory.create_payout_account_repository(db)

    @BaseService.measure_operation("create_withdrawal")
    def create(
        self,
        user_id: str,
        role: WalletRole,
        amount: Any,
        currency: str = DEFAULT_CURRENCY,
        method: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Withdrawal:
        """
        Request a withdrawal from a wallet.

        The amount must be positive, at least the configured minimum, and no
        more than the available balance; the method, when given, must be one
        of the configured methods. The auto-approve grace period in force now
        is stored on the row.

        Raises:
            ValidationException: any of the checks above fails (no row is written)
        """
        try:
            role = WalletRole(role)
        except ValueError as exc:
            raise ValidationException(f"Unknown wallet role: {role}", code="INVALID_ROLE") from exc
        try:
            requested = quantize_money(amount)
        except ValueError as exc:
            raise ValidationException("Amount must be a number", code="INVALID_AMOUNT") from exc
        if requested <= ZERO:
            raise ValidationException("Amount must be greater than zero", code="INVALID_AMOUNT")

        snapshot = self.config_service.get_payment_settings()
        if requested < snapshot.minimum_withdraw_amount:
            raise ValidationException(
                f"Minimum withdrawal amount is {snapshot.minimum_withdraw_amount}",
                code="BELOW_MINIMUM_WITHDRAWAL",
                details={"minimum": str(snapshot.minimum_withdraw_amount)},
            )
        if method is not None and method not in snapshot.withdraw_methods:
            raise ValidationException(
                f"Unsupported withdrawal method: {method}",
                code="INVALID_WITHDRAW_METHOD",
                details={"allowed": list(snapshot.withdraw_methods)},
            )

        available = self.wallet_service.get_available_balance(user_id, role)
        if requested > available:
            raise ValidationException(
                "Insufficient balance",
                code="INSUFFICIENT_BALANCE",
                details={"available": str(available), "requested": str(requested)},
            )

        with self.transaction():
            withdrawal = self.withdrawal_repository.create(
                user_id=user_id,
                role=role.value,
                amount=requested,
                currency=currency.upper(),
                method=method,
                notes=notes,
                status=WithdrawalStatus.PENDING.value,
                requested_at=utc_now(),
                auto_approve_after_days=snapshot.auto_approve_after_days,
            )

        self.log_operation("create_withdrawal", withdrawal_id=withdrawal.id, user_id=user_id)
        return withdrawal

    @BaseService.measure_operation("approve_withdrawal")
    def approve(self, withdrawal_id: str, admin_id: str, notes: Optional[str] = None) -> Withdrawal:
        """
        PENDING -> APPROVED, then try to create the payout.

        A payout failure is logged and leaves the withdrawal APPROVED so it
        can be processed again later. Approving a withdrawal that is already
        past PENDING on the happy path returns it unchanged.

        Raises:
            ValidationException: the wallet no longer covers the amount (stays PENDING)
        """
        withdrawal = self._get_or_404(withdrawal_id)
        if withdrawal.status in _ALREADY_APPROVED:
            return withdrawal
        if not can_transition(withdrawal.status, WithdrawalStatus.APPROVED):
            raise PreconditionFailedException(
                f"Withdrawal cannot be approved. Current status: {withdrawal.status}",
                details={"withdrawal_id": withdrawal_id},
            )
        self._ensure_still_covered(withdrawal)

        values: dict = {
            "status": WithdrawalStatus.APPROVED.value,
            "approved_at": utc_now(),
            "approved_by": admin_id,
        }
        if notes:
            values["notes"] = _append_note(withdrawal.notes, notes)

        with self.transaction():
            won = self.withdrawal_repository.compare_and_set(
                withdrawal.id, Withdrawal.status == WithdrawalStatus.PENDING.value, values=values
            )
        self.withdrawal_repository.refresh(withdrawal)
        if not won:
            if withdrawal.status in _ALREADY_APPROVED:
                return withdrawal
            raise PreconditionFailedException(
                f"Withdrawal cannot be approved. Current status: {withdrawal.status}",
                details={"withdrawal_id": withdrawal_id},
            )

        self.run_post_commit_hook(
            "notify_withdrawal_approved",
            self.notifier.send,
            WITHDRAWAL_APPROVED.key,
            withdrawal.user_id,
            {"amount": withdrawal.amount, "currency": withdrawal.currency},
        )
        self.run_post_commit_hook("process_withdrawal", self.process, withdrawal.id)

        self.log_operation("approve_withdrawal", withdrawal_id=withdrawal.id, admin_id=admin_id)
        return withdrawal

    @BaseService.measure_operation("process_withdrawal")
    def process(self, withdrawal_id: str) -> Withdrawal:
        """
        APPROVED -> PROCESSING by creating the processor payout.

        Raises:
            PreconditionFailedException: withdrawal is not APPROVED
            ConfigurationException: no payout destination for the role
            ExternalServiceException: processor call failed (stays APPROVED)
        """
        withdrawal = self._get_or_404(withdrawal_id)
        if withdrawal.status in (WithdrawalStatus.PROCESSING, WithdrawalStatus.COMPLETED):
            return withdrawal
        if not can_transition(withdrawal.status, WithdrawalStatus.PROCESSING):
            raise PreconditionFailedException(
                f"Withdrawal must be approved before processing. Current status: {withdrawal.status}",
                details={"withdrawal_id": withdrawal_id},
            )

        destination = self._resolve_destination(withdrawal)
        payout_id = self.processor.create_payout(
            withdrawal.amount,
            withdrawal.currency,
            destination,
            {"withdrawal_id": withdrawal.id, "user_id": withdrawal.user_id, "role": withdrawal.role},
            idempotency_key=f"withdrawal:{withdrawal.id}",
        )

        with self.transaction():
            won = self.withdrawal_repository.compare_and_set(
                withdrawal.id,
                Withdrawal.status == WithdrawalStatus.APPROVED.value,
                values={
                    "status": WithdrawalStatus.PROCESSING.value,
                    "processed_at": utc_now(),
                    "stripe_payout_id": payout_id,
                },
            )
        self.withdrawal_repository.refresh(withdrawal)
        if not won:
            self.logger.info(f"Withdrawal {withdrawal.id} was processed concurrently")

        self.log_operation("process_withdrawal", withdrawal_id=withdrawal.id, payout_id=payout_id)
        return withdrawal

    @BaseService.measure_operation("complete_withdrawal")
    def complete(self, withdrawal_id: str, stripe_payout_id: Optional[str] = None) -> Withdrawal:
        """
        Record the processor's confirmation that the payout arrived.

        Accepted from any status: the processor is the source of truth for
        money that already moved. Repeated confirmations are no-ops.
        """
        withdrawal = self._get_or_404(withdrawal_id)
        if withdrawal.status == WithdrawalStatus.COMPLETED:
            return withdrawal
        if withdrawal.status != WithdrawalStatus.PROCESSING:
            self.logger.warning(
                f"Completing withdrawal {withdrawal.id} from unexpected status {withdrawal.status}"
            )

        values: dict = {"status": WithdrawalStatus.COMPLETED.value, "completed_at": utc_now()}
        if stripe_payout_id:
            values["stripe_payout_id"] = stripe_payout_id

        with self.transaction():
            self.withdrawal_repository.compare_and_set(
                withdrawal.id, Withdrawal.status != WithdrawalStatus.COMPLETED.value, values=values
            )
        self.withdrawal_repository.refresh(withdrawal)
        self.log_operation("complete_withdrawal", withdrawal_id=withdrawal.id)
        return withdrawal

    @BaseService.measure_operation("fail_withdrawal")
    def mark_failed(self, withdrawal_id: str, reason: Optional[str] = None) -> Withdrawal:
        """PROCESSING -> FAILED. Any other status is left as it is."""
        withdrawal = self._get_or_404(withdrawal_id)
        if not can_transition(withdrawal.status, WithdrawalStatus.FAILED):
            if withdrawal.status != WithdrawalStatus.FAILED:
                self.logger.warning(
                    f"Ignoring payout failure for withdrawal {withdrawal.id} in status {withdrawal.status}"
                )
            return withdrawal

        with self.transaction():
            self.withdrawal_repository.compare_and_set(
                withdrawal.id,
                Withdrawal.status == WithdrawalStatus.PROCESSING.value,
                values={
                    "status": WithdrawalStatus.FAILED.value,
                    "failed_at": utc_now(),
                    "failure_reason": reason,
                },
            )
        self.withdrawal_repository.refresh(withdrawal)
        self.log_operation("fail_withdrawal", withdrawal_id=withdrawal.id, reason=reason)
        return withdrawal

    @BaseService.measure_operation("reject_withdrawal")
    def reject(self, withdrawal_id: str, admin_id: str, reason: Optional[str] = None) -> Withdrawal:
        """PENDING -> REJECTED; the requester is told why."""
        withdrawal = self._get_or_404(withdrawal_id)
        if withdrawal.status == WithdrawalStatus.REJECTED:
            return withdrawal
        if not can_transition(withdrawal.status, WithdrawalStatus.REJECTED):
            raise PreconditionFailedException(
                f"Withdrawal cannot be rejected. Current status: {withdrawal.status}",
                details={"withdrawal_id": withdrawal_id},
            )

        values: dict = {
            "status": WithdrawalStatus.REJECTED.value,
            "rejected_at": utc_now(),
            "rejected_by": admin_id,
            "rejection_reason": reason,
        }
        if reason:
            values["notes"] = _append_note(withdrawal.notes, f"Rejection reason: {reason}")

        with self.transaction():
            won = self.withdrawal_repository.compare_and_set(
                withdrawal.id, Withdrawal.status == WithdrawalStatus.PENDING.value, values=values
            )
        self.withdrawal_repository.refresh(withdrawal)
        if not won:
            if withdrawal.status == WithdrawalStatus.REJECTED:
                return withdrawal
            raise PreconditionFailedException(
                f"Withdrawal cannot be rejected. Current status: {withdrawal.status}",
                details={"withdrawal_id": withdrawal_id},
            )

        self.run_post_commit_hook(
            "notify_withdrawal_rejected",
            self.notifier.send,
            WITHDRAWAL_REJECTED.key,
            withdrawal.user_id,
            {"amount": withdrawal.amount, "currency": withdrawal.currency, "reason": reason},
        )
        self.log_operation("reject_withdrawal", withdrawal_id=withdrawal.id, admin_id=admin_id)
        return withdrawal

    @BaseService.measure_operation("auto_approve_withdrawals")
    def auto_approve_sweep(self, now: Optional[datetime] = None) -> AutoApproveSweepResult:
        """
        Approve PENDING withdrawals whose captured grace period has passed.

        Each withdrawal is judged by the grace period it stored at creation,
        not today's setting. One failure does not stop the sweep.
        """
        now = ensure_utc(now) or utc_now()
        candidates = self.withdrawal_repository.list_pending_with_grace_period()
        result = AutoApproveSweepResult(scanned=len(candidates))

        for withdrawal in candidates:
            requested_at = ensure_utc(withdrawal.requested_at)
            due_at = requested_at + timedelta(days=withdrawal.auto_approve_after_days)
            if now < due_at:
                continue
            try:
                self.approve(withdrawal.id, SYSTEM_ACTOR_ID)
            except Exception as exc:
                self.logger.error(
                    f"Auto-approve failed for withdrawal {withdrawal.id}: {type(exc).__name__}: {exc}"
                )
                result.failed += 1
                result.failed_ids.append(withdrawal.id)
                continue
            result.approved += 1
            result.approved_ids.append(withdrawal.id)

        if result.approved or result.failed:
            self.logger.info(
                f"Auto-approve sweep: {result.approved} approved, {result.failed} failed "
                f"of {result.scanned} pending"
            )
        return result

    def get_withdrawal(self, withdrawal_id: str) -> Withdrawal:
        return self._get_or_404(withdrawal_id)

    def list_withdrawals_for_user(
        self, user_id: str, role: Optional[WalletRole] = None
    ) -> List[Withdrawal]:
        return self.withdrawal_repository.list_for_user(
            user_id, WalletRole(role).value if role is not None else None
        )

    def list_withdrawals(self, status: Optional[WithdrawalStatus] = None) -> List[Withdrawal]:
        return self.withdrawal_repository.list_withdrawals(status)

    def _get_or_404(self, withdrawal_id: str) -> Withdrawal:
        withdrawal = self.withdrawal_repository.get_by_id(withdrawal_id)
        if withdrawal is None:
            raise NotFoundException(
                f"Withdrawal {withdrawal_id} not found", code="WITHDRAWAL_NOT_FOUND"
            )
        return withdrawal

    def _ensure_still_covered(self, withdrawal: Withdrawal) -> None:
        """
        Re-check the wallet before money leaves it.

        The balance seen at request time may be gone by approval (a refund,
        or a concurrent request that passed the same check). A PENDING
        withdrawal already holds its own amount, so it is added back first.
        """
        available = self.wallet_service.get_available_balance(
            withdrawal.user_id, WalletRole(withdrawal.role), exclude_withdrawal_id=withdrawal.id
        )
        if withdrawal.amount > available:
            raise ValidationException(
                "Insufficient balance",
                code="INSUFFICIENT_BALANCE",
                details={
                    "withdrawal_id": withdrawal.id,
                    "available": str(available),
                    "requested": str(withdrawal.amount),
                },
            )

    def _resolve_destination(self, withdrawal: Withdrawal) -> str:
        role = WalletRole(withdrawal.role)
        destination: Optional[str]
        if role is WalletRole.PAYEE or role is WalletRole.PAYER:
            account = self.payout_account_repository.get_for_user(withdrawal.user_id, role.value)
            destination = account.stripe_account_id if account is not None else None
        elif role is WalletRole.ADMIN:
            destination = self.platform_payout_account_id
        else:
            assert_never(role)

        if not destination:
            raise ConfigurationException(
                f"No payout destination configured for {role.value} withdrawals",
                code="PAYOUT_DESTINATION_MISSING",
                details={"withdrawal_id": withdrawal.id, "user_id": withdrawal.user_id},
            )
        return destination
