"""Prepaid credit ledger: batch deductions and no-bib refunds."""

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from race_photo_pipeline.domain.credits import (
    CreditTransaction,
    DeductionReceipt,
    RefundReceipt,
)
from race_photo_pipeline.domain.photos import EventRecord
from race_photo_pipeline.domain.pipeline import ProcessingTier

_logger = logging.getLogger(__name__)


class CreditLedgerRepository(Protocol):
    """Atomic ledger operations scoped to one user's balance.

    Each write must update the balance and append its transaction row in a
    single transaction that locks the user's balance.
    """

    def get_balance(self, user_id: UUID) -> int:
        """Return the current balance of a user."""

    def deduct(
        self, user_id: UUID, amount: int, reason: str, event_id: UUID | None
    ) -> CreditTransaction:
        """Deduct credits; raises ``InsufficientCreditsError`` if short."""

    def refund_photo(
        self,
        user_id: UUID,
        photo_id: UUID,
        event_id: UUID,
        amount: int,
        reason: str,
    ) -> CreditTransaction | None:
        """Refund a deducted, not yet refunded photo and flag it refunded.

        Returns ``None`` without side effects when the photo is not eligible.
        """

    def refund(
        self, user_id: UUID, amount: int, reason: str, event_id: UUID | None
    ) -> CreditTransaction:
        """Return credits of a deduction that did not go through."""

    def grant(self, user_id: UUID, amount: int, reason: str) -> CreditTransaction:
        """Add credits outside of a purchase."""

    def list_transactions(self, user_id: UUID, limit: int) -> list[CreditTransaction]:
        """Return the latest ledger entries for a user."""


@dataclass
class CreditLedgerService:
    """Prices batches and reconciles per-photo refunds."""

    repository: CreditLedgerRepository
    credits_per_photo_lite: int = 1
    credits_per_photo_premium: int = 2

    def credits_per_photo(self, tier: ProcessingTier) -> int:
        """Return the unit price of a tier."""
        if tier == ProcessingTier.PREMIUM:
            return self.credits_per_photo_premium
        return self.credits_per_photo_lite

    def deduct_for_batch(
        self, event: EventRecord, photo_count: int, tier: ProcessingTier
    ) -> DeductionReceipt:
        """Charge the event owner for a whole batch or nothing."""
        per_photo = self.credits_per_photo(tier)
        total = per_photo * photo_count
        if total <= 0:
            return DeductionReceipt(
                amount=0,
                balance_after=self.repository.get_balance(event.user_id),
                transaction_id=None,
            )
        plural = "s" if photo_count > 1 else ""
        reason = (
            f"{tier.value.capitalize()} import of {photo_count} photo{plural} "
            f"({per_photo} cr/photo) - {event.name}"
        )
        transaction = self.repository.deduct(
            event.user_id, total, reason=reason, event_id=event.id
        )
        _logger.info(
            "Deducted %s credits from %s for event %s (balance %s)",
            total,
            event.user_id,
            event.id,
            transaction.balance_after,
        )
        return DeductionReceipt(
            amount=total,
            balance_after=transaction.balance_after,
            transaction_id=transaction.id,
        )

    def refund_no_bib(
        self, user_id: UUID, photo_id: UUID, event_id: UUID, amount: int
    ) -> RefundReceipt | None:
        """Refund a photo where no bib was detected, at most once."""
        if amount <= 0:
            return None
        plural = "s" if amount > 1 else ""
        transaction = self.repository.refund_photo(
            user_id,
            photo_id,
            event_id,
            amount,
            reason=f"No bib detected ({amount} credit{plural})",
        )
        if transaction is None:
            return None
        _logger.info(
            "Refunded %s credits to %s for photo %s", amount, user_id, photo_id
        )
        return RefundReceipt(
            photo_id=photo_id,
            amount=amount,
            balance_before=transaction.balance_before,
            balance_after=transaction.balance_after,
            transaction_id=transaction.id,
        )

    def refund_batch(self, event: EventRecord, receipt: DeductionReceipt) -> None:
        """Compensate a batch deduction whose photos could not be created."""
        if receipt.amount <= 0:
            return
        self.repository.refund(
            event.user_id,
            receipt.amount,
            reason=f"Import rolled back - {event.name}",
            event_id=event.id,
        )
        _logger.warning(
            "Returned %s credits to %s after a failed import for event %s",
            receipt.amount,
            event.user_id,
            event.id,
        )

    def grant(self, user_id: UUID, amount: int, reason: str) -> CreditTransaction:
        """Grant credits from the admin surface."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        return self.repository.grant(user_id, amount, reason)

    def balance(self, user_id: UUID) -> int:
        """Return a user's balance."""
        return self.repository.get_balance(user_id)

    def list_transactions(
        self, user_id: UUID, limit: int = 50
    ) -> list[CreditTransaction]:
        """Return recent ledger entries."""
        return self.repository.list_transactions(user_id, limit)
