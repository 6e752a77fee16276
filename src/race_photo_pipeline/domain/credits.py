"""Domain models for the prepaid credit ledger."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class TransactionType(StrEnum):
    """Kinds of ledger entries."""

    PURCHASE = "PURCHASE"
    DEDUCTION = "DEDUCTION"
    REFUND = "REFUND"
    ADMIN_GRANT = "ADMIN_GRANT"


@dataclass(frozen=True)
class CreditTransaction:
    """Append-only ledger entry with the balance snapshot around it."""

    id: UUID
    user_id: UUID
    type: TransactionType
    amount: int
    balance_before: int
    balance_after: int
    reason: str | None
    photo_id: UUID | None
    event_id: UUID | None
    created_at: datetime


@dataclass(frozen=True)
class DeductionReceipt:
    """Outcome of charging a batch."""

    amount: int
    balance_after: int
    transaction_id: UUID | None


@dataclass(frozen=True)
class RefundReceipt:
    """Outcome of refunding a photo that had no bib."""

    photo_id: UUID
    amount: int
    balance_before: int
    balance_after: int
    transaction_id: UUID
