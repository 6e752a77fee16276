"""Supabase-backed credit ledger.

Balance changes run as Postgres functions (see ``supabase/migrations``) so
the balance row lock and the transaction insert share one database
transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from race_photo_pipeline.domain.credits import CreditTransaction, TransactionType
from race_photo_pipeline.errors import InsufficientCreditsError, UserNotFoundError
from race_photo_pipeline.services.credits import CreditLedgerRepository

_TRANSACTION_COLUMNS = (
    "id, user_id, type, amount, balance_before, balance_after, reason, "
    "photo_id, event_id, created_at"
)


@dataclass
class SupabaseCreditRepository(CreditLedgerRepository):
    """Supabase implementation for the credit ledger."""

    client: Client

    def get_balance(self, user_id: UUID) -> int:
        """Return the current balance of a user."""
        response = (
            self.client.table("users")
            .select("credits")
            .eq("id", str(user_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            raise UserNotFoundError(user_id)
        return int(response.data[0]["credits"])

    def deduct(
        self, user_id: UUID, amount: int, reason: str, event_id: UUID | None
    ) -> CreditTransaction:
        """Deduct credits atomically."""
        row = self._call(
            "deduct_credits",
            {
                "p_user_id": str(user_id),
                "p_amount": amount,
                "p_reason": reason,
                "p_event_id": str(event_id) if event_id else None,
            },
        )
        if row is None:
            raise RuntimeError("Failed to deduct credits")
        status = row.get("status")
        if status == "user_not_found":
            raise UserNotFoundError(user_id)
        if status == "insufficient":
            raise InsufficientCreditsError(amount, int(row.get("balance_before") or 0))
        return _transaction_from_row(row)

    def refund_photo(
        self,
        user_id: UUID,
        photo_id: UUID,
        event_id: UUID,
        amount: int,
        reason: str,
    ) -> CreditTransaction | None:
        """Refund a photo once; ``None`` when it is not eligible."""
        row = self._call(
            "refund_photo_credit",
            {
                "p_user_id": str(user_id),
                "p_photo_id": str(photo_id),
                "p_event_id": str(event_id),
                "p_amount": amount,
                "p_reason": reason,
            },
        )
        if row is None or row.get("status") == "skipped":
            return None
        if row.get("status") == "user_not_found":
            raise UserNotFoundError(user_id)
        return _transaction_from_row(row)

    def refund(
        self, user_id: UUID, amount: int, reason: str, event_id: UUID | None
    ) -> CreditTransaction:
        """Return credits for an upload that was rolled back."""
        row = self._call(
            "refund_credits",
            {
                "p_user_id": str(user_id),
                "p_amount": amount,
                "p_reason": reason,
                "p_event_id": str(event_id) if event_id else None,
            },
        )
        if row is None:
            raise RuntimeError("Failed to refund credits")
        if row.get("status") == "user_not_found":
            raise UserNotFoundError(user_id)
        return _transaction_from_row(row)

    def grant(self, user_id: UUID, amount: int, reason: str) -> CreditTransaction:
        """Add credits as an admin grant."""
        row = self._call(
            "grant_credits",
            {"p_user_id": str(user_id), "p_amount": amount, "p_reason": reason},
        )
        if row is None:
            raise RuntimeError("Failed to grant credits")
        if row.get("status") == "user_not_found":
            raise UserNotFoundError(user_id)
        return _transaction_from_row(row)

    def list_transactions(self, user_id: UUID, limit: int) -> list[CreditTransaction]:
        """Return the latest ledger entries for a user."""
        response = (
            self.client.table("credit_transactions")
            .select(_TRANSACTION_COLUMNS)
            .eq("user_id", str(user_id))
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [_transaction_from_row(row) for row in response.data or []]

    def _call(self, function: str, params: dict[str, object]) -> dict[str, object] | None:
        response = self.client.rpc(function, params).execute()
        data = response.data
        if isinstance(data, list):
            return data[0] if data else None
        return data


def _optional_uuid(raw: object) -> UUID | None:
    return UUID(str(raw)) if raw else None


def _transaction_from_row(row: dict[str, object]) -> CreditTransaction:
    return CreditTransaction(
        id=UUID(str(row["id"])),
        user_id=UUID(str(row["user_id"])),
        type=TransactionType(row["type"]),
        amount=int(row["amount"]),
        balance_before=int(row["balance_before"]),
        balance_after=int(row["balance_after"]),
        reason=row.get("reason"),
        photo_id=_optional_uuid(row.get("photo_id")),
        event_id=_optional_uuid(row.get("event_id")),
        created_at=datetime.fromisoformat(str(row["created_at"])),
    )
