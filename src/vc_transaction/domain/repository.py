"""Repository Protocol for card transactions.

Every state transition that must happen exactly once (insert, settlement merge,
withdrawal claim) is a single conditional statement; callers learn the outcome
from whether a row came back.
"""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_transaction.domain.models import CardTransaction, TransactionSummary


class TransactionRepositoryProtocol(Protocol):
    async def exists(self, db: AsyncSession, txn_id: str) -> bool:
        """True if txn_id is stored as a row id, a settle_txn_id or a settled auth_txn_id."""
        ...

    async def get_by_txn_id(self, db: AsyncSession, txn_id: str) -> CardTransaction | None: ...

    async def lock_by_txn_id(self, db: AsyncSession, txn_id: str) -> CardTransaction | None: ...

    async def insert_if_absent(
        self, db: AsyncSession, txn: CardTransaction
    ) -> CardTransaction | None:
        """INSERT ... ON CONFLICT DO NOTHING. None means the id was already recorded."""
        ...

    async def merge_settlement(
        self,
        db: AsyncSession,
        auth_txn_id: str,
        settle_txn_id: str,
        settle_bill_amt: Any,
        settle_bill_ccy: str,
        final_amt: Any,
        final_ccy: str,
        clearing_date: datetime | None,
        merchant_name: str | None,
        merchant_country: str | None,
        mcc: str | None,
        auth_code: str | None,
        raw: dict[str, Any],
        txn_type: str = "SETTLEMENT",
    ) -> CardTransaction | None:
        """Merge onto an unsettled AUTH row. None means it was settled meanwhile."""
        ...

    async def attach_authorization(
        self,
        db: AsyncSession,
        auth_txn_id: str,
        auth_txn_amt: Any,
        auth_txn_ccy: str | None,
        auth_bill_amt: Any,
        auth_bill_ccy: str | None,
        txn_time: datetime | None,
        merchant_name: str | None,
        merchant_country: str | None,
        mcc: str | None,
        auth_code: str | None,
        raw: dict[str, Any],
    ) -> CardTransaction | None:
        """Fill the auth side of a settlement stored before its AUTH arrived.

        None means there is no such settled row, or its AUTH was attached already.
        """
        ...

    async def claim_withdrawal(self, db: AsyncSession, txn_id: str) -> CardTransaction | None:
        """Atomically move an eligible AUTH_CANCEL row to PROCESSING."""
        ...

    async def set_withdrawal_status(
        self, db: AsyncSession, txn_id: str, status: str
    ) -> CardTransaction | None: ...

    async def rewrite_as_cancel(self, db: AsyncSession, txn_id: str) -> CardTransaction | None:
        """txn_type=CANCEL, txn_time=now, withdrawal_status=SUCCESS."""
        ...

    async def list_stale_pending(self, db: AsyncSession, older_than: datetime) -> list[str]: ...

    async def fail_stale_processing(self, db: AsyncSession, older_than: datetime) -> list[str]: ...

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str | None,
        cursor_id: int | None,
        limit: int,
        card_id: str | None = None,
        txn_type: str | None = None,
        withdrawal_status: str | None = None,
    ) -> list[CardTransaction]: ...

    async def summarize(
        self,
        db: AsyncSession,
        user_id: str | None,
        start_at: datetime,
        end_at: datetime,
    ) -> TransactionSummary:
        """Counts and signed totals by txn_time in [start_at, end_at); all users when None."""
        ...
