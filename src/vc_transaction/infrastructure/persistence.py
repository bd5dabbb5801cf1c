"""TransactionRepository — concrete implementation of TransactionRepositoryProtocol.

Key SQL patterns:
  - Dedup: INSERT ... ON CONFLICT DO NOTHING RETURNING (txn_id unique, settle_txn_id
    partial unique); no row back means the event was already absorbed.
  - Settlement merge: UPDATE ... WHERE is_settled = false RETURNING, so two settlements
    racing for one auth cannot both apply.
  - Late authorization: an AUTH whose settlement was already stored standalone
    fills the auth_* columns of that row once, keyed on the `authorization` entry
    of raw_callback_data.
  - Withdrawal claim: UPDATE ... SET withdrawal_status = 'PROCESSING' guarded on the
    current status, the only way a compensation may reach the provider.
Transaction ownership stays with the caller.
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_common.errors import InternalError
from src.vc_common.money import to_amount, to_optional_amount
from src.vc_transaction.domain.models import CardTransaction, SummaryBucket, TransactionSummary

_TXN_COLUMNS = """id, card_id, user_id, username, txn_id, origin_txn_id, auth_txn_id,
              settle_txn_id, txn_type, txn_status, auth_txn_amt, auth_txn_ccy,
              auth_bill_amt, auth_bill_ccy, settle_bill_amt, settle_bill_ccy,
              final_amt, final_ccy, merchant_name, merchant_country, mcc, auth_code,
              decline_reason, txn_time, clearing_date, is_settled, withdrawal_status,
              raw_callback_data, created_at, updated_at"""

_EXISTS_SQL = text("""
    SELECT 1 FROM card_transactions
    WHERE txn_id = :txn_id
       OR settle_txn_id = :txn_id
       OR (auth_txn_id = :txn_id AND is_settled)
    LIMIT 1
""")

_GET_SQL = text(f"SELECT {_TXN_COLUMNS} FROM card_transactions WHERE txn_id = :txn_id")

_LOCK_SQL = text(f"""
    SELECT {_TXN_COLUMNS}
    FROM card_transactions
    WHERE txn_id = :txn_id
    FOR UPDATE
""")

_INSERT_SQL = text(f"""
    INSERT INTO card_transactions
        (card_id, user_id, username, txn_id, origin_txn_id, auth_txn_id, settle_txn_id,
         txn_type, txn_status, auth_txn_amt, auth_txn_ccy, auth_bill_amt, auth_bill_ccy,
         settle_bill_amt, settle_bill_ccy, final_amt, final_ccy, merchant_name,
         merchant_country, mcc, auth_code, decline_reason, txn_time, clearing_date,
         is_settled, withdrawal_status, raw_callback_data)
    VALUES
        (:card_id, :user_id, :username, :txn_id, :origin_txn_id, :auth_txn_id, :settle_txn_id,
         :txn_type, :txn_status, :auth_txn_amt, :auth_txn_ccy, :auth_bill_amt, :auth_bill_ccy,
         :settle_bill_amt, :settle_bill_ccy, :final_amt, :final_ccy, :merchant_name,
         :merchant_country, :mcc, :auth_code, :decline_reason, :txn_time, :clearing_date,
         :is_settled, :withdrawal_status, CAST(:raw_callback_data AS JSONB))
    ON CONFLICT DO NOTHING
    RETURNING {_TXN_COLUMNS}
""")

_MERGE_SETTLEMENT_SQL = text(f"""
    UPDATE card_transactions
    SET settle_txn_id     = :settle_txn_id,
        txn_type          = :txn_type,
        settle_bill_amt   = :settle_bill_amt,
        settle_bill_ccy   = :settle_bill_ccy,
        final_amt         = :final_amt,
        final_ccy         = :final_ccy,
        clearing_date     = COALESCE(:clearing_date, clearing_date),
        merchant_name     = COALESCE(:merchant_name, merchant_name),
        merchant_country  = COALESCE(:merchant_country, merchant_country),
        mcc               = COALESCE(:mcc, mcc),
        auth_code         = COALESCE(:auth_code, auth_code),
        raw_callback_data = COALESCE(raw_callback_data, '{{}}'::jsonb)
                            || jsonb_build_object('settlement', CAST(:raw AS JSONB)),
        is_settled        = true,
        updated_at        = NOW()
    WHERE txn_id = :auth_txn_id
      AND txn_type = 'AUTH'
      AND is_settled = false
    RETURNING {_TXN_COLUMNS}
""")

_ATTACH_AUTHORIZATION_SQL = text(f"""
    UPDATE card_transactions
    SET auth_txn_amt      = :auth_txn_amt,
        auth_txn_ccy      = :auth_txn_ccy,
        auth_bill_amt     = :auth_bill_amt,
        auth_bill_ccy     = :auth_bill_ccy,
        txn_time          = COALESCE(:txn_time, txn_time),
        merchant_name     = COALESCE(merchant_name, :merchant_name),
        merchant_country  = COALESCE(merchant_country, :merchant_country),
        mcc               = COALESCE(mcc, :mcc),
        auth_code         = COALESCE(auth_code, :auth_code),
        raw_callback_data = COALESCE(raw_callback_data, '{{}}'::jsonb)
                            || jsonb_build_object(
                                   'authorization',
                                   COALESCE(CAST(:raw AS JSONB), '{{}}'::jsonb)),
        updated_at        = NOW()
    WHERE auth_txn_id = :auth_txn_id
      AND is_settled = true
      AND raw_callback_data -> 'authorization' IS NULL
      AND NOT EXISTS (SELECT 1 FROM card_transactions own WHERE own.txn_id = :auth_txn_id)
    RETURNING {_TXN_COLUMNS}
""")

_CLAIM_WITHDRAWAL_SQL = text(f"""
    UPDATE card_transactions
    SET withdrawal_status = 'PROCESSING', updated_at = NOW()
    WHERE txn_id = :txn_id
      AND txn_type = 'AUTH_CANCEL'
      AND txn_status = '1'
      AND (withdrawal_status IS NULL OR withdrawal_status NOT IN ('SUCCESS', 'PROCESSING'))
    RETURNING {_TXN_COLUMNS}
""")

_SET_WITHDRAWAL_STATUS_SQL = text(f"""
    UPDATE card_transactions
    SET withdrawal_status = :status, updated_at = NOW()
    WHERE txn_id = :txn_id
    RETURNING {_TXN_COLUMNS}
""")

_REWRITE_AS_CANCEL_SQL = text(f"""
    UPDATE card_transactions
    SET txn_type = 'CANCEL', txn_time = NOW(), withdrawal_status = 'SUCCESS', updated_at = NOW()
    WHERE txn_id = :txn_id
    RETURNING {_TXN_COLUMNS}
""")

_STALE_PENDING_SQL = text("""
    SELECT txn_id FROM card_transactions
    WHERE withdrawal_status = 'PENDING' AND updated_at < :older_than
    ORDER BY id
""")

_FAIL_STALE_PROCESSING_SQL = text("""
    UPDATE card_transactions
    SET withdrawal_status = 'FAILED', updated_at = NOW()
    WHERE withdrawal_status = 'PROCESSING' AND updated_at < :older_than
    RETURNING txn_id
""")

_LIST_SQL = text(f"""
    SELECT {_TXN_COLUMNS}
    FROM card_transactions
    WHERE (CAST(:user_id AS VARCHAR) IS NULL OR user_id = :user_id)
      AND (CAST(:cursor_id AS BIGINT) IS NULL OR id < :cursor_id)
      AND (CAST(:card_id AS VARCHAR) IS NULL OR card_id = :card_id)
      AND (CAST(:txn_type AS VARCHAR) IS NULL OR txn_type = :txn_type)
      AND (CAST(:withdrawal_status AS VARCHAR) IS NULL OR withdrawal_status = :withdrawal_status)
    ORDER BY id DESC
    LIMIT :limit
""")


_SUMMARY_SQL = text("""
    SELECT
        COUNT(*) FILTER (WHERE txn_type <> 'CANCEL') AS auth_count,
        COALESCE(SUM(final_amt) FILTER (WHERE txn_type <> 'CANCEL'), 0) AS auth_amount,
        COUNT(*) FILTER (WHERE txn_type <> 'CANCEL' AND txn_status = '1') AS auth_success,
        COUNT(*) FILTER (WHERE settle_txn_id IS NOT NULL) AS settle_count,
        COALESCE(SUM(final_amt) FILTER (WHERE settle_txn_id IS NOT NULL), 0) AS settle_amount,
        COUNT(*) FILTER (WHERE settle_txn_id IS NOT NULL AND txn_status = '1') AS settle_success
    FROM card_transactions
    WHERE (CAST(:user_id AS VARCHAR) IS NULL OR user_id = :user_id)
      AND txn_time >= :start_at
      AND txn_time < :end_at
""")


def _to_json(data: dict[str, Any] | None) -> str | None:
    if data is None:
        return None
    return json.dumps(data, default=str, ensure_ascii=False)


def _row_to_txn(row: object) -> CardTransaction:
    raw = row.raw_callback_data  # type: ignore[attr-defined]
    if isinstance(raw, str):
        raw = json.loads(raw)
    return CardTransaction(
        id=row.id,  # type: ignore[attr-defined]
        card_id=row.card_id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        username=row.username,  # type: ignore[attr-defined]
        txn_id=row.txn_id,  # type: ignore[attr-defined]
        origin_txn_id=row.origin_txn_id,  # type: ignore[attr-defined]
        auth_txn_id=row.auth_txn_id,  # type: ignore[attr-defined]
        settle_txn_id=row.settle_txn_id,  # type: ignore[attr-defined]
        txn_type=row.txn_type,  # type: ignore[attr-defined]
        txn_status=row.txn_status,  # type: ignore[attr-defined]
        auth_txn_amt=to_optional_amount(row.auth_txn_amt),  # type: ignore[attr-defined]
        auth_txn_ccy=row.auth_txn_ccy,  # type: ignore[attr-defined]
        auth_bill_amt=to_optional_amount(row.auth_bill_amt),  # type: ignore[attr-defined]
        auth_bill_ccy=row.auth_bill_ccy,  # type: ignore[attr-defined]
        settle_bill_amt=to_optional_amount(row.settle_bill_amt),  # type: ignore[attr-defined]
        settle_bill_ccy=row.settle_bill_ccy,  # type: ignore[attr-defined]
        final_amt=to_amount(row.final_amt),  # type: ignore[attr-defined]
        final_ccy=row.final_ccy,  # type: ignore[attr-defined]
        merchant_name=row.merchant_name,  # type: ignore[attr-defined]
        merchant_country=row.merchant_country,  # type: ignore[attr-defined]
        mcc=row.mcc,  # type: ignore[attr-defined]
        auth_code=row.auth_code,  # type: ignore[attr-defined]
        decline_reason=row.decline_reason,  # type: ignore[attr-defined]
        txn_time=row.txn_time,  # type: ignore[attr-defined]
        clearing_date=row.clearing_date,  # type: ignore[attr-defined]
        is_settled=row.is_settled,  # type: ignore[attr-defined]
        withdrawal_status=row.withdrawal_status,  # type: ignore[attr-defined]
        raw_callback_data=raw,
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class TransactionRepository:
    """Implements TransactionRepositoryProtocol using raw SQL via SQLAlchemy text()."""

    async def exists(self, db: AsyncSession, txn_id: str) -> bool:
        result = await db.execute(_EXISTS_SQL, {"txn_id": txn_id})
        return result.fetchone() is not None

    async def get_by_txn_id(self, db: AsyncSession, txn_id: str) -> CardTransaction | None:
        result = await db.execute(_GET_SQL, {"txn_id": txn_id})
        row = result.fetchone()
        return _row_to_txn(row) if row is not None else None

    async def lock_by_txn_id(self, db: AsyncSession, txn_id: str) -> CardTransaction | None:
        result = await db.execute(_LOCK_SQL, {"txn_id": txn_id})
        row = result.fetchone()
        return _row_to_txn(row) if row is not None else None

    async def insert_if_absent(
        self, db: AsyncSession, txn: CardTransaction
    ) -> CardTransaction | None:
        result = await db.execute(
            _INSERT_SQL,
            {
                "card_id": txn.card_id,
                "user_id": txn.user_id,
                "username": txn.username,
                "txn_id": txn.txn_id,
                "origin_txn_id": txn.origin_txn_id or "0",
                "auth_txn_id": txn.auth_txn_id,
                "settle_txn_id": txn.settle_txn_id,
                "txn_type": txn.txn_type,
                "txn_status": txn.txn_status,
                "auth_txn_amt": txn.auth_txn_amt,
                "auth_txn_ccy": txn.auth_txn_ccy,
                "auth_bill_amt": txn.auth_bill_amt,
                "auth_bill_ccy": txn.auth_bill_ccy,
                "settle_bill_amt": txn.settle_bill_amt,
                "settle_bill_ccy": txn.settle_bill_ccy,
                "final_amt": txn.final_amt,
                "final_ccy": txn.final_ccy,
                "merchant_name": txn.merchant_name,
                "merchant_country": txn.merchant_country,
                "mcc": txn.mcc,
                "auth_code": txn.auth_code,
                "decline_reason": txn.decline_reason,
                "txn_time": txn.txn_time,
                "clearing_date": txn.clearing_date,
                "is_settled": txn.is_settled,
                "withdrawal_status": txn.withdrawal_status,
                "raw_callback_data": _to_json(txn.raw_callback_data),
            },
        )
        row = result.fetchone()
        return _row_to_txn(row) if row is not None else None

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
        result = await db.execute(
            _MERGE_SETTLEMENT_SQL,
            {
                "auth_txn_id": auth_txn_id,
                "settle_txn_id": settle_txn_id,
                "txn_type": txn_type,
                "settle_bill_amt": settle_bill_amt,
                "settle_bill_ccy": settle_bill_ccy,
                "final_amt": final_amt,
                "final_ccy": final_ccy,
                "clearing_date": clearing_date,
                "merchant_name": merchant_name,
                "merchant_country": merchant_country,
                "mcc": mcc,
                "auth_code": auth_code,
                "raw": _to_json(raw),
            },
        )
        row = result.fetchone()
        return _row_to_txn(row) if row is not None else None

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
        result = await db.execute(
            _ATTACH_AUTHORIZATION_SQL,
            {
                "auth_txn_id": auth_txn_id,
                "auth_txn_amt": auth_txn_amt,
                "auth_txn_ccy": auth_txn_ccy,
                "auth_bill_amt": auth_bill_amt,
                "auth_bill_ccy": auth_bill_ccy,
                "txn_time": txn_time,
                "merchant_name": merchant_name,
                "merchant_country": merchant_country,
                "mcc": mcc,
                "auth_code": auth_code,
                "raw": _to_json(raw),
            },
        )
        row = result.fetchone()
        return _row_to_txn(row) if row is not None else None

    async def claim_withdrawal(self, db: AsyncSession, txn_id: str) -> CardTransaction | None:
        result = await db.execute(_CLAIM_WITHDRAWAL_SQL, {"txn_id": txn_id})
        row = result.fetchone()
        return _row_to_txn(row) if row is not None else None

    async def set_withdrawal_status(
        self, db: AsyncSession, txn_id: str, status: str
    ) -> CardTransaction | None:
        result = await db.execute(
            _SET_WITHDRAWAL_STATUS_SQL, {"txn_id": txn_id, "status": status}
        )
        row = result.fetchone()
        return _row_to_txn(row) if row is not None else None

    async def rewrite_as_cancel(self, db: AsyncSession, txn_id: str) -> CardTransaction | None:
        result = await db.execute(_REWRITE_AS_CANCEL_SQL, {"txn_id": txn_id})
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Transaction {txn_id} vanished during rewrite")
        return _row_to_txn(row)

    async def list_stale_pending(self, db: AsyncSession, older_than: datetime) -> list[str]:
        result = await db.execute(_STALE_PENDING_SQL, {"older_than": older_than})
        return [row.txn_id for row in result.fetchall()]

    async def fail_stale_processing(self, db: AsyncSession, older_than: datetime) -> list[str]:
        result = await db.execute(_FAIL_STALE_PROCESSING_SQL, {"older_than": older_than})
        return [row.txn_id for row in result.fetchall()]

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: str | None,
        cursor_id: int | None,
        limit: int,
        card_id: str | None = None,
        txn_type: str | None = None,
        withdrawal_status: str | None = None,
    ) -> list[CardTransaction]:
        result = await db.execute(
            _LIST_SQL,
            {
                "user_id": user_id,
                "cursor_id": cursor_id,
                "limit": limit,
                "card_id": card_id,
                "txn_type": txn_type,
                "withdrawal_status": withdrawal_status,
            },
        )
        return [_row_to_txn(row) for row in result.fetchall()]

    async def summarize(
        self,
        db: AsyncSession,
        user_id: str | None,
        start_at: datetime,
        end_at: datetime,
    ) -> TransactionSummary:
        result = await db.execute(
            _SUMMARY_SQL, {"user_id": user_id, "start_at": start_at, "end_at": end_at}
        )
        row = result.fetchone()
        if row is None:
            return TransactionSummary()
        return TransactionSummary(
            auth=SummaryBucket(
                total_count=row.auth_count,
                total_amount=to_amount(row.auth_amount),
                success_count=row.auth_success,
            ),
            settle=SummaryBucket(
                total_count=row.settle_count,
                total_amount=to_amount(row.settle_amount),
                success_count=row.settle_success,
            ),
        )
