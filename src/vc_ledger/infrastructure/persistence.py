"""LedgerRepository — concrete implementation of LedgerRepositoryProtocol.

Flows and operation logs are INSERT-only. The balance projection is a single
aggregate query so every caller sees the same formula inputs.

Transaction ownership: the CALLER (application service) commits or rolls back.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_common.errors import InternalError
from src.vc_common.money import ZERO, to_amount
from src.vc_ledger.domain.balance import check_flow_sign, signed_card_operation_amount
from src.vc_ledger.domain.models import (
    AccountFlow,
    AdminActivity,
    BalanceAggregates,
    DailyConsumption,
    FlowSummary,
    OperationLog,
    OperationStat,
    User,
)

# ---------------------------------------------------------------------------
# SQL: users
# ---------------------------------------------------------------------------

_USER_COLUMNS = "id, username, role, status, parent_id, balance, created_at"

_GET_USER_SQL = text(f"""
    SELECT {_USER_COLUMNS}
    FROM users
    WHERE id = CAST(:user_id AS UUID)
""")

_LOCK_USER_SQL = text(f"""
    SELECT {_USER_COLUMNS}
    FROM users
    WHERE id = CAST(:user_id AS UUID)
    FOR UPDATE
""")

_UPDATE_CACHED_BALANCE_SQL = text("""
    UPDATE users
    SET balance = :balance
    WHERE id = CAST(:user_id AS UUID)
""")

_LIST_USER_IDS_SQL = text("SELECT id FROM users ORDER BY created_at")

# ---------------------------------------------------------------------------
# SQL: account flows
# ---------------------------------------------------------------------------

_FLOW_COLUMNS = """id, operator_id, target_user_id, operation_type, amount, currency,
              description, business_type, business_id, created_at"""

_INSERT_FLOW_SQL = text(f"""
    INSERT INTO account_flows
        (operator_id, target_user_id, operation_type, amount, currency,
         description, business_type, business_id)
    VALUES
        (:operator_id, :target_user_id, :operation_type, :amount, :currency,
         :description, :business_type, :business_id)
    RETURNING {_FLOW_COLUMNS}
""")

_FLOW_BALANCE_SQL = text("""
    SELECT
        (SELECT COALESCE(SUM(amount), 0) FROM account_flows WHERE target_user_id = :user_id)
      - (SELECT COALESCE(SUM(amount), 0) FROM account_flows WHERE operator_id = :user_id)
        AS balance
""")

_LIST_FLOWS_SQL = text(f"""
    SELECT {_FLOW_COLUMNS}
    FROM account_flows
    WHERE (target_user_id = :user_id OR operator_id = :user_id)
      AND (CAST(:cursor_id AS BIGINT) IS NULL OR id < :cursor_id)
      AND (CAST(:operation_type AS VARCHAR) IS NULL OR operation_type = :operation_type)
    ORDER BY id DESC
    LIMIT :limit
""")

_FLOW_SUMMARY_SQL = text("""
    SELECT
        COALESCE(SUM(amount) FILTER (
            WHERE target_user_id = :user_id AND operation_type = 'RECHARGE'), 0) AS received_recharge,
        COALESCE(SUM(amount) FILTER (
            WHERE target_user_id = :user_id AND operation_type = 'WITHDRAW'), 0) AS received_withdraw,
        COALESCE(SUM(amount) FILTER (
            WHERE operator_id = :user_id AND operation_type = 'RECHARGE'), 0) AS issued_recharge,
        COALESCE(SUM(amount) FILTER (
            WHERE operator_id = :user_id AND operation_type = 'WITHDRAW'), 0) AS issued_withdraw,
        COUNT(*) AS flow_count
    FROM account_flows
    WHERE target_user_id = :user_id OR operator_id = :user_id
""")

# ---------------------------------------------------------------------------
# SQL: balance projection (the one place the dashboard formula reads from)
# ---------------------------------------------------------------------------

_BALANCE_AGGREGATES_SQL = text("""
    SELECT
        (SELECT COALESCE(SUM(amount), 0) FROM account_flows
          WHERE target_user_id = :user_id AND operation_type IN ('RECHARGE', 'WITHDRAW'))
      - (SELECT COALESCE(SUM(amount), 0) FROM account_flows
          WHERE operator_id = :user_id AND operation_type IN ('RECHARGE', 'WITHDRAW'))
            AS recharge_net,
        (SELECT COALESCE(SUM(final_amt), 0) FROM card_transactions
          WHERE user_id = :user_id AND txn_type <> 'AUTH_CANCEL' AND txn_status = '1')
            AS consumption_sum,
        (SELECT COALESCE(SUM(ol.amount), 0)
           FROM operation_logs ol
           JOIN virtual_cards vc ON vc.card_id = ol.card_id
          WHERE vc.created_by = :user_id AND vc.status <> 'RELEASED')
            AS provisioned_sum,
        (SELECT COALESCE(SUM(ct.final_amt), 0)
           FROM card_transactions ct
           JOIN virtual_cards vc ON vc.card_id = ct.card_id
          WHERE vc.created_by = :user_id AND vc.status <> 'RELEASED'
            AND ct.txn_type <> 'AUTH_CANCEL' AND ct.txn_status = '1')
            AS open_card_consumption_sum
""")

_DAILY_CONSUMPTION_SQL = text("""
    SELECT CAST(txn_time AT TIME ZONE :tz_name AS DATE) AS day,
           COALESCE(SUM(final_amt), 0) AS amount,
           COUNT(*) AS txn_count
    FROM card_transactions
    WHERE user_id = :user_id
      AND txn_type <> 'AUTH_CANCEL'
      AND txn_status = '1'
      AND txn_time >= :since
    GROUP BY day
    ORDER BY day
""")

# ---------------------------------------------------------------------------
# SQL: operation logs
# ---------------------------------------------------------------------------

_INSERT_OPERATION_LOG_SQL = text("""
    INSERT INTO operation_logs
        (card_id, card_no, operation_type, amount, currency,
         operator_id, operator_name, description)
    VALUES
        (:card_id, :card_no, :operation_type, :amount, :currency,
         :operator_id, :operator_name, :description)
    RETURNING id, card_id, card_no, operation_type, amount, currency,
              operator_id, operator_name, description, created_at
""")


_OPERATION_LOG_FILTERS = """
      AND (CAST(:owner_id AS VARCHAR) IS NULL OR vc.created_by = :owner_id)
      AND (CAST(:start_at AS TIMESTAMPTZ) IS NULL OR ol.created_at >= :start_at)
      AND (CAST(:end_at AS TIMESTAMPTZ) IS NULL OR ol.created_at < :end_at)
"""

_LIST_OPERATION_LOGS_SQL = text(f"""
    SELECT ol.id, ol.card_id, ol.card_no, ol.operation_type, ol.amount, ol.currency,
           ol.operator_id, ol.operator_name, ol.description, ol.created_at,
           COALESCE(vc.status, 'RELEASED') AS card_status
    FROM operation_logs ol
    LEFT JOIN virtual_cards vc ON vc.card_id = ol.card_id
    WHERE (CAST(:cursor_id AS BIGINT) IS NULL OR ol.id < :cursor_id)
      {_OPERATION_LOG_FILTERS}
      AND (CAST(:card_id AS VARCHAR) IS NULL OR ol.card_id ILIKE '%' || :card_id || '%')
      AND (CAST(:card_no AS VARCHAR) IS NULL OR ol.card_no ILIKE '%' || :card_no || '%')
      AND (CAST(:operation_type AS VARCHAR) IS NULL OR ol.operation_type = :operation_type)
      AND (CAST(:card_status AS VARCHAR) IS NULL
           OR COALESCE(vc.status, 'RELEASED') = :card_status)
    ORDER BY ol.id DESC
    LIMIT :limit
""")

_OPERATION_STATS_SQL = text(f"""
    SELECT ol.operation_type,
           COUNT(*) AS op_count,
           COALESCE(SUM(ol.amount), 0) AS total_amount
    FROM operation_logs ol
    LEFT JOIN virtual_cards vc ON vc.card_id = ol.card_id
    WHERE true
      {_OPERATION_LOG_FILTERS}
    GROUP BY ol.operation_type
    ORDER BY ol.operation_type
""")

# ---------------------------------------------------------------------------
# SQL: admin activity
# ---------------------------------------------------------------------------

_ADMIN_ACTIVITY_SQL = text("""
    SELECT
        (SELECT COUNT(*) FROM users WHERE parent_id = CAST(:admin_id AS UUID)) AS managed_users,
        COUNT(*) AS total_operations,
        COUNT(*) FILTER (WHERE operation_type = 'RECHARGE') AS recharge_count,
        COUNT(*) FILTER (WHERE operation_type = 'WITHDRAW') AS withdraw_count
    FROM account_flows
    WHERE operator_id = :admin_id
""")

_RECENT_OPERATOR_FLOWS_SQL = text("""
    SELECT af.id, af.operator_id, af.target_user_id, af.operation_type, af.amount,
           af.currency, af.description, af.business_type, af.business_id, af.created_at,
           u.username AS target_username
    FROM account_flows af
    LEFT JOIN users u ON CAST(u.id AS VARCHAR) = af.target_user_id
    WHERE af.operator_id = :operator_id
    ORDER BY af.id DESC
    LIMIT :limit
""")

def _row_to_user(row: object) -> User:
    return User(
        id=str(row.id),  # type: ignore[attr-defined]
        username=row.username,  # type: ignore[attr-defined]
        role=row.role,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        parent_id=str(row.parent_id) if row.parent_id else None,  # type: ignore[attr-defined]
        balance=to_amount(row.balance),  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


def _row_to_flow(row: object) -> AccountFlow:
    return AccountFlow(
        id=row.id,  # type: ignore[attr-defined]
        operator_id=row.operator_id,  # type: ignore[attr-defined]
        target_user_id=row.target_user_id,  # type: ignore[attr-defined]
        operation_type=row.operation_type,  # type: ignore[attr-defined]
        amount=to_amount(row.amount),  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        description=row.description,  # type: ignore[attr-defined]
        business_type=row.business_type,  # type: ignore[attr-defined]
        business_id=row.business_id,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        target_username=getattr(row, "target_username", None),
    )


def _row_to_operation_log(row: object) -> OperationLog:
    return OperationLog(
        id=row.id,  # type: ignore[attr-defined]
        card_id=row.card_id,  # type: ignore[attr-defined]
        card_no=row.card_no,  # type: ignore[attr-defined]
        operation_type=row.operation_type,  # type: ignore[attr-defined]
        amount=to_amount(row.amount),  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        operator_id=row.operator_id,  # type: ignore[attr-defined]
        operator_name=row.operator_name,  # type: ignore[attr-defined]
        description=row.description,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        card_status=getattr(row, "card_status", None),
    )


class LedgerRepository:
    """Concrete repository — raw SQL, no ORM session state."""

    async def get_user(self, db: AsyncSession, user_id: str) -> User | None:
        result = await db.execute(_GET_USER_SQL, {"user_id": user_id})
        row = result.fetchone()
        return _row_to_user(row) if row else None

    async def lock_user(self, db: AsyncSession, user_id: str) -> User | None:
        result = await db.execute(_LOCK_USER_SQL, {"user_id": user_id})
        row = result.fetchone()
        return _row_to_user(row) if row else None

    async def update_cached_balance(
        self, db: AsyncSession, user_id: str, balance: Decimal
    ) -> None:
        await db.execute(_UPDATE_CACHED_BALANCE_SQL, {"user_id": user_id, "balance": balance})

    async def list_user_ids(self, db: AsyncSession) -> list[str]:
        result = await db.execute(_LIST_USER_IDS_SQL)
        return [str(row.id) for row in result.fetchall()]

    async def insert_flow(
        self,
        db: AsyncSession,
        operator_id: str,
        target_user_id: str,
        operation_type: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        business_type: str | None,
        business_id: str | None,
    ) -> AccountFlow:
        check_flow_sign(operation_type, amount)
        result = await db.execute(
            _INSERT_FLOW_SQL,
            {
                "operator_id": operator_id,
                "target_user_id": target_user_id,
                "operation_type": operation_type,
                "amount": amount,
                "currency": currency,
                "description": description,
                "business_type": business_type,
                "business_id": business_id,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Account flow insert returned no rows")
        return _row_to_flow(row)

    async def sum_flow_balance(self, db: AsyncSession, user_id: str) -> Decimal:
        result = await db.execute(_FLOW_BALANCE_SQL, {"user_id": user_id})
        row = result.fetchone()
        return to_amount(row.balance) if row else ZERO

    async def list_flows(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: int | None,
        limit: int,
        operation_type: str | None,
    ) -> list[AccountFlow]:
        result = await db.execute(
            _LIST_FLOWS_SQL,
            {
                "user_id": user_id,
                "cursor_id": cursor_id,
                "operation_type": operation_type,
                "limit": limit,
            },
        )
        return [_row_to_flow(row) for row in result.fetchall()]

    async def get_flow_summary(self, db: AsyncSession, user_id: str) -> FlowSummary:
        result = await db.execute(_FLOW_SUMMARY_SQL, {"user_id": user_id})
        row = result.fetchone()
        if row is None:
            return FlowSummary()
        return FlowSummary(
            received_recharge=to_amount(row.received_recharge),
            received_withdraw=to_amount(row.received_withdraw),
            issued_recharge=to_amount(row.issued_recharge),
            issued_withdraw=to_amount(row.issued_withdraw),
            flow_count=row.flow_count,
        )

    async def get_balance_aggregates(
        self, db: AsyncSession, user_id: str
    ) -> BalanceAggregates:
        result = await db.execute(_BALANCE_AGGREGATES_SQL, {"user_id": user_id})
        row = result.fetchone()
        if row is None:
            return BalanceAggregates()
        return BalanceAggregates(
            recharge_net=to_amount(row.recharge_net),
            consumption_sum=to_amount(row.consumption_sum),
            provisioned_sum=to_amount(row.provisioned_sum),
            open_card_consumption_sum=to_amount(row.open_card_consumption_sum),
        )

    async def list_daily_consumption(
        self, db: AsyncSession, user_id: str, since: datetime, tz_name: str
    ) -> list[DailyConsumption]:
        result = await db.execute(
            _DAILY_CONSUMPTION_SQL,
            {"user_id": user_id, "since": since, "tz_name": tz_name},
        )
        return [
            DailyConsumption(day=row.day, amount=to_amount(row.amount), count=row.txn_count)
            for row in result.fetchall()
        ]

    async def insert_operation_log(
        self,
        db: AsyncSession,
        card_id: str,
        card_no: str | None,
        operation_type: str,
        amount: Decimal,
        currency: str,
        operator_id: str,
        operator_name: str | None,
        description: str | None,
    ) -> OperationLog:
        result = await db.execute(
            _INSERT_OPERATION_LOG_SQL,
            {
                "card_id": card_id,
                "card_no": card_no,
                "operation_type": operation_type,
                "amount": signed_card_operation_amount(operation_type, amount),
                "currency": currency,
                "operator_id": operator_id,
                "operator_name": operator_name,
                "description": description,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Operation log insert returned no rows")
        return _row_to_operation_log(row)

    async def list_operation_logs(
        self,
        db: AsyncSession,
        owner_id: str | None,
        cursor_id: int | None,
        limit: int,
        card_id: str | None = None,
        card_no: str | None = None,
        operation_type: str | None = None,
        card_status: str | None = None,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
    ) -> list[OperationLog]:
        result = await db.execute(
            _LIST_OPERATION_LOGS_SQL,
            {
                "owner_id": owner_id,
                "cursor_id": cursor_id,
                "limit": limit,
                "card_id": card_id,
                "card_no": card_no,
                "operation_type": operation_type,
                "card_status": card_status,
                "start_at": start_at,
                "end_at": end_at,
            },
        )
        return [_row_to_operation_log(row) for row in result.fetchall()]

    async def get_operation_stats(
        self,
        db: AsyncSession,
        owner_id: str | None,
        start_at: datetime | None,
        end_at: datetime | None,
    ) -> list[OperationStat]:
        result = await db.execute(
            _OPERATION_STATS_SQL,
            {"owner_id": owner_id, "start_at": start_at, "end_at": end_at},
        )
        return [
            OperationStat(
                operation_type=row.operation_type,
                count=row.op_count,
                total_amount=to_amount(row.total_amount),
            )
            for row in result.fetchall()
        ]

    async def get_admin_activity(
        self, db: AsyncSession, admin_id: str, recent_limit: int
    ) -> AdminActivity:
        result = await db.execute(_ADMIN_ACTIVITY_SQL, {"admin_id": admin_id})
        row = result.fetchone()
        recent = await db.execute(
            _RECENT_OPERATOR_FLOWS_SQL, {"operator_id": admin_id, "limit": recent_limit}
        )
        flows = [_row_to_flow(r) for r in recent.fetchall()]
        if row is None:
            return AdminActivity(recent_flows=flows)
        return AdminActivity(
            managed_users=row.managed_users,
            total_operations=row.total_operations,
            recharge_count=row.recharge_count,
            withdraw_count=row.withdraw_count,
            recent_flows=flows,
        )
