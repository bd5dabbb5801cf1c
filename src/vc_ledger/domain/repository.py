"""Repository Protocol — dependency inversion for testability.

Unit tests inject a mock or an in-memory fake that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

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


class LedgerRepositoryProtocol(Protocol):
    # --- users ---
    async def get_user(self, db: AsyncSession, user_id: str) -> User | None: ...

    async def lock_user(self, db: AsyncSession, user_id: str) -> User | None:
        """Row-lock the user for the rest of the transaction (check-then-act guard)."""
        ...

    async def update_cached_balance(
        self, db: AsyncSession, user_id: str, balance: Decimal
    ) -> None: ...

    async def list_user_ids(self, db: AsyncSession) -> list[str]: ...

    # --- account flows ---
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
    ) -> AccountFlow: ...

    async def sum_flow_balance(self, db: AsyncSession, user_id: str) -> Decimal: ...

    async def list_flows(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: int | None,
        limit: int,
        operation_type: str | None,
    ) -> list[AccountFlow]: ...

    async def get_flow_summary(self, db: AsyncSession, user_id: str) -> FlowSummary: ...

    # --- projections ---
    async def get_balance_aggregates(
        self, db: AsyncSession, user_id: str
    ) -> BalanceAggregates: ...

    async def list_daily_consumption(
        self, db: AsyncSession, user_id: str, since: datetime, tz_name: str
    ) -> list[DailyConsumption]: ...

    # --- card operation log ---
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
        """`amount` is unsigned; the stored sign comes from `operation_type`."""
        ...

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
        """Newest first; `owner_id` keeps the cards that user created."""
        ...

    async def get_operation_stats(
        self,
        db: AsyncSession,
        owner_id: str | None,
        start_at: datetime | None,
        end_at: datetime | None,
    ) -> list[OperationStat]: ...

    # --- admin activity ---
    async def get_admin_activity(
        self, db: AsyncSession, admin_id: str, recent_limit: int
    ) -> AdminActivity: ...
