"""AccountFlowLedger — append-only money movement between users.

balance(U) = Σ amount(target = U) − Σ amount(operator = U)

Sign normalisation happens in `record_flow` only; callers always pass an
unsigned amount. The cached `users.balance` column is rewritten after every
flow but is never read for gating decisions (BalanceProjector is).

Admin balance operations run as one transaction: lock both users (id order),
policy check, balance gate, insert flow, refresh cached balances, commit.
"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_common.enums import FlowBusinessType, FlowOperationType, UserRole, UserStatus
from src.vc_common.errors import UserInactiveError, UserNotFoundError
from src.vc_common.money import to_amount
from src.vc_common.pagination import cursor_decode, cursor_encode
from src.vc_ledger.application.projector import BalanceProjector
from src.vc_ledger.application.schemas import (
    AccountFlowItem,
    AccountFlowListResponse,
    AdminDashboardResponse,
    BalanceOperationResponse,
    FlowSummaryResponse,
)
from src.vc_ledger.domain.balance import signed_flow_amount
from src.vc_ledger.domain.models import AccountFlow, User
from src.vc_ledger.domain.policy import Action, require
from src.vc_ledger.domain.repository import LedgerRepositoryProtocol
from src.vc_ledger.infrastructure.persistence import LedgerRepository

logger = logging.getLogger(__name__)

RECENT_OPERATIONS_LIMIT = 10


async def resolve_view_scope(
    repo: LedgerRepositoryProtocol, db: AsyncSession, viewer: User, user_id: str | None
) -> str | None:
    """User id a read is limited to, or None when a super admin names nobody."""
    if user_id is None and viewer.role == UserRole.SUPER_ADMIN:
        return None
    target = viewer
    if user_id is not None and user_id != viewer.id:
        found = await repo.get_user(db, user_id)
        if found is None:
            raise UserNotFoundError(user_id)
        target = found
    require(viewer, target, Action.VIEW_BALANCE)
    return target.id


class AccountFlowLedger:
    def __init__(
        self,
        repo: LedgerRepositoryProtocol | None = None,
        projector: BalanceProjector | None = None,
    ) -> None:
        self._repo: LedgerRepositoryProtocol = repo or LedgerRepository()
        self._projector = projector or BalanceProjector(self._repo)

    # ------------------------------------------------------------------
    # Core ledger
    # ------------------------------------------------------------------

    async def record_flow(
        self,
        db: AsyncSession,
        operator_id: str,
        target_user_id: str,
        operation_type: FlowOperationType | str,
        amount: Decimal,
        description: str | None = None,
        business_type: str | None = None,
        business_id: str | None = None,
        currency: str = "USD",
    ) -> AccountFlow:
        """Insert one flow and refresh the cached balances it touches.

        Does not commit; the caller owns the transaction.
        """
        op = FlowOperationType(operation_type)
        flow = await self._repo.insert_flow(
            db,
            operator_id=operator_id,
            target_user_id=target_user_id,
            operation_type=op.value,
            amount=signed_flow_amount(op.value, amount),
            currency=currency,
            description=description,
            business_type=business_type,
            business_id=business_id,
        )
        await self.refresh_cached_balance(db, target_user_id)
        if operator_id != target_user_id:
            await self.refresh_cached_balance(db, operator_id)
        logger.info(
            "Flow %s recorded: %s %s operator=%s target=%s",
            flow.id,
            op.value,
            flow.amount,
            operator_id,
            target_user_id,
        )
        return flow

    async def compute_balance(self, db: AsyncSession, user_id: str) -> Decimal:
        return await self._repo.sum_flow_balance(db, user_id)

    async def refresh_cached_balance(self, db: AsyncSession, user_id: str) -> Decimal:
        balance = await self.compute_balance(db, user_id)
        await self._repo.update_cached_balance(db, user_id, balance)
        return balance

    async def refresh_all_balances(self, db: AsyncSession) -> int:
        try:
            user_ids = await self._repo.list_user_ids(db)
            for user_id in user_ids:
                await self.refresh_cached_balance(db, user_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Refreshed cached balance for %d users", len(user_ids))
        return len(user_ids)

    # ------------------------------------------------------------------
    # Admin balance operations (gated)
    # ------------------------------------------------------------------

    async def recharge(
        self,
        db: AsyncSession,
        actor: User,
        target_user_id: str,
        amount: Decimal,
        description: str | None = None,
    ) -> BalanceOperationResponse:
        """Move `amount` from the actor to the target."""
        return await self._balance_operation(
            db, actor, target_user_id, FlowOperationType.RECHARGE, amount, description
        )

    async def withdraw(
        self,
        db: AsyncSession,
        actor: User,
        target_user_id: str,
        amount: Decimal,
        description: str | None = None,
    ) -> BalanceOperationResponse:
        """Move `amount` from the target back to the actor."""
        return await self._balance_operation(
            db, actor, target_user_id, FlowOperationType.WITHDRAW, amount, description
        )

    async def _balance_operation(
        self,
        db: AsyncSession,
        actor: User,
        target_user_id: str,
        operation_type: FlowOperationType,
        amount: Decimal,
        description: str | None,
    ) -> BalanceOperationResponse:
        amount = to_amount(amount)
        is_deposit = operation_type == FlowOperationType.RECHARGE
        try:
            locked = await self._lock_users(db, [actor.id, target_user_id])
            target = locked[target_user_id]
            require(
                actor,
                target,
                Action.BALANCE_DEPOSIT if is_deposit else Action.BALANCE_WITHDRAW,
            )
            if target.status != UserStatus.ACTIVE:
                raise UserInactiveError(target_user_id)

            if is_deposit:
                # SUPER_ADMIN is the root of the float and may go negative
                if actor.role != UserRole.SUPER_ADMIN:
                    await self._projector.ensure_available(db, actor.id, amount)
            else:
                await self._projector.ensure_available(db, target_user_id, amount)

            flow = await self.record_flow(
                db,
                operator_id=actor.id,
                target_user_id=target_user_id,
                operation_type=operation_type,
                amount=amount,
                description=description,
                business_type=(
                    FlowBusinessType.USER_RECHARGE.value
                    if is_deposit
                    else FlowBusinessType.USER_WITHDRAW.value
                ),
            )
            target_balance = await self.compute_balance(db, target_user_id)
            operator_balance = await self.compute_balance(db, actor.id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return BalanceOperationResponse.from_result(flow, target_balance, operator_balance)

    async def _lock_users(self, db: AsyncSession, user_ids: list[str]) -> dict[str, User]:
        """Row-lock every user in a fixed order so concurrent operations cannot deadlock."""
        locked: dict[str, User] = {}
        for user_id in sorted(set(user_ids)):
            user = await self._repo.lock_user(db, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            locked[user_id] = user
        return locked

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def authorize(
        self, db: AsyncSession, actor: User, user_id: str | None, action: Action
    ) -> User:
        """Resolve the user a read/refresh targets (default: the actor) and check policy."""
        if user_id is None or user_id == actor.id:
            target = actor
        else:
            found = await self._repo.get_user(db, user_id)
            if found is None:
                raise UserNotFoundError(user_id)
            target = found
        require(actor, target, action)
        return target

    async def list_flows(
        self,
        db: AsyncSession,
        user_id: str,
        cursor: str | None,
        limit: int,
        operation_type: str | None,
    ) -> AccountFlowListResponse:
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        flows = await self._repo.list_flows(db, user_id, cursor_id, limit + 1, operation_type)
        has_more = len(flows) > limit
        page = flows[:limit]
        next_cursor = cursor_encode(page[-1].id) if has_more and page else None
        return AccountFlowListResponse(
            items=[AccountFlowItem.from_domain(f) for f in page],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def get_flow_summary(self, db: AsyncSession, user_id: str) -> FlowSummaryResponse:
        summary = await self._repo.get_flow_summary(db, user_id)
        return FlowSummaryResponse.from_domain(user_id, summary)

    async def get_admin_dashboard(
        self, db: AsyncSession, actor: User, user_id: str | None = None
    ) -> AdminDashboardResponse:
        """Managed users and the flows the admin operated, newest first."""
        target = await self.authorize(db, actor, user_id, Action.ADMIN_DASHBOARD)
        activity = await self._repo.get_admin_activity(db, target.id, RECENT_OPERATIONS_LIMIT)
        return AdminDashboardResponse.from_domain(target.id, activity)
