"""OperationLogReader — the card operation audit trail and its per-type totals.

Non-super-admins see the logs of cards they created (including SYSTEM
auto-withdrawals on those cards); admins may name a direct child.
Date filters are local days in the operational timezone.
"""

from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_common.datetime_utils import local_day_range
from src.vc_common.enums import CardOperationType, CardStatus
from src.vc_common.errors import InvalidRequestError
from src.vc_common.pagination import cursor_decode, cursor_encode
from src.vc_ledger.application.ledger import resolve_view_scope
from src.vc_ledger.application.schemas import (
    OperationLogItem,
    OperationLogListResponse,
    OperationStatsResponse,
)
from src.vc_ledger.domain.models import User
from src.vc_ledger.domain.repository import LedgerRepositoryProtocol
from src.vc_ledger.infrastructure.persistence import LedgerRepository


def _date_bounds(
    start_date: date | None, end_date: date | None, tz_name: str
) -> tuple[datetime | None, datetime | None]:
    if start_date and end_date and end_date < start_date:
        raise InvalidRequestError("end_date must not be before start_date")
    start_at = local_day_range(start_date, start_date, tz_name)[0] if start_date else None
    end_at = local_day_range(end_date, end_date, tz_name)[1] if end_date else None
    return start_at, end_at


class OperationLogReader:
    def __init__(self, repo: LedgerRepositoryProtocol | None = None) -> None:
        self._repo: LedgerRepositoryProtocol = repo or LedgerRepository()

    async def list_logs(
        self,
        db: AsyncSession,
        viewer: User,
        tz_name: str,
        user_id: str | None = None,
        cursor: str | None = None,
        limit: int = 20,
        card_id: str | None = None,
        card_no: str | None = None,
        operation_type: CardOperationType | None = None,
        card_status: CardStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> OperationLogListResponse:
        owner_id = await resolve_view_scope(self._repo, db, viewer, user_id)
        start_at, end_at = _date_bounds(start_date, end_date, tz_name)
        # limit+1 to detect has_more without a COUNT(*) query
        logs = await self._repo.list_operation_logs(
            db,
            owner_id,
            cursor_decode(cursor),
            limit + 1,
            card_id=card_id,
            card_no=card_no,
            operation_type=operation_type.value if operation_type else None,
            card_status=card_status.value if card_status else None,
            start_at=start_at,
            end_at=end_at,
        )
        has_more = len(logs) > limit
        page = logs[:limit]
        return OperationLogListResponse(
            items=[OperationLogItem.from_domain(log) for log in page],
            next_cursor=cursor_encode(page[-1].id) if has_more and page else None,
            has_more=has_more,
        )

    async def get_stats(
        self,
        db: AsyncSession,
        viewer: User,
        tz_name: str,
        user_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> OperationStatsResponse:
        owner_id = await resolve_view_scope(self._repo, db, viewer, user_id)
        start_at, end_at = _date_bounds(start_date, end_date, tz_name)
        stats = await self._repo.get_operation_stats(db, owner_id, start_at, end_at)
        return OperationStatsResponse.from_domain(owner_id, start_date, end_date, stats)
