"""BalanceProjector — the single place that answers "what can this user spend now".

Reads the ledger, the operation log and the transaction table through the
repository and applies `compute_dashboard`. Gated write paths call
`ensure_available` inside their own transaction, after locking the user row.
"""

import logging
from datetime import datetime, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_common.errors import InsufficientBalanceError
from src.vc_common.money import to_amount
from src.vc_ledger.domain.balance import compute_dashboard
from src.vc_ledger.domain.models import ConsumptionTrend, DailyConsumption, DashboardData
from src.vc_ledger.domain.repository import LedgerRepositoryProtocol
from src.vc_ledger.infrastructure.persistence import LedgerRepository

logger = logging.getLogger(__name__)


class BalanceProjector:
    def __init__(self, repo: LedgerRepositoryProtocol | None = None) -> None:
        self._repo: LedgerRepositoryProtocol = repo or LedgerRepository()

    async def get_dashboard_data(self, db: AsyncSession, user_id: str) -> DashboardData:
        aggregates = await self._repo.get_balance_aggregates(db, user_id)
        return compute_dashboard(aggregates)

    async def ensure_available(
        self, db: AsyncSession, user_id: str, amount: Decimal
    ) -> DashboardData:
        """Raise InsufficientBalanceError if `amount` exceeds the available amount."""
        required = to_amount(amount)
        data = await self.get_dashboard_data(db, user_id)
        if required > data.available_amount:
            logger.info(
                "Balance gate rejected user=%s required=%s available=%s",
                user_id,
                required,
                data.available_amount,
            )
            raise InsufficientBalanceError(required, data.available_amount)
        return data

    async def get_consumption_trend(
        self, db: AsyncSession, user_id: str, days: int, tz_name: str
    ) -> ConsumptionTrend:
        """Per-day consumption for the last `days` local days, zero-filled."""
        tz = ZoneInfo(tz_name)
        today = datetime.now(tz).date()
        first_day = today - timedelta(days=days - 1)
        since = datetime.combine(first_day, time.min, tzinfo=tz)

        rows = await self._repo.list_daily_consumption(db, user_id, since, tz_name)
        by_day = {row.day: row for row in rows}
        return ConsumptionTrend(
            days=[
                by_day.get(day, DailyConsumption(day=day))
                for day in (first_day + timedelta(days=i) for i in range(days))
            ]
        )
