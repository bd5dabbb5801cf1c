"""SyncService — pulls date-ranged auth/settle lists from the provider.

Pages are fetched one at a time starting at 1 and stop at the first empty page.
Each page goes through the reconciler's batch path, so a re-pull of a range that
was already absorbed only increments `skipped`.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_provider.client import get_card_provider
from src.vc_provider.models import ListPage
from src.vc_provider.protocol import CardProviderProtocol
from src.vc_transaction.application.reconciler import CardTransactionReconciler
from src.vc_transaction.domain.models import SyncStats

logger = logging.getLogger(__name__)

# upper bound so a provider that never returns an empty page cannot spin forever
MAX_PAGES = 1000


class SyncService:
    def __init__(
        self,
        reconciler: CardTransactionReconciler | None = None,
        provider: CardProviderProtocol | None = None,
    ) -> None:
        self._reconciler = reconciler or CardTransactionReconciler()
        self._provider = provider

    @property
    def provider(self) -> CardProviderProtocol:
        return self._provider or get_card_provider()

    async def sync_auth(
        self, db: AsyncSession, date_start: str, date_end: str, card_id: str | None = None
    ) -> SyncStats:
        stats = SyncStats()
        for page in range(1, MAX_PAGES + 1):
            result = await self._fetch(
                "auth", page, self.provider.get_auth_list(date_start, date_end, page, card_id)
            )
            if result is None:
                stats.errors += 1
                break
            if not result.items:
                break
            stats.add(await self._reconciler.process_auth_list(db, result.items, result.key_list))
        logger.info("Auth sync %s..%s finished: %s", date_start, date_end, stats.as_dict())
        return stats

    async def sync_settle(self, db: AsyncSession, date_start: str, date_end: str) -> SyncStats:
        stats = SyncStats()
        for page in range(1, MAX_PAGES + 1):
            result = await self._fetch(
                "settle", page, self.provider.get_settle_list(date_start, date_end, page)
            )
            if result is None:
                stats.errors += 1
                break
            if not result.items:
                break
            stats.add(
                await self._reconciler.process_settle_list(db, result.items, result.key_list)
            )
        logger.info("Settle sync %s..%s finished: %s", date_start, date_end, stats.as_dict())
        return stats

    @staticmethod
    async def _fetch(kind: str, page: int, call) -> ListPage | None:  # type: ignore[no-untyped-def]
        try:
            return await call
        except Exception:
            logger.exception("Fetching %s list page %d failed; stopping this run", kind, page)
            return None
