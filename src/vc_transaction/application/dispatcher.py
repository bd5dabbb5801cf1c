"""CompensationDispatcher — runs auto-withdrawals off the request path.

Webhook handlers call `submit()` and return immediately. A fixed pool of worker
tasks drains an asyncio.Queue, each job in its own session. Nothing here is
durable: the PENDING marker on the row is, and `recover()` re-submits whatever
a restart dropped.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.vc_common.database import session_scope
from src.vc_common.datetime_utils import utc_now
from src.vc_transaction.application.compensator import AutoWithdrawalCompensator

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class CompensationDispatcher:
    def __init__(
        self,
        compensator: AutoWithdrawalCompensator | None = None,
        session_factory: SessionFactory = session_scope,
        workers: int | None = None,
    ) -> None:
        self._compensator = compensator or AutoWithdrawalCompensator()
        self._session_factory = session_factory
        self._worker_count = workers or settings.COMPENSATION_WORKERS
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"compensation-worker-{n}")
            for n in range(self._worker_count)
        ]
        logger.info("Compensation dispatcher started with %d workers", self._worker_count)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if not self._queue.empty():
            logger.warning(
                "Compensation dispatcher stopped with %d queued; recovery will resubmit",
                self._queue.qsize(),
            )
        logger.info("Compensation dispatcher stopped")

    def submit(self, txn_id: str) -> None:
        self._queue.put_nowait(txn_id)

    async def join(self) -> None:
        """Wait until every submitted job has been processed."""
        await self._queue.join()

    async def recover(self) -> int:
        """Re-submit PENDING rows older than the stale threshold."""
        older_than = utc_now() - timedelta(minutes=settings.COMPENSATION_STALE_MINUTES)
        async with self._session_factory() as db:
            pending = await self._compensator.recover_stale(db, older_than)
        for txn_id in pending:
            self.submit(txn_id)
        if pending:
            logger.info("Re-submitted %d pending auto-withdrawals", len(pending))
        return len(pending)

    async def _worker(self, n: int) -> None:
        while True:
            txn_id = await self._queue.get()
            try:
                async with self._session_factory() as db:
                    await self._compensator.process(db, txn_id)
            except Exception:
                logger.exception("Compensation worker %d failed on %s", n, txn_id)
            finally:
                self._queue.task_done()


_dispatcher: CompensationDispatcher | None = None


def get_compensation_dispatcher() -> CompensationDispatcher:
    """Get or create the process-wide dispatcher."""
    global _dispatcher  # noqa: PLW0603
    if _dispatcher is None:
        _dispatcher = CompensationDispatcher()
    return _dispatcher
