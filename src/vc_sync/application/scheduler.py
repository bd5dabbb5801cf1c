"""SyncScheduler — cron-driven provider sync plus the compensation recovery sweep.

Jobs (all in SYNC_TIMEZONE):
    auth-previous      yesterday's authorizations     SYNC_AUTH_PREVIOUS_CRON
    settle-previous    yesterday's settlements        SYNC_SETTLE_PREVIOUS_CRON
    auth-current       today's authorizations         SYNC_AUTH_CURRENT_CRON
    settle-current     today's settlements            SYNC_SETTLE_CURRENT_CRON
    compensation-recovery  re-dispatch stale PENDING auto-withdrawals (interval)

max_instances=1 keeps a slow run from overlapping itself; different jobs may run
concurrently and meet at the txn_id uniqueness guard.
"""

import logging
from dataclasses import dataclass
from datetime import date

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import settings
from src.vc_common.database import session_scope
from src.vc_common.datetime_utils import local_today, local_yesterday
from src.vc_common.enums import SyncType
from src.vc_common.errors import UnknownSyncJobError
from src.vc_sync.application.service import SyncService
from src.vc_transaction.application.dispatcher import (
    CompensationDispatcher,
    get_compensation_dispatcher,
)
from src.vc_transaction.domain.models import SyncStats

logger = logging.getLogger(__name__)

RECOVERY_JOB_ID = "compensation-recovery"


@dataclass(frozen=True)
class SyncJob:
    job_id: str
    name: str
    sync_type: SyncType
    previous_day: bool
    cron: str


def sync_jobs() -> dict[str, SyncJob]:
    return {
        job.job_id: job
        for job in (
            SyncJob("auth-previous", "daily-auth-sync-previous", SyncType.AUTH, True,
                    settings.SYNC_AUTH_PREVIOUS_CRON),
            SyncJob("settle-previous", "daily-settle-sync-previous", SyncType.SETTLE, True,
                    settings.SYNC_SETTLE_PREVIOUS_CRON),
            SyncJob("auth-current", "daily-auth-sync-current", SyncType.AUTH, False,
                    settings.SYNC_AUTH_CURRENT_CRON),
            SyncJob("settle-current", "daily-settle-sync-current", SyncType.SETTLE, False,
                    settings.SYNC_SETTLE_CURRENT_CRON),
        )
    }


class SyncScheduler:
    def __init__(
        self,
        sync_service: SyncService | None = None,
        dispatcher: CompensationDispatcher | None = None,
        session_factory=session_scope,  # type: ignore[no-untyped-def]
        enabled: bool | None = None,
    ) -> None:
        self._sync = sync_service or SyncService()
        self._dispatcher = dispatcher
        self._session_factory = session_factory
        self._enabled = settings.SYNC_SCHEDULER_ENABLED if enabled is None else enabled
        self._jobs = sync_jobs()
        self.scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
            timezone=settings.SYNC_TIMEZONE,
        )

    @property
    def dispatcher(self) -> CompensationDispatcher:
        return self._dispatcher or get_compensation_dispatcher()

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def setup_jobs(self) -> None:
        for job in self._jobs.values():
            self.scheduler.add_job(
                self._run_job,
                trigger=CronTrigger.from_crontab(job.cron, timezone=settings.SYNC_TIMEZONE),
                args=[job.job_id],
                id=job.job_id,
                name=job.name,
                replace_existing=True,
            )
            logger.info("Scheduled %s (%s) at '%s'", job.job_id, job.name, job.cron)

        self.scheduler.add_job(
            self._recover_compensations,
            trigger=IntervalTrigger(minutes=settings.COMPENSATION_RECOVERY_INTERVAL_MINUTES),
            id=RECOVERY_JOB_ID,
            name="compensation-recovery",
            replace_existing=True,
        )

    def start(self) -> None:
        if not self._enabled:
            logger.info("Sync scheduler disabled")
            return
        if self.scheduler.running:
            return
        self.setup_jobs()
        self.scheduler.start()
        logger.info("Sync scheduler started with %d jobs", len(self.scheduler.get_jobs()))

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync scheduler stopped")

    def get_status(self) -> dict:
        tasks = []
        for job in self.scheduler.get_jobs():
            # jobs added before start() have no next_run_time yet
            next_run = getattr(job, "next_run_time", None)
            tasks.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )
        return {
            "enabled": self._enabled,
            "running": self.running,
            "timezone": settings.SYNC_TIMEZONE,
            "task_count": len(tasks),
            "tasks": tasks,
        }

    async def trigger(self, job_name: str) -> SyncStats:
        """Run one sync job now, outside its schedule."""
        if job_name not in self._jobs:
            raise UnknownSyncJobError(job_name)
        return await self._run_job(job_name)

    async def run_manual(
        self,
        sync_type: SyncType | str,
        date_start: str,
        date_end: str,
        card_id: str | None = None,
    ) -> SyncStats:
        kind = SyncType(sync_type)
        logger.info("Manual %s sync %s..%s (card %s)", kind.value, date_start, date_end, card_id)
        async with self._session_factory() as db:
            if kind == SyncType.AUTH:
                return await self._sync.sync_auth(db, date_start, date_end, card_id)
            return await self._sync.sync_settle(db, date_start, date_end)

    async def _run_job(self, job_name: str) -> SyncStats:
        job = self._jobs[job_name]
        day: date = (
            local_yesterday(settings.SYNC_TIMEZONE)
            if job.previous_day
            else local_today(settings.SYNC_TIMEZONE)
        )
        day_str = day.isoformat()
        logger.info("Running %s for %s", job.name, day_str)
        async with self._session_factory() as db:
            if job.sync_type == SyncType.AUTH:
                stats = await self._sync.sync_auth(db, day_str, day_str)
            else:
                stats = await self._sync.sync_settle(db, day_str, day_str)
        logger.info("%s finished: %s", job.name, stats.as_dict())
        return stats

    async def _recover_compensations(self) -> None:
        try:
            await self.dispatcher.recover()
        except Exception:
            logger.exception("Compensation recovery sweep failed")


_scheduler: SyncScheduler | None = None


def get_sync_scheduler() -> SyncScheduler:
    global _scheduler  # noqa: PLW0603
    if _scheduler is None:
        _scheduler = SyncScheduler()
    return _scheduler
