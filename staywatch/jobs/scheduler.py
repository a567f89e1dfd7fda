"""Periodic selection of due fingerprints."""

import logging
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staywatch import metrics
from staywatch.config import settings
from staywatch.db.models import Fingerprint
from staywatch.db.session import AsyncSessionLocal
from staywatch.jobs.queues import JobQueues

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"


def is_due(fingerprint: Fingerprint, now: datetime) -> bool:
    if not fingerprint.enabled:
        return False
    if fingerprint.last_scheduled_at is None:
        return True
    frequency = fingerprint.check_frequency_hours or settings.default_check_frequency_hours
    return fingerprint.last_scheduled_at < now - timedelta(hours=frequency)


async def find_due_fingerprints(session: AsyncSession, now: datetime) -> list[Fingerprint]:
    """
    Enabled fingerprints never scheduled, or last scheduled longer ago than their frequency.

    One cutoff per distinct frequency; the filtering itself runs in the database.
    """
    frequency = func.coalesce(
        func.nullif(Fingerprint.check_frequency_hours, 0), settings.default_check_frequency_hours
    )
    hours = await session.execute(select(frequency).where(Fingerprint.enabled.is_(True)).distinct())
    overdue = [
        and_(frequency == h, Fingerprint.last_scheduled_at < now - timedelta(hours=h))
        for h in hours.scalars().all()
    ]

    result = await session.execute(
        select(Fingerprint)
        .where(
            Fingerprint.enabled.is_(True),
            or_(Fingerprint.last_scheduled_at.is_(None), *overdue),
        )
        .order_by(Fingerprint.id)
    )
    return list(result.scalars().all())


class MonitorScheduler:
    """
    Runs a check cycle immediately on start and then every
    ``scheduler_interval_hours``.

    A cycle enqueues a monitor job per due fingerprint and one daily deal
    scan. A failing cycle is logged and the next tick runs normally.
    """

    def __init__(
        self,
        queues: JobQueues,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        interval_hours: Optional[float] = None,
    ):
        self.queues = queues
        self.session_factory = session_factory
        self.interval_hours = interval_hours or settings.scheduler_interval_hours
        self.state = SchedulerState.IDLE
        self._scheduler: Optional[AsyncIOScheduler] = None

    def start(self) -> None:
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_check,
            IntervalTrigger(hours=self.interval_hours),
            id="monitor_check",
            name="Schedule due fingerprints",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Scheduler started: check every {self.interval_hours}h")

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")

    async def run_check(self, now: Optional[datetime] = None) -> int:
        """
        Run one scheduling cycle.

        Returns:
            Number of monitor jobs enqueued (0 if the cycle was skipped or failed)
        """
        if self.state == SchedulerState.RUNNING:
            logger.warning("Check cycle already running, skipping")
            return 0

        self.state = SchedulerState.RUNNING
        now = now or datetime.utcnow()
        started = time.perf_counter()
        enqueued = 0
        try:
            async with self.session_factory() as session:
                due = await find_due_fingerprints(session, now)
                metrics.fingerprints_due.set(len(due))
                for fingerprint in due:
                    if await self.queues.enqueue_monitor(fingerprint.id, now):
                        enqueued += 1
                    fingerprint.last_scheduled_at = now
                await session.commit()

            await self.queues.enqueue_deal_scan(now)

            metrics.scheduler_runs_total.labels(status="success").inc()
            metrics.scheduler_last_run_timestamp.set(time.time())
            logger.info(
                f"Check cycle: {len(due)} due, {enqueued} monitor jobs enqueued "
                f"in {time.perf_counter() - started:.2f}s"
            )
        except Exception as e:
            metrics.scheduler_runs_total.labels(status="failed").inc()
            logger.error(f"Check cycle failed: {e}", exc_info=True)
            enqueued = 0
        finally:
            self.state = SchedulerState.IDLE
        return enqueued
