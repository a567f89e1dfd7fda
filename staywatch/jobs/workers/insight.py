"""Insight worker: run the detectors for a fingerprint and queue alerts."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from staywatch.db.models import Fingerprint, HolidayProfile
from staywatch.db.session import AsyncSessionLocal
from staywatch.jobs.outcome import FatalError, Outcome, RetryableError, Success
from staywatch.jobs.queues import Job, JobQueues
from staywatch.services.insights import InsightService

logger = logging.getLogger(__name__)


class InsightWorker:
    """Stores new insights for a fingerprint and queues one alert job per new insight."""

    def __init__(
        self,
        queues: JobQueues,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        service: Optional[InsightService] = None,
    ):
        self.queues = queues
        self.session_factory = session_factory
        self.service = service or InsightService()

    async def __call__(self, job: Job) -> Outcome:
        return await self.run(int(job.payload["fingerprint_id"]))

    async def run(self, fingerprint_id: int) -> Outcome:
        async with self.session_factory() as session:
            fingerprint = await session.get(Fingerprint, fingerprint_id)
            if fingerprint is None:
                return FatalError(f"Fingerprint not found: {fingerprint_id}")

            try:
                insights = await self.service.analyze_fingerprint(session, fingerprint_id)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Insight analysis failed for fingerprint {fingerprint_id}: {e}")
                return RetryableError(str(e))

            profile = await session.get(HolidayProfile, fingerprint.profile_id)
            insight_ids = [insight.id for insight in insights]

        if profile is None:
            return FatalError(f"Profile not found for fingerprint {fingerprint_id}")

        for insight_id in insight_ids:
            await self.queues.enqueue_alert(insight_id, profile.user_id)

        logger.info(f"Fingerprint {fingerprint_id}: {len(insight_ids)} new insights")
        return Success(len(insight_ids))
