"""Alert worker."""

import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from staywatch.db.session import AsyncSessionLocal
from staywatch.jobs.outcome import Outcome, Success
from staywatch.jobs.queues import Job
from staywatch.services.alerts import AlertService

logger = logging.getLogger(__name__)


class AlertWorker:
    """Delivery failures are recorded on the alert row and never retried."""

    def __init__(self, service: AlertService, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.service = service
        self.session_factory = session_factory

    async def __call__(self, job: Job) -> Outcome:
        insight_id = int(job.payload["insight_id"])
        user_id = int(job.payload["user_id"])
        async with self.session_factory() as session:
            alert = await self.service.process(session, insight_id, user_id)
        return Success(alert.status if alert else "suppressed")
