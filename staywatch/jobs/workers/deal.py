"""Deal-scan worker."""

import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from staywatch.adapters.registry import AdapterRegistry
from staywatch.db.session import AsyncSessionLocal
from staywatch.jobs.outcome import Outcome, Success
from staywatch.jobs.queues import Job
from staywatch.services.deals import scan_all_providers

logger = logging.getLogger(__name__)


class DealScanWorker:
    """Reads every enabled provider's offers page in one serial pass."""

    def __init__(self, registry: AdapterRegistry, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.registry = registry
        self.session_factory = session_factory

    async def __call__(self, job: Job) -> Outcome:
        providers = job.payload.get("providers")
        selected = providers if isinstance(providers, list) else None
        async with self.session_factory() as session:
            summary = await scan_all_providers(session, self.registry, selected)
        logger.info(
            f"Deal scan complete: {summary.providers_scanned} providers, "
            f"{summary.offers_seen} offers, {len(summary.errors)} errors"
        )
        return Success(summary)
