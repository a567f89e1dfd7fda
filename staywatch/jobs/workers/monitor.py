"""Monitor worker: search one fingerprint's provider and store matched prices."""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staywatch import metrics
from staywatch.adapters.base import RawCandidate
from staywatch.adapters.registry import AdapterRegistry
from staywatch.db.models import (
    Availability,
    FetchRun,
    Fingerprint,
    Observation,
    ProviderStatus,
    RunStatus,
    RunType,
)
from staywatch.db.session import AsyncSessionLocal
from staywatch.errors import ProviderDisabledError, ProviderNotFoundError
from staywatch.jobs.outcome import FatalError, Outcome, RetryableError, Success
from staywatch.jobs.queues import Job, JobQueues
from staywatch.logging_config import get_logger
from staywatch.matching import MatchResult, MatchVerdict, evaluate_candidate
from staywatch.services.fingerprints import intent_from_payload
from staywatch.services.taxonomy import classify_failure, http_status_of

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def observation_values(candidate: RawCandidate, match: MatchResult) -> dict:
    """
    Column values for one matched candidate.

    Raises:
        ValueError: If the candidate cannot be stored as an observation
    """
    if match.series_key is None:
        raise ValueError("matched candidate has no series key")
    stay_date = candidate.stay_start_date
    if not isinstance(stay_date, date):
        stay_date = date.fromisoformat(str(stay_date)[:10])
    nights = int(candidate.stay_nights)
    price = Decimal(str(candidate.price_total)).quantize(CENTS)
    if price <= 0 or nights <= 0:
        raise ValueError(f"invalid price {price} or nights {nights}")
    availability = getattr(candidate.availability, "value", candidate.availability) or Availability.UNKNOWN.value
    return {
        "series_key": match.series_key,
        "stay_start_date": stay_date,
        "stay_nights": nights,
        "price_total": price,
        "price_per_night": (price / nights).quantize(CENTS),
        "availability": availability,
        "accom_type": candidate.accom_type,
        "source_url": candidate.source_url,
    }


class MonitorWorker:
    """
    Handles monitor jobs.

    Outcomes:
    - provider disabled: run recorded as ERROR/BLOCKED, Success (no retry)
    - fingerprint missing or provider unknown: FatalError
    - zero candidates: run PARSE_FAILED, no insight job
    - any other failure: run ERROR with the failure taxonomy, RetryableError
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        queues: JobQueues,
        session_factory: async_sessionmaker = AsyncSessionLocal,
    ):
        self.registry = registry
        self.queues = queues
        self.session_factory = session_factory

    async def __call__(self, job: Job) -> Outcome:
        return await self.run(int(job.payload["fingerprint_id"]), request_id=job.id)

    async def run(
        self,
        fingerprint_id: int,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome:
        now = now or datetime.utcnow()
        async with self.session_factory() as session:
            fingerprint = await session.get(Fingerprint, fingerprint_id)
            if fingerprint is None:
                return FatalError(f"Fingerprint not found: {fingerprint_id}")

            try:
                adapter = self.registry.get_adapter(fingerprint.provider_code)
            except ProviderNotFoundError as e:
                return FatalError(str(e))

            log = get_logger(__name__, provider=adapter.code, fingerprint_id=fingerprint_id)
            run = FetchRun(
                fingerprint_id=fingerprint_id,
                provider_code=adapter.code,
                run_type=RunType.SEARCH.value,
                request_id=request_id[:64] if request_id else None,
                scheduled_for=now,
                started_at=datetime.utcnow(),
            )
            session.add(run)
            await session.commit()

            if not adapter.is_enabled():
                await self._finish(session, run, RunStatus.ERROR, ProviderStatus.BLOCKED, "Provider disabled")
                log.info(f"Skipped fingerprint {fingerprint_id}: provider {adapter.code} disabled")
                return Success("provider disabled")

            try:
                intent = intent_from_payload(fingerprint.canonical_payload)
                candidates = await adapter.search(intent, automated=True)
            except ProviderDisabledError:
                await self._finish(session, run, RunStatus.ERROR, ProviderStatus.BLOCKED, "Provider disabled")
                return Success("provider disabled")
            except Exception as e:
                return await self._fail(session, run, e, log)

            if not candidates:
                await self._finish(
                    session, run, RunStatus.PARSE_FAILED, ProviderStatus.PARSE_FAILED, "No candidates extracted"
                )
                log.warning(f"No candidates from {adapter.code} for fingerprint {fingerprint_id}")
                return Success("no results")

            try:
                stored = self._store_observations(session, fingerprint, run, candidates, intent, adapter.code, now)
                run.candidates_count = len(candidates)
                run.matched_count = stored
                fingerprint.last_scheduled_at = now
                await self._finish(session, run, RunStatus.OK, None, None)
            except Exception as e:
                await session.rollback()
                await session.refresh(run)
                return await self._fail(session, run, e, log)

            metrics.observations_stored_total.labels(provider=adapter.code).inc(stored)
            log.info(
                f"Fingerprint {fingerprint_id}: {len(candidates)} candidates, {stored} observations stored"
            )

        await self.queues.enqueue_insight(fingerprint_id, now)
        return Success(stored)

    def _store_observations(
        self,
        session: AsyncSession,
        fingerprint: Fingerprint,
        run: FetchRun,
        candidates: list[RawCandidate],
        intent,
        provider_code: str,
        observed_at: datetime,
    ) -> int:
        stored = 0
        for candidate in candidates:
            match = evaluate_candidate(candidate, intent, provider_code)
            metrics.candidates_classified_total.labels(provider=provider_code, verdict=match.verdict.value).inc()
            if match.verdict != MatchVerdict.STRONG:
                continue
            try:
                values = observation_values(candidate, match)
            except (ValueError, TypeError, ArithmeticError) as e:
                logger.warning(f"Skipping malformed candidate from {provider_code}: {e}")
                continue
            session.add(
                Observation(
                    fingerprint_id=fingerprint.id,
                    fetch_run_id=run.id,
                    observed_at=observed_at,
                    **values,
                )
            )
            stored += 1
        return stored

    async def _fail(self, session: AsyncSession, run: FetchRun, exc: Exception, log) -> Outcome:
        provider_status = classify_failure(exc)
        run.http_status = http_status_of(exc)
        await self._finish(session, run, RunStatus.ERROR, provider_status, str(exc)[:1000] or type(exc).__name__)
        log.error(f"Monitor run {run.id} failed ({provider_status.value}): {exc}")
        return RetryableError(f"{provider_status.value}: {exc}")

    async def _finish(
        self,
        session: AsyncSession,
        run: FetchRun,
        status: RunStatus,
        provider_status: Optional[ProviderStatus],
        error_message: Optional[str],
    ) -> None:
        run.status = status.value
        run.provider_status = provider_status.value if provider_status else None
        run.error_message = error_message
        run.finished_at = datetime.utcnow()
        await session.commit()
        metrics.fetch_runs_total.labels(
            run_type=run.run_type, status=run.status, provider_status=run.provider_status or ""
        ).inc()
