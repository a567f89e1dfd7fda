"""Tests for the monitor and insight workers."""

from datetime import date, datetime
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from staywatch.db.models import FetchRun, Fingerprint, Insight, Observation
from staywatch.errors import ProviderDisabledError, ProviderTimeoutError
from staywatch.jobs.outcome import FatalError, RetryableError, Success
from staywatch.jobs.queues import ALERT_QUEUE, INSIGHT_QUEUE, Job, MONITOR_QUEUE
from staywatch.jobs.workers.insight import InsightWorker
from staywatch.jobs.workers.monitor import MonitorWorker, observation_values
from staywatch.matching import MatchResult, MatchVerdict
from tests.factories import make_candidate, make_fingerprint

NOW = datetime(2024, 3, 1, 9, 30)


async def _add_fingerprint(session, profile, **overrides):
    fingerprint = make_fingerprint(profile, **overrides)
    session.add(fingerprint)
    await session.commit()
    return fingerprint


async def _rows(session_factory, model):
    async with session_factory() as session:
        result = await session.execute(select(model).order_by(model.id))
        return list(result.scalars().all())


class TestMonitorWorker:
    """Test cases for MonitorWorker.run()."""

    @pytest.mark.asyncio
    async def test_stores_only_strong_matches(self, db_session, profile, stub_adapter, registry, queues, backend, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile)
        stub_adapter.candidates = [
            make_candidate(),
            make_candidate(park_id="marton-mere", price_total=Decimal("749.50")),
            make_candidate(stay_start_date=date(2024, 7, 8)),
            make_candidate(bedrooms=None),
        ]

        outcome = await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        assert outcome == Success(2)
        observations = await _rows(session_factory, Observation)
        assert [o.price_total for o in observations] == [Decimal("899.00"), Decimal("749.50")]
        assert observations[0].price_per_night == Decimal("128.43")
        assert observations[0].series_key != observations[1].series_key

        run = (await _rows(session_factory, FetchRun))[0]
        assert run.status == "OK"
        assert run.run_type == "SEARCH"
        assert run.candidates_count == 4
        assert run.matched_count == 2
        assert run.finished_at is not None

        assert [job.payload for job in backend.pending(INSIGHT_QUEUE)] == [{"fingerprint_id": fingerprint.id}]

    @pytest.mark.asyncio
    async def test_runs_automated_search(self, db_session, profile, stub_adapter, registry, queues, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile)
        stub_adapter.candidates = [make_candidate()]

        await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        intent, automated = stub_adapter.search_calls[0]
        assert automated is True
        assert intent.stay_start == date(2024, 7, 1)
        assert intent.stay_nights == 7

    @pytest.mark.asyncio
    async def test_zero_candidates_is_parse_failed(self, db_session, profile, registry, queues, backend, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile)

        outcome = await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        assert isinstance(outcome, Success)
        run = (await _rows(session_factory, FetchRun))[0]
        assert run.status == "PARSE_FAILED"
        assert run.provider_status == "PARSE_FAILED"
        assert await _rows(session_factory, Observation) == []
        assert backend.pending(INSIGHT_QUEUE) == []

    @pytest.mark.asyncio
    async def test_disabled_provider_not_retried(self, db_session, profile, stub_adapter, registry, queues, backend, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile)
        stub_adapter.enabled = False

        outcome = await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        assert isinstance(outcome, Success)
        assert stub_adapter.search_calls == []
        run = (await _rows(session_factory, FetchRun))[0]
        assert (run.status, run.provider_status) == ("ERROR", "BLOCKED")
        assert backend.pending(INSIGHT_QUEUE) == []

    @pytest.mark.asyncio
    async def test_disabled_during_search(self, db_session, profile, stub_adapter, registry, queues, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile)
        stub_adapter.error = ProviderDisabledError("haven")

        outcome = await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        assert isinstance(outcome, Success)
        run = (await _rows(session_factory, FetchRun))[0]
        assert run.provider_status == "BLOCKED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,expected",
        [
            (ProviderTimeoutError("Request timed out"), "TIMEOUT"),
            (RuntimeError("HTTP 403 Forbidden"), "BLOCKED"),
            (RuntimeError("connection reset"), "FETCH_FAILED"),
        ],
    )
    async def test_search_failure_is_retryable(self, db_session, profile, stub_adapter, registry, queues, backend, session_factory, error, expected):
        fingerprint = await _add_fingerprint(db_session, profile)
        stub_adapter.error = error

        outcome = await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        assert isinstance(outcome, RetryableError)
        run = (await _rows(session_factory, FetchRun))[0]
        assert run.status == "ERROR"
        assert run.provider_status == expected
        assert run.error_message
        assert backend.pending(INSIGHT_QUEUE) == []

    @pytest.mark.asyncio
    async def test_http_status_recorded(self, db_session, profile, stub_adapter, registry, queues, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile)
        request = httpx.Request("GET", "https://haven.example.com/search")
        stub_adapter.error = httpx.HTTPStatusError(
            "Too many requests", request=request, response=httpx.Response(429, request=request)
        )

        await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        run = (await _rows(session_factory, FetchRun))[0]
        assert run.http_status == 429
        assert run.provider_status == "BLOCKED"

    @pytest.mark.asyncio
    async def test_unknown_provider_is_fatal(self, db_session, profile, registry, queues, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile, provider_code="nowhere")

        outcome = await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        assert isinstance(outcome, FatalError)
        assert await _rows(session_factory, FetchRun) == []

    @pytest.mark.asyncio
    async def test_missing_fingerprint_is_fatal(self, registry, queues, session_factory):
        outcome = await MonitorWorker(registry, queues, session_factory).run(12345, now=NOW)

        assert isinstance(outcome, FatalError)

    @pytest.mark.asyncio
    async def test_job_id_recorded_as_request_id(self, db_session, profile, stub_adapter, registry, queues, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile)
        stub_adapter.candidates = [make_candidate()]
        job = Job(id="f" * 64, queue=MONITOR_QUEUE, payload={"fingerprint_id": fingerprint.id})

        await MonitorWorker(registry, queues, session_factory)(job)

        run = (await _rows(session_factory, FetchRun))[0]
        assert run.request_id == "f" * 64

    @pytest.mark.asyncio
    async def test_marks_fingerprint_scheduled(self, db_session, profile, stub_adapter, registry, queues, session_factory):
        fingerprint = await _add_fingerprint(db_session, profile)
        stub_adapter.candidates = [make_candidate()]

        await MonitorWorker(registry, queues, session_factory).run(fingerprint.id, now=NOW)

        stored = (await _rows(session_factory, Fingerprint))[0]
        assert stored.last_scheduled_at == NOW


def test_observation_values_reject_non_positive_price():
    match = MatchResult(MatchVerdict.STRONG, series_key="k" * 64)

    with pytest.raises(ValueError):
        observation_values(make_candidate(price_total=Decimal("0")), match)


def test_observation_values_require_series_key():
    with pytest.raises(ValueError):
        observation_values(make_candidate(), MatchResult(MatchVerdict.STRONG))


@pytest.mark.asyncio
async def test_insight_worker_queues_alerts(db_session, profile, stub_adapter, registry, queues, backend, session_factory):
    fingerprint = await _add_fingerprint(db_session, profile)
    monitor = MonitorWorker(registry, queues, session_factory)
    for day, price in enumerate([500, 500, 500, 500, 420]):
        stub_adapter.candidates = [make_candidate(price_total=Decimal(price))]
        await monitor.run(fingerprint.id, now=datetime(2024, 3, 1 + day, 9))

    outcome = await InsightWorker(queues, session_factory).run(fingerprint.id)

    assert outcome == Success(2)
    insights = await _rows(session_factory, Insight)
    alert_jobs = backend.pending(ALERT_QUEUE)
    assert sorted(job.payload["insight_id"] for job in alert_jobs) == [i.id for i in insights]
    assert all(job.payload["user_id"] == profile.user_id for job in alert_jobs)

    # Unchanged observations produce no new insights or alerts
    assert await InsightWorker(queues, session_factory).run(fingerprint.id) == Success(0)
    assert len(backend.pending(ALERT_QUEUE)) == 2


@pytest.mark.asyncio
async def test_insight_worker_missing_fingerprint(queues, session_factory):
    assert isinstance(await InsightWorker(queues, session_factory).run(777), FatalError)
