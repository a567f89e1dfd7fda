"""Tests for the search preview service and route."""

from datetime import date
from decimal import Decimal

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy import func, select

from staywatch.adapters.registry import AdapterRegistry
from staywatch.api.deps import get_database
from staywatch.api.routes import preview as preview_routes
from staywatch.config import settings
from staywatch.db.models import FetchRun, Insight, Observation
from staywatch.errors import (
    ProfileIncompleteError,
    ProfileNotFoundError,
    ProviderBlockedError,
    ProviderTimeoutError,
)
from staywatch.jobs.queues import ALL_QUEUES
from staywatch.matching import MatchVerdict
from staywatch.services.preview import (
    InlineProfile,
    PreviewMode,
    PreviewOptions,
    PreviewRequest,
    PreviewService,
    PreviewStatus,
    SortOrder,
)
from tests.factories import StubAdapter, make_candidate

INLINE = InlineProfile(
    adults=2,
    date_start=date(2024, 7, 1),
    nights_min=7,
    min_bedrooms=2,
    providers=["haven", "butlins"],
)


def _candidates():
    return [
        make_candidate(price_total=Decimal("950.00")),
        make_candidate(price_total=Decimal("720.00"), park_id="marton-mere"),
        make_candidate(price_total=Decimal("600.00"), bedrooms=None),
        make_candidate(price_total=Decimal("500.00"), stay_nights=4),
    ]


@pytest.fixture
def adapters():
    return {
        "haven": StubAdapter("haven", candidates=_candidates()),
        "butlins": StubAdapter("butlins", error=ProviderBlockedError("Disallowed by robots.txt")),
        "parkdean": StubAdapter("parkdean", enabled=False),
    }


@pytest.fixture
def service(adapters):
    return PreviewService(AdapterRegistry(adapters.values()))


async def _count(session, model):
    return await session.scalar(select(func.count()).select_from(model))


class TestPreviewService:
    """Test cases for PreviewService.run()."""

    @pytest.mark.asyncio
    async def test_inline_profile_buckets(self, db_session, service, adapters):
        request = PreviewRequest(mode=PreviewMode.INLINE_PROFILE, profile=INLINE)

        response = await service.run(db_session, request)

        haven = next(p for p in response.providers if p.provider_code == "haven")
        assert haven.status == PreviewStatus.OK
        assert [r.price_total_gbp for r in haven.results.matched] == [720.0, 950.0]
        assert [r.verdict for r in haven.results.other] == [MatchVerdict.UNKNOWN]
        assert haven.summary.total_candidates == 4
        assert haven.summary.match_strong == 2
        assert haven.summary.match_unknown == 1
        assert haven.summary.mismatch == 1
        assert haven.summary.lowest_matched_price_gbp == 720.0
        assert haven.timing_ms.fetch == 12
        assert all(r.series_key for r in haven.results.matched)

        # Previews never run as automated traffic
        assert adapters["haven"].search_calls[0][1] is False

    @pytest.mark.asyncio
    async def test_include_mismatches_and_sort(self, db_session, service):
        request = PreviewRequest(
            mode=PreviewMode.INLINE_PROFILE,
            profile=INLINE,
            providers=["haven"],
            options=PreviewOptions(include_mismatches=True, sort=SortOrder.PRICE_DESC, max_results=1),
        )

        response = await service.run(db_session, request)

        haven = response.providers[0]
        assert [r.price_total_gbp for r in haven.results.matched] == [950.0]
        assert [r.price_total_gbp for r in haven.results.other] == [600.0]

    @pytest.mark.asyncio
    async def test_mismatch_reasons_reported(self, db_session, service):
        request = PreviewRequest(
            mode=PreviewMode.INLINE_PROFILE,
            profile=INLINE,
            providers=["haven"],
            options=PreviewOptions(include_mismatches=True),
        )

        response = await service.run(db_session, request)

        mismatch = next(r for r in response.providers[0].results.other if r.verdict == MatchVerdict.MISMATCH)
        assert mismatch.reasons[0].code == "NIGHTS_MISMATCH"
        assert mismatch.description.startswith("Nights mismatch")

    @pytest.mark.asyncio
    async def test_provider_failures_reported_per_provider(self, db_session, service):
        request = PreviewRequest(
            mode=PreviewMode.INLINE_PROFILE,
            profile=INLINE,
            providers=["haven", "butlins", "parkdean"],
        )

        response = await service.run(db_session, request)

        statuses = {p.provider_code: p.status for p in response.providers}
        assert statuses == {
            "haven": PreviewStatus.OK,
            "butlins": PreviewStatus.BLOCKED_ROBOTS,
            "parkdean": PreviewStatus.DISABLED,
        }
        assert response.overall_summary.providers_requested == 3
        assert response.overall_summary.providers_succeeded == 1
        assert response.overall_summary.providers_failed == 2
        assert response.overall_summary.lowest_matched_price_gbp == 720.0

    @pytest.mark.asyncio
    async def test_only_fetch_runs_written(self, db_session, service, queues, backend):
        request = PreviewRequest(
            mode=PreviewMode.INLINE_PROFILE,
            profile=INLINE,
            providers=["haven", "butlins", "parkdean"],
        )

        response = await service.run(db_session, request)

        result = await db_session.execute(select(FetchRun).order_by(FetchRun.id))
        runs = list(result.scalars().all())
        assert [r.provider_code for r in runs] == ["haven", "butlins", "parkdean"]
        assert {r.run_type for r in runs} == {"MANUAL_PREVIEW"}
        assert {r.request_id for r in runs} == {response.request_id}
        assert [(r.status, r.provider_status) for r in runs] == [
            ("OK", None),
            ("BLOCKED", "BLOCKED"),
            ("BLOCKED", "BLOCKED"),
        ]
        assert await _count(db_session, Observation) == 0
        assert await _count(db_session, Insight) == 0
        assert all(backend.pending(queue) == [] for queue in ALL_QUEUES)
        assert response.side_effects.observations_stored is False
        assert response.side_effects.insights_queued is False
        assert response.side_effects.alerts_generated is False

    @pytest.mark.asyncio
    async def test_profile_mode_uses_stored_profile(self, db_session, service, profile):
        request = PreviewRequest(mode=PreviewMode.PROFILE_ID, profile_id=profile.id, user_id=profile.user_id)

        response = await service.run(db_session, request)

        assert [p.provider_code for p in response.providers] == ["haven"]
        assert response.providers[0].summary.match_strong == 2

    @pytest.mark.asyncio
    async def test_profile_of_other_user_not_found(self, db_session, service, profile):
        request = PreviewRequest(mode=PreviewMode.PROFILE_ID, profile_id=profile.id, user_id=profile.user_id + 1)

        with pytest.raises(ProfileNotFoundError):
            await service.run(db_session, request)

    @pytest.mark.asyncio
    async def test_incomplete_inline_profile(self, db_session, service):
        request = PreviewRequest(
            mode=PreviewMode.INLINE_PROFILE,
            profile=InlineProfile(adults=2, flex_type="RANGE", date_start=date(2024, 7, 1)),
        )

        with pytest.raises(ProfileIncompleteError) as exc_info:
            await service.run(db_session, request)

        assert exc_info.value.missing == ["nights_min", "date_end"]
        assert await _count(db_session, FetchRun) == 0

    @pytest.mark.asyncio
    async def test_defaults_to_every_provider(self, db_session, service):
        request = PreviewRequest(
            mode=PreviewMode.INLINE_PROFILE,
            profile=InlineProfile(adults=2, date_start=date(2024, 7, 1), nights_min=7),
        )

        response = await service.run(db_session, request)

        assert [p.provider_code for p in response.providers] == ["butlins", "haven", "parkdean"]

    @pytest.mark.asyncio
    async def test_scraping_switched_off(self, db_session, service, adapters, monkeypatch):
        monkeypatch.setattr(settings, "scraping_enabled", False)
        request = PreviewRequest(mode=PreviewMode.INLINE_PROFILE, profile=INLINE, providers=["haven"])

        response = await service.run(db_session, request)

        assert response.providers[0].status == PreviewStatus.DISABLED
        assert response.providers[0].compliance.scraping_enabled is False
        assert adapters["haven"].search_calls == []



@pytest.mark.asyncio
async def test_failed_provider_runs_keep_failure_status(db_session, session_factory):
    service = PreviewService(AdapterRegistry([
        StubAdapter("haven", error=ProviderTimeoutError("Timeout fetching results")),
        StubAdapter("butlins", error=ProviderBlockedError("HTTP 403 from butlins", http_status=403)),
    ]))
    request = PreviewRequest(mode=PreviewMode.INLINE_PROFILE, profile=INLINE)

    response = await service.run(db_session, request)

    async with session_factory() as session:
        result = await session.execute(select(FetchRun).order_by(FetchRun.id))
        runs = list(result.scalars().all())
    assert [(r.provider_code, r.status, r.provider_status, r.http_status) for r in runs] == [
        ("haven", "ERROR", "TIMEOUT", None),
        ("butlins", "ERROR", "BLOCKED", 403),
    ]
    assert all(r.started_at <= r.finished_at for r in runs)
    assert [p.status for p in response.providers] == [PreviewStatus.FETCH_FAILED, PreviewStatus.FETCH_FAILED]


@pytest.fixture
def app(service, session_factory):
    app = FastAPI()
    app.include_router(preview_routes.router)
    app.state.registry = service.registry

    async def override_database():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_database] = override_database
    return app


async def _post(app, body):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post("/api/preview", json=body)


@pytest.mark.asyncio
async def test_route_returns_preview(app):
    response = await _post(app, {
        "mode": "INLINE_PROFILE",
        "profile": {"adults": 2, "date_start": "2024-07-01", "nights_min": 7, "min_bedrooms": 2},
        "providers": ["haven"],
    })

    assert response.status_code == 200
    body = response.json()
    assert body["providers"][0]["summary"]["match_strong"] == 2
    assert body["side_effects"] == {
        "observations_stored": False,
        "insights_queued": False,
        "alerts_generated": False,
    }


@pytest.mark.asyncio
async def test_route_unknown_profile_is_404(app):
    response = await _post(app, {"mode": "PROFILE_ID", "profile_id": 4040})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_route_incomplete_profile_is_422(app):
    response = await _post(app, {"mode": "INLINE_PROFILE", "profile": {"adults": 2}})

    assert response.status_code == 422
    assert response.json()["detail"] == {
        "error": "PROFILE_INCOMPLETE",
        "missing": ["date_start", "nights_min"],
    }
