"""Tests for offer scanning."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from staywatch.adapters.base import Offer
from staywatch.adapters.registry import AdapterRegistry
from staywatch.db.models import Deal, DiscountType, FetchRun
from staywatch.errors import ProviderTimeoutError
from staywatch.jobs.outcome import Success
from staywatch.jobs.queues import DEAL_QUEUE, Job
from staywatch.jobs.workers.deal import DealScanWorker
from staywatch.services.deals import offer_source_ref, scan_all_providers, scan_provider
from tests.factories import StubAdapter

SPRING_SALE = Offer(
    title="Spring sale: up to 25% off breaks",
    discount_type=DiscountType.PERCENT_OFF,
    discount_value=Decimal("25"),
    ends_at=date(2024, 4, 30),
    source_url="https://haven.example.com/offers",
)
VOUCHER = Offer(
    title="Save £50 with code SUMMER50",
    discount_type=DiscountType.FIXED_OFF,
    discount_value=Decimal("50"),
    voucher_code="SUMMER50",
)


async def _all(session_factory, model):
    async with session_factory() as session:
        result = await session.execute(select(model).order_by(model.id))
        return list(result.scalars().all())


def test_source_ref_ignores_description():
    changed = Offer(
        title=SPRING_SALE.title,
        discount_type=SPRING_SALE.discount_type,
        discount_value=SPRING_SALE.discount_value,
        description="Now with extra parks",
    )

    assert offer_source_ref(changed) == offer_source_ref(SPRING_SALE)
    assert offer_source_ref(VOUCHER) != offer_source_ref(SPRING_SALE)


@pytest.mark.asyncio
async def test_scan_stores_offers(db_session, session_factory):
    adapter = StubAdapter("haven", offers=[SPRING_SALE, VOUCHER])

    stored = await scan_provider(db_session, adapter)

    assert stored == 2
    deals = await _all(session_factory, Deal)
    assert [d.discount_type for d in deals] == ["PERCENT_OFF", "FIXED_OFF"]
    assert deals[1].voucher_code == "SUMMER50"
    run = (await _all(session_factory, FetchRun))[0]
    assert (run.run_type, run.status, run.candidates_count) == ("DEAL_SOURCE", "OK", 2)


@pytest.mark.asyncio
async def test_rescan_updates_instead_of_duplicating(db_session, session_factory):
    adapter = StubAdapter("haven", offers=[SPRING_SALE])
    await scan_provider(db_session, adapter)
    first_seen = (await _all(session_factory, Deal))[0].last_seen_at

    adapter.offers = [
        Offer(
            title=SPRING_SALE.title,
            discount_type=SPRING_SALE.discount_type,
            discount_value=SPRING_SALE.discount_value,
            ends_at=date(2024, 5, 7),
        )
    ]
    await scan_provider(db_session, adapter)

    deals = await _all(session_factory, Deal)
    assert len(deals) == 1
    assert deals[0].ends_at == date(2024, 5, 7)
    assert deals[0].last_seen_at >= first_seen


@pytest.mark.asyncio
async def test_empty_offers_page_is_parse_failed(db_session, session_factory):
    await scan_provider(db_session, StubAdapter("haven"))

    run = (await _all(session_factory, FetchRun))[0]
    assert (run.status, run.provider_status) == ("PARSE_FAILED", "PARSE_FAILED")


@pytest.mark.asyncio
async def test_failed_scan_recorded_and_raised(db_session, session_factory):
    adapter = StubAdapter("haven", error=ProviderTimeoutError("offers page timed out"))

    with pytest.raises(ProviderTimeoutError):
        await scan_provider(db_session, adapter)

    run = (await _all(session_factory, FetchRun))[0]
    assert (run.status, run.provider_status) == ("ERROR", "TIMEOUT")


@pytest.mark.asyncio
async def test_scan_all_continues_past_failures(db_session):
    registry = AdapterRegistry([
        StubAdapter("butlins", error=RuntimeError("boom")),
        StubAdapter("haven", offers=[SPRING_SALE]),
        StubAdapter("parkdean", offers=[VOUCHER], enabled=False),
    ])

    summary = await scan_all_providers(db_session, registry)

    assert summary.providers_scanned == 1
    assert summary.offers_seen == 1
    assert summary.errors == ["butlins: boom"]


@pytest.mark.asyncio
async def test_deal_worker(session_factory):
    haven = StubAdapter("haven", offers=[SPRING_SALE])
    registry = AdapterRegistry([haven])
    job = Job(id="deal-scan:ALL:2024-03-01", queue=DEAL_QUEUE, payload={"providers": "ALL"})

    outcome = await DealScanWorker(registry, session_factory)(job)

    assert isinstance(outcome, Success)
    assert outcome.detail.offers_seen == 1
    assert haven.offer_calls == 1
