"""Provider offer scanning into the deals table."""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from staywatch import metrics
from staywatch.adapters.base import Offer, ProviderAdapter
from staywatch.adapters.registry import AdapterRegistry
from staywatch.db.models import Deal, DealSource, FetchRun, ProviderStatus, RunStatus, RunType
from staywatch.db.repository import upsert
from staywatch.services.taxonomy import classify_failure

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8


def offer_source_ref(offer: Offer) -> str:
    """Stable reference for an offer: hash of title, discount type and value."""
    discount_type = getattr(offer.discount_type, "value", offer.discount_type)
    value = "" if offer.discount_value is None else str(offer.discount_value)
    key_data = f"{offer.title}|{discount_type}|{value}"
    return hashlib.sha256(key_data.encode("utf-8")).hexdigest()


@dataclass
class DealScanSummary:
    providers_scanned: int = 0
    offers_seen: int = 0
    errors: list[str] = field(default_factory=list)


async def store_offers(session: AsyncSession, provider_code: str, offers: list[Offer]) -> int:
    """Upsert offers by (provider, source_ref), refreshing ``last_seen_at``. Returns offers stored."""
    now = datetime.utcnow()
    stored = 0
    for offer in offers:
        await upsert(
            session,
            Deal,
            {
                "provider_code": provider_code,
                "source": DealSource.PROVIDER_OFFERS.value,
                "source_ref": offer_source_ref(offer),
                "title": offer.title,
                "description": offer.description,
                "discount_type": getattr(offer.discount_type, "value", offer.discount_type),
                "discount_value": offer.discount_value,
                "voucher_code": offer.voucher_code,
                "ends_at": offer.ends_at,
                "source_url": offer.source_url,
                "confidence": DEFAULT_CONFIDENCE,
                "first_seen_at": now,
                "last_seen_at": now,
            },
            conflict_columns=("provider_code", "source_ref"),
            update_columns=("description", "voucher_code", "ends_at", "source_url", "last_seen_at"),
        )
        stored += 1
    return stored


async def scan_provider(session: AsyncSession, adapter: ProviderAdapter) -> int:
    """
    Fetch one provider's offers page under a DEAL_SOURCE fetch run.

    Adapters return an empty list when the offers page cannot be read, so an
    empty result is recorded as PARSE_FAILED rather than an error.
    """
    run = FetchRun(
        provider_code=adapter.code,
        run_type=RunType.DEAL_SOURCE.value,
        started_at=datetime.utcnow(),
    )
    session.add(run)
    await session.commit()

    try:
        offers = await adapter.fetch_offers()
        stored = await store_offers(session, adapter.code, offers)
    except Exception as e:
        await session.rollback()
        await session.refresh(run)
        run.status = RunStatus.ERROR.value
        run.provider_status = classify_failure(e).value
        run.error_message = str(e)[:1000]
        run.finished_at = datetime.utcnow()
        await session.commit()
        metrics.fetch_runs_total.labels(
            run_type=run.run_type, status=run.status, provider_status=run.provider_status
        ).inc()
        raise

    run.status = RunStatus.OK.value if offers else RunStatus.PARSE_FAILED.value
    if not offers:
        run.provider_status = ProviderStatus.PARSE_FAILED.value
    run.candidates_count = len(offers)
    run.matched_count = stored
    run.finished_at = datetime.utcnow()
    await session.commit()

    metrics.fetch_runs_total.labels(
        run_type=run.run_type, status=run.status, provider_status=run.provider_status or ""
    ).inc()
    metrics.deals_seen_total.labels(provider=adapter.code).inc(stored)
    logger.info(f"Deal scan for {adapter.code}: {stored} offers")
    return stored


async def scan_all_providers(
    session: AsyncSession,
    registry: AdapterRegistry,
    providers: Optional[list[str]] = None,
) -> DealScanSummary:
    """Scan every enabled provider's offers page in turn."""
    summary = DealScanSummary()
    for adapter in registry.enabled_adapters():
        if providers and adapter.code not in providers:
            continue
        try:
            summary.offers_seen += await scan_provider(session, adapter)
            summary.providers_scanned += 1
        except Exception as e:
            await session.rollback()
            logger.error(f"Deal scan failed for {adapter.code}: {e}")
            summary.errors.append(f"{adapter.code}: {e}")
    return summary
