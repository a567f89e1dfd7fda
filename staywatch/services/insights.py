"""Insight engine: price-event detection over observation series.

Each series (one bookable product over time) is examined by three
independent detectors. Detected insights are deduplicated per fingerprint,
series, type and a window label naming the observation that triggered them,
so re-running the engine over unchanged observations never creates a second
row while a later event on the same series is stored again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from staywatch import metrics
from staywatch.config import settings
from staywatch.db.models import Availability, Insight, InsightType, Observation
from staywatch.db.repository import insert_or_ignore
from staywatch.series_key import generate_insight_dedupe_key

logger = logging.getLogger(__name__)

WINDOW_LOWEST = "LOWEST_180D"
WINDOW_PRICE_DROP = "PRICE_DROP"
WINDOW_RISK = "RISK_RISING"

RISK_SAMPLE_SIZE = 5


@dataclass
class PricePoint:
    """One observation reduced to what the detectors need."""

    observed_at: datetime
    price: Decimal
    availability: str = Availability.AVAILABLE.value

    @property
    def sold_out(self) -> bool:
        return self.availability == Availability.SOLD_OUT.value


@dataclass
class DetectedInsight:
    type: InsightType
    window_label: str
    summary: str
    details: dict = field(default_factory=dict)


def _money(value: Decimal) -> float:
    return float(Decimal(value).quantize(Decimal("0.01")))


def _sorted(points: list[PricePoint]) -> list[PricePoint]:
    # Retries can deliver observations out of order
    return sorted(points, key=lambda p: p.observed_at)


def _window_label(prefix: str, trigger: PricePoint) -> str:
    """Detector label plus the day of the observation that triggered it."""
    return f"{prefix}:{trigger.observed_at.date().isoformat()}"


def detect_lowest_in_window(
    points: list[PricePoint],
    lookback_days: int = 180,
    min_observations: int = 5,
    now: Optional[datetime] = None,
) -> Optional[DetectedInsight]:
    """Latest price is at or below the minimum of the lookback window."""
    ordered = _sorted(points)
    if not ordered:
        return None
    reference = now or ordered[-1].observed_at
    cutoff = reference - timedelta(days=lookback_days)
    window = [p for p in ordered if p.observed_at >= cutoff]
    if len(window) < min_observations:
        return None

    latest = window[-1]
    window_min = min(p.price for p in window)
    if latest.price > window_min:
        return None

    return DetectedInsight(
        type=InsightType.LOWEST_IN_X_DAYS,
        window_label=_window_label(WINDOW_LOWEST, latest),
        summary=f"Lowest price in {lookback_days} days: £{latest.price:.2f}",
        details={
            "current_price": _money(latest.price),
            "window_min": _money(window_min),
            "window_days": lookback_days,
            "observations": len(window),
        },
    )


def detect_price_drop(
    points: list[PricePoint],
    min_amount: Decimal = Decimal("75"),
    min_percent: Decimal = Decimal("7"),
) -> Optional[DetectedInsight]:
    """
    The newest price dropped against the one before it.

    Fires when the drop is at least ``min_amount`` pounds or at least
    ``min_percent`` percent of the previous price.
    """
    ordered = _sorted(points)
    if len(ordered) < 2:
        return None

    previous, latest = ordered[-2], ordered[-1]
    if previous.price <= 0:
        return None
    drop = previous.price - latest.price
    if drop <= 0:
        return None

    percent = drop / previous.price * 100
    if drop < Decimal(str(min_amount)) and percent < Decimal(str(min_percent)):
        return None

    return DetectedInsight(
        type=InsightType.PRICE_DROP_PERCENT,
        window_label=_window_label(WINDOW_PRICE_DROP, latest),
        summary=f"Price dropped by £{drop:.2f} ({percent:.1f}%)",
        details={
            "previous_price": _money(previous.price),
            "current_price": _money(latest.price),
            "drop_amount": _money(drop),
            "drop_percent": round(float(percent), 2),
        },
    )


def detect_rising_risk(points: list[PricePoint], min_sold_out: int = 2) -> Optional[DetectedInsight]:
    """Several recent sold-out observations while prices are climbing."""
    ordered = _sorted(points)
    if len(ordered) < RISK_SAMPLE_SIZE:
        return None

    recent = ordered[-RISK_SAMPLE_SIZE:]
    sold_out = sum(1 for p in recent if p.sold_out)
    if sold_out < min_sold_out:
        return None

    newest_avg = (recent[-1].price + recent[-2].price) / 2
    older_avg = (recent[0].price + recent[1].price) / 2
    if newest_avg <= older_avg:
        return None

    return DetectedInsight(
        type=InsightType.RISK_RISING,
        window_label=_window_label(WINDOW_RISK, recent[-1]),
        summary=f"Booking risk rising: {sold_out} sold out dates, prices increasing",
        details={
            "sold_out_count": sold_out,
            "recent_avg": _money(newest_avg),
            "older_avg": _money(older_avg),
        },
    )


class InsightService:
    """Runs the detectors over every series of a fingerprint and stores new insights."""

    def __init__(
        self,
        lookback_days: Optional[int] = None,
        min_observations: Optional[int] = None,
        drop_min_amount: Optional[float] = None,
        drop_min_percent: Optional[float] = None,
        risk_min_sold_out: Optional[int] = None,
    ):
        self.lookback_days = lookback_days or settings.insight_lookback_days
        self.min_observations = min_observations or settings.insight_min_observations
        self.drop_min_amount = Decimal(str(drop_min_amount or settings.price_drop_min_amount_gbp))
        self.drop_min_percent = Decimal(str(drop_min_percent or settings.price_drop_min_percent))
        self.risk_min_sold_out = risk_min_sold_out or settings.risk_min_sold_out

    def detect(self, points: list[PricePoint], now: Optional[datetime] = None) -> list[DetectedInsight]:
        """Run all detectors over one series."""
        found = [
            detect_lowest_in_window(points, self.lookback_days, self.min_observations, now),
            detect_price_drop(points, self.drop_min_amount, self.drop_min_percent),
            detect_rising_risk(points, self.risk_min_sold_out),
        ]
        return [insight for insight in found if insight is not None]

    async def series_keys_for(self, session: AsyncSession, fingerprint_id: int) -> list[str]:
        result = await session.execute(
            select(Observation.series_key)
            .where(Observation.fingerprint_id == fingerprint_id)
            .distinct()
            .order_by(Observation.series_key)
        )
        return list(result.scalars().all())

    async def load_points(self, session: AsyncSession, fingerprint_id: int, series_key: str) -> list[PricePoint]:
        result = await session.execute(
            select(Observation.observed_at, Observation.price_total, Observation.availability)
            .where(
                Observation.fingerprint_id == fingerprint_id,
                Observation.series_key == series_key,
            )
            .order_by(Observation.observed_at, Observation.id)
        )
        return [
            PricePoint(observed_at=row[0], price=Decimal(str(row[1])), availability=row[2])
            for row in result.all()
        ]

    async def analyze_fingerprint(
        self,
        session: AsyncSession,
        fingerprint_id: int,
        now: Optional[datetime] = None,
    ) -> list[Insight]:
        """
        Detect and persist insights for all series of a fingerprint.

        Args:
            session: Database session (caller commits)
            fingerprint_id: Fingerprint to analyse
            now: Reference time for the lookback window (defaults to latest observation)

        Returns:
            Insights inserted by this call; ones that already existed are skipped
        """
        created: list[Insight] = []

        for series_key in await self.series_keys_for(session, fingerprint_id):
            points = await self.load_points(session, fingerprint_id, series_key)
            for detected in self.detect(points, now):
                dedupe_key = generate_insight_dedupe_key(
                    fingerprint_id, series_key, detected.type.value, detected.window_label
                )
                insight_id = await insert_or_ignore(
                    session,
                    Insight,
                    {
                        "fingerprint_id": fingerprint_id,
                        "series_key": series_key,
                        "type": detected.type.value,
                        "dedupe_key": dedupe_key,
                        "summary": detected.summary,
                        "details": detected.details,
                        "created_at": datetime.utcnow(),
                    },
                    conflict_columns=("dedupe_key",),
                )
                if insight_id is None:
                    logger.debug(f"Insight {detected.type.value} already recorded for series {series_key[:12]}")
                    continue

                insight = await session.get(Insight, insight_id)
                created.append(insight)
                metrics.insights_created_total.labels(insight_type=detected.type.value).inc()
                logger.info(f"New insight for fingerprint {fingerprint_id}: {detected.summary}")

        return created
