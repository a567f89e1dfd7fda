"""On-demand, read-only search preview across providers.

A preview runs the same intent building, adapter search, matching and
series keying as the monitor pipeline, but its only persistent effect is one
MANUAL_PREVIEW fetch run per provider. It never stores observations and never
queues insight or alert work.
"""

import logging
import time
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from staywatch import metrics
from staywatch.adapters.base import RawCandidate, SearchStats, UserIntent
from staywatch.adapters.registry import AdapterRegistry
from staywatch.config import settings
from staywatch.db.models import (
    FetchRun,
    FlexType,
    HolidayProfile,
    PeakTolerance,
    ProviderStatus,
    RunStatus,
    RunType,
)
from staywatch.errors import (
    ProfileIncompleteError,
    ProfileNotFoundError,
    ProviderDisabledError,
    ProviderFetchError,
    ProviderNotFoundError,
)
from staywatch.matching import MatchResult, MatchVerdict, evaluate_candidate
from staywatch.services.fingerprints import (
    intent_from_profile,
    missing_profile_fields,
    normalize_provider_codes,
)
from staywatch.services.taxonomy import classify_failure, http_status_of

logger = logging.getLogger(__name__)


class PreviewMode(str, Enum):
    PROFILE_ID = "PROFILE_ID"
    INLINE_PROFILE = "INLINE_PROFILE"


class SortOrder(str, Enum):
    PRICE_ASC = "PRICE_ASC"
    PRICE_DESC = "PRICE_DESC"
    DATE_ASC = "DATE_ASC"


class PreviewStatus(str, Enum):
    OK = "OK"
    DISABLED = "DISABLED"
    ERROR = "ERROR"
    FETCH_FAILED = "FETCH_FAILED"
    BLOCKED_ROBOTS = "BLOCKED_ROBOTS"


class InlineProfile(BaseModel):
    adults: Optional[int] = None
    children: int = 0
    flex_type: FlexType = FlexType.FIXED
    date_start: Optional[date] = None
    date_end: Optional[date] = None
    nights_min: Optional[int] = None
    nights_max: Optional[int] = None
    pets: bool = False
    min_bedrooms: int = 0
    accommodation_type: Optional[str] = None
    peak_tolerance: PeakTolerance = PeakTolerance.MIXED
    region: Optional[str] = None
    park_ids: list[str] = Field(default_factory=list)
    providers: list[str] = Field(default_factory=list)


class PreviewOptions(BaseModel):
    max_results: int = Field(20, ge=1, le=200)
    sort: SortOrder = SortOrder.PRICE_ASC
    include_mismatches: bool = False
    allow_weak_matches: bool = False


class PreviewRequest(BaseModel):
    mode: PreviewMode
    profile_id: Optional[int] = None
    user_id: Optional[int] = None
    profile: Optional[InlineProfile] = None
    providers: Optional[list[str]] = None
    options: PreviewOptions = Field(default_factory=PreviewOptions)


class PreviewReason(BaseModel):
    code: str
    message: str


class PreviewResult(BaseModel):
    verdict: MatchVerdict
    provider_code: str
    stay_start_date: Optional[date] = None
    stay_nights: Optional[int] = None
    price_total_gbp: float
    price_per_night_gbp: Optional[float] = None
    availability: str
    accommodation_type: Optional[str] = None
    bedrooms: Optional[int] = None
    pets_allowed: Optional[bool] = None
    park_id: Optional[str] = None
    property_name: Optional[str] = None
    location: Optional[str] = None
    source_url: Optional[str] = None
    series_key: Optional[str] = None
    description: str = ""
    reasons: list[PreviewReason] = Field(default_factory=list)


class TimingMs(BaseModel):
    fetch: int = 0
    parse: int = 0
    match: int = 0
    enrich: int = 0
    total: int = 0


class Compliance(BaseModel):
    scraping_enabled: bool = True
    robots_allowed: bool = True
    playwright_used: bool = False
    rate_limited: bool = False


class ResultBuckets(BaseModel):
    matched: list[PreviewResult] = Field(default_factory=list)
    other: list[PreviewResult] = Field(default_factory=list)


class ProviderSummary(BaseModel):
    total_candidates: int = 0
    match_strong: int = 0
    match_weak: int = 0
    match_unknown: int = 0
    mismatch: int = 0
    lowest_matched_price_gbp: Optional[float] = None


class ProviderPreview(BaseModel):
    provider_code: str
    status: PreviewStatus = PreviewStatus.OK
    timing_ms: TimingMs = Field(default_factory=TimingMs)
    compliance: Compliance = Field(default_factory=Compliance)
    results: ResultBuckets = Field(default_factory=ResultBuckets)
    summary: ProviderSummary = Field(default_factory=ProviderSummary)
    error: Optional[str] = None
    provider_status: Optional[ProviderStatus] = None
    http_status: Optional[int] = None


class OverallSummary(BaseModel):
    providers_requested: int = 0
    providers_succeeded: int = 0
    providers_failed: int = 0
    total_matched: int = 0
    lowest_matched_price_gbp: Optional[float] = None


class SideEffects(BaseModel):
    observations_stored: bool = False
    insights_queued: bool = False
    alerts_generated: bool = False


class PreviewResponse(BaseModel):
    request_id: str
    generated_at: datetime
    mode: PreviewMode
    providers: list[ProviderPreview]
    overall_summary: OverallSummary
    side_effects: SideEffects = Field(default_factory=SideEffects)


VERDICT_COUNTERS = {
    MatchVerdict.STRONG: "match_strong",
    MatchVerdict.WEAK: "match_weak",
    MatchVerdict.UNKNOWN: "match_unknown",
    MatchVerdict.MISMATCH: "mismatch",
}


def _ms_since(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _price(value: Optional[Decimal]) -> Optional[float]:
    return None if value is None else float(value)


def to_preview_result(candidate: RawCandidate, match: MatchResult, provider_code: str) -> PreviewResult:
    try:
        per_night = _price(candidate.price_per_night)
    except (TypeError, ArithmeticError):
        per_night = None
    return PreviewResult(
        verdict=match.verdict,
        provider_code=provider_code,
        stay_start_date=candidate.stay_start_date,
        stay_nights=candidate.stay_nights,
        price_total_gbp=_price(candidate.price_total) or 0.0,
        price_per_night_gbp=per_night,
        availability=getattr(candidate.availability, "value", candidate.availability),
        accommodation_type=candidate.accom_type,
        bedrooms=candidate.bedrooms,
        pets_allowed=candidate.pets_allowed,
        park_id=candidate.park_id,
        property_name=candidate.property_name,
        location=candidate.location,
        source_url=candidate.source_url,
        series_key=match.series_key,
        description=match.description,
        reasons=[PreviewReason(code=r.code.value, message=r.message) for r in match.reasons],
    )


def sort_results(results: list[PreviewResult], order: SortOrder) -> list[PreviewResult]:
    if order == SortOrder.PRICE_DESC:
        return sorted(results, key=lambda r: r.price_total_gbp, reverse=True)
    if order == SortOrder.DATE_ASC:
        return sorted(results, key=lambda r: (r.stay_start_date or date.max, r.price_total_gbp))
    return sorted(results, key=lambda r: r.price_total_gbp)


def status_for_error(exc: BaseException) -> PreviewStatus:
    if isinstance(exc, ProviderDisabledError):
        return PreviewStatus.DISABLED
    if classify_failure(exc) == ProviderStatus.BLOCKED and "robots" in str(exc).lower():
        return PreviewStatus.BLOCKED_ROBOTS
    if isinstance(exc, ProviderFetchError):
        return PreviewStatus.FETCH_FAILED
    return PreviewStatus.ERROR


class PreviewService:
    """Runs previews against an explicit adapter registry."""

    def __init__(self, registry: AdapterRegistry):
        self.registry = registry

    async def resolve_profile(self, session: AsyncSession, request: PreviewRequest):
        """
        Load or validate the profile a preview runs against.

        Raises:
            ProfileNotFoundError: Profile id unknown or owned by another user
            ProfileIncompleteError: Party size, dates or nights missing
        """
        if request.mode == PreviewMode.PROFILE_ID:
            if request.profile_id is None:
                raise ProfileIncompleteError(["profile_id"])
            query = select(HolidayProfile).where(HolidayProfile.id == request.profile_id)
            if request.user_id is not None:
                query = query.where(HolidayProfile.user_id == request.user_id)
            profile = (await session.execute(query)).scalar_one_or_none()
            if profile is None:
                raise ProfileNotFoundError(request.profile_id)
        else:
            if request.profile is None:
                raise ProfileIncompleteError(["profile"])
            profile = request.profile

        missing = missing_profile_fields(profile)
        flex_type = getattr(profile.flex_type, "value", profile.flex_type)
        if flex_type in (FlexType.RANGE.value, FlexType.FLEXI.value) and profile.date_end is None:
            missing.append("date_end")
        if missing:
            raise ProfileIncompleteError(missing)
        return profile

    def resolve_providers(self, request: PreviewRequest, profile) -> list[str]:
        """Requested override, else the profile's providers, else every known provider."""
        if request.providers:
            return normalize_provider_codes(request.providers, self.registry)
        if profile.providers:
            return normalize_provider_codes(profile.providers, self.registry)
        return self.registry.codes()

    async def run(self, session: AsyncSession, request: PreviewRequest) -> PreviewResponse:
        request_id = uuid4().hex
        generated_at = datetime.utcnow()

        profile = await self.resolve_profile(session, request)
        intent = intent_from_profile(profile)
        providers = self.resolve_providers(request, profile)
        logger.info(f"Preview {request_id} for providers: {', '.join(providers) or 'none'}")

        previews = []
        for provider_code in providers:
            started_at = datetime.utcnow()
            preview = await self.run_provider(provider_code, intent, request.options)
            await self.record_run(session, preview, request_id, started_at)
            previews.append(preview)

        return PreviewResponse(
            request_id=request_id,
            generated_at=generated_at,
            mode=request.mode,
            providers=previews,
            overall_summary=summarize(previews),
        )

    async def run_provider(self, provider_code: str, intent: UserIntent, options: PreviewOptions) -> ProviderPreview:
        start_total = time.perf_counter()
        preview = ProviderPreview(provider_code=provider_code)

        if not settings.scraping_enabled:
            preview.status = PreviewStatus.DISABLED
            preview.compliance.scraping_enabled = False
            preview.error = "Scraping disabled"
            preview.timing_ms.total = _ms_since(start_total)
            return preview

        try:
            adapter = self.registry.get_adapter(provider_code)
        except ProviderNotFoundError as e:
            preview.status = PreviewStatus.ERROR
            preview.error = str(e)
            return preview

        if not adapter.is_enabled():
            preview.status = PreviewStatus.DISABLED
            preview.error = f"Provider disabled: {provider_code}"
            preview.timing_ms.total = _ms_since(start_total)
            return preview

        stats = SearchStats()
        candidates: list[RawCandidate] = []
        start_fetch = time.perf_counter()
        try:
            candidates = await adapter.search(intent, automated=False, stats=stats)
        except Exception as e:
            logger.warning(f"Preview search failed for {provider_code}: {e}")
            preview.status = status_for_error(e)
            preview.error = str(e)
            preview.provider_status = classify_failure(e)
            preview.http_status = http_status_of(e)
        search_ms = _ms_since(start_fetch)

        preview.compliance = Compliance(
            scraping_enabled=True,
            robots_allowed=stats.robots_allowed,
            playwright_used=stats.playwright_used,
            rate_limited=stats.rate_limited,
        )
        preview.timing_ms.parse = stats.parse_ms
        preview.timing_ms.fetch = stats.fetch_ms or max(search_ms - stats.parse_ms, 0)

        start_match = time.perf_counter()
        matched: list[PreviewResult] = []
        other: list[PreviewResult] = []
        summary = preview.summary
        summary.total_candidates = len(candidates)

        for candidate in candidates:
            match = evaluate_candidate(candidate, intent, provider_code)
            metrics.candidates_classified_total.labels(provider=provider_code, verdict=match.verdict.value).inc()
            counter = VERDICT_COUNTERS[match.verdict]
            setattr(summary, counter, getattr(summary, counter) + 1)

            result = to_preview_result(candidate, match, provider_code)
            accepted = match.verdict == MatchVerdict.STRONG or (
                options.allow_weak_matches and match.verdict == MatchVerdict.WEAK
            )
            if accepted:
                matched.append(result)
                if summary.lowest_matched_price_gbp is None or result.price_total_gbp < summary.lowest_matched_price_gbp:
                    summary.lowest_matched_price_gbp = result.price_total_gbp
            elif options.include_mismatches or match.verdict != MatchVerdict.MISMATCH:
                other.append(result)

        preview.results = ResultBuckets(
            matched=sort_results(matched, options.sort)[: options.max_results],
            other=sort_results(other, options.sort)[: options.max_results],
        )
        preview.timing_ms.match = _ms_since(start_match)
        preview.timing_ms.total = _ms_since(start_total)
        return preview

    async def record_run(
        self,
        session: AsyncSession,
        preview: ProviderPreview,
        request_id: str,
        started_at: Optional[datetime] = None,
    ) -> FetchRun:
        """Write the single audit fetch run for one provider's preview."""
        now = datetime.utcnow()
        started_at = started_at or now
        if preview.status == PreviewStatus.OK:
            status = RunStatus.OK if preview.summary.total_candidates else RunStatus.PARSE_FAILED
            provider_status = None if preview.summary.total_candidates else ProviderStatus.PARSE_FAILED
        elif preview.status in (PreviewStatus.DISABLED, PreviewStatus.BLOCKED_ROBOTS):
            status, provider_status = RunStatus.BLOCKED, ProviderStatus.BLOCKED
        else:
            status = RunStatus.ERROR
            provider_status = preview.provider_status or ProviderStatus.FETCH_FAILED

        run = FetchRun(
            fingerprint_id=None,
            provider_code=preview.provider_code,
            run_type=RunType.MANUAL_PREVIEW.value,
            request_id=request_id,
            scheduled_for=started_at,
            started_at=started_at,
            finished_at=now,
            status=status.value,
            provider_status=provider_status.value if provider_status else None,
            http_status=preview.http_status,
            error_message=preview.error,
            candidates_count=preview.summary.total_candidates,
            matched_count=preview.summary.match_strong + preview.summary.match_weak,
        )
        session.add(run)
        await session.commit()
        metrics.fetch_runs_total.labels(
            run_type=run.run_type, status=run.status, provider_status=run.provider_status or ""
        ).inc()
        return run


def summarize(previews: list[ProviderPreview]) -> OverallSummary:
    lowest = [p.summary.lowest_matched_price_gbp for p in previews if p.summary.lowest_matched_price_gbp is not None]
    return OverallSummary(
        providers_requested=len(previews),
        providers_succeeded=sum(1 for p in previews if p.status == PreviewStatus.OK),
        providers_failed=sum(1 for p in previews if p.status != PreviewStatus.OK),
        total_matched=sum(len(p.results.matched) for p in previews),
        lowest_matched_price_gbp=min(lowest) if lowest else None,
    )
