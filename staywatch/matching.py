"""Classification of raw provider candidates against a user's search intent."""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Optional, Union

from staywatch.adapters.base import RawCandidate, UserIntent
from staywatch.series_key import generate_series_key

logger = logging.getLogger(__name__)


class MatchVerdict(str, Enum):
    STRONG = "STRONG"
    # Declared for soft-field nuance; classify() never produces it
    WEAK = "WEAK"
    UNKNOWN = "UNKNOWN"
    MISMATCH = "MISMATCH"


class ReasonCode(str, Enum):
    DATE_MISMATCH = "DATE_MISMATCH"
    NIGHTS_MISMATCH = "NIGHTS_MISMATCH"
    DATE_UNKNOWN = "DATE_UNKNOWN"
    NIGHTS_UNKNOWN = "NIGHTS_UNKNOWN"
    PETS_NOT_ALLOWED = "PETS_NOT_ALLOWED"
    PETS_UNKNOWN = "PETS_UNKNOWN"
    BEDROOMS_TOO_FEW = "BEDROOMS_TOO_FEW"
    BEDROOMS_UNKNOWN = "BEDROOMS_UNKNOWN"
    INCOMPLETE_DATA = "INCOMPLETE_DATA"


@dataclass(frozen=True)
class MatchReason:
    code: ReasonCode
    message: str


@dataclass(frozen=True)
class MatchResult:
    verdict: MatchVerdict
    reasons: tuple[MatchReason, ...] = field(default_factory=tuple)
    description: str = ""
    series_key: Optional[str] = None


def _as_date(value: Union[date, str]) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def classify(candidate: RawCandidate, intent: UserIntent) -> MatchResult:
    """
    Classify one candidate against the intent's target stay.

    Precedence:
    1. Arrival date must equal the target date exactly.
    2. Night count must equal exactly.
    3. Pets required: explicitly not allowed is a mismatch, unknown is missing data.
    4. Minimum bedrooms: a known lower count is a mismatch, unknown is missing data.

    Any hard failure gives MISMATCH, described by the first failing constraint.
    Otherwise missing data gives UNKNOWN, and a fully confirmed candidate STRONG.
    """
    target_date = intent.stay_start
    target_nights = intent.stay_nights

    if candidate.stay_start_date is None:
        missing_date = MatchReason(ReasonCode.DATE_UNKNOWN, "Stay date unknown")
        return _unknown([missing_date])
    candidate_date = _as_date(candidate.stay_start_date)
    if candidate_date != target_date:
        reason = MatchReason(
            ReasonCode.DATE_MISMATCH,
            f"Date mismatch: expected {target_date.isoformat()}, got {candidate_date.isoformat()}",
        )
        return MatchResult(MatchVerdict.MISMATCH, (reason,), reason.message)

    if candidate.stay_nights is None:
        return _unknown([MatchReason(ReasonCode.NIGHTS_UNKNOWN, "Nights unknown")])
    if int(candidate.stay_nights) != target_nights:
        reason = MatchReason(
            ReasonCode.NIGHTS_MISMATCH,
            f"Nights mismatch: expected {target_nights}, got {candidate.stay_nights}",
        )
        return MatchResult(MatchVerdict.MISMATCH, (reason,), reason.message)

    failures: list[MatchReason] = []
    missing: list[MatchReason] = []

    if intent.pets:
        if candidate.pets_allowed is False:
            failures.append(MatchReason(ReasonCode.PETS_NOT_ALLOWED, "Pets not allowed"))
        elif candidate.pets_allowed is None:
            missing.append(MatchReason(ReasonCode.PETS_UNKNOWN, "Pets allowed status unknown"))

    if intent.min_bedrooms and intent.min_bedrooms > 0:
        if candidate.bedrooms is None:
            missing.append(MatchReason(ReasonCode.BEDROOMS_UNKNOWN, "Bedroom count unknown"))
        elif candidate.bedrooms < intent.min_bedrooms:
            failures.append(
                MatchReason(
                    ReasonCode.BEDROOMS_TOO_FEW,
                    f"Too few bedrooms: {candidate.bedrooms} < {intent.min_bedrooms}",
                )
            )

    if failures:
        return MatchResult(MatchVerdict.MISMATCH, tuple(failures + missing), failures[0].message)
    if missing:
        return _unknown(missing)
    return MatchResult(MatchVerdict.STRONG, (), "All fingerprint fields matched")


def _unknown(missing: list[MatchReason]) -> MatchResult:
    description = "Potential match but data missing: " + ", ".join(r.message for r in missing)
    return MatchResult(MatchVerdict.UNKNOWN, tuple(missing), description)


def evaluate_candidate(candidate: RawCandidate, intent: UserIntent, provider_code: str) -> MatchResult:
    """
    Classify a candidate and attach its series key.

    A candidate that cannot be classified or keyed degrades to UNKNOWN with an
    incomplete-data reason, so one malformed row never aborts a batch.
    """
    try:
        result = classify(candidate, intent)
        series_key = generate_series_key(
            provider_code,
            _as_date(candidate.stay_start_date),
            candidate.stay_nights,
            candidate.park_id,
            candidate.accom_type_id,
        )
        return replace(result, series_key=series_key)
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Candidate from {provider_code} could not be evaluated: {e}")
        reason = MatchReason(ReasonCode.INCOMPLETE_DATA, f"Incomplete data: {e}")
        return MatchResult(MatchVerdict.UNKNOWN, (reason,), reason.message)


def is_alertable(verdict: MatchVerdict, allow_weak: bool = False) -> bool:
    """Only STRONG matches feed observations and alerts (WEAK only when opted in)."""
    if verdict == MatchVerdict.STRONG:
        return True
    return allow_weak and verdict == MatchVerdict.WEAK
