"""Canonical, hashed search fingerprints derived from holiday profiles."""

import hashlib
import json
import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from staywatch.adapters.base import UserIntent
from staywatch.adapters.registry import AdapterRegistry
from staywatch.config import settings
from staywatch.db.models import Fingerprint, HolidayProfile
from staywatch.db.repository import upsert
from staywatch.errors import ProfileIncompleteError

logger = logging.getLogger(__name__)


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return str(value)[:10]


def missing_profile_fields(profile: Any) -> list[str]:
    """Fields a profile must state before any search can be built from it."""
    missing = []
    if not getattr(profile, "adults", None):
        missing.append("adults")
    if getattr(profile, "date_start", None) is None:
        missing.append("date_start")
    if not getattr(profile, "nights_min", None):
        missing.append("nights_min")
    return missing


def normalize_provider_codes(codes: Optional[list], registry: Optional[AdapterRegistry] = None) -> list[str]:
    """Lowercase, dedupe and (when a registry is given) drop unknown provider codes."""
    result = []
    for code in codes or []:
        if not isinstance(code, str) or not code.strip():
            continue
        normalized = code.strip().lower()
        if normalized in result:
            continue
        if registry is not None and not registry.has(normalized):
            logger.warning(f"Skipping unknown provider code: {code}")
            continue
        result.append(normalized)
    return result


def build_canonical_payload(profile: Any, provider_code: str) -> dict:
    """
    Build the provider-specific search parameters for a profile.

    Works on a stored HolidayProfile or any object with the same attributes.
    A profile without an end date or maximum nights is treated as a fixed
    window at its start date and minimum nights.

    Raises:
        ProfileIncompleteError: If party size, start date or nights are missing
    """
    missing = missing_profile_fields(profile)
    if missing:
        raise ProfileIncompleteError(missing)

    date_start = _iso(profile.date_start)
    nights_min = int(profile.nights_min)
    park_ids = sorted({str(p) for p in (getattr(profile, "park_ids", None) or [])})
    peak_tolerance = getattr(profile, "peak_tolerance", None)

    return {
        "provider": provider_code.lower(),
        "adults": int(profile.adults),
        "children": int(getattr(profile, "children", 0) or 0),
        "date_window_start": date_start,
        "date_window_end": _iso(getattr(profile, "date_end", None)) or date_start,
        "nights_min": nights_min,
        "nights_max": int(getattr(profile, "nights_max", None) or nights_min),
        "pets": bool(getattr(profile, "pets", False)),
        "min_bedrooms": int(getattr(profile, "min_bedrooms", 0) or 0),
        "region": getattr(profile, "region", None),
        "accommodation_type": getattr(profile, "accommodation_type", None),
        "peak_tolerance": getattr(peak_tolerance, "value", peak_tolerance),
        "park_ids": park_ids,
    }


def compute_canonical_hash(payload: dict) -> str:
    """SHA-256 of the payload serialised with sorted keys and no whitespace."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def intent_from_payload(payload: dict) -> UserIntent:
    """Rebuild the search intent stored on a fingerprint."""
    date_start = date.fromisoformat(payload["date_window_start"])
    date_end = payload.get("date_window_end")
    nights_min = int(payload["nights_min"])
    return UserIntent(
        adults=int(payload["adults"]),
        children=int(payload.get("children") or 0),
        date_window_start=date_start,
        date_window_end=date.fromisoformat(date_end) if date_end else date_start,
        nights_min=nights_min,
        nights_max=int(payload.get("nights_max") or nights_min),
        pets=bool(payload.get("pets", False)),
        min_bedrooms=int(payload.get("min_bedrooms") or 0),
        accommodation_type=payload.get("accommodation_type"),
        peak_tolerance=payload.get("peak_tolerance"),
        region=payload.get("region"),
        park_ids=tuple(payload.get("park_ids") or ()),
    )


def intent_from_profile(profile: Any) -> UserIntent:
    return intent_from_payload(build_canonical_payload(profile, "any"))


async def disable_all_for_profile(session: AsyncSession, profile_id: int) -> int:
    """Disable every fingerprint of a profile. History is kept. Returns rows changed."""
    result = await session.execute(
        update(Fingerprint)
        .where(Fingerprint.profile_id == profile_id, Fingerprint.enabled.is_(True))
        .values(enabled=False, updated_at=datetime.utcnow())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


async def sync_fingerprints(
    session: AsyncSession,
    profile: HolidayProfile,
    registry: Optional[AdapterRegistry] = None,
) -> list[Fingerprint]:
    """
    Bring a profile's fingerprints in line with its current settings.

    One fingerprint per selected provider is created, or re-enabled when a
    fingerprint with the same (profile, provider, hash) already exists.
    Fingerprints no longer selected, including those whose parameters changed,
    are disabled rather than deleted so their observation history survives.

    Args:
        session: Database session (caller commits)
        profile: Stored holiday profile
        registry: When given, provider codes it does not know are skipped

    Returns:
        The profile's enabled fingerprints
    """
    providers = normalize_provider_codes(profile.providers, registry)
    if not profile.enabled or not providers:
        disabled = await disable_all_for_profile(session, profile.id)
        logger.info(f"Profile {profile.id} has no active providers, disabled {disabled} fingerprints")
        return []

    check_frequency = profile.check_frequency_hours or settings.default_check_frequency_hours
    now = datetime.utcnow()
    kept_ids = []

    for provider_code in providers:
        payload = build_canonical_payload(profile, provider_code)
        fingerprint_id = await upsert(
            session,
            Fingerprint,
            {
                "profile_id": profile.id,
                "provider_code": provider_code,
                "canonical_hash": compute_canonical_hash(payload),
                "canonical_payload": payload,
                "check_frequency_hours": check_frequency,
                "enabled": True,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=("profile_id", "provider_code", "canonical_hash"),
            update_columns=("enabled", "check_frequency_hours", "updated_at"),
        )
        kept_ids.append(fingerprint_id)

    await session.execute(
        update(Fingerprint)
        .where(
            Fingerprint.profile_id == profile.id,
            Fingerprint.id.not_in(kept_ids),
            Fingerprint.enabled.is_(True),
        )
        .values(enabled=False, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )

    result = await session.execute(
        select(Fingerprint)
        .where(Fingerprint.id.in_(kept_ids))
        .order_by(Fingerprint.provider_code)
        .execution_options(populate_existing=True)
    )
    fingerprints = list(result.scalars().all())
    logger.info(f"Synced {len(fingerprints)} fingerprints for profile {profile.id}")
    return fingerprints
