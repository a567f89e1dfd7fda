"""Stable identifiers for price series and insight deduplication."""

import hashlib
from datetime import date
from typing import Optional, Union

ANY = "ANY"


def _sha256(*parts: object) -> str:
    return hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()


def generate_series_key(
    provider_code: str,
    stay_start_date: Union[date, str],
    stay_nights: int,
    park_id: Optional[str] = None,
    accom_type_id: Optional[str] = None,
) -> str:
    """
    Key grouping observations of the same bookable product over time.

    Two observations share a key only when provider, arrival date, nights,
    park and accommodation type all agree. Missing park or accommodation
    ids use the literal "ANY" so an empty string never collides with absent.

    Args:
        provider_code: Provider code (case-insensitive)
        stay_start_date: Arrival date, as a date or ISO string
        stay_nights: Number of nights
        park_id: Provider park identifier
        accom_type_id: Provider accommodation type identifier

    Returns:
        SHA-256 hex digest
    """
    if not provider_code:
        raise ValueError("provider_code is required for a series key")
    if stay_start_date is None or stay_nights is None:
        raise ValueError("stay date and nights are required for a series key")

    date_part = stay_start_date.isoformat() if isinstance(stay_start_date, date) else str(stay_start_date)
    return _sha256(
        provider_code.lower(),
        date_part,
        int(stay_nights),
        park_id if park_id else ANY,
        accom_type_id if accom_type_id else ANY,
    )


def generate_insight_dedupe_key(
    fingerprint_id: int,
    series_key: str,
    insight_type: str,
    window_label: str,
) -> str:
    """Key making repeat detections of one insight in one window idempotent."""
    return _sha256(fingerprint_id, series_key, insight_type, window_label)
