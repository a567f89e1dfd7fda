"""Failure taxonomy for fetch runs."""

import asyncio
from typing import Optional

import httpx

from staywatch.db.models import ProviderStatus
from staywatch.errors import (
    ProviderBlockedError,
    ProviderDisabledError,
    ProviderFetchError,
    ProviderParseError,
    ProviderTimeoutError,
)

BLOCKED_HTTP_STATUSES = (401, 403, 429)

TIMEOUT_HINTS = ("timeout", "timed out")
BLOCKED_HINTS = ("403", "blocked", "forbidden", "captcha", "access denied", "robots")
PARSE_HINTS = ("parse", "selector", "no results", "extract")


def http_status_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "http_status", None)
    if status is None and isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    return status


def classify_failure(exc: BaseException) -> ProviderStatus:
    """
    Map an exception to a provider status.

    Typed adapter errors decide first, then a captured HTTP status, and
    only then the message text.
    """
    if isinstance(exc, (ProviderTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return ProviderStatus.TIMEOUT
    if isinstance(exc, (ProviderBlockedError, ProviderDisabledError)):
        return ProviderStatus.BLOCKED
    if isinstance(exc, ProviderParseError):
        return ProviderStatus.PARSE_FAILED

    status = http_status_of(exc)
    if status in BLOCKED_HTTP_STATUSES:
        return ProviderStatus.BLOCKED
    if status is not None or isinstance(exc, (ProviderFetchError, httpx.TransportError)):
        return ProviderStatus.FETCH_FAILED

    message = str(exc).lower()
    if any(hint in message for hint in TIMEOUT_HINTS):
        return ProviderStatus.TIMEOUT
    if any(hint in message for hint in BLOCKED_HINTS):
        return ProviderStatus.BLOCKED
    if any(hint in message for hint in PARSE_HINTS):
        return ProviderStatus.PARSE_FAILED
    return ProviderStatus.FETCH_FAILED
