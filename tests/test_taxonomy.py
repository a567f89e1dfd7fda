"""Tests for the failure taxonomy."""

import asyncio

import httpx
import pytest

from staywatch.db.models import ProviderStatus
from staywatch.errors import (
    ProviderBlockedError,
    ProviderDisabledError,
    ProviderFetchError,
    ProviderParseError,
    ProviderTimeoutError,
)
from staywatch.services.taxonomy import classify_failure, http_status_of


def _status_error(code):
    request = httpx.Request("GET", "https://provider.example.com/search")
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=httpx.Response(code, request=request))


@pytest.mark.parametrize(
    "exc,expected",
    [
        (ProviderTimeoutError("slow"), ProviderStatus.TIMEOUT),
        (asyncio.TimeoutError(), ProviderStatus.TIMEOUT),
        (httpx.ReadTimeout("read timeout"), ProviderStatus.TIMEOUT),
        (ProviderBlockedError("bot challenge"), ProviderStatus.BLOCKED),
        (ProviderDisabledError("haven"), ProviderStatus.BLOCKED),
        (ProviderParseError("layout changed"), ProviderStatus.PARSE_FAILED),
        (_status_error(403), ProviderStatus.BLOCKED),
        (_status_error(429), ProviderStatus.BLOCKED),
        (_status_error(500), ProviderStatus.FETCH_FAILED),
        (ProviderFetchError("bad gateway", http_status=502), ProviderStatus.FETCH_FAILED),
        (httpx.ConnectError("refused"), ProviderStatus.FETCH_FAILED),
        (RuntimeError("Navigation timeout of 30000 ms exceeded"), ProviderStatus.TIMEOUT),
        (RuntimeError("Access Denied"), ProviderStatus.BLOCKED),
        (RuntimeError("selector .result-card not found"), ProviderStatus.PARSE_FAILED),
        (RuntimeError("something else"), ProviderStatus.FETCH_FAILED),
    ],
)
def test_classify_failure(exc, expected):
    assert classify_failure(exc) == expected


def test_type_decides_before_message():
    # Message mentions a timeout but the error is a parse failure
    assert classify_failure(ProviderParseError("parse timed out")) == ProviderStatus.PARSE_FAILED


def test_status_decides_before_message():
    assert classify_failure(ProviderFetchError("captcha page", http_status=500)) == ProviderStatus.FETCH_FAILED


def test_http_status_of():
    assert http_status_of(_status_error(404)) == 404
    assert http_status_of(ProviderBlockedError("no", http_status=403)) == 403
    assert http_status_of(RuntimeError("boom")) is None
