"""Tests for alert delivery and deduplication."""

from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import func, select

from staywatch.db.models import Alert, AlertStatus, Insight, InsightType, User
from staywatch.errors import NotificationError
from staywatch.services.alerts import (
    AlertService,
    WebhookNotificationSender,
    alert_dedupe_key,
    compute_window_start,
)
from tests.factories import make_fingerprint

NOW = datetime(2024, 3, 14, 12, 0)


class RecordingSender:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    async def send(self, recipient, summary, details):
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, summary, details))


async def _seed_insight(session, profile, dedupe_key="k1", insight_type=InsightType.PRICE_DROP_PERCENT, **fp_overrides):
    fingerprint = make_fingerprint(profile, **fp_overrides)
    session.add(fingerprint)
    await session.flush()
    insight = Insight(
        fingerprint_id=fingerprint.id,
        series_key="s" * 64,
        type=insight_type.value,
        dedupe_key=dedupe_key,
        summary="Price dropped by £80.00 (16.0%)",
        details={"drop_amount": 80.0},
    )
    session.add(insight)
    await session.commit()
    return insight


async def _alert_count(session):
    return await session.scalar(select(func.count()).select_from(Alert))


def test_window_start_is_stable_within_window():
    start = compute_window_start(NOW)

    assert start <= NOW < start + timedelta(days=7)
    assert compute_window_start(start + timedelta(days=6, hours=23)) == start
    assert compute_window_start(start + timedelta(days=7)) == start + timedelta(days=7)


def test_dedupe_key_changes_per_window():
    start = compute_window_start(NOW)

    assert alert_dedupe_key(1, "PRICE_DROP_PERCENT", "1:abc", start) == alert_dedupe_key(
        1, "PRICE_DROP_PERCENT", "1:abc", start
    )
    assert alert_dedupe_key(1, "PRICE_DROP_PERCENT", "1:abc", start) != alert_dedupe_key(
        1, "PRICE_DROP_PERCENT", "1:abc", start + timedelta(days=7)
    )


@pytest.mark.asyncio
async def test_sends_alert(db_session, profile):
    insight = await _seed_insight(db_session, profile)
    sender = RecordingSender()

    alert = await AlertService(sender).process(db_session, insight.id, profile.user_id, now=NOW)

    assert alert.status == AlertStatus.SENT.value
    assert alert.sent_at is not None
    recipient, summary, details = sender.sent[0]
    assert recipient == "family@example.com"
    assert summary == insight.summary
    assert details["insight_type"] == "PRICE_DROP_PERCENT"


@pytest.mark.asyncio
async def test_same_series_deduplicated_within_window(db_session, profile):
    first = await _seed_insight(db_session, profile, dedupe_key="k1")
    second = Insight(
        fingerprint_id=first.fingerprint_id,
        series_key=first.series_key,
        type=first.type,
        dedupe_key="k2",
        summary="Price dropped by £90.00 (18.0%)",
    )
    db_session.add(second)
    await db_session.commit()
    sender = RecordingSender()
    service = AlertService(sender)

    assert await service.process(db_session, first.id, profile.user_id, now=NOW) is not None
    assert await service.process(db_session, second.id, profile.user_id, now=NOW + timedelta(hours=1)) is None

    assert len(sender.sent) == 1
    assert await _alert_count(db_session) == 1


@pytest.mark.asyncio
async def test_next_window_alerts_again(db_session, profile):
    insight = await _seed_insight(db_session, profile)
    service = AlertService(RecordingSender())

    await service.process(db_session, insight.id, profile.user_id, now=NOW)
    later = await service.process(db_session, insight.id, profile.user_id, now=NOW + timedelta(days=8))

    assert later is not None
    assert await _alert_count(db_session) == 2


@pytest.mark.asyncio
async def test_notifications_disabled(db_session, profile):
    insight = await _seed_insight(db_session, profile)
    user = await db_session.get(User, profile.user_id)
    user.notifications_enabled = False
    await db_session.commit()
    sender = RecordingSender()

    assert await AlertService(sender).process(db_session, insight.id, user.id, now=NOW) is None
    assert sender.sent == []
    assert await _alert_count(db_session) == 0


@pytest.mark.asyncio
async def test_snoozed_fingerprint(db_session, profile):
    insight = await _seed_insight(db_session, profile, snoozed_until=NOW + timedelta(days=2))
    sender = RecordingSender()

    assert await AlertService(sender).process(db_session, insight.id, profile.user_id, now=NOW) is None
    assert sender.sent == []


@pytest.mark.asyncio
async def test_expired_snooze_alerts(db_session, profile):
    insight = await _seed_insight(db_session, profile, snoozed_until=NOW - timedelta(days=1))

    assert await AlertService(RecordingSender()).process(db_session, insight.id, profile.user_id, now=NOW)


@pytest.mark.asyncio
async def test_failed_delivery_marked(db_session, profile):
    insight = await _seed_insight(db_session, profile)
    sender = RecordingSender(error=NotificationError("webhook down"))

    alert = await AlertService(sender).process(db_session, insight.id, profile.user_id, now=NOW)

    assert alert.status == AlertStatus.FAILED.value
    assert alert.error_message == "webhook down"


@pytest.mark.asyncio
async def test_missing_insight(db_session, profile):
    assert await AlertService(RecordingSender()).process(db_session, 999, profile.user_id, now=NOW) is None


@pytest.mark.asyncio
async def test_webhook_sender_posts_json():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    sender = WebhookNotificationSender("https://hooks.example.com/alerts")
    sender._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    await sender.send("family@example.com", "Price dropped", {"drop_amount": 80.0})
    await sender.close()

    assert requests[0].url == "https://hooks.example.com/alerts"
    assert b'"recipient":"family@example.com"' in requests[0].content.replace(b" ", b"")


@pytest.mark.asyncio
async def test_webhook_sender_raises_on_error_status():
    sender = WebhookNotificationSender("https://hooks.example.com/alerts")
    sender._client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

    with pytest.raises(NotificationError):
        await sender.send("family@example.com", "Price dropped", {})
    await sender.close()
