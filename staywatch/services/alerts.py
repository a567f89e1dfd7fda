"""Alert delivery with weekly deduplication."""

import hashlib
import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from staywatch import metrics
from staywatch.config import settings
from staywatch.db.models import Alert, AlertStatus, Fingerprint, Insight, User
from staywatch.db.repository import insert_or_ignore
from staywatch.errors import NotificationError

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1)


def compute_window_start(now: datetime, days: int = 7) -> datetime:
    """Start of the fixed ``days``-long window containing ``now``, aligned to the Unix epoch."""
    window_seconds = days * 86400
    elapsed = int((now - EPOCH).total_seconds())
    return EPOCH + timedelta(seconds=elapsed - elapsed % window_seconds)


def alert_dedupe_key(
    user_id: int,
    insight_type: str,
    fingerprint_or_series: str,
    window_start: datetime,
) -> str:
    """Same user, insight type and series within one window share a key."""
    key_data = f"{user_id}:{insight_type}:{fingerprint_or_series}:{window_start.isoformat()}"
    return hashlib.sha256(key_data.encode("utf-8")).hexdigest()


class NotificationSender(Protocol):
    async def send(self, recipient: str, summary: str, details: dict) -> None:
        """Deliver one notification or raise NotificationError."""
        ...


class LogNotificationSender:
    """Writes notifications to the log; used when no webhook is configured."""

    async def send(self, recipient: str, summary: str, details: dict) -> None:
        logger.info(f"Notification for {recipient}: {summary}", extra={"details": details})


class WebhookNotificationSender:
    """Posts ``{recipient, summary, details}`` as JSON to a webhook."""

    def __init__(self, url: str, timeout: Optional[float] = None):
        self.url = url
        self.timeout = timeout or settings.notification_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def send(self, recipient: str, summary: str, details: dict) -> None:
        client = await self._get_client()
        try:
            response = await client.post(
                self.url,
                json={"recipient": recipient, "summary": summary, "details": details},
            )
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook request failed: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(f"Webhook returned HTTP {response.status_code}")

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None


def build_sender() -> NotificationSender:
    if settings.notification_webhook_url:
        return WebhookNotificationSender(settings.notification_webhook_url)
    return LogNotificationSender()


class AlertService:
    """
    Turns an insight into at most one delivered alert per user, type and series per window.

    The dedupe key is claimed by inserting the QUEUED alert row, so two workers
    racing on equivalent insights cannot both send.
    """

    def __init__(self, sender: Optional[NotificationSender] = None, window_days: Optional[int] = None):
        self.sender = sender or build_sender()
        self.window_days = window_days or settings.alert_dedupe_window_days

    async def process(
        self,
        session: AsyncSession,
        insight_id: int,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> Optional[Alert]:
        """
        Send the alert for an insight to a user unless it is suppressed.

        Suppressed when the user has notifications off, the fingerprint is
        snoozed, or an alert with the same dedupe key already exists.

        Args:
            session: Database session (this method commits)
            insight_id: Insight to announce
            user_id: Recipient
            now: Reference time for snooze and window checks

        Returns:
            The alert row (SENT or FAILED), or None if suppressed
        """
        now = now or datetime.utcnow()

        insight = await session.get(Insight, insight_id)
        user = await session.get(User, user_id)
        if insight is None or user is None:
            logger.warning(f"Alert skipped: insight {insight_id} or user {user_id} not found")
            metrics.alerts_total.labels(status="skipped").inc()
            return None

        if not user.notifications_enabled:
            logger.info(f"Alert skipped: notifications disabled for user {user_id}")
            metrics.alerts_total.labels(status="skipped").inc()
            return None

        fingerprint = await session.get(Fingerprint, insight.fingerprint_id)
        if fingerprint is not None and fingerprint.snoozed_until and fingerprint.snoozed_until > now:
            logger.info(f"Alert skipped: fingerprint {fingerprint.id} snoozed until {fingerprint.snoozed_until}")
            metrics.alerts_total.labels(status="skipped").inc()
            return None

        window_start = compute_window_start(now, self.window_days)
        dedupe_key = alert_dedupe_key(
            user_id,
            insight.type,
            f"{insight.fingerprint_id}:{insight.series_key}",
            window_start,
        )

        existing = await session.execute(select(Alert.id).where(Alert.dedupe_key == dedupe_key))
        if existing.scalar_one_or_none() is not None:
            logger.info(f"Alert deduplicated for user {user_id} ({insight.type})")
            metrics.alerts_total.labels(status="deduped").inc()
            return None

        alert_id = await insert_or_ignore(
            session,
            Alert,
            {
                "user_id": user_id,
                "insight_id": insight_id,
                "dedupe_key": dedupe_key,
                "status": AlertStatus.QUEUED.value,
                "created_at": now,
            },
            conflict_columns=("dedupe_key",),
        )
        await session.commit()
        if alert_id is None:
            # Lost the race to another worker
            metrics.alerts_total.labels(status="deduped").inc()
            return None

        alert = await session.get(Alert, alert_id)
        details = dict(insight.details or {})
        details.update({
            "insight_type": insight.type,
            "fingerprint_id": insight.fingerprint_id,
            "series_key": insight.series_key,
        })

        try:
            await self.sender.send(user.email, insight.summary, details)
        except NotificationError as e:
            alert.status = AlertStatus.FAILED.value
            alert.error_message = str(e)
            logger.error(f"Alert {alert_id} delivery failed: {e}")
        else:
            alert.status = AlertStatus.SENT.value
            alert.sent_at = datetime.utcnow()
            logger.info(f"Alert {alert_id} sent to user {user_id}: {insight.summary}")

        await session.commit()
        metrics.alerts_total.labels(status=alert.status.lower()).inc()
        return alert
