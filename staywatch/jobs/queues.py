"""Job queues with per-job idempotency ids.

Each job carries a deterministic id. Enqueueing claims the id first, so the
same logical job submitted twice (for example by two overlapping scheduler
cycles) is only queued once. Retries reuse the claimed id.
"""

import asyncio
import hashlib
import logging
import time
from datetime import datetime
from typing import Any, Optional, Protocol

import redis.asyncio as redis
from pydantic import BaseModel, Field

from staywatch.config import settings

logger = logging.getLogger(__name__)

MONITOR_QUEUE = "monitor"
INSIGHT_QUEUE = "insight"
ALERT_QUEUE = "alert"
DEAL_QUEUE = "deal-scan"

ALL_QUEUES = (MONITOR_QUEUE, INSIGHT_QUEUE, ALERT_QUEUE, DEAL_QUEUE)


class Job(BaseModel):
    id: str
    queue: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)


class QueueBackend(Protocol):
    async def enqueue(self, job: Job, dedupe: bool = True) -> bool:
        """Queue a job. Returns False if its id was already claimed."""
        ...

    async def dequeue(self, queue: str, timeout: float = 1.0) -> Optional[Job]:
        ...

    async def size(self, queue: str) -> int:
        ...

    async def close(self) -> None:
        ...


class InMemoryQueueBackend:
    """Single-process queue backend, used in tests and when Redis is not configured."""

    def __init__(self, id_ttl_seconds: Optional[float] = None):
        self.id_ttl_seconds = id_ttl_seconds or settings.job_id_ttl_hours * 3600
        self._queues: dict[str, asyncio.Queue] = {}
        self._claimed: dict[str, float] = {}

    def _queue(self, name: str) -> asyncio.Queue:
        if name not in self._queues:
            self._queues[name] = asyncio.Queue()
        return self._queues[name]

    def _claim(self, job_id: str) -> bool:
        now = time.monotonic()
        self._prune_claims(now)
        if job_id in self._claimed:
            return False
        self._claimed[job_id] = now + self.id_ttl_seconds
        return True

    def _prune_claims(self, now: float) -> None:
        expired = [job_id for job_id, expires_at in self._claimed.items() if expires_at <= now]
        for job_id in expired:
            del self._claimed[job_id]

    async def enqueue(self, job: Job, dedupe: bool = True) -> bool:
        if dedupe and not self._claim(job.id):
            return False
        await self._queue(job.queue).put(job)
        return True

    async def dequeue(self, queue: str, timeout: float = 1.0) -> Optional[Job]:
        try:
            return await asyncio.wait_for(self._queue(queue).get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def size(self, queue: str) -> int:
        return self._queue(queue).qsize()

    def pending(self, queue: str) -> list[Job]:
        """Jobs waiting in a queue, oldest first."""
        return list(self._queue(queue)._queue)

    async def close(self) -> None:
        self._queues.clear()


class RedisQueueBackend:
    """
    Redis lists as queues.

    The idempotency id is claimed with ``SET NX EX``; jobs are pushed with
    LPUSH and taken with BRPOP, giving FIFO order per queue.
    """

    def __init__(self, redis_url: Optional[str] = None, id_ttl_seconds: Optional[int] = None, prefix: str = "staywatch"):
        self.redis_url = redis_url or settings.redis_url
        self.id_ttl_seconds = id_ttl_seconds or settings.job_id_ttl_hours * 3600
        self.prefix = prefix
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    def _queue_key(self, queue: str) -> str:
        return f"{self.prefix}:queue:{queue}"

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    async def enqueue(self, job: Job, dedupe: bool = True) -> bool:
        redis_client = await self._get_redis()
        if dedupe:
            claimed = await redis_client.set(self._job_key(job.id), "1", nx=True, ex=int(self.id_ttl_seconds))
            if not claimed:
                return False
        await redis_client.lpush(self._queue_key(job.queue), job.model_dump_json())
        return True

    async def dequeue(self, queue: str, timeout: float = 1.0) -> Optional[Job]:
        redis_client = await self._get_redis()
        item = await redis_client.brpop([self._queue_key(queue)], timeout=max(1, int(timeout)))
        if item is None:
            return None
        _, raw = item
        return Job.model_validate_json(raw)

    async def size(self, queue: str) -> int:
        redis_client = await self._get_redis()
        return await redis_client.llen(self._queue_key(queue))

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None


def build_backend() -> QueueBackend:
    if settings.queue_backend.lower() == "memory":
        return InMemoryQueueBackend()
    return RedisQueueBackend()


def _hour_bucket(now: datetime) -> str:
    return now.strftime("%Y-%m-%dT%H")


class JobQueues:
    """Typed enqueue helpers over a queue backend."""

    def __init__(self, backend: QueueBackend):
        self.backend = backend

    async def _enqueue(self, queue: str, job_id: str, payload: dict) -> bool:
        queued = await self.backend.enqueue(Job(id=job_id, queue=queue, payload=payload))
        if queued:
            logger.debug(f"Enqueued {queue} job {job_id}")
        else:
            logger.debug(f"Skipped duplicate {queue} job {job_id}")
        return queued

    async def enqueue_monitor(self, fingerprint_id: int, now: Optional[datetime] = None) -> bool:
        """One monitor job per fingerprint per clock hour."""
        bucket = _hour_bucket(now or datetime.utcnow())
        job_id = hashlib.sha256(f"monitor:{fingerprint_id}:{bucket}".encode("utf-8")).hexdigest()
        return await self._enqueue(MONITOR_QUEUE, job_id, {"fingerprint_id": fingerprint_id})

    async def enqueue_insight(self, fingerprint_id: int, now: Optional[datetime] = None) -> bool:
        """One insight job per fingerprint per day."""
        day = (now or datetime.utcnow()).date().isoformat()
        return await self._enqueue(INSIGHT_QUEUE, f"insight:{fingerprint_id}:{day}", {"fingerprint_id": fingerprint_id})

    async def enqueue_alert(self, insight_id: int, user_id: int) -> bool:
        return await self._enqueue(
            ALERT_QUEUE,
            f"alert:{user_id}:{insight_id}",
            {"insight_id": insight_id, "user_id": user_id},
        )

    async def enqueue_deal_scan(self, now: Optional[datetime] = None) -> bool:
        """One scan of every provider's offers per day."""
        day = (now or datetime.utcnow()).date().isoformat()
        return await self._enqueue(DEAL_QUEUE, f"deal-scan:ALL:{day}", {"providers": "ALL"})

    async def close(self) -> None:
        await self.backend.close()
