"""Wiring of the four queues to their workers."""

from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from staywatch.adapters.registry import AdapterRegistry
from staywatch.config import settings
from staywatch.db.session import AsyncSessionLocal
from staywatch.jobs.queues import ALERT_QUEUE, DEAL_QUEUE, INSIGHT_QUEUE, MONITOR_QUEUE, JobQueues
from staywatch.jobs.runner import QueueWorker, WorkerPool
from staywatch.jobs.workers.alert import AlertWorker
from staywatch.jobs.workers.deal import DealScanWorker
from staywatch.jobs.workers.insight import InsightWorker
from staywatch.jobs.workers.monitor import MonitorWorker
from staywatch.services.alerts import AlertService


def build_worker_pool(
    registry: AdapterRegistry,
    queues: JobQueues,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    alert_service: Optional[AlertService] = None,
) -> WorkerPool:
    """
    Queue policies:
    - monitor: concurrency follows the provider throttle
    - insight and alert: parallel
    - deal scan: serial, at most one job per ``deal_scan_min_interval_seconds``
    """
    backend = queues.backend
    return WorkerPool([
        QueueWorker(
            MONITOR_QUEUE,
            backend,
            MonitorWorker(registry, queues, session_factory),
            concurrency=settings.provider_max_concurrent,
        ),
        QueueWorker(
            INSIGHT_QUEUE,
            backend,
            InsightWorker(queues, session_factory),
            concurrency=settings.insight_queue_concurrency,
        ),
        QueueWorker(
            ALERT_QUEUE,
            backend,
            AlertWorker(alert_service or AlertService(), session_factory),
            concurrency=settings.alert_queue_concurrency,
        ),
        QueueWorker(
            DEAL_QUEUE,
            backend,
            DealScanWorker(registry, session_factory),
            concurrency=settings.deal_queue_concurrency,
            min_interval_seconds=settings.deal_scan_min_interval_seconds,
        ),
    ])
