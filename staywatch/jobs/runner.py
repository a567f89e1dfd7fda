"""Queue consumers: bounded concurrency, rate limiting and retry with backoff."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from staywatch import metrics
from staywatch.config import settings
from staywatch.jobs.outcome import FatalError, Outcome, RetryableError, Success
from staywatch.jobs.queues import Job, QueueBackend
from staywatch.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

Handler = Callable[[Job], Awaitable[Outcome]]


class QueueWorker:
    """
    Pulls jobs from one queue and runs them through a handler.

    At most ``concurrency`` jobs run at once. A RetryableError outcome puts
    the job back with ``attempts + 1`` after exponential backoff, until
    ``max_attempts`` is reached. A FatalError drops the job.
    """

    def __init__(
        self,
        queue_name: str,
        backend: QueueBackend,
        handler: Handler,
        concurrency: int = 1,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        min_interval_seconds: Optional[float] = None,
        limiter: Optional[RateLimiter] = None,
        poll_timeout: float = 1.0,
    ):
        self.queue_name = queue_name
        self.backend = backend
        self.handler = handler
        self.concurrency = max(1, concurrency)
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.backoff_seconds = settings.job_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.min_interval_seconds = min_interval_seconds
        self.limiter = limiter or RateLimiter()
        self.poll_timeout = poll_timeout

        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._consume())
        logger.info(f"Worker started for queue {self.queue_name} (concurrency {self.concurrency})")

    async def stop(self) -> None:
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info(f"Worker stopped for queue {self.queue_name}")

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _consume(self) -> None:
        while self._running:
            # Take a slot before popping so a stop never strands a dequeued job
            await self._semaphore.acquire()
            try:
                job = await self.backend.dequeue(self.queue_name, timeout=self.poll_timeout)
            except asyncio.CancelledError:
                self._semaphore.release()
                raise
            except Exception as e:
                self._semaphore.release()
                logger.error(f"Failed to dequeue from {self.queue_name}: {e}")
                await asyncio.sleep(self.poll_timeout)
                continue
            if job is None:
                self._semaphore.release()
                continue

            task = asyncio.create_task(self._run_and_release(job))
            self._track(task)

    async def _run_and_release(self, job: Job) -> None:
        try:
            await self.process(job)
        finally:
            self._semaphore.release()

    async def process(self, job: Job) -> Outcome:
        """Run one job and apply its outcome."""
        if self.min_interval_seconds:
            await self.limiter.acquire_with_interval(f"queue:{self.queue_name}", self.min_interval_seconds)

        metrics.queue_jobs_in_flight.labels(queue=self.queue_name).inc()
        try:
            outcome = await self.handler(job)
        except Exception as e:
            logger.exception(f"Unhandled error in {self.queue_name} job {job.id}: {e}")
            outcome = RetryableError(str(e))
        finally:
            metrics.queue_jobs_in_flight.labels(queue=self.queue_name).dec()

        if isinstance(outcome, Success):
            metrics.queue_jobs_total.labels(queue=self.queue_name, outcome="success").inc()
        elif isinstance(outcome, FatalError):
            metrics.queue_jobs_total.labels(queue=self.queue_name, outcome="fatal").inc()
            logger.error(f"{self.queue_name} job {job.id} failed permanently: {outcome.message}")
        else:
            await self._retry(job, outcome)
        return outcome

    async def _retry(self, job: Job, outcome: RetryableError) -> None:
        attempts = job.attempts + 1
        if attempts >= self.max_attempts:
            metrics.queue_jobs_total.labels(queue=self.queue_name, outcome="exhausted").inc()
            logger.error(
                f"{self.queue_name} job {job.id} gave up after {attempts} attempts: {outcome.message}"
            )
            return

        metrics.queue_jobs_total.labels(queue=self.queue_name, outcome="retry").inc()
        retry_job = job.model_copy(update={"attempts": attempts})
        logger.warning(
            f"{self.queue_name} job {job.id} failed (attempt {attempts}/{self.max_attempts}), "
            f"retrying: {outcome.message}"
        )
        if self.backoff_seconds <= 0:
            await self.backend.enqueue(retry_job, dedupe=False)
            return
        self._track(asyncio.create_task(self._requeue_later(retry_job)))

    async def _requeue_later(self, job: Job) -> None:
        waited = await self.limiter.wait_for_backoff(job.attempts, base_seconds=self.backoff_seconds)
        logger.debug(f"Requeued {self.queue_name} job {job.id} after {waited:.1f}s backoff")
        await self.backend.enqueue(job, dedupe=False)


class WorkerPool:
    """Starts and stops the consumers of every queue together."""

    def __init__(self, workers: list[QueueWorker]):
        self.workers = workers

    def start(self) -> None:
        for worker in self.workers:
            worker.start()

    async def stop(self) -> None:
        await asyncio.gather(*(worker.stop() for worker in self.workers))
