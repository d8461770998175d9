"""
Notification delivery worker.

Polls the notification_jobs queue on a fixed interval, claims due jobs
and hands them to the matching channel sender. Failed deliveries are
retried with exponential backoff (2^attempts minutes) until max_attempts,
after which the job is FAILED.
"""

import asyncio
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta

from app.config import Settings
from app.features.notifications.channels import ChannelSender, DeliveryResult
from app.features.notifications.domain import Channel, JobStatus, NotificationJob
from app.features.notifications.repository.job_repository import NotificationJobRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Worker configuration defaults
POLL_INTERVAL_SECONDS = 30
BATCH_SIZE = 50
DELIVERY_TIMEOUT_SECONDS = 30
STALE_CLAIM_MINUTES = 10  # PROCESSING longer than this is assumed abandoned


def utcnow() -> datetime:
    return datetime.now(UTC)


def backoff_delay(attempts: int) -> timedelta:
    """Delay before the next try after ``attempts`` failures."""
    return timedelta(minutes=2**attempts)


class SweepMetrics:
    """Counters for a single queue sweep."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = utcnow()
        self.jobs_fetched = 0
        self.jobs_sent = 0
        self.jobs_retried = 0
        self.jobs_failed = 0
        self.jobs_skipped = 0
        self.processing_errors = 0
        self.stale_claims_released = 0
        self.total_duration_seconds = 0.0

    def record_sent(self, job: NotificationJob):
        self.jobs_sent += 1
        logger.info("Notification sent", job_id=job.id, channel=job.channel.value)

    def record_retry(self, job: NotificationJob, error: str | None, retry_at: datetime):
        self.jobs_retried += 1
        logger.warning(
            "Notification delivery failed, retry scheduled",
            job_id=job.id,
            channel=job.channel.value,
            attempts=job.attempts,
            retry_at=retry_at.isoformat(),
            error=error,
        )

    def record_failed(self, job: NotificationJob, error: str | None):
        self.jobs_failed += 1
        logger.error(
            "Notification permanently failed",
            job_id=job.id,
            channel=job.channel.value,
            attempts=job.attempts,
            error=error,
        )

    def record_skipped(self, job: NotificationJob):
        self.jobs_skipped += 1
        logger.debug("Notification already claimed elsewhere", job_id=job.id)

    def record_processing_error(self, job_id: str, error: str):
        self.processing_errors += 1
        logger.error("Notification processing error", job_id=job_id, error=error)

    def finalize(self):
        self.total_duration_seconds = (utcnow() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 3),
            "jobs_fetched": self.jobs_fetched,
            "jobs_sent": self.jobs_sent,
            "jobs_retried": self.jobs_retried,
            "jobs_failed": self.jobs_failed,
            "jobs_skipped": self.jobs_skipped,
            "processing_errors": self.processing_errors,
            "stale_claims_released": self.stale_claims_released,
        }


class NotificationWorker:
    """
    Timer-driven queue consumer.

    Each tick spawns a sweep task; a sweep that finds another one still
    running returns immediately, so slow sweeps never pile up.
    """

    def __init__(
        self,
        repository: NotificationJobRepository,
        senders: Mapping[Channel, ChannelSender],
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        batch_size: int = BATCH_SIZE,
        delivery_timeout: float = DELIVERY_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.senders = dict(senders)
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.delivery_timeout = delivery_timeout
        self._clock = clock

        self.is_running = False
        self.sweep_count = 0
        self.last_run_time: datetime | None = None
        self.started_at: datetime | None = None
        self.metrics = SweepMetrics()

        self._loop_task: asyncio.Task | None = None
        self._sweep_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: NotificationJobRepository,
        senders: Mapping[Channel, ChannelSender],
    ) -> "NotificationWorker":
        return cls(
            repository,
            senders,
            poll_interval=settings.NOTIFICATION_POLL_INTERVAL_SECONDS,
            batch_size=settings.NOTIFICATION_BATCH_SIZE,
            delivery_timeout=settings.NOTIFICATION_DELIVERY_TIMEOUT_SECONDS,
        )

    @property
    def started(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start ticking; the first sweep runs immediately."""
        if self.started:
            logger.info("Notification worker is already running")
            return

        logger.info(
            "Starting notification worker",
            poll_interval_seconds=self.poll_interval,
            batch_size=self.batch_size,
            channels=sorted(channel.value for channel in self.senders),
        )
        self.started_at = self._clock()
        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """Stop ticking and wait for the in-flight sweep to finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._sweep_tasks:
            await asyncio.gather(*self._sweep_tasks, return_exceptions=True)

        logger.info("Notification worker stopped", sweeps=self.sweep_count)

    def health_check(self) -> dict:
        """
        Health status for the readiness probe.

        Overdue means no sweep finished within two poll intervals, counted
        from start until the first sweep completes.
        """
        now = self._clock()
        overdue_threshold = timedelta(seconds=self.poll_interval * 2)
        reference = self.last_run_time or self.started_at
        is_overdue = reference is not None and (now - reference) > overdue_threshold

        health_status = {
            "healthy": self.started and not is_overdue,
            "service": "notification_worker",
            "started": self.started,
            "is_running": self.is_running,
            "sweep_count": self.sweep_count,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
            "configuration": {
                "poll_interval_seconds": self.poll_interval,
                "batch_size": self.batch_size,
                "delivery_timeout_seconds": self.delivery_timeout,
            },
        }
        if is_overdue:
            health_status["warning"] = (
                f"Worker overdue by {(now - reference).total_seconds():.0f} seconds"
            )
        return health_status

    async def _run_loop(self) -> None:
        while True:
            self.trigger_sweep()
            await asyncio.sleep(self.poll_interval)

    def trigger_sweep(self) -> asyncio.Task:
        """Fire one sweep in the background, as a timer tick does."""
        task = asyncio.create_task(self.process_queue())
        self._sweep_tasks.add(task)
        task.add_done_callback(self._sweep_tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def process_queue(self) -> dict:
        """
        Run a single sweep over due jobs.

        Returns:
            Dict: sweep metrics, or a skipped marker if a sweep was in progress
        """
        if self.is_running:
            logger.debug("Notification sweep already running, skipping this tick")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        self.metrics.reset()
        self.sweep_count += 1

        try:
            await self._release_stale_claims()

            jobs = await self.repository.fetch_due_jobs(self._clock(), self.batch_size)
            jobs.sort(key=NotificationJob.dispatch_order)
            self.metrics.jobs_fetched = len(jobs)

            for job in jobs:
                try:
                    await self.process_job(job)
                except Exception as e:
                    self.metrics.record_processing_error(job.id, f"{type(e).__name__}: {e}")

            self.metrics.finalize()
            self.last_run_time = self._clock()
            metrics = self.metrics.to_dict()

            if jobs:
                logger.info("Notification sweep completed", **metrics)
            return metrics

        except Exception as e:
            logger.error(
                "Error processing notification queue", error=str(e), error_type=type(e).__name__
            )
            self.metrics.finalize()
            metrics = self.metrics.to_dict()
            metrics["sweep_error"] = str(e)
            return metrics

        finally:
            self.is_running = False

    async def _release_stale_claims(self) -> None:
        cutoff = self._clock() - timedelta(minutes=STALE_CLAIM_MINUTES)
        released = await self.repository.release_stale_claims(cutoff, self._clock())
        if released:
            self.metrics.stale_claims_released = released
            logger.warning("Released stale notification claims", count=released)

    async def process_job(self, job: NotificationJob) -> JobStatus | None:
        """
        Claim, deliver and settle one job.

        Returns:
            The job's resulting status, or None if another worker owns it
        """
        if not await self.repository.claim_job(job.id, self._clock()):
            self.metrics.record_skipped(job)
            return None
        job.status = JobStatus.PROCESSING

        try:
            result = await self._dispatch(job)
        except TimeoutError:
            result = DeliveryResult(
                success=False, error=f"Delivery timed out after {self.delivery_timeout}s"
            )
        except Exception as e:
            result = DeliveryResult(success=False, error=f"{type(e).__name__}: {e}")

        if result.success:
            await self.repository.mark_sent(job.id, self._clock())
            job.status = JobStatus.SENT
            job.last_error = None
            self.metrics.record_sent(job)
            return job.status

        return await self.handle_failure(job, result.error)

    async def _dispatch(self, job: NotificationJob) -> DeliveryResult:
        sender = self.senders.get(job.channel)
        if sender is None:
            return DeliveryResult(
                success=False, error=f"Unsupported notification channel: {job.channel.value}"
            )

        return await asyncio.wait_for(
            sender.deliver(job.recipient, job.subject, job.content, job.payload, job.priority),
            timeout=self.delivery_timeout,
        )

    async def handle_failure(self, job: NotificationJob, error: str | None) -> JobStatus:
        """Count the failed attempt and either reschedule or fail the job."""
        now = self._clock()
        job.attempts += 1
        job.last_error = error

        if job.attempts >= job.max_attempts:
            await self.repository.mark_failed(job.id, job.attempts, error, now)
            job.status = JobStatus.FAILED
            self.metrics.record_failed(job, error)
            return job.status

        retry_at = now + backoff_delay(job.attempts)
        await self.repository.reschedule(job.id, job.attempts, error, retry_at, now)
        job.status = JobStatus.PENDING
        job.scheduled_at = retry_at
        self.metrics.record_retry(job, error, retry_at)
        return job.status
