"""
Producer-side notification API.

Validates and enqueues single notifications, fans bulk sends out from a
template into individual jobs, and exposes cancel/retry and delivery
statistics. Delivery itself happens in the worker.
"""

import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from app.features.notifications.domain import (
    BulkJobStatus,
    BulkNotificationJob,
    BulkRecipient,
    Channel,
    JobStatus,
    NotificationJob,
    NotificationPayload,
    NotificationTemplate,
    Priority,
    empty_payload,
    missing_variables,
    render_template,
)
from app.features.notifications.repository.job_repository import (
    BulkNotificationRepository,
    NotificationJobRepository,
    day_key,
)
from app.features.notifications.repository.template_repository import (
    NotificationTemplateRepository,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class NotificationError(Exception):
    """Base exception for notification producer errors."""

    pass


class TemplateNotFoundError(NotificationError):
    """Template is missing or inactive."""

    pass


class InvalidNotificationError(NotificationError):
    """Request cannot be turned into a deliverable job."""

    pass


def new_job_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class NotificationService:
    def __init__(
        self,
        job_repository: NotificationJobRepository,
        bulk_repository: BulkNotificationRepository,
        template_repository: NotificationTemplateRepository,
        *,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.jobs = job_repository
        self.bulk_jobs = bulk_repository
        self.templates = template_repository
        self.default_max_attempts = default_max_attempts
        self._clock = clock

    # ------------------------------------------------------------------
    # Single notifications
    # ------------------------------------------------------------------

    async def add_notification(
        self,
        channel: Channel,
        recipient: str,
        content: str,
        *,
        priority: Priority = Priority.MEDIUM,
        subject: str | None = None,
        payload: NotificationPayload | None = None,
        scheduled_at: datetime | None = None,
        max_attempts: int | None = None,
    ) -> str:
        """
        Persist a PENDING job and return its id.

        Raises:
            InvalidNotificationError: empty recipient/content, payload for a
                different channel, or a non-positive attempt budget
        """
        if not recipient or not recipient.strip():
            raise InvalidNotificationError("Recipient is required")
        if not content:
            raise InvalidNotificationError("Content is required")
        if payload is not None and payload.channel != channel.value:
            raise InvalidNotificationError(
                f"Payload for {payload.channel} cannot be sent on channel {channel.value}"
            )

        attempts_budget = max_attempts if max_attempts is not None else self.default_max_attempts
        if attempts_budget < 1:
            raise InvalidNotificationError("max_attempts must be at least 1")

        now = self._clock()
        job = NotificationJob(
            id=new_job_id("notif"),
            channel=channel,
            priority=priority,
            recipient=recipient.strip(),
            subject=subject,
            content=content,
            payload=payload,
            scheduled_at=scheduled_at or now,
            max_attempts=attempts_budget,
            created_at=now,
            updated_at=now,
        )

        await self.jobs.create_job(job)
        return job.id

    async def get_notification(self, job_id: str) -> NotificationJob | None:
        return await self.jobs.get_job(job_id)

    async def cancel_notification(self, job_id: str) -> bool:
        """PENDING -> CANCELLED. False if the job is missing or past PENDING."""
        cancelled = await self.jobs.cancel_job(job_id, self._clock())
        if cancelled:
            logger.info("Notification cancelled", job_id=job_id)
        else:
            logger.info("Notification not cancellable", job_id=job_id)
        return cancelled

    async def retry_notification(self, job_id: str) -> bool:
        """Requeue a FAILED or CANCELLED job with a fresh attempt budget."""
        requeued = await self.jobs.requeue_job(job_id, self._clock())
        if requeued:
            logger.info("Notification requeued for retry", job_id=job_id)
        else:
            logger.info("Notification not retryable", job_id=job_id)
        return requeued

    # ------------------------------------------------------------------
    # Bulk notifications
    # ------------------------------------------------------------------

    async def send_bulk_notifications(
        self, template_id: str, recipients: list[BulkRecipient]
    ) -> str:
        """
        Render a template for each recipient and enqueue one job per recipient.

        The bulk job's counters track enqueue outcomes; delivery outcomes are
        tracked on the individual jobs.

        Raises:
            TemplateNotFoundError: template missing or inactive (bulk job is
                left FAILED)
        """
        bulk_job = BulkNotificationJob(
            id=new_job_id("bulk"),
            template_id=template_id,
            recipients=list(recipients),
            total_recipients=len(recipients),
            created_at=self._clock(),
        )
        await self.bulk_jobs.create_bulk_job(bulk_job)

        template = await self.templates.get_template(template_id)
        if template is None or not template.is_active:
            bulk_job.status = BulkJobStatus.FAILED
            bulk_job.completed_at = self._clock()
            await self.bulk_jobs.update_progress(bulk_job)
            logger.warning(
                "Bulk notification template unavailable",
                bulk_job_id=bulk_job.id,
                template_id=template_id,
            )
            raise TemplateNotFoundError(f"Template not found or inactive: {template_id}")

        bulk_job.status = BulkJobStatus.PROCESSING
        await self.bulk_jobs.update_progress(bulk_job)

        for recipient in bulk_job.recipients:
            try:
                await self._enqueue_for_recipient(bulk_job, template, recipient)
                bulk_job.successful_deliveries += 1
            except Exception as e:
                bulk_job.failed_deliveries += 1
                logger.error(
                    "Failed to enqueue bulk notification",
                    bulk_job_id=bulk_job.id,
                    recipient_id=recipient.id,
                    error=str(e),
                )
            bulk_job.processed_recipients += 1

        bulk_job.status = BulkJobStatus.COMPLETED
        bulk_job.completed_at = self._clock()
        await self.bulk_jobs.update_progress(bulk_job)

        logger.info(
            "Bulk notification job completed",
            bulk_job_id=bulk_job.id,
            total=bulk_job.total_recipients,
            successful=bulk_job.successful_deliveries,
            failed=bulk_job.failed_deliveries,
        )
        return bulk_job.id

    async def _enqueue_for_recipient(
        self,
        bulk_job: BulkNotificationJob,
        template: NotificationTemplate,
        recipient: BulkRecipient,
    ) -> str:
        missing = missing_variables(template.content, recipient.variables)
        if missing:
            logger.warning(
                "Template variables missing for recipient",
                bulk_job_id=bulk_job.id,
                recipient_id=recipient.id,
                missing=missing,
            )

        payload = empty_payload(
            template.channel.value,
            {"bulk_job_id": bulk_job.id, "recipient_id": recipient.id},
        )
        return await self.add_notification(
            template.channel,
            recipient.contact,
            render_template(template.content, recipient.variables),
            subject=render_template(template.subject, recipient.variables),
            payload=payload,
        )

    async def get_bulk_job(self, bulk_job_id: str) -> BulkNotificationJob | None:
        return await self.bulk_jobs.get_bulk_job(bulk_job_id)

    async def save_template(self, template: NotificationTemplate) -> NotificationTemplate:
        """Create or replace a template used by bulk sends."""
        if not template.content:
            raise InvalidNotificationError("Template content is required")
        return await self.templates.upsert_template(template)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_notification_stats(self, start: datetime, end: datetime) -> dict[str, Any]:
        """Delivery outcome totals for jobs settled within [start, end)."""
        if end <= start:
            raise InvalidNotificationError("Stats window end must be after start")

        rows = await self.jobs.count_outcomes(start, end)

        total_sent = 0
        total_failed = 0
        channel_breakdown: dict[str, int] = defaultdict(int)
        priority_breakdown: dict[str, int] = defaultdict(int)
        daily: dict[str, dict[str, int]] = defaultdict(lambda: {"sent": 0, "failed": 0})

        for row in rows:
            count = int(row["count"])
            day = daily[day_key(row["day"])]
            if row["status"] == JobStatus.SENT.value:
                total_sent += count
                day["sent"] += count
            else:
                total_failed += count
                day["failed"] += count
            channel_breakdown[row["channel"]] += count
            priority_breakdown[row["priority"]] += count

        settled = total_sent + total_failed
        success_rate = round(total_sent / settled * 100, 2) if settled else 0.0

        return {
            "total_sent": total_sent,
            "total_failed": total_failed,
            "success_rate": success_rate,
            "channel_breakdown": dict(channel_breakdown),
            "priority_breakdown": dict(priority_breakdown),
            "daily_stats": [
                {"date": date, "sent": counts["sent"], "failed": counts["failed"]}
                for date, counts in sorted(daily.items())
            ],
        }
