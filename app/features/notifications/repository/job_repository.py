"""
Persistence for the notification queue.

Every status transition is a conditional UPDATE so that two worker
processes polling the same table can never both deliver one job.
"""

from datetime import date, datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.features.notifications.domain import (
    BulkJobStatus,
    BulkNotificationJob,
    BulkRecipient,
    Channel,
    JobStatus,
    NotificationJob,
    Priority,
    payload_adapter,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 500


class NotificationRepositoryError(DatabaseError):
    """More specific exception for queue persistence failures."""


class NotificationJobRepository:
    """Queue table access used by the worker and the producer API."""

    JOB_SELECT_COLUMNS = """
        id, channel, priority, recipient, subject, content, payload,
        scheduled_at, attempts, max_attempts, status, last_error,
        created_at, updated_at
    """

    @staticmethod
    def _row_to_job(row: dict | None) -> NotificationJob | None:
        if not row:
            return None

        payload = row.get("payload")
        return NotificationJob(
            id=str(row["id"]),
            channel=Channel(row["channel"]),
            priority=Priority(row["priority"]),
            recipient=row["recipient"],
            subject=row.get("subject"),
            content=row["content"],
            payload=payload_adapter.validate_python(payload) if payload else None,
            scheduled_at=row["scheduled_at"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            status=JobStatus(row["status"]),
            last_error=row.get("last_error"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def create_job(self, job: NotificationJob) -> NotificationJob:
        """Insert a PENDING job and return the stored row."""
        payload = Jsonb(job.payload.model_dump(mode="json")) if job.payload else None

        query = f"""
            INSERT INTO notification_jobs (
                id, channel, priority, recipient, subject, content, payload,
                scheduled_at, attempts, max_attempts, status, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.JOB_SELECT_COLUMNS}
        """
        params = (
            job.id,
            job.channel.value,
            job.priority.value,
            job.recipient,
            job.subject,
            job.content,
            payload,
            job.scheduled_at,
            job.attempts,
            job.max_attempts,
            JobStatus.PENDING.value,
            job.created_at,
            job.updated_at,
        )

        row = await fetch_one(query, params)
        if not row:
            raise NotificationRepositoryError("Failed to create notification job", operation="create_job")

        logger.info(
            "Notification job created",
            job_id=job.id,
            channel=job.channel.value,
            priority=job.priority.value,
        )
        return self._row_to_job(row)

    async def get_job(self, job_id: str) -> NotificationJob | None:
        query = f"SELECT {self.JOB_SELECT_COLUMNS} FROM notification_jobs WHERE id = %s"
        return self._row_to_job(await fetch_one(query, (job_id,)))

    @with_db_retry(max_retries=2)
    async def fetch_due_jobs(self, now: datetime, limit: int) -> list[NotificationJob]:
        """PENDING jobs due at ``now``, HIGH priority first, then oldest schedule."""
        query = f"""
            SELECT {self.JOB_SELECT_COLUMNS}
            FROM notification_jobs
            WHERE status = 'PENDING'
              AND scheduled_at <= %s
            ORDER BY
                CASE priority WHEN 'HIGH' THEN 0 WHEN 'MEDIUM' THEN 1 ELSE 2 END,
                scheduled_at ASC
            LIMIT %s
        """
        rows = await fetch_all(query, (now, limit))
        return [self._row_to_job(row) for row in rows]

    async def claim_job(self, job_id: str, now: datetime) -> bool:
        """PENDING -> PROCESSING. False when another worker got there first."""
        query = """
            UPDATE notification_jobs
            SET status = 'PROCESSING',
                updated_at = %s
            WHERE id = %s
              AND status = 'PENDING'
        """
        return await execute_query(query, (now, job_id)) == 1

    async def release_stale_claims(self, claimed_before: datetime, now: datetime) -> int:
        """Return PROCESSING jobs abandoned by a crashed worker to PENDING."""
        query = """
            UPDATE notification_jobs
            SET status = 'PENDING',
                updated_at = %s
            WHERE status = 'PROCESSING'
              AND updated_at < %s
        """
        return await execute_query(query, (now, claimed_before))

    async def mark_sent(self, job_id: str, now: datetime) -> None:
        query = """
            UPDATE notification_jobs
            SET status = 'SENT',
                last_error = NULL,
                updated_at = %s
            WHERE id = %s
        """
        await execute_query(query, (now, job_id))

    async def mark_failed(self, job_id: str, attempts: int, error: str | None, now: datetime) -> None:
        query = """
            UPDATE notification_jobs
            SET status = 'FAILED',
                attempts = %s,
                last_error = %s,
                updated_at = %s
            WHERE id = %s
        """
        await execute_query(query, (attempts, _truncate(error), now, job_id))
        logger.warning("Notification job failed", job_id=job_id, attempts=attempts, error=error)

    async def reschedule(
        self, job_id: str, attempts: int, error: str | None, retry_at: datetime, now: datetime
    ) -> None:
        query = """
            UPDATE notification_jobs
            SET status = 'PENDING',
                attempts = %s,
                last_error = %s,
                scheduled_at = %s,
                updated_at = %s
            WHERE id = %s
        """
        await execute_query(query, (attempts, _truncate(error), retry_at, now, job_id))

    async def cancel_job(self, job_id: str, now: datetime) -> bool:
        query = """
            UPDATE notification_jobs
            SET status = 'CANCELLED',
                updated_at = %s
            WHERE id = %s
              AND status = 'PENDING'
        """
        return await execute_query(query, (now, job_id)) == 1

    async def requeue_job(self, job_id: str, now: datetime) -> bool:
        """FAILED/CANCELLED -> PENDING with a fresh attempt budget, due now."""
        query = """
            UPDATE notification_jobs
            SET status = 'PENDING',
                attempts = 0,
                last_error = NULL,
                scheduled_at = %s,
                updated_at = %s
            WHERE id = %s
              AND status IN ('FAILED', 'CANCELLED')
        """
        return await execute_query(query, (now, now, job_id)) == 1

    async def count_outcomes(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        """
        Terminal SENT/FAILED counts grouped by status, channel, priority and day.

        Rows look like {"status", "channel", "priority", "day": date, "count"}.
        """
        query = """
            SELECT
                status,
                channel,
                priority,
                (updated_at AT TIME ZONE 'UTC')::date AS day,
                COUNT(*) AS count
            FROM notification_jobs
            WHERE status IN ('SENT', 'FAILED')
              AND updated_at >= %s
              AND updated_at < %s
            GROUP BY status, channel, priority, day
        """
        return await fetch_all(query, (start, end))


class BulkNotificationRepository:
    """bulk_notification_jobs access."""

    BULK_SELECT_COLUMNS = """
        id, template_id, recipients, status, total_recipients,
        processed_recipients, successful_deliveries, failed_deliveries,
        created_at, completed_at
    """

    @staticmethod
    def _row_to_bulk_job(row: dict | None) -> BulkNotificationJob | None:
        if not row:
            return None

        return BulkNotificationJob(
            id=str(row["id"]),
            template_id=row["template_id"],
            recipients=[
                BulkRecipient(
                    id=item["id"],
                    contact=item["contact"],
                    variables=item.get("variables") or {},
                )
                for item in row.get("recipients") or []
            ],
            status=BulkJobStatus(row["status"]),
            total_recipients=row["total_recipients"],
            processed_recipients=row["processed_recipients"],
            successful_deliveries=row["successful_deliveries"],
            failed_deliveries=row["failed_deliveries"],
            created_at=row["created_at"],
            completed_at=row.get("completed_at"),
        )

    async def create_bulk_job(self, bulk_job: BulkNotificationJob) -> BulkNotificationJob:
        recipients = Jsonb(
            [
                {"id": r.id, "contact": r.contact, "variables": r.variables}
                for r in bulk_job.recipients
            ]
        )
        query = f"""
            INSERT INTO bulk_notification_jobs (
                id, template_id, recipients, status, total_recipients, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {self.BULK_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                bulk_job.id,
                bulk_job.template_id,
                recipients,
                bulk_job.status.value,
                bulk_job.total_recipients,
                bulk_job.created_at,
            ),
        )
        if not row:
            raise NotificationRepositoryError(
                "Failed to create bulk notification job", operation="create_bulk_job"
            )

        logger.info(
            "Bulk notification job created",
            bulk_job_id=bulk_job.id,
            template_id=bulk_job.template_id,
            total_recipients=bulk_job.total_recipients,
        )
        return self._row_to_bulk_job(row)

    async def get_bulk_job(self, bulk_job_id: str) -> BulkNotificationJob | None:
        query = f"SELECT {self.BULK_SELECT_COLUMNS} FROM bulk_notification_jobs WHERE id = %s"
        return self._row_to_bulk_job(await fetch_one(query, (bulk_job_id,)))

    async def update_progress(self, bulk_job: BulkNotificationJob) -> None:
        """Persist status, counters and completion time."""
        query = """
            UPDATE bulk_notification_jobs
            SET status = %s,
                processed_recipients = %s,
                successful_deliveries = %s,
                failed_deliveries = %s,
                completed_at = %s
            WHERE id = %s
        """
        await execute_query(
            query,
            (
                bulk_job.status.value,
                bulk_job.processed_recipients,
                bulk_job.successful_deliveries,
                bulk_job.failed_deliveries,
                bulk_job.completed_at,
                bulk_job.id,
            ),
        )


def _truncate(error: str | None) -> str | None:
    return error[:MAX_ERROR_LENGTH] if error else error


def day_key(value: date | datetime) -> str:
    """ISO date string used for daily stats buckets."""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()
