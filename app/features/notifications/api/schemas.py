"""
Notification API request and response models.
Used by the notifications router for input validation and output formatting.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.features.notifications.domain import (
    BulkJobStatus,
    BulkNotificationJob,
    BulkRecipient,
    Channel,
    InAppNotification,
    JobStatus,
    NotificationJob,
    NotificationPayload,
    NotificationTemplate,
    Priority,
    PushSubscription,
)


class CreateNotificationRequest(BaseModel):
    """Request for enqueueing a single notification."""

    channel: Channel = Field(..., description="Delivery channel")
    recipient: str = Field(..., min_length=1, max_length=320, description="Email, phone or user id")
    content: str = Field(..., min_length=1, description="Message body")
    priority: Priority = Field(default=Priority.MEDIUM, description="Dispatch priority")
    subject: str | None = Field(default=None, max_length=200, description="Message subject/title")
    payload: NotificationPayload | None = Field(
        default=None, description="Channel-specific payload; its channel must match"
    )
    scheduled_at: datetime | None = Field(default=None, description="Earliest delivery time")
    max_attempts: int | None = Field(default=None, ge=1, le=10, description="Delivery attempts")


class NotificationCreatedResponse(BaseModel):
    job_id: str = Field(..., description="Queued notification job ID")


class BulkRecipientRequest(BaseModel):
    id: str = Field(..., min_length=1, description="Recipient user ID")
    contact: str = Field(..., min_length=1, description="Channel address for the recipient")
    variables: dict[str, str] = Field(default_factory=dict, description="Template variables")

    def to_domain(self) -> BulkRecipient:
        return BulkRecipient(id=self.id, contact=self.contact, variables=dict(self.variables))


class BulkNotificationRequest(BaseModel):
    """Request for a template-based bulk send."""

    template_id: str = Field(..., min_length=1, description="Notification template ID")
    recipients: list[BulkRecipientRequest] = Field(..., min_length=1, description="Recipients")


class BulkJobCreatedResponse(BaseModel):
    bulk_job_id: str = Field(..., description="Bulk job ID")


class NotificationJobResponse(BaseModel):
    """Response model for a queued notification."""

    id: str
    channel: Channel
    priority: Priority
    recipient: str
    subject: str | None = None
    content: str
    payload: NotificationPayload | None = None
    status: JobStatus
    attempts: int
    max_attempts: int
    last_error: str | None = None
    scheduled_at: datetime
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, job: NotificationJob) -> "NotificationJobResponse":
        return cls(
            id=job.id,
            channel=job.channel,
            priority=job.priority,
            recipient=job.recipient,
            subject=job.subject,
            content=job.content,
            payload=job.payload,
            status=job.status,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            last_error=job.last_error,
            scheduled_at=job.scheduled_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class BulkJobResponse(BaseModel):
    """Response model for bulk job progress."""

    id: str
    template_id: str
    status: BulkJobStatus
    total_recipients: int
    processed_recipients: int
    successful_deliveries: int
    failed_deliveries: int
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_domain(cls, bulk_job: BulkNotificationJob) -> "BulkJobResponse":
        return cls(
            id=bulk_job.id,
            template_id=bulk_job.template_id,
            status=bulk_job.status,
            total_recipients=bulk_job.total_recipients,
            processed_recipients=bulk_job.processed_recipients,
            successful_deliveries=bulk_job.successful_deliveries,
            failed_deliveries=bulk_job.failed_deliveries,
            created_at=bulk_job.created_at,
            completed_at=bulk_job.completed_at,
        )


class TemplateRequest(BaseModel):
    """Create or replace a bulk-send template. Placeholders use {{name}} syntax."""

    name: str = Field(..., min_length=1, max_length=100)
    channel: Channel
    content: str = Field(..., min_length=1)
    subject: str | None = Field(default=None, max_length=200)
    variables: list[str] = Field(default_factory=list, description="Declared placeholder names")
    is_active: bool = True

    def to_domain(self, template_id: str) -> NotificationTemplate:
        return NotificationTemplate(
            id=template_id,
            name=self.name,
            channel=self.channel,
            content=self.content,
            subject=self.subject,
            variables=list(self.variables),
            is_active=self.is_active,
        )


class TemplateResponse(BaseModel):
    id: str
    name: str
    channel: Channel
    content: str
    subject: str | None = None
    variables: list[str]
    is_active: bool

    @classmethod
    def from_domain(cls, template: NotificationTemplate) -> "TemplateResponse":
        return cls(
            id=template.id,
            name=template.name,
            channel=template.channel,
            content=template.content,
            subject=template.subject,
            variables=list(template.variables),
            is_active=template.is_active,
        )


class NotificationActionResponse(BaseModel):
    job_id: str
    status: JobStatus = Field(..., description="Status after the action")


class DailyStatsResponse(BaseModel):
    date: str
    sent: int
    failed: int


class NotificationStatsResponse(BaseModel):
    total_sent: int
    total_failed: int
    success_rate: float = Field(..., description="Percentage of settled jobs that were sent")
    channel_breakdown: dict[str, int]
    priority_breakdown: dict[str, int]
    daily_stats: list[DailyStatsResponse]


class PushKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class PushSubscribeRequest(BaseModel):
    """Browser PushSubscription plus the owning user."""

    user_id: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1, description="Push service endpoint URL")
    keys: PushKeys

    def to_domain(self) -> PushSubscription:
        return PushSubscription(
            endpoint=self.endpoint,
            user_id=self.user_id,
            p256dh=self.keys.p256dh,
            auth=self.keys.auth,
        )


class PushUnsubscribeRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    endpoint: str | None = Field(default=None, description="Omit to remove every subscription")


class PushUnsubscribeResponse(BaseModel):
    removed: int


class InAppNotificationResponse(BaseModel):
    id: int
    title: str
    content: str
    link: str | None = None
    category: str | None = None
    data: dict[str, Any] | None = None
    is_read: bool
    created_at: datetime

    @classmethod
    def from_domain(cls, notification: InAppNotification) -> "InAppNotificationResponse":
        return cls(
            id=notification.id,
            title=notification.title,
            content=notification.content,
            link=notification.link,
            category=notification.category,
            data=notification.data,
            is_read=notification.is_read,
            created_at=notification.created_at,
        )


class InAppInboxResponse(BaseModel):
    """One page of a user's in-app notifications plus inbox totals."""

    notifications: list[InAppNotificationResponse]
    total: int
    unread: int
    limit: int
    offset: int


class MarkReadRequest(BaseModel):
    ids: list[int] | None = Field(default=None, description="Omit to mark the whole inbox read")


class MarkReadResponse(BaseModel):
    updated: int
    unread: int
