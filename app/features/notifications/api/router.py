"""
Notification routes.

Producer-side HTTP endpoints: enqueue single and bulk notifications,
cancel/retry, job lookups, templates, delivery statistics, push
subscriptions and the in-app inbox.
Services come from app.state, populated by the application lifespan.
"""

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.features.notifications.api.schemas import (
    BulkJobCreatedResponse,
    BulkJobResponse,
    BulkNotificationRequest,
    CreateNotificationRequest,
    InAppInboxResponse,
    InAppNotificationResponse,
    MarkReadRequest,
    MarkReadResponse,
    NotificationActionResponse,
    NotificationCreatedResponse,
    NotificationJobResponse,
    NotificationStatsResponse,
    PushSubscribeRequest,
    PushUnsubscribeRequest,
    PushUnsubscribeResponse,
    TemplateRequest,
    TemplateResponse,
)
from app.features.notifications.domain import JobStatus
from app.features.notifications.repository.in_app_repository import InAppNotificationRepository
from app.features.notifications.repository.push_subscription_repository import (
    PushSubscriptionRepository,
)
from app.features.notifications.services import (
    InvalidNotificationError,
    NotificationService,
    TemplateNotFoundError,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

DEFAULT_STATS_WINDOW_DAYS = 7


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notifications.service


def get_push_subscriptions(request: Request) -> PushSubscriptionRepository:
    return request.app.state.notifications.push_subscriptions


def get_in_app_notifications(request: Request) -> InAppNotificationRepository:
    return request.app.state.notifications.in_app


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


@router.post("/", response_model=NotificationCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_notification(
    body: CreateNotificationRequest,
    service: NotificationService = Depends(get_notification_service),
):
    """Queue a single notification for delivery."""
    try:
        job_id = await service.add_notification(
            body.channel,
            body.recipient,
            body.content,
            priority=body.priority,
            subject=body.subject,
            payload=body.payload,
            scheduled_at=_as_utc(body.scheduled_at) if body.scheduled_at else None,
            max_attempts=body.max_attempts,
        )
    except InvalidNotificationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return NotificationCreatedResponse(job_id=job_id)


@router.post("/bulk", response_model=BulkJobCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_bulk_notification(
    body: BulkNotificationRequest,
    service: NotificationService = Depends(get_notification_service),
):
    """Render a template per recipient and queue one notification each."""
    try:
        bulk_job_id = await service.send_bulk_notifications(
            body.template_id, [recipient.to_domain() for recipient in body.recipients]
        )
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return BulkJobCreatedResponse(bulk_job_id=bulk_job_id)


@router.get("/stats", response_model=NotificationStatsResponse)
async def get_notification_stats(
    start: datetime | None = Query(default=None, description="Window start (default: 7 days ago)"),
    end: datetime | None = Query(default=None, description="Window end (default: now)"),
    service: NotificationService = Depends(get_notification_service),
):
    """Delivery outcome statistics for a time window."""
    window_end = _as_utc(end) if end else datetime.now(UTC)
    window_start = _as_utc(start) if start else window_end - timedelta(days=DEFAULT_STATS_WINDOW_DAYS)

    try:
        stats = await service.get_notification_stats(window_start, window_end)
    except InvalidNotificationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return NotificationStatsResponse(**stats)


@router.get("/bulk/{bulk_job_id}", response_model=BulkJobResponse)
async def get_bulk_job(
    bulk_job_id: str,
    service: NotificationService = Depends(get_notification_service),
):
    bulk_job = await service.get_bulk_job(bulk_job_id)
    if bulk_job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bulk job not found")
    return BulkJobResponse.from_domain(bulk_job)


@router.put("/templates/{template_id}", response_model=TemplateResponse)
async def save_template(
    template_id: str,
    body: TemplateRequest,
    service: NotificationService = Depends(get_notification_service),
):
    """Create or replace a template for bulk sends."""
    try:
        template = await service.save_template(body.to_domain(template_id))
    except InvalidNotificationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return TemplateResponse.from_domain(template)


@router.post("/push/subscribe", status_code=status.HTTP_204_NO_CONTENT)
async def subscribe_push(
    body: PushSubscribeRequest,
    subscriptions: PushSubscriptionRepository = Depends(get_push_subscriptions),
):
    await subscriptions.subscribe(body.to_domain())


@router.post("/push/unsubscribe", response_model=PushUnsubscribeResponse)
async def unsubscribe_push(
    body: PushUnsubscribeRequest,
    subscriptions: PushSubscriptionRepository = Depends(get_push_subscriptions),
):
    removed = await subscriptions.unsubscribe(body.user_id, body.endpoint)
    return PushUnsubscribeResponse(removed=removed)


@router.get("/in-app/{user_id}", response_model=InAppInboxResponse)
async def list_in_app_notifications(
    user_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    unread_only: bool = Query(default=False),
    inbox: InAppNotificationRepository = Depends(get_in_app_notifications),
):
    """A page of the user's in-app notifications, newest first."""
    notifications = await inbox.list_for_user(user_id, limit, offset, unread_only=unread_only)
    counts = await inbox.count_for_user(user_id)
    return InAppInboxResponse(
        notifications=[InAppNotificationResponse.from_domain(n) for n in notifications],
        total=counts["total"],
        unread=counts["unread"],
        limit=limit,
        offset=offset,
    )


@router.post("/in-app/{user_id}/read", response_model=MarkReadResponse)
async def mark_in_app_notifications_read(
    user_id: str,
    body: MarkReadRequest,
    inbox: InAppNotificationRepository = Depends(get_in_app_notifications),
):
    updated = await inbox.mark_read(user_id, body.ids)
    return MarkReadResponse(updated=updated, unread=await inbox.count_unread(user_id))


@router.get("/{job_id}", response_model=NotificationJobResponse)
async def get_notification(
    job_id: str,
    service: NotificationService = Depends(get_notification_service),
):
    job = await service.get_notification(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return NotificationJobResponse.from_domain(job)


async def _reject_transition(service: NotificationService, job_id: str, action: str):
    job = await service.get_notification(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Cannot {action} notification in status {job.status.value}",
    )


@router.post("/{job_id}/cancel", response_model=NotificationActionResponse)
async def cancel_notification(
    job_id: str,
    service: NotificationService = Depends(get_notification_service),
):
    """Cancel a notification that has not been picked up yet."""
    if not await service.cancel_notification(job_id):
        await _reject_transition(service, job_id, "cancel")
    return NotificationActionResponse(job_id=job_id, status=JobStatus.CANCELLED)


@router.post("/{job_id}/retry", response_model=NotificationActionResponse)
async def retry_notification(
    job_id: str,
    service: NotificationService = Depends(get_notification_service),
):
    """Requeue a failed or cancelled notification with a fresh attempt budget."""
    if not await service.retry_notification(job_id):
        await _reject_transition(service, job_id, "retry")
    return NotificationActionResponse(job_id=job_id, status=JobStatus.PENDING)
