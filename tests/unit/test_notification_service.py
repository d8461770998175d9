from datetime import timedelta

import pytest

from app.features.notifications.domain import (
    BulkJobStatus,
    BulkRecipient,
    Channel,
    EmailPayload,
    JobStatus,
    NotificationTemplate,
    Priority,
    SmsPayload,
)
from app.features.notifications.services import (
    InvalidNotificationError,
    NotificationService,
    TemplateNotFoundError,
)
from tests.fakes import FakeTemplateRepository, make_job

FEE_TEMPLATE = NotificationTemplate(
    id="fee-reminder",
    name="Fee reminder",
    channel=Channel.SMS,
    subject="Fee due for {{name}}",
    content="Dear {{name}}, tuition of {{amount}} BDT is due on {{due_date}}.",
    variables=["name", "amount", "due_date"],
)


@pytest.fixture
def templates():
    inactive = NotificationTemplate(
        id="old-template",
        name="Old",
        channel=Channel.EMAIL,
        content="unused",
        is_active=False,
    )
    return FakeTemplateRepository(FEE_TEMPLATE, inactive)


@pytest.fixture
def service(job_repository, bulk_repository, templates, dt_clock):
    return NotificationService(job_repository, bulk_repository, templates, clock=dt_clock)


def recipients(count: int) -> list[BulkRecipient]:
    return [
        BulkRecipient(
            id=f"student-{i}",
            contact=f"0171000000{i}",
            variables={"name": f"Student {i}", "amount": "2500", "due_date": "2024-02-01"},
        )
        for i in range(count)
    ]


@pytest.mark.asyncio
async def test_add_notification_creates_pending_job(service, job_repository, dt_clock):
    job_id = await service.add_notification(
        Channel.EMAIL,
        "guardian@example.com",
        "Report cards are ready.",
        priority=Priority.HIGH,
        subject="Report cards",
        payload=EmailPayload(html="<p>Report cards are ready.</p>"),
    )

    job = job_repository.jobs[job_id]
    assert job_id.startswith("notif_")
    assert job.status is JobStatus.PENDING
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.scheduled_at == dt_clock()
    assert job.priority is Priority.HIGH


@pytest.mark.asyncio
async def test_add_notification_rejects_payload_for_other_channel(service, job_repository):
    with pytest.raises(InvalidNotificationError):
        await service.add_notification(
            Channel.EMAIL, "guardian@example.com", "Hello", payload=SmsPayload()
        )

    assert job_repository.jobs == {}


@pytest.mark.asyncio
async def test_add_notification_rejects_blank_recipient(service):
    with pytest.raises(InvalidNotificationError):
        await service.add_notification(Channel.SMS, "  ", "Hello")


@pytest.mark.asyncio
async def test_bulk_renders_and_enqueues_per_recipient(service, job_repository, bulk_repository):
    bulk_id = await service.send_bulk_notifications("fee-reminder", recipients(2))

    jobs = sorted(job_repository.jobs.values(), key=lambda job: job.recipient)
    assert len(jobs) == 2
    assert jobs[0].channel is Channel.SMS
    assert jobs[0].content == "Dear Student 0, tuition of 2500 BDT is due on 2024-02-01."
    assert jobs[0].subject == "Fee due for Student 0"
    assert jobs[0].payload.metadata == {"bulk_job_id": bulk_id, "recipient_id": "student-0"}

    bulk_job = bulk_repository.bulk_jobs[bulk_id]
    assert bulk_job.status is BulkJobStatus.COMPLETED
    assert bulk_job.completed_at is not None
    assert bulk_repository.status_history == ["PENDING", "PROCESSING", "COMPLETED"]


@pytest.mark.asyncio
async def test_bulk_counts_enqueue_failures(service, job_repository, bulk_repository):
    batch = recipients(5)
    job_repository.fail_create_for = {batch[1].contact, batch[3].contact}

    bulk_id = await service.send_bulk_notifications("fee-reminder", batch)

    bulk_job = bulk_repository.bulk_jobs[bulk_id]
    assert bulk_job.status is BulkJobStatus.COMPLETED
    assert bulk_job.total_recipients == 5
    assert bulk_job.processed_recipients == 5
    assert bulk_job.successful_deliveries == 3
    assert bulk_job.failed_deliveries == 2
    assert len(job_repository.jobs) == 3


@pytest.mark.asyncio
async def test_bulk_keeps_unknown_placeholders(service, job_repository):
    batch = [BulkRecipient(id="s1", contact="01710000001", variables={"name": "Nadia"})]

    await service.send_bulk_notifications("fee-reminder", batch)

    (job,) = job_repository.jobs.values()
    assert job.content == "Dear Nadia, tuition of {{amount}} BDT is due on {{due_date}}."


@pytest.mark.asyncio
@pytest.mark.parametrize("template_id", ["missing-template", "old-template"])
async def test_bulk_with_unavailable_template_fails(
    service, job_repository, bulk_repository, template_id
):
    with pytest.raises(TemplateNotFoundError):
        await service.send_bulk_notifications(template_id, recipients(3))

    (bulk_job,) = bulk_repository.bulk_jobs.values()
    assert bulk_job.status is BulkJobStatus.FAILED
    assert bulk_job.processed_recipients == 0
    assert job_repository.jobs == {}


@pytest.mark.asyncio
async def test_cancel_only_affects_pending(service, job_repository):
    job_repository.add(make_job("pending"))
    job_repository.add(make_job("sent", status=JobStatus.SENT))

    assert await service.cancel_notification("pending") is True
    assert job_repository.jobs["pending"].status is JobStatus.CANCELLED
    assert await service.cancel_notification("pending") is False
    assert await service.cancel_notification("sent") is False
    assert await service.cancel_notification("missing") is False


@pytest.mark.asyncio
async def test_retry_resets_failed_job(service, job_repository, dt_clock):
    failed = make_job("failed", status=JobStatus.FAILED)
    failed.attempts = 3
    failed.last_error = "smtp rejected"
    job_repository.add(failed)

    assert await service.retry_notification("failed") is True

    assert failed.status is JobStatus.PENDING
    assert failed.attempts == 0
    assert failed.last_error is None
    assert failed.scheduled_at == dt_clock()


@pytest.mark.asyncio
async def test_retry_rejects_pending_and_sent(service, job_repository):
    job_repository.add(make_job("pending"))
    job_repository.add(make_job("sent", status=JobStatus.SENT))

    assert await service.retry_notification("pending") is False
    assert await service.retry_notification("sent") is False


@pytest.mark.asyncio
async def test_cancelled_job_can_be_retried(service, job_repository):
    job_repository.add(make_job("j1"))

    await service.cancel_notification("j1")
    assert await service.retry_notification("j1") is True
    assert job_repository.jobs["j1"].status is JobStatus.PENDING


@pytest.mark.asyncio
async def test_notification_stats(service, job_repository, dt_clock):
    day_one = dt_clock()
    day_two = day_one + timedelta(days=1)
    outcomes = [
        ("a", JobStatus.SENT, Channel.EMAIL, Priority.HIGH, day_one),
        ("b", JobStatus.SENT, Channel.SMS, Priority.MEDIUM, day_one),
        ("c", JobStatus.FAILED, Channel.SMS, Priority.MEDIUM, day_one),
        ("d", JobStatus.SENT, Channel.EMAIL, Priority.LOW, day_two),
        ("e", JobStatus.PENDING, Channel.PUSH, Priority.LOW, day_two),
    ]
    for job_id, status, channel, priority, updated in outcomes:
        job = make_job(job_id, channel=channel, priority=priority, status=status)
        job.updated_at = updated
        job_repository.add(job)

    stats = await service.get_notification_stats(day_one - timedelta(hours=1), day_two + timedelta(hours=1))

    assert stats["total_sent"] == 3
    assert stats["total_failed"] == 1
    assert stats["success_rate"] == 75.0
    assert stats["channel_breakdown"] == {"EMAIL": 2, "SMS": 2}
    assert stats["priority_breakdown"] == {"HIGH": 1, "MEDIUM": 2, "LOW": 1}
    assert stats["daily_stats"] == [
        {"date": "2024-01-15", "sent": 2, "failed": 1},
        {"date": "2024-01-16", "sent": 1, "failed": 0},
    ]


@pytest.mark.asyncio
async def test_stats_for_empty_window(service, dt_clock):
    stats = await service.get_notification_stats(dt_clock() - timedelta(days=1), dt_clock())

    assert stats["total_sent"] == 0
    assert stats["success_rate"] == 0.0
    assert stats["daily_stats"] == []


@pytest.mark.asyncio
async def test_stats_rejects_inverted_window(service, dt_clock):
    with pytest.raises(InvalidNotificationError):
        await service.get_notification_stats(dt_clock(), dt_clock() - timedelta(days=1))


@pytest.mark.asyncio
async def test_saved_template_is_used_for_bulk(service, job_repository):
    await service.save_template(
        NotificationTemplate(
            id="exam-results",
            name="Exam results",
            channel=Channel.EMAIL,
            subject="Results for {{name}}",
            content="{{name}} scored {{grade}}.",
        )
    )

    await service.send_bulk_notifications(
        "exam-results",
        [BulkRecipient(id="s1", contact="p@example.com", variables={"name": "Rafi", "grade": "A"})],
    )

    (job,) = job_repository.jobs.values()
    assert job.channel is Channel.EMAIL
    assert job.subject == "Results for Rafi"
    assert job.content == "Rafi scored A."


@pytest.mark.asyncio
async def test_save_template_requires_content(service):
    template = NotificationTemplate(id="blank", name="Blank", channel=Channel.SMS, content="")

    with pytest.raises(InvalidNotificationError):
        await service.save_template(template)
