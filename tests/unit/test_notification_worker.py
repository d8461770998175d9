"""
Tests for the notification delivery worker: claiming, ordering,
retry/backoff, timeouts and the overlapping-sweep guard.
"""

import asyncio
from datetime import timedelta

import pytest

from app.features.notifications.channels import ChannelSender
from app.features.notifications.domain import Channel, JobStatus, Priority
from app.features.notifications.services.worker import NotificationWorker, backoff_delay
from tests.fakes import FakeSender, make_job


class ExplodingSender(ChannelSender):
    channel = Channel.EMAIL

    async def _send(self, recipient, subject, content, payload, priority):
        raise RuntimeError("connection reset")


def build_worker(repository, dt_clock, *senders, **kwargs):
    return NotificationWorker(
        repository,
        {sender.channel: sender for sender in senders},
        clock=dt_clock,
        **kwargs,
    )


def test_backoff_doubles_per_attempt():
    assert backoff_delay(1) == timedelta(minutes=2)
    assert backoff_delay(2) == timedelta(minutes=4)
    assert backoff_delay(3) == timedelta(minutes=8)


@pytest.mark.asyncio
async def test_successful_delivery_marks_sent(job_repository, dt_clock):
    sender = FakeSender()
    job_repository.add(make_job("j1"))
    worker = build_worker(job_repository, dt_clock, sender)

    metrics = await worker.process_queue()

    assert metrics["jobs_sent"] == 1
    assert job_repository.jobs["j1"].status is JobStatus.SENT
    assert sender.delivered == ["parent@example.com"]


@pytest.mark.asyncio
async def test_three_failures_end_in_failed(job_repository, dt_clock):
    sender = FakeSender(success=False)
    job = job_repository.add(make_job("j1"))
    worker = build_worker(job_repository, dt_clock, sender)
    retry_gaps = []

    for _ in range(3):
        before = dt_clock()
        await worker.process_queue()
        if job.status is JobStatus.PENDING:
            retry_gaps.append(job.scheduled_at - before)
            dt_clock.now = job.scheduled_at

    assert job.status is JobStatus.FAILED
    assert job.attempts == 3
    assert job.last_error == "smtp rejected"
    assert retry_gaps == [timedelta(minutes=2), timedelta(minutes=4)]
    assert len(sender.delivered) == 3


@pytest.mark.asyncio
async def test_rescheduled_job_not_retried_before_backoff(job_repository, dt_clock):
    sender = FakeSender(success=False)
    job_repository.add(make_job("j1"))
    worker = build_worker(job_repository, dt_clock, sender)

    await worker.process_queue()
    dt_clock.advance(minutes=1)
    metrics = await worker.process_queue()

    assert metrics["jobs_fetched"] == 0
    assert len(sender.delivered) == 1


@pytest.mark.asyncio
async def test_jobs_dispatched_by_priority_then_schedule(job_repository, dt_clock):
    sender = FakeSender()
    base = dt_clock() - timedelta(hours=1)
    job_repository.add(make_job("low", priority=Priority.LOW, scheduled_at=base, recipient="low"))
    job_repository.add(
        make_job("med", priority=Priority.MEDIUM, scheduled_at=base, recipient="medium")
    )
    job_repository.add(
        make_job(
            "high-late",
            priority=Priority.HIGH,
            scheduled_at=base + timedelta(minutes=10),
            recipient="high-late",
        )
    )
    job_repository.add(
        make_job("high-early", priority=Priority.HIGH, scheduled_at=base, recipient="high-early")
    )
    worker = build_worker(job_repository, dt_clock, sender)

    await worker.process_queue()

    assert sender.delivered == ["high-early", "high-late", "medium", "low"]


@pytest.mark.asyncio
async def test_future_jobs_are_not_fetched(job_repository, dt_clock):
    sender = FakeSender()
    job_repository.add(make_job("later", scheduled_at=dt_clock() + timedelta(minutes=5)))
    worker = build_worker(job_repository, dt_clock, sender)

    await worker.process_queue()

    assert sender.delivered == []
    assert job_repository.jobs["later"].status is JobStatus.PENDING


@pytest.mark.asyncio
async def test_overlapping_sweep_is_skipped(job_repository, dt_clock):
    sender = FakeSender(delay=0.05)
    job_repository.add(make_job("j1"))
    worker = build_worker(job_repository, dt_clock, sender)

    first = asyncio.create_task(worker.process_queue())
    await asyncio.sleep(0.01)
    second = await worker.process_queue()
    first_metrics = await first

    assert second == {"skipped": True, "reason": "already_running"}
    assert first_metrics["jobs_sent"] == 1
    assert worker.sweep_count == 1
    assert sender.delivered == ["parent@example.com"]


@pytest.mark.asyncio
async def test_delivery_timeout_counts_as_failure(job_repository, dt_clock):
    sender = FakeSender(delay=1)
    job = job_repository.add(make_job("slow"))
    worker = build_worker(job_repository, dt_clock, sender, delivery_timeout=0.01)

    await worker.process_queue()

    assert job.status is JobStatus.PENDING
    assert job.attempts == 1
    assert "timed out" in job.last_error


@pytest.mark.asyncio
async def test_sender_exception_does_not_leave_job_processing(job_repository, dt_clock):
    job = job_repository.add(make_job("j1"))
    worker = build_worker(job_repository, dt_clock, ExplodingSender())

    await worker.process_queue()

    assert job.status is JobStatus.PENDING
    assert job.attempts == 1
    assert "connection reset" in job.last_error


@pytest.mark.asyncio
async def test_unknown_channel_is_a_delivery_failure(job_repository, dt_clock):
    job = job_repository.add(make_job("sms", channel=Channel.SMS, max_attempts=1))
    worker = build_worker(job_repository, dt_clock, FakeSender(Channel.EMAIL))

    await worker.process_queue()

    assert job.status is JobStatus.FAILED
    assert "Unsupported notification channel" in job.last_error


@pytest.mark.asyncio
async def test_job_claimed_elsewhere_is_skipped(job_repository, dt_clock):
    sender = FakeSender()
    job_repository.add(make_job("taken"))
    job_repository.claim_conflicts.add("taken")
    worker = build_worker(job_repository, dt_clock, sender)

    metrics = await worker.process_queue()

    assert metrics["jobs_skipped"] == 1
    assert sender.delivered == []


@pytest.mark.asyncio
async def test_stale_claims_are_released(job_repository, dt_clock):
    stale = make_job("stale", status=JobStatus.PROCESSING)
    stale.updated_at = dt_clock() - timedelta(minutes=30)
    job_repository.add(stale)
    sender = FakeSender()
    worker = build_worker(job_repository, dt_clock, sender)

    metrics = await worker.process_queue()

    assert metrics["stale_claims_released"] == 1
    assert stale.status is JobStatus.SENT


@pytest.mark.asyncio
async def test_sweep_error_is_reported_not_raised(job_repository, dt_clock, monkeypatch):
    async def broken_fetch(now, limit):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(job_repository, "fetch_due_jobs", broken_fetch)
    worker = build_worker(job_repository, dt_clock, FakeSender())

    metrics = await worker.process_queue()

    assert metrics["sweep_error"] == "database unavailable"
    assert worker.is_running is False


@pytest.mark.asyncio
async def test_start_runs_immediate_sweep_and_stop(job_repository, dt_clock):
    sender = FakeSender()
    job_repository.add(make_job("j1"))
    worker = build_worker(job_repository, dt_clock, sender, poll_interval=60)

    worker.start()
    worker.start()
    await asyncio.sleep(0.05)
    await worker.stop()

    assert worker.sweep_count == 1
    assert sender.delivered == ["parent@example.com"]
    assert worker.started is False


@pytest.mark.asyncio
async def test_health_check_reports_configuration(job_repository, dt_clock):
    worker = build_worker(job_repository, dt_clock, FakeSender(), batch_size=10)

    await worker.process_queue()
    health = worker.health_check()

    assert health["healthy"] is False  # loop not started
    assert health["sweep_count"] == 1
    assert health["configuration"]["batch_size"] == 10


@pytest.mark.asyncio
async def test_hung_first_sweep_reports_overdue(job_repository, dt_clock, monkeypatch):
    release = asyncio.Event()

    async def hanging_fetch(now, limit):
        await release.wait()
        return []

    monkeypatch.setattr(job_repository, "fetch_due_jobs", hanging_fetch)
    worker = build_worker(job_repository, dt_clock, FakeSender(), poll_interval=30)

    worker.start()
    await asyncio.sleep(0.01)
    assert worker.health_check()["healthy"] is True

    dt_clock.advance(seconds=61)
    health = worker.health_check()

    assert health["healthy"] is False
    assert health["is_overdue"] is True
    assert health["last_run_time"] is None

    release.set()
    await worker.stop()
