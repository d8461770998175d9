"""
Tests for the notifications HTTP router.
"""

import pytest
from fastapi.testclient import TestClient

from app.features.notifications.api.router import (
    get_in_app_notifications,
    get_notification_service,
    get_push_subscriptions,
)
from app.features.notifications.domain import Channel, JobStatus, NotificationTemplate
from app.features.notifications.services import NotificationService
from app.main import app
from tests.fakes import (
    FakeInAppRepository,
    FakePushSubscriptions,
    FakeTemplateRepository,
    make_job,
)

WELCOME_TEMPLATE = NotificationTemplate(
    id="welcome",
    name="Welcome",
    channel=Channel.EMAIL,
    subject="Welcome {{name}}",
    content="Hello {{name}}, your class is {{class_name}}.",
)


@pytest.fixture
def push_subscriptions():
    return FakePushSubscriptions()


@pytest.fixture
def inbox(dt_clock):
    return FakeInAppRepository(dt_clock)


@pytest.fixture
def client(job_repository, bulk_repository, dt_clock, push_subscriptions, inbox):
    service = NotificationService(
        job_repository,
        bulk_repository,
        FakeTemplateRepository(WELCOME_TEMPLATE),
        clock=dt_clock,
    )
    app.dependency_overrides[get_notification_service] = lambda: service
    app.dependency_overrides[get_push_subscriptions] = lambda: push_subscriptions
    app.dependency_overrides[get_in_app_notifications] = lambda: inbox
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_create_and_get_notification(client):
    response = client.post(
        "/notifications/",
        json={
            "channel": "EMAIL",
            "recipient": "guardian@example.com",
            "content": "Sports day on Saturday",
            "priority": "HIGH",
            "payload": {"channel": "EMAIL", "html": "<b>Sports day</b>"},
        },
    )

    assert response.status_code == 201
    job_id = response.json()["job_id"]

    response = client.get(f"/notifications/{job_id}")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "PENDING"
    assert data["priority"] == "HIGH"
    assert data["payload"]["html"] == "<b>Sports day</b>"


def test_create_rejects_mismatched_payload(client):
    response = client.post(
        "/notifications/",
        json={
            "channel": "EMAIL",
            "recipient": "guardian@example.com",
            "content": "Hi",
            "payload": {"channel": "SMS"},
        },
    )

    assert response.status_code == 400


def test_create_validates_body(client):
    response = client.post("/notifications/", json={"channel": "EMAIL", "recipient": "", "content": "Hi"})

    assert response.status_code == 422


def test_get_missing_notification(client):
    assert client.get("/notifications/notif_missing").status_code == 404


def test_bulk_send_and_progress(client, job_repository):
    response = client.post(
        "/notifications/bulk",
        json={
            "template_id": "welcome",
            "recipients": [
                {"id": "s1", "contact": "a@example.com", "variables": {"name": "Asha", "class_name": "6B"}},
                {"id": "s2", "contact": "b@example.com", "variables": {"name": "Bilal"}},
            ],
        },
    )

    assert response.status_code == 201
    bulk_job_id = response.json()["bulk_job_id"]

    progress = client.get(f"/notifications/bulk/{bulk_job_id}").json()
    assert progress["status"] == "COMPLETED"
    assert progress["successful_deliveries"] == 2
    assert progress["failed_deliveries"] == 0
    contents = sorted(job.content for job in job_repository.jobs.values())
    assert contents == [
        "Hello Asha, your class is 6B.",
        "Hello Bilal, your class is {{class_name}}.",
    ]


def test_bulk_unknown_template(client):
    response = client.post(
        "/notifications/bulk",
        json={"template_id": "nope", "recipients": [{"id": "s1", "contact": "a@example.com"}]},
    )

    assert response.status_code == 404


def test_put_template_then_bulk_send(client, job_repository):
    response = client.put(
        "/notifications/templates/absence",
        json={
            "name": "Absence alert",
            "channel": "SMS",
            "content": "{{name}} was absent today.",
            "variables": ["name"],
        },
    )

    assert response.status_code == 200
    assert response.json()["id"] == "absence"
    assert response.json()["is_active"] is True

    response = client.post(
        "/notifications/bulk",
        json={
            "template_id": "absence",
            "recipients": [{"id": "s1", "contact": "01710000001", "variables": {"name": "Tania"}}],
        },
    )

    assert response.status_code == 201
    (job,) = job_repository.jobs.values()
    assert job.content == "Tania was absent today."


def test_cancel_then_retry(client, job_repository):
    job_repository.add(make_job("j1"))

    response = client.post("/notifications/j1/cancel")
    assert response.status_code == 200
    assert response.json() == {"job_id": "j1", "status": "CANCELLED"}

    assert client.post("/notifications/j1/cancel").status_code == 409

    response = client.post("/notifications/j1/retry")
    assert response.status_code == 200
    assert job_repository.jobs["j1"].status is JobStatus.PENDING


def test_cancel_missing_job(client):
    assert client.post("/notifications/nope/cancel").status_code == 404


def test_stats_endpoint(client, job_repository):
    sent = make_job("sent", status=JobStatus.SENT)
    job_repository.add(sent)

    response = client.get(
        "/notifications/stats",
        params={"start": "2024-01-14T00:00:00Z", "end": "2024-01-16T00:00:00Z"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["total_sent"] == 1
    assert data["success_rate"] == 100.0
    assert data["daily_stats"] == [{"date": "2024-01-15", "sent": 1, "failed": 0}]


def test_stats_rejects_inverted_window(client):
    response = client.get(
        "/notifications/stats",
        params={"start": "2024-01-16T00:00:00Z", "end": "2024-01-14T00:00:00Z"},
    )

    assert response.status_code == 400


def test_push_subscribe_and_unsubscribe(client, push_subscriptions):
    response = client.post(
        "/notifications/push/subscribe",
        json={
            "user_id": "u1",
            "endpoint": "https://push.example/abc",
            "keys": {"p256dh": "pub", "auth": "secret"},
        },
    )
    assert response.status_code == 204
    assert "https://push.example/abc" in push_subscriptions.subscriptions

    response = client.post("/notifications/push/unsubscribe", json={"user_id": "u1"})
    assert response.json() == {"removed": 1}


def test_in_app_inbox_pages_newest_first(client, inbox, dt_clock):
    for i in range(3):
        inbox.add("student-7", f"Notice {i}")
        dt_clock.advance(minutes=1)
    inbox.add("student-8", "Other inbox")

    response = client.get("/notifications/in-app/student-7", params={"limit": 2})

    assert response.status_code == 200
    data = response.json()
    assert [n["title"] for n in data["notifications"]] == ["Notice 2", "Notice 1"]
    assert data["total"] == 3
    assert data["unread"] == 3

    data = client.get("/notifications/in-app/student-7", params={"limit": 2, "offset": 2}).json()
    assert [n["title"] for n in data["notifications"]] == ["Notice 0"]


def test_mark_in_app_notifications_read(client, inbox):
    first = inbox.add("student-7", "Exam schedule")
    inbox.add("student-7", "Library fine")
    other = inbox.add("student-8", "Not yours")

    response = client.post("/notifications/in-app/student-7/read", json={"ids": [first, other]})

    assert response.status_code == 200
    assert response.json() == {"updated": 1, "unread": 1}

    unread = client.get("/notifications/in-app/student-7", params={"unread_only": True}).json()
    assert [n["title"] for n in unread["notifications"]] == ["Library fine"]

    response = client.post("/notifications/in-app/student-7/read", json={})
    assert response.json() == {"updated": 1, "unread": 0}
    assert inbox.notifications[other - 1].is_read is False
