"""
Tests for the in-app inbox queries, with the db helpers patched out.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from app.features.notifications.repository import in_app_repository
from app.features.notifications.repository.in_app_repository import InAppNotificationRepository

MODULE = "app.features.notifications.repository.in_app_repository"


@pytest.mark.asyncio
async def test_list_for_user_maps_rows(monkeypatch):
    row = {
        "id": 5,
        "user_id": "student-7",
        "title": "Exam schedule",
        "content": "Finals start Monday",
        "link": "/exams",
        "category": "academic",
        "data": {"priority": "HIGH"},
        "is_read": False,
        "created_at": datetime(2024, 1, 15, 9, 0, tzinfo=UTC),
    }
    fetch_all = AsyncMock(return_value=[row])
    monkeypatch.setattr(f"{MODULE}.fetch_all", fetch_all)

    (notification,) = await InAppNotificationRepository().list_for_user(
        "student-7", 10, 20, unread_only=True
    )

    assert notification.id == 5
    assert notification.link == "/exams"
    assert notification.is_read is False
    assert fetch_all.await_args.args[1] == ("student-7", True, 10, 20)


@pytest.mark.asyncio
async def test_count_unread(monkeypatch):
    monkeypatch.setattr(f"{MODULE}.fetch_one", AsyncMock(return_value={"total": 4, "unread": 3}))

    assert await InAppNotificationRepository().count_unread("student-7") == 3


@pytest.mark.asyncio
async def test_mark_read_scopes_ids_to_user(monkeypatch):
    execute = AsyncMock(return_value=2)
    monkeypatch.setattr(f"{MODULE}.execute_query", execute)

    updated = await InAppNotificationRepository().mark_read("student-7", [1, 2])

    assert updated == 2
    query, params = execute.await_args.args
    assert "id = ANY(%s)" in query
    assert params == ("student-7", [1, 2])


@pytest.mark.asyncio
async def test_mark_read_with_empty_ids_is_a_no_op(monkeypatch):
    execute = AsyncMock()
    monkeypatch.setattr(in_app_repository, "execute_query", execute)

    assert await InAppNotificationRepository().mark_read("student-7", []) == 0
    execute.assert_not_awaited()
