"""In-app notification inbox storage."""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from app.features.notifications.domain import InAppNotification
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class InAppNotificationRepository:
    SELECT_COLUMNS = """
        id, user_id, title, content, link, category, data, is_read, created_at
    """

    @staticmethod
    def _row_to_notification(row: dict) -> InAppNotification:
        return InAppNotification(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            content=row["content"],
            created_at=row["created_at"],
            link=row.get("link"),
            category=row.get("category"),
            data=row.get("data"),
            is_read=row["is_read"],
        )

    async def create(
        self,
        user_id: str,
        title: str,
        content: str,
        *,
        link: str | None = None,
        category: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> int:
        """Store an in-app notification and return its id."""
        query = """
            INSERT INTO in_app_notifications (user_id, title, content, link, category, data)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
        """
        return await fetch_val(
            query,
            (user_id, title, content, link, category, Jsonb(data) if data else None),
        )

    async def list_for_user(
        self, user_id: str, limit: int = 20, offset: int = 0, *, unread_only: bool = False
    ) -> list[InAppNotification]:
        """Newest first."""
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM in_app_notifications
            WHERE user_id = %s AND (NOT %s OR NOT is_read)
            ORDER BY created_at DESC, id DESC
            LIMIT %s OFFSET %s
        """
        rows = await fetch_all(query, (user_id, unread_only, limit, offset))
        return [self._row_to_notification(row) for row in rows]

    async def count_for_user(self, user_id: str) -> dict[str, int]:
        """Inbox totals: ``{"total": n, "unread": m}``."""
        query = """
            SELECT COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE NOT is_read) AS unread
            FROM in_app_notifications
            WHERE user_id = %s
        """
        row = await fetch_one(query, (user_id,))
        if not row:
            return {"total": 0, "unread": 0}
        return {"total": int(row["total"]), "unread": int(row["unread"])}

    async def count_unread(self, user_id: str) -> int:
        return (await self.count_for_user(user_id))["unread"]

    async def mark_read(self, user_id: str, ids: list[int] | None = None) -> int:
        """
        Mark notifications read. ``ids=None`` marks the whole inbox.

        Ids that belong to another user are ignored.
        """
        if ids is None:
            query = """
                UPDATE in_app_notifications
                SET is_read = TRUE
                WHERE user_id = %s AND NOT is_read
            """
            params: tuple = (user_id,)
        else:
            if not ids:
                return 0
            query = """
                UPDATE in_app_notifications
                SET is_read = TRUE
                WHERE user_id = %s AND id = ANY(%s) AND NOT is_read
            """
            params = (user_id, list(ids))

        count = await execute_query(query, params)
        logger.info("In-app notifications marked read", user_id=user_id, count=count)
        return count
