"""Lookup and upsert of notification templates."""

from app.db.helpers import fetch_one
from app.features.notifications.domain import Channel, NotificationTemplate
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class NotificationTemplateRepository:
    TEMPLATE_SELECT_COLUMNS = "id, name, channel, subject, content, variables, is_active"

    @staticmethod
    def _row_to_template(row: dict | None) -> NotificationTemplate | None:
        if not row:
            return None

        return NotificationTemplate(
            id=str(row["id"]),
            name=row["name"],
            channel=Channel(row["channel"]),
            subject=row.get("subject"),
            content=row["content"],
            variables=list(row.get("variables") or []),
            is_active=row["is_active"],
        )

    async def get_template(self, template_id: str) -> NotificationTemplate | None:
        query = f"SELECT {self.TEMPLATE_SELECT_COLUMNS} FROM notification_templates WHERE id = %s"
        return self._row_to_template(await fetch_one(query, (template_id,)))

    async def upsert_template(self, template: NotificationTemplate) -> NotificationTemplate:
        query = f"""
            INSERT INTO notification_templates (id, name, channel, subject, content, variables, is_active)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE
            SET name = EXCLUDED.name,
                channel = EXCLUDED.channel,
                subject = EXCLUDED.subject,
                content = EXCLUDED.content,
                variables = EXCLUDED.variables,
                is_active = EXCLUDED.is_active,
                updated_at = NOW()
            RETURNING {self.TEMPLATE_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                template.id,
                template.name,
                template.channel.value,
                template.subject,
                template.content,
                template.variables,
                template.is_active,
            ),
        )
        logger.info("Notification template saved", template_id=template.id, name=template.name)
        return self._row_to_template(row)
