"""Web push subscription registry."""

from app.db.helpers import execute_query, fetch_all
from app.features.notifications.domain import PushSubscription
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PushSubscriptionRepository:
    async def subscribe(self, subscription: PushSubscription) -> None:
        """Register an endpoint, re-activating and re-owning it if known."""
        query = """
            INSERT INTO push_subscriptions (endpoint, user_id, p256dh, auth, is_active)
            VALUES (%s, %s, %s, %s, TRUE)
            ON CONFLICT (endpoint) DO UPDATE
            SET user_id = EXCLUDED.user_id,
                p256dh = EXCLUDED.p256dh,
                auth = EXCLUDED.auth,
                is_active = TRUE,
                updated_at = NOW()
        """
        await execute_query(
            query,
            (subscription.endpoint, subscription.user_id, subscription.p256dh, subscription.auth),
        )
        logger.info("Push subscription registered", user_id=subscription.user_id)

    async def unsubscribe(self, user_id: str, endpoint: str | None = None) -> int:
        """Deactivate one endpoint, or every endpoint of the user."""
        if endpoint:
            query = """
                UPDATE push_subscriptions
                SET is_active = FALSE, updated_at = NOW()
                WHERE user_id = %s AND endpoint = %s
            """
            params = (user_id, endpoint)
        else:
            query = """
                UPDATE push_subscriptions
                SET is_active = FALSE, updated_at = NOW()
                WHERE user_id = %s
            """
            params = (user_id,)

        count = await execute_query(query, params)
        logger.info("Push subscriptions deactivated", user_id=user_id, count=count)
        return count

    async def list_active(self, user_id: str) -> list[PushSubscription]:
        query = """
            SELECT endpoint, user_id, p256dh, auth, is_active
            FROM push_subscriptions
            WHERE user_id = %s AND is_active
        """
        rows = await fetch_all(query, (user_id,))
        return [
            PushSubscription(
                endpoint=row["endpoint"],
                user_id=row["user_id"],
                p256dh=row["p256dh"],
                auth=row["auth"],
                is_active=row["is_active"],
            )
            for row in rows
        ]

    async def deactivate(self, endpoint: str) -> None:
        query = """
            UPDATE push_subscriptions
            SET is_active = FALSE, updated_at = NOW()
            WHERE endpoint = %s
        """
        await execute_query(query, (endpoint,))
