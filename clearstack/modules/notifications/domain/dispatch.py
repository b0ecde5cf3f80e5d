"""
Notification Dispatch

Persists in-app notifications and, for recipients who opted in, sends the
matching email. Persistence runs in the caller's transaction and its errors
propagate to the caller's per-item boundary; email delivery never raises.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from uuid import UUID

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.notification import Notification, NotificationType
from clearstack.models.tenant import User
from clearstack.modules.notifications.domain.email_service import (
    EmailService,
    build_email_service,
    render_notification_email,
)
from clearstack.shared.core.config import get_settings
from clearstack.shared.core.ops_metrics import ALERTS_DISPATCHED, RETENTION_ROWS_DELETED

logger = structlog.get_logger()


class NotificationDispatcher:
    def __init__(
        self,
        email_service: Optional[EmailService] = None,
        *,
        email_service_factory: Callable[[], Optional[EmailService]] | None = None,
    ) -> None:
        self._email_service_factory = email_service_factory or build_email_service
        self._email_service = email_service
        self._email_service_resolved = email_service is not None

    def _get_email_service(self) -> Optional[EmailService]:
        if not self._email_service_resolved:
            self._email_service = self._email_service_factory()
            self._email_service_resolved = True
        return self._email_service

    async def enqueue(
        self,
        db: AsyncSession,
        user_id: UUID,
        notification_type: NotificationType | str,
        payload: dict[str, Any],
    ) -> bool:
        """
        Store a notification for the user and email it when they opted in.
        Returns False when the user does not exist.
        """
        type_value = (
            notification_type.value
            if isinstance(notification_type, NotificationType)
            else str(notification_type)
        )
        user = await db.get(User, user_id)
        if user is None:
            logger.warning("notification_recipient_missing", user_id=str(user_id), type=type_value)
            return False

        # Payload lands in a JSON column.
        safe_payload = json.loads(json.dumps(payload, default=str))
        db.add(
            Notification(
                tenant_id=user.tenant_id,
                user_id=user.id,
                type=type_value,
                payload=safe_payload,
            )
        )
        await db.flush()
        ALERTS_DISPATCHED.labels(notification_type=type_value).inc()

        if user.email_notifications:
            await self._send_email(user.email, type_value, safe_payload)
        return True

    async def _send_email(self, to_email: str, type_value: str, payload: dict[str, Any]) -> bool:
        email_service = self._get_email_service()
        if email_service is None:
            logger.debug("notification_email_skipped_smtp_unconfigured", type=type_value)
            return False
        try:
            subject, html = render_notification_email(type_value, payload)
            return await email_service.send(to_email, subject, html)
        except Exception as exc:
            logger.error("notification_email_failed", type=type_value, error=str(exc))
            return False


async def sweep_old_notifications(
    db: AsyncSession,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> int:
    """Delete notifications older than the retention horizon (90 days by default)."""
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days or settings.NOTIFICATION_RETENTION_DAYS)

    result = await db.execute(delete(Notification).where(Notification.created_at < cutoff))
    await db.commit()

    raw_count = getattr(result, "rowcount", 0)
    deleted = raw_count if isinstance(raw_count, int) and raw_count > 0 else 0
    RETENTION_ROWS_DELETED.labels(target="notifications").inc(deleted)
    logger.info("notification_cleanup_completed", deleted=deleted, cutoff=cutoff.isoformat())
    return deleted
