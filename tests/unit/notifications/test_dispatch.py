"""
Tests for notification dispatch

Tests cover:
- Persisting in-app notifications
- Email delivery gated by the recipient's opt-in
- Email failures never reaching the caller
- Notification retention sweep
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from clearstack.models.notification import Notification, NotificationType
from clearstack.modules.notifications.domain.dispatch import (
    NotificationDispatcher,
    sweep_old_notifications,
)
from clearstack.modules.notifications.domain.email_service import EmailService

NOW = datetime(2026, 5, 4, 7, 0, tzinfo=timezone.utc)


def _email_service(**kwargs) -> MagicMock:
    service = MagicMock(spec=EmailService)
    service.send = AsyncMock(**kwargs)
    return service


@pytest.mark.asyncio
class TestEnqueue:
    async def test_persists_notification_and_emails_opted_in_user(self, db_session, factory):
        tenant = await factory.tenant()
        user = await factory.user(tenant, email="admin@acme.test")
        email = _email_service(return_value=True)
        dispatcher = NotificationDispatcher(email)

        delivered = await dispatcher.enqueue(
            db_session,
            user.id,
            NotificationType.ALERT_CONTRACT,
            {"contract_id": uuid4(), "software_name": "Figma", "days_remaining": 12},
        )
        await db_session.commit()

        assert delivered is True
        stored = (await db_session.execute(select(Notification))).scalar_one()
        assert stored.type == "ALERT_CONTRACT"
        assert stored.tenant_id == tenant.id
        # Values that are not JSON-native are stored as strings.
        assert isinstance(stored.payload["contract_id"], str)
        email.send.assert_awaited_once()
        to_email, subject, _ = email.send.await_args.args
        assert to_email == "admin@acme.test"
        assert subject == "Contract renewal: Figma expires in 12 days"

    async def test_opted_out_user_gets_in_app_only(self, db_session, factory):
        tenant = await factory.tenant()
        user = await factory.user(tenant, email_notifications=False)
        email = _email_service(return_value=True)

        delivered = await NotificationDispatcher(email).enqueue(
            db_session, user.id, "SYSTEM", {"message": "hello"}
        )

        assert delivered is True
        email.send.assert_not_awaited()
        assert (await db_session.execute(select(Notification))).scalar_one().type == "SYSTEM"

    async def test_missing_user_is_skipped(self, db_session):
        email = _email_service(return_value=True)

        delivered = await NotificationDispatcher(email).enqueue(
            db_session, uuid4(), NotificationType.SYSTEM, {}
        )

        assert delivered is False
        assert (await db_session.execute(select(Notification))).first() is None
        email.send.assert_not_awaited()

    async def test_email_failure_is_swallowed(self, db_session, factory):
        tenant = await factory.tenant()
        user = await factory.user(tenant)
        email = _email_service(side_effect=RuntimeError("relay refused"))

        delivered = await NotificationDispatcher(email).enqueue(
            db_session, user.id, NotificationType.PROJECT_TASK, {"task_title": "Sign PO"}
        )
        await db_session.commit()

        assert delivered is True
        assert (await db_session.execute(select(Notification))).scalar_one() is not None

    async def test_email_service_is_resolved_lazily_once(self, db_session, factory):
        tenant = await factory.tenant()
        user = await factory.user(tenant)
        email = _email_service(return_value=True)
        factory_calls = MagicMock(return_value=email)
        dispatcher = NotificationDispatcher(email_service_factory=factory_calls)

        factory_calls.assert_not_called()
        await dispatcher.enqueue(db_session, user.id, NotificationType.SYSTEM, {})
        await dispatcher.enqueue(db_session, user.id, NotificationType.SYSTEM, {})

        factory_calls.assert_called_once()
        assert email.send.await_count == 2

    async def test_unconfigured_smtp_still_persists(self, db_session, factory):
        tenant = await factory.tenant()
        user = await factory.user(tenant)

        delivered = await NotificationDispatcher(email_service_factory=lambda: None).enqueue(
            db_session, user.id, NotificationType.SYSTEM, {}
        )

        assert delivered is True


@pytest.mark.asyncio
class TestNotificationSweep:
    async def test_sweep_deletes_notifications_past_retention(self, db_session, factory):
        tenant = await factory.tenant()
        user = await factory.user(tenant)
        for age_days, label in ((91, "old"), (89, "recent")):
            db_session.add(
                Notification(
                    tenant_id=tenant.id,
                    user_id=user.id,
                    type="SYSTEM",
                    payload={"label": label},
                    created_at=NOW - timedelta(days=age_days),
                )
            )
        await db_session.commit()

        assert await sweep_old_notifications(db_session, now=NOW) == 1
        assert await sweep_old_notifications(db_session, now=NOW) == 0

        remaining = (await db_session.execute(select(Notification))).scalars().all()
        assert [n.payload["label"] for n in remaining] == ["recent"]
