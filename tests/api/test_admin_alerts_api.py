"""Tests for the admin alert triggers."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import select

from clearstack.models.notification import Notification
from clearstack.modules.governance.domain.security.audit_log import AuditLog
from clearstack.modules.notifications.api.v1.admin_alerts import get_alert_scheduler
from clearstack.modules.notifications.domain.alerts import AlertScheduler, local_today
from clearstack.modules.notifications.domain.dispatch import NotificationDispatcher
from clearstack.shared.core.config import get_settings

BASE = "/api/v1/admin/alerts"


def _scheduler_today():
    return local_today(datetime.now(timezone.utc), get_settings().SCHEDULER_TIMEZONE)


@pytest.fixture
def use_scheduler(app):
    def _set(scheduler):
        app.dependency_overrides[get_alert_scheduler] = lambda: scheduler
        return scheduler

    return _set


@pytest.mark.asyncio
class TestForceDaily:
    async def test_runs_passes_and_audits(
        self, async_client, factory, as_principal, use_scheduler, session_maker
    ):
        tenant = await factory.tenant()
        admin = await factory.user(tenant, role="ADMIN")
        entity = await factory.entity(tenant)
        await factory.contract(
            entity, await factory.software(tenant), _scheduler_today() + timedelta(days=20)
        )
        use_scheduler(
            AlertScheduler(session_maker, NotificationDispatcher(email_service_factory=lambda: None))
        )
        as_principal(admin)

        first = await async_client.post(f"{BASE}/force-daily")
        repeat = await async_client.post(f"{BASE}/force-daily")
        forced = await async_client.post(f"{BASE}/force-daily", params={"bypass_dedup": "true"})

        assert first.status_code == 200
        assert first.json()["contracts"]["dispatched"] == 1
        assert repeat.json()["contracts"]["suppressed"] == 1
        assert forced.json()["contracts"]["dispatched"] == 1

        async with session_maker() as s:
            notifications = (
                await s.execute(select(Notification).where(Notification.user_id == admin.id))
            ).scalars().all()
            assert len(notifications) == 2
            audits = (
                await s.execute(select(AuditLog).where(AuditLog.action == "ALERTS_FORCED"))
            ).scalars().all()
            assert len(audits) == 3
            assert {a.diff["bypass_dedup"] for a in audits} == {False, True}

    async def test_member_is_forbidden(self, async_client, factory, as_principal, use_scheduler):
        tenant = await factory.tenant()
        scheduler = use_scheduler(MagicMock())
        scheduler.send_daily_alerts = AsyncMock()
        as_principal(await factory.user(tenant))

        response = await async_client.post(f"{BASE}/force-daily")

        assert response.status_code == 403
        scheduler.send_daily_alerts.assert_not_awaited()


@pytest.mark.asyncio
class TestForceDigest:
    async def test_targets_user_in_same_tenant(
        self, async_client, factory, as_principal, use_scheduler
    ):
        tenant = await factory.tenant()
        admin = await factory.user(tenant, role="ADMIN")
        member = await factory.user(tenant)
        scheduler = use_scheduler(MagicMock())
        scheduler.send_weekly_digest = AsyncMock(return_value=1)
        as_principal(admin)

        response = await async_client.post(
            f"{BASE}/force-digest", params={"user_id": str(member.id)}
        )

        assert response.status_code == 200
        assert response.json() == {"sent": 1}
        scheduler.send_weekly_digest.assert_awaited_once_with(
            user_id=member.id, tenant_id=tenant.id
        )

    async def test_user_from_other_tenant_is_not_found(
        self, async_client, factory, as_principal, use_scheduler
    ):
        tenant = await factory.tenant()
        stranger = await factory.user(await factory.tenant("Other"))
        scheduler = use_scheduler(MagicMock())
        scheduler.send_weekly_digest = AsyncMock(return_value=1)
        as_principal(await factory.user(tenant, role="ADMIN"))

        for target in (stranger.id, uuid4()):
            response = await async_client.post(
                f"{BASE}/force-digest", params={"user_id": str(target)}
            )
            assert response.status_code == 404
            assert response.json()["code"] == "USER_NOT_FOUND"
        scheduler.send_weekly_digest.assert_not_awaited()

    async def test_all_users(self, async_client, factory, as_principal, use_scheduler, session_maker):
        tenant = await factory.tenant()
        admin = await factory.user(tenant, role="ADMIN")
        await factory.user(tenant)
        use_scheduler(
            AlertScheduler(session_maker, NotificationDispatcher(email_service_factory=lambda: None))
        )
        as_principal(admin)

        response = await async_client.post(f"{BASE}/force-digest")

        assert response.status_code == 200
        assert response.json() == {"sent": 2}


@pytest.mark.asyncio
class TestTenantIsolation:
    async def test_forced_sends_stay_inside_the_callers_tenant(
        self, async_client, factory, as_principal, use_scheduler, session_maker
    ):
        today = _scheduler_today()
        home = await factory.tenant("Home")
        admin = await factory.user(home, role="ADMIN")
        await factory.contract(
            await factory.entity(home), await factory.software(home), today + timedelta(days=20)
        )

        other = await factory.tenant("Other")
        other_admin = await factory.user(other, role="ADMIN")
        await factory.contract(
            await factory.entity(other), await factory.software(other), today + timedelta(days=20)
        )
        await factory.task(
            await factory.project(other), other_admin, due_date=today - timedelta(days=2)
        )

        use_scheduler(
            AlertScheduler(session_maker, NotificationDispatcher(email_service_factory=lambda: None))
        )
        as_principal(admin)

        daily = await async_client.post(f"{BASE}/force-daily")
        forced = await async_client.post(f"{BASE}/force-daily", params={"bypass_dedup": "true"})
        digest = await async_client.post(f"{BASE}/force-digest")

        assert daily.json()["contracts"]["dispatched"] == 1
        assert daily.json()["tasks"]["evaluated"] == 0
        assert forced.json()["contracts"]["dispatched"] == 1
        assert digest.json() == {"sent": 1}

        async with session_maker() as s:
            leaked = (
                await s.execute(
                    select(Notification.type).where(Notification.user_id == other_admin.id)
                )
            ).scalars().all()
            assert leaked == []
            own = (
                await s.execute(select(Notification.type).where(Notification.user_id == admin.id))
            ).scalars().all()
            assert sorted(own) == ["ALERT_CONTRACT", "ALERT_CONTRACT", "SYSTEM"]
