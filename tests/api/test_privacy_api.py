"""
Tests for the privacy endpoints

Tests cover:
- Authentication and role checks
- Erasure request / conflict / cancel over HTTP
- Data export (user and tenant-wide)
- Tenant erasure (admin)
"""

import json
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from clearstack.models.deletion_queue import DeletionQueueEntry
from clearstack.modules.governance.domain.security.audit_log import AuditLog

BASE = "/api/v1/privacy"


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.mark.asyncio
class TestErasureEndpoints:
    async def test_requires_authentication(self, async_client):
        response = await async_client.post(f"{BASE}/delete-my-account")

        assert response.status_code == 401
        assert response.json()["code"] == "HTTP_ERROR"

    async def test_request_then_conflict(self, async_client, factory, as_principal):
        tenant = await factory.tenant()
        user = await factory.user(tenant)
        as_principal(user)

        before = datetime.now(timezone.utc)
        first = await async_client.post(f"{BASE}/delete-my-account")
        assert first.status_code == 200
        body = first.json()
        assert body["status"] == "PENDING"
        purge_after = _parse(body["purge_after"])
        assert before + timedelta(days=30) <= purge_after <= datetime.now(timezone.utc) + timedelta(days=30)

        second = await async_client.post(f"{BASE}/delete-my-account")
        assert second.status_code == 409
        error = second.json()
        assert error["code"] == "DELETION_ALREADY_REQUESTED"
        assert _parse(error["details"]["purge_after"]) == purge_after

    async def test_cancel_then_cancel_again(self, async_client, factory, as_principal, session_maker):
        tenant = await factory.tenant()
        user = await factory.user(tenant)
        as_principal(user)
        await async_client.post(f"{BASE}/delete-my-account")

        canceled = await async_client.post(f"{BASE}/cancel-deletion")
        assert canceled.status_code == 200
        assert canceled.json()["status"] == "CANCELED"

        again = await async_client.post(f"{BASE}/cancel-deletion")
        assert again.status_code == 404
        assert again.json()["code"] == "NO_DELETION_REQUEST"

        async with session_maker() as s:
            entry = (await s.execute(select(DeletionQueueEntry))).scalar_one()
            assert entry.status == "CANCELED"
            actions = (
                await s.execute(select(AuditLog.action).where(AuditLog.actor_id == user.id))
            ).scalars().all()
            assert sorted(actions) == ["ACCOUNT_DELETION_CANCELED", "ACCOUNT_DELETION_REQUESTED"]


@pytest.mark.asyncio
class TestExportEndpoint:
    async def test_export_contains_profile_and_owned_rows(
        self, async_client, factory, as_principal, session_maker
    ):
        tenant = await factory.tenant()
        user = await factory.user(tenant, email="alice@acme.test")
        software = await factory.software(tenant)
        await factory.review(user, software, rating=3)
        await factory.request(user)
        as_principal(user)

        response = await async_client.get(f"{BASE}/export-my-data")

        assert response.status_code == 200
        assert "attachment" in response.headers["content-disposition"]
        data = response.json()
        assert data["profile"]["email"] == "alice@acme.test"
        assert data["profile"]["id"] == str(user.id)
        assert [r["rating"] for r in data["reviews"]] == [3]
        assert len(data["requests"]) == 1
        assert data["votes"] == []

        async with session_maker() as s:
            actions = (await s.execute(select(AuditLog.action))).scalars().all()
            assert actions == ["DATA_EXPORT_REQUESTED"]


@pytest.mark.asyncio
class TestTenantErasureEndpoints:
    async def test_non_admin_is_forbidden(self, async_client, factory, as_principal):
        tenant = await factory.tenant()
        as_principal(await factory.user(tenant, role="MANAGER"))

        response = await async_client.post(f"{BASE}/admin/delete-tenant")

        assert response.status_code == 403

    async def test_admin_request_and_cancel(self, async_client, factory, as_principal, session_maker):
        tenant = await factory.tenant()
        admin = await factory.user(tenant, role="ADMIN")
        as_principal(admin)

        requested = await async_client.post(f"{BASE}/admin/delete-tenant")
        assert requested.status_code == 200
        conflict = await async_client.post(f"{BASE}/admin/delete-tenant")
        assert conflict.status_code == 409
        canceled = await async_client.post(f"{BASE}/admin/cancel-tenant-deletion")
        assert canceled.status_code == 200

        async with session_maker() as s:
            entry = (await s.execute(select(DeletionQueueEntry))).scalar_one()
            assert entry.user_id is None
            assert entry.tenant_id == tenant.id
            assert entry.status == "CANCELED"


@pytest.mark.asyncio
class TestTenantExportEndpoint:
    async def test_streams_tenant_rows_as_ndjson(
        self, async_client, factory, as_principal, session_maker
    ):
        tenant = await factory.tenant()
        admin = await factory.user(tenant, role="ADMIN")
        member = await factory.user(tenant)
        software = await factory.software(tenant)
        contract = await factory.contract(await factory.entity(tenant), software, date(2026, 12, 31))
        await factory.review(member, software)
        request = await factory.request(member)
        await factory.vote(request, admin)
        await factory.task(await factory.project(tenant, software=software), member)

        other = await factory.tenant("Other")
        outsider = await factory.user(other)
        await factory.review(outsider, await factory.software(other, "Slack"))
        await factory.contract(
            await factory.entity(other), await factory.software(other), date(2026, 6, 30)
        )
        as_principal(admin)

        response = await async_client.get(f"{BASE}/admin/company-export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert f"clearstack-tenant-{tenant.id}.ndjson" in response.headers["content-disposition"]
        records = [json.loads(line) for line in response.text.splitlines()]

        metadata = records[0]
        assert metadata["type"] == "metadata"
        assert metadata["tenant_id"] == str(tenant.id)

        by_type = {}
        for record in records[1:]:
            by_type.setdefault(record["type"], []).append(record["data"])
        assert {u["id"] for u in by_type["user"]} == {str(admin.id), str(member.id)}
        assert [c["id"] for c in by_type["contract"]] == [str(contract.id)]
        assert by_type["contract"][0]["end_date"] == "2026-12-31"
        assert len(by_type["review"]) == 1
        assert len(by_type["request"]) == 1
        assert len(by_type["vote"]) == 1
        assert len(by_type["purchase_project"]) == 1
        assert len(by_type["task"]) == 1
        assert [a["action"] for a in by_type["audit_log"]] == ["DATA_EXPORT_REQUESTED"]
        assert str(outsider.id) not in response.text

        async with session_maker() as s:
            audit = (await s.execute(select(AuditLog))).scalar_one()
            assert audit.entity_type == "tenant"
            assert audit.entity_id == str(tenant.id)
            assert audit.actor_id == admin.id

    async def test_member_is_forbidden(self, async_client, factory, as_principal):
        tenant = await factory.tenant()
        as_principal(await factory.user(tenant, role="MANAGER"))

        response = await async_client.get(f"{BASE}/admin/company-export")

        assert response.status_code == 403
