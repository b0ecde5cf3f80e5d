"""
Right-of-access exports: everything the platform stores about one user,
and the tenant-wide export admins hand to auditors.
"""

import json
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator
from uuid import UUID

import structlog
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.engagement import BetaFeedback, UserBadge
from clearstack.models.inventory import Contract, Entity, Software, Usage
from clearstack.models.notification import Notification, PushSubscription
from clearstack.models.tenant import User
from clearstack.models.workflow import PurchaseProject, Review, SoftwareRequest, Task, Vote
from clearstack.modules.governance.domain.security.audit_log import (
    AuditAction,
    AuditEntityType,
    AuditLog,
    AuditLogger,
)
from clearstack.shared.core.exceptions import ResourceNotFoundError

logger = structlog.get_logger()

EXPORT_SECTIONS: tuple[tuple[str, Any, str], ...] = (
    ("reviews", Review, "user_id"),
    ("requests", SoftwareRequest, "requester_id"),
    ("votes", Vote, "voter_id"),
    ("tasks", Task, "assignee_id"),
    ("usages", Usage, "user_id"),
    ("badges", UserBadge, "user_id"),
    ("notifications", Notification, "user_id"),
    ("push_subscriptions", PushSubscription, "user_id"),
    ("feedbacks", BetaFeedback, "user_id"),
)


def _row_to_dict(row: Any) -> dict[str, Any]:
    return {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}


async def export_user_data(
    db: AsyncSession,
    user_id: UUID,
    *,
    source_ip: str | None = None,
    user_agent: str | None = None,
) -> dict[str, Any]:
    """
    Collect the user's profile and every row they own or authored.

    Values are returned as Python objects (UUID, datetime, Decimal); the
    HTTP layer encodes them.
    """
    user = await db.get(User, user_id)
    if user is None:
        raise ResourceNotFoundError("User not found", code="USER_NOT_FOUND")

    export: dict[str, Any] = {
        "exported_at": datetime.now(timezone.utc),
        "profile": _row_to_dict(user),
    }
    for section, model, column in EXPORT_SECTIONS:
        result = await db.execute(select(model).where(getattr(model, column) == user_id))
        export[section] = [_row_to_dict(row) for row in result.scalars().all()]

    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.tenant_id == user.tenant_id, AuditLog.actor_id == user_id)
        .order_by(AuditLog.created_at.desc())
    )
    export["activity"] = [_row_to_dict(row) for row in result.scalars().all()]

    await AuditLogger(db, user.tenant_id).record(
        action=AuditAction.DATA_EXPORT_REQUESTED,
        entity_type=AuditEntityType.USER,
        actor_id=user_id,
        entity_id=user_id,
        source_ip=source_ip,
        user_agent=user_agent,
    )
    await db.commit()

    logger.info(
        "user_data_exported",
        user_id=str(user_id),
        sections={name: len(export[name]) for name, _, _ in EXPORT_SECTIONS},
    )
    return export


# Record types of the tenant export, in output order.
TENANT_EXPORT_TABLES: tuple[tuple[str, Any], ...] = (
    ("user", User),
    ("software", Software),
    ("contract", Contract),
    ("review", Review),
    ("request", SoftwareRequest),
    ("vote", Vote),
    ("purchase_project", PurchaseProject),
    ("task", Task),
    ("notification", Notification),
    ("audit_log", AuditLog),
)


def _tenant_rows(model: Any, tenant_id: UUID) -> Any:
    if model is Contract:
        # Contracts belong to a tenant through their entity.
        return (
            select(Contract)
            .join(Entity, Contract.entity_id == Entity.id)
            .where(Entity.tenant_id == tenant_id)
            .order_by(Contract.id)
        )
    return select(model).where(model.tenant_id == tenant_id).order_by(model.id)


def _json_default(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def to_ndjson_line(record: dict[str, Any]) -> str:
    return json.dumps(record, default=_json_default) + "\n"


async def iter_tenant_records(
    db: AsyncSession, tenant_id: UUID
) -> AsyncIterator[dict[str, Any]]:
    """Yield `{"type", "data"}` records for every exported table, one table at a time."""
    for record_type, model in TENANT_EXPORT_TABLES:
        result = await db.execute(_tenant_rows(model, tenant_id))
        for row in result.scalars():
            yield {"type": record_type, "data": _row_to_dict(row)}


async def export_tenant_data(
    db: AsyncSession,
    tenant_id: UUID,
    *,
    actor_id: UUID | None = None,
    source_ip: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> list[str]:
    """
    Tenant-wide export for compliance audits, as NDJSON lines.

    The first line is a metadata record; every following line is one row of
    a table listed in TENANT_EXPORT_TABLES. The request itself is audited
    before the rows are read.
    """
    now = now or datetime.now(timezone.utc)
    await AuditLogger(db, tenant_id).record(
        action=AuditAction.DATA_EXPORT_REQUESTED,
        entity_type=AuditEntityType.TENANT,
        actor_id=actor_id,
        entity_id=tenant_id,
        diff={"format": "ndjson"},
        source_ip=source_ip,
        user_agent=user_agent,
    )
    await db.commit()

    lines = [
        to_ndjson_line(
            {
                "type": "metadata",
                "exported_at": now,
                "tenant_id": tenant_id,
                "record_types": [name for name, _ in TENANT_EXPORT_TABLES],
            }
        )
    ]
    counts: dict[str, int] = {}
    async for record in iter_tenant_records(db, tenant_id):
        counts[record["type"]] = counts.get(record["type"], 0) + 1
        lines.append(to_ndjson_line(record))

    logger.info("tenant_data_exported", tenant_id=str(tenant_id), counts=counts)
    return lines
