"""
Admin alert triggers

Provides:
- POST /admin/alerts/force-daily - run the contract and task passes now
- POST /admin/alerts/force-digest - send the weekly digest now

Both only reach the caller's own tenant.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.tenant import User, UserRole
from clearstack.modules.governance.domain.security.audit_log import (
    AuditAction,
    AuditEntityType,
    AuditLogger,
)
from clearstack.modules.notifications.domain.alerts import AlertScheduler
from clearstack.shared.core.auth import CurrentUser, requires_role
from clearstack.shared.core.exceptions import ResourceNotFoundError
from clearstack.shared.db.session import async_session_maker, get_db

logger = structlog.get_logger()
router = APIRouter(prefix="/admin/alerts", tags=["Admin"])


def get_alert_scheduler() -> AlertScheduler:
    return AlertScheduler(async_session_maker)


@router.post("/force-daily")
async def force_daily_alerts(
    bypass_dedup: bool = Query(False),
    user: CurrentUser = Depends(requires_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
    alert_scheduler: AlertScheduler = Depends(get_alert_scheduler),
) -> dict[str, dict[str, int]]:
    reports = await alert_scheduler.send_daily_alerts(
        bypass_dedup=bypass_dedup, tenant_id=user.tenant_id
    )
    result = {name: report.to_dict() for name, report in reports.items()}

    await AuditLogger(db, user.tenant_id).record(
        action=AuditAction.ALERTS_FORCED,
        entity_type=AuditEntityType.SETTINGS,
        actor_id=user.id,
        diff={"run": "daily", "bypass_dedup": bypass_dedup, "reports": result},
    )
    await db.commit()
    logger.info("daily_alerts_forced", user_id=str(user.id), bypass_dedup=bypass_dedup)
    return result


@router.post("/force-digest")
async def force_weekly_digest(
    user_id: Optional[UUID] = Query(None),
    user: CurrentUser = Depends(requires_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
    alert_scheduler: AlertScheduler = Depends(get_alert_scheduler),
) -> dict[str, int]:
    if user_id is not None:
        target = await db.get(User, user_id)
        if target is None or target.tenant_id != user.tenant_id:
            raise ResourceNotFoundError("User not found", code="USER_NOT_FOUND")

    sent = await alert_scheduler.send_weekly_digest(user_id=user_id, tenant_id=user.tenant_id)

    await AuditLogger(db, user.tenant_id).record(
        action=AuditAction.ALERTS_FORCED,
        entity_type=AuditEntityType.SETTINGS,
        actor_id=user.id,
        diff={"run": "weekly_digest", "user_id": user_id, "sent": sent},
    )
    await db.commit()
    return {"sent": sent}
