"""
Audit Log API Endpoints

Provides:
- GET /audit/logs - Paginated, tenant-scoped audit logs (admin-only)
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.tenant import UserRole
from clearstack.modules.governance.domain.security.audit_log import AuditLogger
from clearstack.shared.core.auth import CurrentUser, requires_role
from clearstack.shared.db.session import get_db

router = APIRouter(prefix="/audit", tags=["Audit"])


class AuditLogResponse(BaseModel):
    id: UUID
    actor_id: Optional[UUID] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    diff: Optional[dict[str, Any]] = None
    source_ip: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.get("/logs", response_model=list[AuditLogResponse])
async def list_audit_logs(
    actor_id: Optional[UUID] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(requires_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> list[AuditLogResponse]:
    entries = await AuditLogger(db, user.tenant_id).query(
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return [AuditLogResponse.model_validate(entry) for entry in entries]
