"""
Privacy API Endpoints

Provides:
- POST /privacy/delete-my-account - queue the caller's erasure (30-day grace)
- POST /privacy/cancel-deletion - cancel it during the grace period
- GET /privacy/export-my-data - right-of-access export
- GET /privacy/admin/company-export - tenant-wide NDJSON export (admin)
- POST /privacy/admin/delete-tenant - queue the erasure of the whole tenant (admin)
- POST /privacy/admin/cancel-tenant-deletion - cancel it (admin)
"""

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.tenant import UserRole
from clearstack.modules.privacy.domain.deletion_queue import (
    cancel_erasure,
    cancel_tenant_erasure,
    request_erasure,
    request_tenant_erasure,
)
from clearstack.modules.privacy.domain.export import export_tenant_data, export_user_data
from clearstack.shared.core.auth import CurrentUser, get_current_user, requires_role
from clearstack.shared.db.base import as_utc
from clearstack.shared.db.session import get_db

logger = structlog.get_logger()
router = APIRouter(prefix="/privacy", tags=["Privacy"])


class ErasureRequestResponse(BaseModel):
    status: str
    purge_after: datetime
    message: str


class ErasureCancelResponse(BaseModel):
    status: str
    message: str


def _request_context(request: Request) -> dict[str, Any]:
    return {
        "source_ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


@router.post("/delete-my-account", response_model=ErasureRequestResponse)
async def delete_my_account(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ErasureRequestResponse:
    entry = await request_erasure(db, user.id, user.tenant_id, **_request_context(request))
    return ErasureRequestResponse(
        status=entry.status,
        purge_after=as_utc(entry.purge_after),
        message="Your account will be erased after the grace period. You can cancel until then.",
    )


@router.post("/cancel-deletion", response_model=ErasureCancelResponse)
async def cancel_deletion(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ErasureCancelResponse:
    entry = await cancel_erasure(db, user.id, **_request_context(request))
    return ErasureCancelResponse(status=entry.status, message="Erasure request canceled.")


@router.get("/export-my-data")
async def export_my_data(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    data = await export_user_data(db, user.id, **_request_context(request))
    return JSONResponse(
        content=jsonable_encoder(data),
        headers={"Content-Disposition": 'attachment; filename="clearstack-export.json"'},
    )


@router.post("/admin/delete-tenant", response_model=ErasureRequestResponse)
async def delete_tenant(
    request: Request,
    user: CurrentUser = Depends(requires_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> ErasureRequestResponse:
    entry = await request_tenant_erasure(
        db, user.tenant_id, requested_by=user.id, **_request_context(request)
    )
    return ErasureRequestResponse(
        status=entry.status,
        purge_after=as_utc(entry.purge_after),
        message="All tenant data will be erased after the grace period.",
    )


@router.post("/admin/cancel-tenant-deletion", response_model=ErasureCancelResponse)
async def cancel_tenant_deletion(
    request: Request,
    user: CurrentUser = Depends(requires_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> ErasureCancelResponse:
    entry = await cancel_tenant_erasure(
        db, user.tenant_id, canceled_by=user.id, **_request_context(request)
    )
    return ErasureCancelResponse(status=entry.status, message="Tenant erasure canceled.")


@router.get("/admin/company-export")
async def export_tenant(
    request: Request,
    user: CurrentUser = Depends(requires_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    lines = await export_tenant_data(
        db, user.tenant_id, actor_id=user.id, **_request_context(request)
    )
    return StreamingResponse(
        iter(lines),
        media_type="application/x-ndjson",
        headers={
            "Content-Disposition": f'attachment; filename="clearstack-tenant-{user.tenant_id}.ndjson"'
        },
    )
