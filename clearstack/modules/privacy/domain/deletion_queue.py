"""
Deletion Queue

Right-to-erasure requests are queued with a grace period instead of being
executed immediately. The purge engine picks them up once purge_after has
elapsed; until then the subject (or a tenant admin) may cancel.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.deletion_queue import (
    DeletionQueueEntry,
    DeletionReason,
    DeletionStatus,
    TERMINAL_DELETION_STATUSES,
)
from clearstack.modules.governance.domain.security.audit_log import (
    AuditAction,
    AuditEntityType,
    AuditLogger,
)
from clearstack.shared.core.config import get_settings
from clearstack.shared.core.exceptions import (
    ErasureAlreadyRequestedError,
    ErasureRequestNotFoundError,
)
from clearstack.shared.core.ops_metrics import RETENTION_ROWS_DELETED
from clearstack.shared.db.base import as_utc

logger = structlog.get_logger()


def _pending_user_filter(user_id: UUID):
    return and_(
        DeletionQueueEntry.user_id == user_id,
        DeletionQueueEntry.status == DeletionStatus.PENDING.value,
    )


def _pending_tenant_filter(tenant_id: UUID):
    return and_(
        DeletionQueueEntry.tenant_id == tenant_id,
        DeletionQueueEntry.user_id.is_(None),
        DeletionQueueEntry.status == DeletionStatus.PENDING.value,
    )


async def get_pending_erasure(
    db: AsyncSession, user_id: UUID
) -> Optional[DeletionQueueEntry]:
    result = await db.execute(select(DeletionQueueEntry).where(_pending_user_filter(user_id)))
    return result.scalar_one_or_none()


async def get_pending_tenant_erasure(
    db: AsyncSession, tenant_id: UUID
) -> Optional[DeletionQueueEntry]:
    result = await db.execute(
        select(DeletionQueueEntry).where(_pending_tenant_filter(tenant_id))
    )
    return result.scalar_one_or_none()


async def _enqueue(
    db: AsyncSession,
    entry: DeletionQueueEntry,
    existing_lookup,
) -> DeletionQueueEntry:
    """Insert the entry, turning a lost uniqueness race into a conflict."""
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await existing_lookup()
        if existing is None:
            raise
        raise ErasureAlreadyRequestedError(as_utc(existing.purge_after)) from None
    return entry


async def request_erasure(
    db: AsyncSession,
    user_id: UUID,
    tenant_id: UUID,
    *,
    now: datetime | None = None,
    source_ip: str | None = None,
    user_agent: str | None = None,
) -> DeletionQueueEntry:
    """
    Queue the user's own erasure request.

    Raises ErasureAlreadyRequestedError (carrying the existing purge_after)
    when a PENDING request already exists.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)

    existing = await get_pending_erasure(db, user_id)
    if existing is not None:
        raise ErasureAlreadyRequestedError(as_utc(existing.purge_after))

    purge_after = now + timedelta(days=settings.ERASURE_GRACE_PERIOD_DAYS)
    entry = await _enqueue(
        db,
        DeletionQueueEntry(
            user_id=user_id,
            tenant_id=tenant_id,
            reason=DeletionReason.USER_REQUEST.value,
            status=DeletionStatus.PENDING.value,
            purge_after=purge_after,
            requested_at=now,
        ),
        lambda: get_pending_erasure(db, user_id),
    )

    await AuditLogger(db, tenant_id).record(
        action=AuditAction.ACCOUNT_DELETION_REQUESTED,
        entity_type=AuditEntityType.USER,
        actor_id=user_id,
        entity_id=user_id,
        diff={"purge_after": purge_after},
        source_ip=source_ip,
        user_agent=user_agent,
    )
    await db.commit()

    logger.info(
        "erasure_requested",
        user_id=str(user_id),
        tenant_id=str(tenant_id),
        purge_after=purge_after.isoformat(),
    )
    return entry


async def request_tenant_erasure(
    db: AsyncSession,
    tenant_id: UUID,
    requested_by: UUID | None = None,
    *,
    now: datetime | None = None,
    source_ip: str | None = None,
    user_agent: str | None = None,
) -> DeletionQueueEntry:
    """Queue the erasure of a whole tenant (all of its users and data)."""
    settings = get_settings()
    now = now or datetime.now(timezone.utc)

    existing = await get_pending_tenant_erasure(db, tenant_id)
    if existing is not None:
        raise ErasureAlreadyRequestedError(as_utc(existing.purge_after))

    purge_after = now + timedelta(days=settings.ERASURE_GRACE_PERIOD_DAYS)
    entry = await _enqueue(
        db,
        DeletionQueueEntry(
            user_id=None,
            tenant_id=tenant_id,
            reason=DeletionReason.TENANT_REQUEST.value,
            status=DeletionStatus.PENDING.value,
            purge_after=purge_after,
            requested_at=now,
        ),
        lambda: get_pending_tenant_erasure(db, tenant_id),
    )

    await AuditLogger(db, tenant_id).record(
        action=AuditAction.TENANT_DELETION_REQUESTED,
        entity_type=AuditEntityType.TENANT,
        actor_id=requested_by,
        entity_id=tenant_id,
        diff={"purge_after": purge_after},
        source_ip=source_ip,
        user_agent=user_agent,
    )
    await db.commit()

    logger.warning(
        "tenant_erasure_requested",
        tenant_id=str(tenant_id),
        requested_by=str(requested_by) if requested_by else None,
        purge_after=purge_after.isoformat(),
    )
    return entry


async def _cancel(
    db: AsyncSession,
    entry: DeletionQueueEntry,
    actor_id: UUID | None,
    action: AuditAction,
    entity_type: AuditEntityType,
    entity_id: UUID,
    now: datetime,
    source_ip: str | None,
    user_agent: str | None,
) -> DeletionQueueEntry:
    entry.status = DeletionStatus.CANCELED.value
    entry.processed_at = now

    if entry.tenant_id is not None:
        await AuditLogger(db, entry.tenant_id).record(
            action=action,
            entity_type=entity_type,
            actor_id=actor_id,
            entity_id=entity_id,
            source_ip=source_ip,
            user_agent=user_agent,
        )
    await db.commit()
    return entry


async def cancel_erasure(
    db: AsyncSession,
    user_id: UUID,
    *,
    now: datetime | None = None,
    source_ip: str | None = None,
    user_agent: str | None = None,
) -> DeletionQueueEntry:
    """
    Cancel the user's PENDING erasure request.

    Raises ErasureRequestNotFoundError when there is nothing to cancel,
    including when the request was already canceled or purged.
    """
    now = now or datetime.now(timezone.utc)
    entry = await get_pending_erasure(db, user_id)
    if entry is None:
        raise ErasureRequestNotFoundError()

    await _cancel(
        db,
        entry,
        user_id,
        AuditAction.ACCOUNT_DELETION_CANCELED,
        AuditEntityType.USER,
        user_id,
        now,
        source_ip,
        user_agent,
    )
    logger.info("erasure_canceled", user_id=str(user_id))
    return entry


async def cancel_tenant_erasure(
    db: AsyncSession,
    tenant_id: UUID,
    canceled_by: UUID | None = None,
    *,
    now: datetime | None = None,
    source_ip: str | None = None,
    user_agent: str | None = None,
) -> DeletionQueueEntry:
    now = now or datetime.now(timezone.utc)
    entry = await get_pending_tenant_erasure(db, tenant_id)
    if entry is None:
        raise ErasureRequestNotFoundError()

    await _cancel(
        db,
        entry,
        canceled_by,
        AuditAction.TENANT_DELETION_CANCELED,
        AuditEntityType.TENANT,
        tenant_id,
        now,
        source_ip,
        user_agent,
    )
    logger.warning("tenant_erasure_canceled", tenant_id=str(tenant_id))
    return entry


async def sweep_deletion_queue(
    db: AsyncSession,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> int:
    """
    Drop PURGED/CANCELED entries processed more than a year ago.
    PENDING entries are never touched, whatever their age.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days or settings.DELETION_QUEUE_RETENTION_DAYS)

    processed_at = func.coalesce(
        DeletionQueueEntry.processed_at, DeletionQueueEntry.requested_at
    )
    result = await db.execute(
        delete(DeletionQueueEntry).where(
            DeletionQueueEntry.status.in_(TERMINAL_DELETION_STATUSES),
            processed_at < cutoff,
        )
    )
    await db.commit()

    raw_count = getattr(result, "rowcount", 0)
    deleted = raw_count if isinstance(raw_count, int) and raw_count > 0 else 0
    RETENTION_ROWS_DELETED.labels(target="deletion_queue").inc(deleted)
    logger.info(
        "deletion_queue_sweep_completed", deleted=deleted, cutoff=cutoff.isoformat()
    )
    return deleted
