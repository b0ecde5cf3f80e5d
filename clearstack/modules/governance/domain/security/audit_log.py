"""
Audit Trail

Append-only record of security and business relevant actions, kept for
GDPR Article 30 (records of processing) and erasure accountability.

Key Features:
1. Immutable audit trail (append-only, removed only by the retention sweep)
2. Best-effort writes: a failing audit sink never fails the audited action
3. Write outcomes surfaced through a result object and a failure counter
4. Sensitive data masking in diff payloads
5. Tenant-scoped querying
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Union

import structlog
from sqlalchemy import JSON, DateTime, Index, String, Uuid, delete, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from clearstack.shared.core.config import get_settings
from clearstack.shared.core.ops_metrics import AUDIT_WRITE_FAILURES, RETENTION_ROWS_DELETED
from clearstack.shared.db.base import Base, utcnow

logger = structlog.get_logger()

DEFAULT_QUERY_LIMIT = 100


class AuditAction(str, Enum):
    """Standardized audited business events."""

    # Reviews
    REVIEW_CREATED = "REVIEW_CREATED"
    REVIEW_UPDATED = "REVIEW_UPDATED"
    REVIEW_DELETED = "REVIEW_DELETED"

    # Requests
    REQUEST_CREATED = "REQUEST_CREATED"
    REQUEST_UPDATED = "REQUEST_UPDATED"
    REQUEST_VOTED = "REQUEST_VOTED"
    REQUEST_ACCEPTED = "REQUEST_ACCEPTED"
    REQUEST_REFUSED = "REQUEST_REFUSED"

    # Purchase projects
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_UPDATED = "PROJECT_UPDATED"
    PROJECT_STEP_COMPLETED = "PROJECT_STEP_COMPLETED"

    # Contracts
    CONTRACT_CREATED = "CONTRACT_CREATED"
    CONTRACT_UPDATED = "CONTRACT_UPDATED"
    CONTRACT_DELETED = "CONTRACT_DELETED"

    # Softwares
    SOFTWARE_CREATED = "SOFTWARE_CREATED"
    SOFTWARE_UPDATED = "SOFTWARE_UPDATED"
    SOFTWARE_USAGE_DECLARED = "SOFTWARE_USAGE_DECLARED"
    SOFTWARE_USAGE_REMOVED = "SOFTWARE_USAGE_REMOVED"

    # Settings
    SETTINGS_UPDATED = "SETTINGS_UPDATED"
    INTEGRATION_ENABLED = "INTEGRATION_ENABLED"
    INTEGRATION_DISABLED = "INTEGRATION_DISABLED"

    # Privacy
    DATA_EXPORT_REQUESTED = "DATA_EXPORT_REQUESTED"
    ACCOUNT_DELETION_REQUESTED = "ACCOUNT_DELETION_REQUESTED"
    ACCOUNT_DELETION_CANCELED = "ACCOUNT_DELETION_CANCELED"
    ACCOUNT_PURGED = "ACCOUNT_PURGED"
    TENANT_DELETION_REQUESTED = "TENANT_DELETION_REQUESTED"
    TENANT_DELETION_CANCELED = "TENANT_DELETION_CANCELED"
    TENANT_PURGED = "TENANT_PURGED"

    # Authentication
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"

    # Administration
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"
    FEATURE_FLAG_TOGGLED = "FEATURE_FLAG_TOGGLED"
    ALERTS_FORCED = "ALERTS_FORCED"


class AuditEntityType(str, Enum):
    USER = "user"
    TENANT = "tenant"
    REVIEW = "review"
    REQUEST = "request"
    PROJECT = "project"
    CONTRACT = "contract"
    SOFTWARE = "software"
    SETTINGS = "settings"
    INTEGRATION = "integration"
    FEATURE_FLAG = "feature_flag"


class AuditLog(Base):
    """
    Immutable audit log entry.

    tenant_id and actor_id carry no foreign keys: the record must survive the
    erasure of the actor and, for TENANT_PURGED, of the tenant itself.
    """

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)

    # Tenant isolation
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False, index=True)

    # Actor (null for system actions and once the actor is purged)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(), nullable=True, index=True
    )

    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    diff: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )

    # Request context
    source_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv6 max
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    __table_args__ = (
        Index("ix_audit_tenant_time", "tenant_id", "created_at"),
        Index("ix_audit_entity", "tenant_id", "entity_type", "entity_id"),
    )


@dataclass(frozen=True)
class AuditWriteOutcome:
    """Result of a best-effort audit write."""

    recorded: bool
    entry: Optional[AuditLog] = None
    error: Optional[str] = None


def _parse_uuid(value: uuid.UUID | str | None) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, (str, bytes)):
        try:
            return uuid.UUID(str(value))
        except ValueError:
            return None
    return None


def _rowcount(result: Any) -> int:
    raw_count = getattr(result, "rowcount", None)
    return raw_count if isinstance(raw_count, int) and raw_count > 0 else 0


class AuditLogger:
    """
    Tenant-scoped audit logging service.

    Usage:
        audit = AuditLogger(db, tenant_id)
        outcome = await audit.record(
            action=AuditAction.REVIEW_CREATED,
            entity_type=AuditEntityType.REVIEW,
            actor_id=user.id,
            entity_id=str(review.id),
            diff={"rating": 4},
        )
    """

    # Fields to mask in diffs
    SENSITIVE_FIELDS = {
        "password",
        "token",
        "secret",
        "api_key",
        "access_key",
        "session_token",
        "credit_card",
    }

    def __init__(self, db: AsyncSession, tenant_id: Union[str, uuid.UUID]) -> None:
        self.db = db
        # Ensure tenant_id is a UUID object for SQLAlchemy
        self.tenant_id = (
            uuid.UUID(str(tenant_id))
            if isinstance(tenant_id, (str, bytes))
            else tenant_id
        )

    async def record(
        self,
        action: AuditAction,
        entity_type: AuditEntityType | str,
        actor_id: uuid.UUID | str | None = None,
        entity_id: uuid.UUID | str | None = None,
        diff: dict[str, Any] | None = None,
        source_ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuditWriteOutcome:
        """
        Append one audit row. Never raises.

        The row is written inside a SAVEPOINT so a failing insert leaves the
        caller's transaction usable.
        """
        entity_type_value = (
            entity_type.value if isinstance(entity_type, AuditEntityType) else entity_type
        )
        entry = AuditLog(
            tenant_id=self.tenant_id,
            actor_id=_parse_uuid(actor_id),
            action=action.value,
            entity_type=entity_type_value,
            entity_id=str(entity_id) if entity_id is not None else None,
            diff=self._mask_sensitive(diff) if diff else None,
            source_ip=source_ip,
            user_agent=user_agent[:500] if user_agent else None,
        )

        try:
            await self._write(entry)
        except Exception as exc:  # noqa: BLE001
            if entry in self.db:
                self.db.expunge(entry)
            AUDIT_WRITE_FAILURES.labels(action=action.value).inc()
            logger.error(
                "audit_write_failed",
                action=action.value,
                tenant_id=str(self.tenant_id),
                entity_type=entity_type_value,
                entity_id=entry.entity_id,
                error=str(exc),
            )
            return AuditWriteOutcome(recorded=False, error=str(exc))

        logger.info(
            "audit_event",
            action=action.value,
            tenant_id=str(self.tenant_id),
            entity_type=entity_type_value,
            entity_id=entry.entity_id,
            actor_id=str(entry.actor_id) if entry.actor_id else None,
        )
        return AuditWriteOutcome(recorded=True, entry=entry)

    async def _write(self, entry: AuditLog) -> None:
        async with self.db.begin_nested():
            self.db.add(entry)

    async def query(
        self,
        actor_id: uuid.UUID | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_QUERY_LIMIT,
        offset: int = 0,
    ) -> list[AuditLog]:
        """Most-recent-first audit records of this tenant only."""
        stmt = select(AuditLog).where(AuditLog.tenant_id == self.tenant_id)
        if actor_id is not None:
            stmt = stmt.where(AuditLog.actor_id == actor_id)
        if entity_type:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(AuditLog.entity_id == entity_id)
        if start is not None:
            stmt = stmt.where(AuditLog.created_at >= start)
        if end is not None:
            stmt = stmt.where(AuditLog.created_at <= end)

        stmt = (
            stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(max(1, limit))
            .offset(max(0, offset))
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    def _mask_sensitive(self, data: Any) -> Any:
        """Recursively mask sensitive fields in dicts and lists."""
        if isinstance(data, list):
            return [self._mask_sensitive(item) for item in data]

        if not isinstance(data, dict):
            # JSON column: keep natives, stringify the rest (UUID, Decimal, dates).
            if isinstance(data, (date, datetime)):
                return data.isoformat()
            if data is None or isinstance(data, (str, int, float, bool)):
                return data
            return str(data)

        masked = {}
        for key, value in data.items():
            if any(
                sensitive in str(key).lower() for sensitive in self.SENSITIVE_FIELDS
            ):
                masked[key] = "***REDACTED***"
            else:
                masked[key] = self._mask_sensitive(value)

        return masked


async def sweep_audit_retention(
    db: AsyncSession,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> int:
    """
    Delete audit records older than the retention horizon (2 years by default).
    Idempotent: a second consecutive run deletes nothing.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days or settings.AUDIT_RETENTION_DAYS)

    result = await db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff))
    await db.commit()

    deleted = _rowcount(result)
    RETENTION_ROWS_DELETED.labels(target="audit_logs").inc(deleted)
    logger.info("audit_retention_sweep_completed", deleted=deleted, cutoff=cutoff.isoformat())
    return deleted
