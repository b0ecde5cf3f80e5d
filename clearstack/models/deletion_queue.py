from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, String, Uuid as PG_UUID, text
from sqlalchemy.orm import Mapped, mapped_column

from clearstack.shared.db.base import Base, utcnow


class DeletionStatus(str, Enum):
    PENDING = "PENDING"
    PURGED = "PURGED"
    CANCELED = "CANCELED"


TERMINAL_DELETION_STATUSES = (DeletionStatus.PURGED.value, DeletionStatus.CANCELED.value)


class DeletionReason(str, Enum):
    USER_REQUEST = "USER_REQUEST"
    TENANT_REQUEST = "TENANT_REQUEST"


class DeletionQueueEntry(Base):
    """
    A right-to-erasure request waiting for its grace period to elapse.

    user_id/tenant_id carry no foreign keys: the entry must outlive the
    subject it erased. A user-level entry has user_id (and the user's
    tenant_id for audit scoping); a tenant-level entry has only tenant_id.
    """

    __tablename__ = "deletion_queue"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    user_id: Mapped[Optional[UUID]] = mapped_column(PG_UUID(), nullable=True, index=True)
    tenant_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(), nullable=True, index=True
    )
    reason: Mapped[str] = mapped_column(
        String(32), default=DeletionReason.USER_REQUEST.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(16), default=DeletionStatus.PENDING.value, nullable=False
    )
    purge_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_deletion_queue_status_purge_after", "status", "purge_after"),
        # At most one PENDING request per subject, enforced under concurrency.
        Index(
            "uq_deletion_queue_pending_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'PENDING' AND user_id IS NOT NULL"),
            sqlite_where=text("status = 'PENDING' AND user_id IS NOT NULL"),
        ),
        Index(
            "uq_deletion_queue_pending_tenant",
            "tenant_id",
            unique=True,
            postgresql_where=text("status = 'PENDING' AND user_id IS NULL"),
            sqlite_where=text("status = 'PENDING' AND user_id IS NULL"),
        ),
    )

    @property
    def is_tenant_erasure(self) -> bool:
        return self.user_id is None and self.tenant_id is not None
