"""
Purge Engine

Executes due erasure requests from the deletion queue. Every entry runs in
its own session and transaction: one failing entry is rolled back and
reported while the others still complete. An entry is re-checked under a
row lock before it is processed, so overlapping runs never purge it twice.

User erasure anonymizes the account instead of deleting it, so shared
business data (votes, ratings, badges, task history) keeps its integrity.
Tenant erasure removes every row owned by the tenant, dependents first.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.deletion_queue import DeletionQueueEntry, DeletionStatus
from clearstack.models.engagement import BetaFeedback
from clearstack.models.notification import (
    AlertDispatchMarker,
    Notification,
    PushSubscription,
)
from clearstack.models.tenant import User
from clearstack.models.workflow import Review, SoftwareRequest, Task
from clearstack.modules.governance.domain.security.audit_log import (
    AuditAction,
    AuditEntityType,
    AuditLogger,
)
from clearstack.modules.privacy.domain.anonymize import (
    REDACTED_FIRST_NAME,
    REDACTED_LAST_NAME,
    REDACTION_TOKEN,
    anonymous_email,
    is_anonymized_email,
)
from clearstack.modules.privacy.domain.cascade import purge_tenant_rows
from clearstack.shared.core.ops_metrics import PURGE_ENTRIES_PROCESSED

logger = structlog.get_logger()

# Personal rows removed outright on user erasure: (model, owning column).
USER_OWNED_ROWS: tuple[tuple[Any, str], ...] = (
    (PushSubscription, "user_id"),
    (Notification, "user_id"),
    (BetaFeedback, "user_id"),
    (AlertDispatchMarker, "recipient_id"),
)


@dataclass
class PurgeReport:
    due: int = 0
    purged: int = 0
    failed: int = 0
    skipped: int = 0
    failed_entry_ids: list[UUID] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["failed_entry_ids"] = [str(entry_id) for entry_id in self.failed_entry_ids]
        return data


def _count(result: Any) -> int:
    raw_count = getattr(result, "rowcount", None)
    return raw_count if isinstance(raw_count, int) and raw_count > 0 else 0


class PurgeEngine:
    def __init__(self, session_maker: Callable[[], AsyncSession]) -> None:
        self.session_maker = session_maker

    async def run(self, now: datetime | None = None) -> PurgeReport:
        """Process every PENDING entry whose purge_after has elapsed."""
        now = now or datetime.now(timezone.utc)
        due_entries = await self._load_due_entries(now)
        report = PurgeReport(due=len(due_entries))
        logger.info("gdpr_purge_started", due=report.due)

        for entry_id, scope in due_entries:
            try:
                processed = await self.process_entry(entry_id, now)
            except Exception as exc:
                report.failed += 1
                report.failed_entry_ids.append(entry_id)
                PURGE_ENTRIES_PROCESSED.labels(scope=scope, status="failed").inc()
                logger.error(
                    "gdpr_purge_entry_failed",
                    entry_id=str(entry_id),
                    scope=scope,
                    error=str(exc),
                    exc_info=True,
                )
                continue

            if processed:
                report.purged += 1
                PURGE_ENTRIES_PROCESSED.labels(scope=scope, status="purged").inc()
            else:
                # Canceled or claimed by a concurrent run in the meantime.
                report.skipped += 1
                PURGE_ENTRIES_PROCESSED.labels(scope=scope, status="skipped").inc()

        logger.info("gdpr_purge_completed", **report.to_dict())
        return report

    async def _load_due_entries(self, now: datetime) -> list[tuple[UUID, str]]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(DeletionQueueEntry.id, DeletionQueueEntry.user_id)
                .where(
                    DeletionQueueEntry.status == DeletionStatus.PENDING.value,
                    DeletionQueueEntry.purge_after <= now,
                )
                .order_by(DeletionQueueEntry.purge_after, DeletionQueueEntry.id)
            )
            return [
                (entry_id, "user" if user_id is not None else "tenant")
                for entry_id, user_id in result.all()
            ]

    async def process_entry(self, entry_id: UUID, now: datetime) -> bool:
        """
        Purge one entry atomically. Returns False when the entry is no
        longer PENDING and due; raises on failure with nothing committed.
        """
        async with self.session_maker() as db:
            async with db.begin():
                result = await db.execute(
                    select(DeletionQueueEntry)
                    .where(
                        DeletionQueueEntry.id == entry_id,
                        DeletionQueueEntry.status == DeletionStatus.PENDING.value,
                        DeletionQueueEntry.purge_after <= now,
                    )
                    .with_for_update(skip_locked=True)
                )
                entry = result.scalar_one_or_none()
                if entry is None:
                    return False

                if entry.user_id is not None:
                    await self._purge_user(db, entry)
                elif entry.tenant_id is not None:
                    await self._purge_tenant(db, entry)
                else:
                    logger.warning("gdpr_purge_entry_without_subject", entry_id=str(entry_id))

                entry.status = DeletionStatus.PURGED.value
                entry.processed_at = now
        return True

    async def _purge_user(self, db: AsyncSession, entry: DeletionQueueEntry) -> None:
        user_id = entry.user_id
        user = await db.get(User, user_id)
        tenant_id = entry.tenant_id or (user.tenant_id if user is not None else None)
        email = anonymous_email(user_id)

        if user is None:
            # Already gone; the entry is still closed so it is not retried forever.
            logger.warning("gdpr_purge_user_missing", user_id=str(user_id))
        else:
            if is_anonymized_email(user.email):
                logger.info("gdpr_purge_user_already_anonymized", user_id=str(user_id))
            user.email = email
            user.first_name = REDACTED_FIRST_NAME
            user.last_name = REDACTED_LAST_NAME
            user.linkedin_id = None
            user.email_notifications = False

        counts: dict[str, int] = {}
        for model, column in USER_OWNED_ROWS:
            result = await db.execute(
                delete(model)
                .where(getattr(model, column) == user_id)
                .execution_options(synchronize_session=False)
            )
            counts[model.__tablename__] = _count(result)

        result = await db.execute(
            update(Review)
            .where(Review.user_id == user_id)
            .values(
                strengths=REDACTION_TOKEN,
                weaknesses=REDACTION_TOKEN,
                improvement=REDACTION_TOKEN,
            )
            .execution_options(synchronize_session=False)
        )
        counts["reviews_redacted"] = _count(result)

        result = await db.execute(
            update(SoftwareRequest)
            .where(SoftwareRequest.requester_id == user_id)
            .values(description_need=REDACTION_TOKEN)
            .execution_options(synchronize_session=False)
        )
        counts["requests_redacted"] = _count(result)

        result = await db.execute(
            update(Task)
            .where(Task.assignee_id == user_id)
            .values(assignee_id=None)
            .execution_options(synchronize_session=False)
        )
        counts["tasks_unassigned"] = _count(result)

        if tenant_id is not None:
            await AuditLogger(db, tenant_id).record(
                action=AuditAction.ACCOUNT_PURGED,
                entity_type=AuditEntityType.USER,
                actor_id=None,
                entity_id=user_id,
                diff={"anonymized_email": email, "counts": counts},
            )

        logger.info("gdpr_user_purged", user_id=str(user_id), **counts)

    async def _purge_tenant(self, db: AsyncSession, entry: DeletionQueueEntry) -> None:
        tenant_id = entry.tenant_id
        counts = await purge_tenant_rows(db, tenant_id)

        # Written after the cascade so it is the tenant's only surviving record.
        await AuditLogger(db, tenant_id).record(
            action=AuditAction.TENANT_PURGED,
            entity_type=AuditEntityType.TENANT,
            actor_id=None,
            entity_id=tenant_id,
            diff={"deleted": counts},
        )
        logger.warning(
            "gdpr_tenant_purged",
            tenant_id=str(tenant_id),
            total_rows=sum(counts.values()),
        )
