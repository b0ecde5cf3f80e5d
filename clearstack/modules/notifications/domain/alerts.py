"""
Alert Scheduler

Daily contract-expiry and overdue-task passes plus the weekly digest.

Each pass first materialises its candidates as plain dataclasses, then
handles them one at a time: an item either commits its notifications and
dispatch markers together or is rolled back and reported, and the pass
moves on. Dispatch markers (kind, subject, recipient, local day) keep a
same-day re-run from notifying anyone twice.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.inventory import Contract, Entity, Software
from clearstack.models.notification import AlertDispatchMarker, NotificationType
from clearstack.models.tenant import AlertSetting, User, UserRole
from clearstack.models.workflow import PurchaseProject, Task
from clearstack.modules.notifications.domain.digest import build_digest_data
from clearstack.modules.notifications.domain.dispatch import NotificationDispatcher
from clearstack.shared.core.config import get_settings
from clearstack.shared.core.ops_metrics import ALERT_EVALUATION_FAILURES, ALERTS_SUPPRESSED

logger = structlog.get_logger()

UNTITLED_PROJECT = "Untitled project"


def local_today(now: datetime, tz_name: str) -> date:
    return now.astimezone(ZoneInfo(tz_name)).date()


def resolve_notice_window(
    contract_notice_days: Optional[int],
    tenant_default_days: Optional[int],
    fallback_days: int,
) -> int:
    """Contract override, else tenant default, else the platform default."""
    if contract_notice_days is not None:
        return contract_notice_days
    if tenant_default_days is not None:
        return tenant_default_days
    return fallback_days


@dataclass(frozen=True)
class ContractAlertState:
    contract_id: UUID
    tenant_id: UUID
    software_name: str
    end_date: date
    days_until_expiry: int
    notice_window: int
    amount: Optional[float]
    currency: str
    recipient_ids: tuple[UUID, ...] = ()

    @property
    def is_due(self) -> bool:
        # Contracts ending today are not alerted.
        return 0 < self.days_until_expiry <= self.notice_window

    def to_payload(self) -> dict[str, Any]:
        return {
            "contract_id": str(self.contract_id),
            "software_name": self.software_name,
            "days_remaining": self.days_until_expiry,
            "amount": self.amount,
            "currency": self.currency,
            "end_date": self.end_date.isoformat(),
        }


@dataclass(frozen=True)
class OverdueTask:
    task_id: UUID
    tenant_id: UUID
    title: str
    project_id: UUID
    project_name: str
    due_date: date
    assignee_id: UUID

    def to_payload(self) -> dict[str, Any]:
        return {
            "task_id": str(self.task_id),
            "task_title": self.title,
            "project_id": str(self.project_id),
            "project_name": self.project_name,
            "due_date": self.due_date.isoformat(),
        }


@dataclass
class AlertPassReport:
    evaluated: int = 0
    due: int = 0
    dispatched: int = 0
    suppressed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _as_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


class AlertScheduler:
    def __init__(
        self,
        session_maker: Callable[[], AsyncSession],
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.session_maker = session_maker
        self.dispatcher = dispatcher or NotificationDispatcher()

    # --- Contract expiry -------------------------------------------------

    async def load_contract_states(
        self, db: AsyncSession, today: date, tenant_id: UUID | None = None
    ) -> list[ContractAlertState]:
        settings = get_settings()
        stmt = (
            select(
                Contract.id,
                Entity.tenant_id,
                Software.name,
                Contract.end_date,
                Contract.notice_days,
                Contract.cost_amount,
                Contract.currency,
                AlertSetting.default_notice_days,
            )
            .join(Entity, Contract.entity_id == Entity.id)
            .join(Software, Contract.software_id == Software.id)
            .outerjoin(AlertSetting, AlertSetting.tenant_id == Entity.tenant_id)
            .where(
                Contract.end_date >= today,
                or_(AlertSetting.enabled.is_(None), AlertSetting.enabled.is_(True)),
            )
            .order_by(Contract.end_date, Contract.id)
        )
        if tenant_id is not None:
            stmt = stmt.where(Entity.tenant_id == tenant_id)
        rows = (await db.execute(stmt)).all()
        if not rows:
            return []

        tenant_ids = {row.tenant_id for row in rows}
        admins = await db.execute(
            select(User.id, User.tenant_id)
            .where(
                User.tenant_id.in_(tenant_ids),
                User.role == UserRole.ADMIN.value,
                User.email_notifications.is_(True),
            )
            .order_by(User.id)
        )
        recipients: dict[UUID, list[UUID]] = {}
        for user_id, tenant_id in admins.all():
            recipients.setdefault(tenant_id, []).append(user_id)

        return [
            ContractAlertState(
                contract_id=row.id,
                tenant_id=row.tenant_id,
                software_name=row.name,
                end_date=row.end_date,
                days_until_expiry=(row.end_date - today).days,
                notice_window=resolve_notice_window(
                    row.notice_days,
                    row.default_notice_days,
                    settings.DEFAULT_CONTRACT_NOTICE_DAYS,
                ),
                amount=_as_float(row.cost_amount),
                currency=row.currency,
                recipient_ids=tuple(recipients.get(row.tenant_id, ())),
            )
            for row in rows
        ]

    async def send_contract_alerts(
        self,
        now: datetime | None = None,
        bypass_dedup: bool = False,
        tenant_id: UUID | None = None,
    ) -> AlertPassReport:
        settings = get_settings()
        now = now or datetime.now(timezone.utc)
        today = local_today(now, settings.SCHEDULER_TIMEZONE)
        report = AlertPassReport()

        async with self.session_maker() as db:
            states = await self.load_contract_states(db, today, tenant_id)
            report.evaluated = len(states)
            for state in states:
                if not state.is_due:
                    continue
                report.due += 1
                try:
                    dispatched, suppressed = await self._dispatch(
                        db,
                        kind=NotificationType.ALERT_CONTRACT,
                        tenant_id=state.tenant_id,
                        subject_id=state.contract_id,
                        recipient_ids=state.recipient_ids,
                        payload=state.to_payload(),
                        today=today,
                        bypass_dedup=bypass_dedup,
                    )
                    await db.commit()
                except Exception as exc:
                    await db.rollback()
                    report.failed += 1
                    ALERT_EVALUATION_FAILURES.labels(pass_name="contract").inc()
                    logger.error(
                        "contract_alert_failed",
                        contract_id=str(state.contract_id),
                        tenant_id=str(state.tenant_id),
                        error=str(exc),
                    )
                    continue
                report.dispatched += dispatched
                report.suppressed += suppressed

        logger.info("contract_alerts_completed", **report.to_dict())
        return report

    # --- Overdue tasks ---------------------------------------------------

    async def load_overdue_tasks(
        self, db: AsyncSession, today: date, tenant_id: UUID | None = None
    ) -> list[OverdueTask]:
        stmt = (
            select(
                Task.id,
                Task.tenant_id,
                Task.title,
                Task.project_id,
                Task.due_date,
                Task.assignee_id,
                Software.name,
            )
            .join(PurchaseProject, Task.project_id == PurchaseProject.id)
            .outerjoin(Software, PurchaseProject.software_id == Software.id)
            .join(User, Task.assignee_id == User.id)
            .where(
                Task.done.is_(False),
                Task.due_date.is_not(None),
                Task.due_date < today,
                User.email_notifications.is_(True),
            )
            .order_by(Task.due_date, Task.id)
        )
        if tenant_id is not None:
            stmt = stmt.where(Task.tenant_id == tenant_id)
        result = await db.execute(stmt)
        return [
            OverdueTask(
                task_id=task_id,
                tenant_id=task_tenant_id,
                title=title,
                project_id=project_id,
                project_name=software_name or UNTITLED_PROJECT,
                due_date=due_date,
                assignee_id=assignee_id,
            )
            for task_id, task_tenant_id, title, project_id, due_date, assignee_id, software_name in result.all()
        ]

    async def send_overdue_task_alerts(
        self,
        now: datetime | None = None,
        bypass_dedup: bool = False,
        tenant_id: UUID | None = None,
    ) -> AlertPassReport:
        settings = get_settings()
        now = now or datetime.now(timezone.utc)
        today = local_today(now, settings.SCHEDULER_TIMEZONE)
        report = AlertPassReport()

        async with self.session_maker() as db:
            tasks = await self.load_overdue_tasks(db, today, tenant_id)
            report.evaluated = report.due = len(tasks)
            for task in tasks:
                try:
                    dispatched, suppressed = await self._dispatch(
                        db,
                        kind=NotificationType.PROJECT_TASK,
                        tenant_id=task.tenant_id,
                        subject_id=task.task_id,
                        recipient_ids=(task.assignee_id,),
                        payload=task.to_payload(),
                        today=today,
                        bypass_dedup=bypass_dedup,
                    )
                    await db.commit()
                except Exception as exc:
                    await db.rollback()
                    report.failed += 1
                    ALERT_EVALUATION_FAILURES.labels(pass_name="task").inc()
                    logger.error("task_alert_failed", task_id=str(task.task_id), error=str(exc))
                    continue
                report.dispatched += dispatched
                report.suppressed += suppressed

        logger.info("task_alerts_completed", **report.to_dict())
        return report

    async def send_daily_alerts(
        self,
        now: datetime | None = None,
        bypass_dedup: bool = False,
        tenant_id: UUID | None = None,
    ) -> dict[str, AlertPassReport]:
        """
        Contract pass then task pass; a broken pass does not skip the other.
        `tenant_id` restricts both passes to one tenant.
        """
        now = now or datetime.now(timezone.utc)
        reports: dict[str, AlertPassReport] = {}
        passes = (
            ("contracts", self.send_contract_alerts),
            ("tasks", self.send_overdue_task_alerts),
        )
        for name, run_pass in passes:
            try:
                reports[name] = await run_pass(
                    now=now, bypass_dedup=bypass_dedup, tenant_id=tenant_id
                )
            except Exception as exc:
                ALERT_EVALUATION_FAILURES.labels(pass_name=name).inc()
                logger.error("alert_pass_failed", pass_name=name, error=str(exc), exc_info=True)
                reports[name] = AlertPassReport(failed=1)
        return reports

    # --- Weekly digest ---------------------------------------------------

    async def send_weekly_digest(
        self,
        now: datetime | None = None,
        user_id: UUID | None = None,
        tenant_id: UUID | None = None,
    ) -> int:
        """
        Dispatch the digest to every user with notifications enabled, narrowed
        to one tenant or one user when given. Opted-out users never receive
        it. Returns the number of digests sent.
        """
        settings = get_settings()
        now = now or datetime.now(timezone.utc)
        sent = 0

        async with self.session_maker() as db:
            stmt = select(
                User.id, User.tenant_id, User.first_name, User.last_name, User.email
            ).where(User.email_notifications.is_(True))
            if user_id is not None:
                stmt = stmt.where(User.id == user_id)
            if tenant_id is not None:
                stmt = stmt.where(User.tenant_id == tenant_id)
            recipients = (await db.execute(stmt.order_by(User.tenant_id, User.id))).all()

            digests: dict[UUID, Any] = {}
            for index, (recipient_id, recipient_tenant, first_name, last_name, email) in enumerate(
                recipients
            ):
                if index and settings.DIGEST_SEND_DELAY_SECONDS > 0:
                    await asyncio.sleep(settings.DIGEST_SEND_DELAY_SECONDS)
                try:
                    if recipient_tenant not in digests:
                        digests[recipient_tenant] = await build_digest_data(
                            db, recipient_tenant, now, settings.SCHEDULER_TIMEZONE
                        )
                    name = " ".join(p for p in (first_name, last_name) if p) or email
                    delivered = await self.dispatcher.enqueue(
                        db,
                        recipient_id,
                        NotificationType.SYSTEM,
                        digests[recipient_tenant].to_payload(name),
                    )
                    await db.commit()
                except Exception as exc:
                    await db.rollback()
                    logger.error("digest_send_failed", user_id=str(recipient_id), error=str(exc))
                    continue
                if delivered:
                    sent += 1

        logger.info("weekly_digest_completed", sent=sent, recipients=len(recipients))
        return sent

    # --- Dispatch with de-duplication -------------------------------------

    async def _dispatch(
        self,
        db: AsyncSession,
        *,
        kind: NotificationType,
        tenant_id: UUID,
        subject_id: UUID,
        recipient_ids: tuple[UUID, ...],
        payload: dict[str, Any],
        today: date,
        bypass_dedup: bool,
    ) -> tuple[int, int]:
        dedup = get_settings().ALERT_DEDUP_ENABLED
        dispatched = suppressed = 0
        for recipient_id in recipient_ids:
            already_sent = await self._marker_exists(db, kind, subject_id, recipient_id, today)
            if already_sent and dedup and not bypass_dedup:
                suppressed += 1
                ALERTS_SUPPRESSED.labels(notification_type=kind.value).inc()
                continue

            if await self.dispatcher.enqueue(db, recipient_id, kind, payload):
                dispatched += 1
                if not already_sent:
                    db.add(
                        AlertDispatchMarker(
                            tenant_id=tenant_id,
                            kind=kind.value,
                            subject_id=subject_id,
                            recipient_id=recipient_id,
                            alert_date=today,
                        )
                    )
        await db.flush()
        return dispatched, suppressed

    @staticmethod
    async def _marker_exists(
        db: AsyncSession,
        kind: NotificationType,
        subject_id: UUID,
        recipient_id: UUID,
        today: date,
    ) -> bool:
        result = await db.execute(
            select(AlertDispatchMarker.id).where(
                AlertDispatchMarker.kind == kind.value,
                AlertDispatchMarker.subject_id == subject_id,
                AlertDispatchMarker.recipient_id == recipient_id,
                AlertDispatchMarker.alert_date == today,
            )
        )
        return result.first() is not None
