"""Weekly digest figures for one tenant."""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.inventory import Contract, Entity, Software
from clearstack.models.tenant import User
from clearstack.models.workflow import (
    EconomyItem,
    RequestStatus,
    SoftwareRequest,
    Task,
    Vote,
)

EXPIRY_HORIZONS = (30, 60, 95)
UPCOMING_RENEWALS_LIMIT = 5
TOP_REQUESTS_LIMIT = 3


@dataclass
class UpcomingRenewal:
    contract_id: str
    software_name: str
    end_date: str
    days_remaining: int
    amount: float | None
    currency: str


@dataclass
class TopRequest:
    request_id: str
    software_ref: str | None
    requester_name: str
    votes: int


@dataclass
class DigestData:
    week_start: date
    week_end: date
    new_requests: int = 0
    expiring_30: int = 0
    expiring_60: int = 0
    expiring_95: int = 0
    total_savings: float = 0.0
    completed_tasks: int = 0
    upcoming_renewals: list[UpcomingRenewal] = field(default_factory=list)
    top_requests: list[TopRequest] = field(default_factory=list)

    def to_payload(self, user_name: str) -> dict[str, Any]:
        return {
            "kind": "weekly_digest",
            "user_name": user_name,
            "period": {
                "start": self.week_start.isoformat(),
                "end": self.week_end.isoformat(),
            },
            "stats": {
                "new_requests": self.new_requests,
                "expiring_30": self.expiring_30,
                "expiring_60": self.expiring_60,
                "expiring_95": self.expiring_95,
                "total_savings": self.total_savings,
                "completed_tasks": self.completed_tasks,
            },
            "upcoming_renewals": [asdict(item) for item in self.upcoming_renewals],
            "top_requests": [asdict(item) for item in self.top_requests],
        }


def week_bounds(now: datetime, tz_name: str) -> tuple[date, datetime, datetime]:
    """Local Monday of the current week plus its UTC [start, end) window."""
    tz = ZoneInfo(tz_name)
    today = now.astimezone(tz).date()
    monday = today - timedelta(days=today.weekday())
    start = datetime.combine(monday, time.min, tzinfo=tz)
    end = start + timedelta(days=7)
    return monday, start.astimezone(timezone.utc), end.astimezone(timezone.utc)


async def build_digest_data(
    db: AsyncSession,
    tenant_id: UUID,
    now: datetime,
    tz_name: str,
) -> DigestData:
    monday, start, end = week_bounds(now, tz_name)
    today = now.astimezone(ZoneInfo(tz_name)).date()
    data = DigestData(week_start=monday, week_end=monday + timedelta(days=6))

    data.new_requests = (
        await db.execute(
            select(func.count(SoftwareRequest.id)).where(
                SoftwareRequest.tenant_id == tenant_id,
                SoftwareRequest.created_at >= start,
                SoftwareRequest.created_at < end,
            )
        )
    ).scalar_one()

    tenant_contracts = (
        select(Contract.id)
        .join(Entity, Contract.entity_id == Entity.id)
        .where(Entity.tenant_id == tenant_id, Contract.end_date >= today)
    )
    for horizon in EXPIRY_HORIZONS:
        count = (
            await db.execute(
                select(func.count()).select_from(
                    tenant_contracts.where(
                        Contract.end_date <= today + timedelta(days=horizon)
                    ).subquery()
                )
            )
        ).scalar_one()
        setattr(data, f"expiring_{horizon}", count)

    savings = (
        await db.execute(
            select(func.coalesce(func.sum(EconomyItem.estimated_amount), 0)).where(
                EconomyItem.tenant_id == tenant_id
            )
        )
    ).scalar_one()
    data.total_savings = float(savings or 0)

    data.completed_tasks = (
        await db.execute(
            select(func.count(Task.id)).where(
                Task.tenant_id == tenant_id,
                Task.done.is_(True),
                Task.updated_at >= start,
                Task.updated_at < end,
            )
        )
    ).scalar_one()

    renewals = await db.execute(
        select(Contract.id, Software.name, Contract.end_date, Contract.cost_amount, Contract.currency)
        .join(Entity, Contract.entity_id == Entity.id)
        .join(Software, Contract.software_id == Software.id)
        .where(
            Entity.tenant_id == tenant_id,
            Contract.end_date >= today,
            Contract.end_date <= today + timedelta(days=max(EXPIRY_HORIZONS)),
        )
        .order_by(Contract.end_date, Contract.id)
        .limit(UPCOMING_RENEWALS_LIMIT)
    )
    data.upcoming_renewals = [
        UpcomingRenewal(
            contract_id=str(contract_id),
            software_name=name,
            end_date=end_date.isoformat(),
            days_remaining=(end_date - today).days,
            amount=float(amount) if amount is not None else None,
            currency=currency,
        )
        for contract_id, name, end_date, amount, currency in renewals.all()
    ]

    vote_count = func.count(Vote.id).label("votes")
    top = await db.execute(
        select(
            SoftwareRequest.id,
            SoftwareRequest.software_ref,
            User.first_name,
            User.last_name,
            User.email,
            vote_count,
        )
        .join(User, SoftwareRequest.requester_id == User.id)
        .outerjoin(Vote, Vote.request_id == SoftwareRequest.id)
        .where(
            SoftwareRequest.tenant_id == tenant_id,
            SoftwareRequest.status == RequestStatus.SUBMITTED.value,
        )
        .group_by(
            SoftwareRequest.id,
            SoftwareRequest.software_ref,
            User.first_name,
            User.last_name,
            User.email,
        )
        .order_by(vote_count.desc(), SoftwareRequest.id)
        .limit(TOP_REQUESTS_LIMIT)
    )
    data.top_requests = [
        TopRequest(
            request_id=str(request_id),
            software_ref=software_ref,
            requester_name=" ".join(p for p in (first_name, last_name) if p) or email,
            votes=votes,
        )
        for request_id, software_ref, first_name, last_name, email, votes in top.all()
    ]
    return data
