from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, String, Text, Uuid as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from clearstack.shared.db.base import Base, utcnow


class Badge(Base):
    """Global gamification badge catalogue (not tenant-owned)."""

    __tablename__ = "badges"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)


class UserBadge(Base):
    __tablename__ = "user_badges"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("users.id"), nullable=False, index=True
    )
    badge_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("badges.id"), nullable=False
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class BetaFeedback(Base):
    __tablename__ = "beta_feedbacks"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    user_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(), ForeignKey("users.id"), nullable=True, index=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
