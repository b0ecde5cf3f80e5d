"""Collaborative workflow: reviews, software requests, votes, purchase projects, tasks."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid as PG_UUID,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clearstack.shared.db.base import Base, utcnow


class RequestStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    REFUSED = "REFUSED"


class Review(Base):
    __tablename__ = "reviews"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("users.id"), nullable=False, index=True
    )
    software_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("softwares.id"), nullable=False
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    strengths: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weaknesses: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    improvement: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class SoftwareRequest(Base):
    __tablename__ = "requests"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    requester_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("users.id"), nullable=False, index=True
    )
    software_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description_need: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=RequestStatus.SUBMITTED.value)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    requester = relationship("User")


class Vote(Base):
    __tablename__ = "votes"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    request_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("requests.id"), nullable=False, index=True
    )
    voter_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class PurchaseProject(Base):
    __tablename__ = "purchase_projects"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    software_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(), ForeignKey("softwares.id"), nullable=True
    )
    request_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(), ForeignKey("requests.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), default="OPEN")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    software = relationship("Software")


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    project_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("purchase_projects.id"), nullable=False, index=True
    )
    assignee_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(), ForeignKey("users.id"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    done: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    assignee = relationship("User")
    project = relationship("PurchaseProject")


class EconomyItem(Base):
    """An estimated saving opportunity (unused licence, duplicate tool, ...)."""

    __tablename__ = "economy_items"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    software_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(), ForeignKey("softwares.id"), nullable=True
    )
    estimated_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )


class ImportBatch(Base):
    __tablename__ = "import_batches"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    created_by_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(), ForeignKey("users.id"), nullable=True
    )
    source: Mapped[str] = mapped_column(String(50), default="csv")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
