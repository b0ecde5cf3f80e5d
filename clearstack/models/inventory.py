"""Software inventory: legal entities, departments, softwares, contracts, usages."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Uuid as PG_UUID,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clearstack.shared.db.base import Base, utcnow

if TYPE_CHECKING:
    from clearstack.models.tenant import Tenant


class Entity(Base):
    """A legal entity (subsidiary) of a tenant company."""

    __tablename__ = "entities"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    tenant: Mapped["Tenant"] = relationship(back_populates="entities")
    contracts: Mapped[List["Contract"]] = relationship(back_populates="entity")


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    entity_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("entities.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Software(Base):
    __tablename__ = "softwares"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("tenants.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    entity_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("entities.id"), nullable=False, index=True
    )
    software_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("softwares.id"), nullable=False, index=True
    )
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    # Per-contract override of the tenant notice window (days).
    notice_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cost_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    entity: Mapped["Entity"] = relationship(back_populates="contracts")
    software: Mapped["Software"] = relationship()


class Usage(Base):
    """A user's declared use of a software."""

    __tablename__ = "usages"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("users.id"), nullable=False, index=True
    )
    software_id: Mapped[UUID] = mapped_column(
        PG_UUID(), ForeignKey("softwares.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
