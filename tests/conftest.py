"""
Global pytest fixtures for the ClearStack test suite.

Provides:
- File-backed SQLite engine per test (foreign keys enforced, SAVEPOINTs on)
- Session maker / session fixtures
- Test data factory
- Async HTTP client against the real app
"""
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
import tenacity

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DIGEST_SEND_DELAY_SECONDS"] = "0"
os.environ["SMTP_HOST"] = ""


# Mock tenacity to avoid retry delays
def mock_retry(*args, **kwargs):
    def decorator(f):
        return f
    return decorator


tenacity.retry = mock_retry


# ============================================================================
# Async Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Create async SQLite engine for testing using a temporary file."""
    from sqlalchemy.ext.asyncio import create_async_engine

    from clearstack.shared.db.base import Base
    from clearstack.shared.db.session import configure_sqlite_engine

    db_file = tmp_path / f"test_{uuid4().hex}.sqlite"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_file}", echo=False)
    configure_sqlite_engine(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator:
    """
    Session used to seed data. Seeding commits, so components running in
    their own sessions see the rows; keep no transaction open across a call
    into such a component (SQLite locks the file for the reader).
    """
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest.fixture
def override_settings(monkeypatch):
    """Apply environment overrides and rebuild cached settings."""
    from clearstack.shared.core.config import reload_settings_from_environment

    def _apply(**values):
        for key, value in values.items():
            monkeypatch.setenv(key, str(value))
        return reload_settings_from_environment()

    yield _apply
    monkeypatch.undo()
    reload_settings_from_environment()


# ============================================================================
# Test Data Factory
# ============================================================================

class DataFactory:
    """Creates and commits domain rows."""

    def __init__(self, db):
        self.db = db

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def tenant(self, name: str = "Acme"):
        from clearstack.models.tenant import Tenant

        return await self._save(Tenant(name=name))

    async def user(
        self,
        tenant,
        *,
        role: str = "USER",
        email: Optional[str] = None,
        first_name: str = "Alice",
        last_name: str = "Martin",
        linkedin_id: Optional[str] = "li-alice",
        email_notifications: bool = True,
    ):
        from clearstack.models.tenant import User

        return await self._save(
            User(
                tenant_id=tenant.id,
                email=email or f"{uuid4().hex[:10]}@acme.test",
                first_name=first_name,
                last_name=last_name,
                linkedin_id=linkedin_id,
                role=role,
                email_notifications=email_notifications,
            )
        )

    async def alert_setting(self, tenant, default_notice_days=None, enabled: bool = True):
        from clearstack.models.tenant import AlertSetting

        return await self._save(
            AlertSetting(tenant_id=tenant.id, default_notice_days=default_notice_days, enabled=enabled)
        )

    async def entity(self, tenant, name: str = "HQ"):
        from clearstack.models.inventory import Entity

        return await self._save(Entity(tenant_id=tenant.id, name=name))

    async def department(self, entity, name: str = "Finance"):
        from clearstack.models.inventory import Department

        return await self._save(Department(entity_id=entity.id, name=name))

    async def software(self, tenant, name: str = "Figma"):
        from clearstack.models.inventory import Software

        return await self._save(Software(tenant_id=tenant.id, name=name))

    async def contract(
        self,
        entity,
        software,
        end_date: date,
        *,
        notice_days: Optional[int] = None,
        cost_amount: Decimal = Decimal("1200.00"),
    ):
        from clearstack.models.inventory import Contract

        return await self._save(
            Contract(
                entity_id=entity.id,
                software_id=software.id,
                end_date=end_date,
                notice_days=notice_days,
                cost_amount=cost_amount,
                currency="EUR",
            )
        )

    async def usage(self, user, software):
        from clearstack.models.inventory import Usage

        return await self._save(Usage(user_id=user.id, software_id=software.id))

    async def review(self, user, software, rating: int = 4):
        from clearstack.models.workflow import Review

        return await self._save(
            Review(
                tenant_id=user.tenant_id,
                user_id=user.id,
                software_id=software.id,
                rating=rating,
                strengths="Fast and simple",
                weaknesses="Pricey",
                improvement="Better SSO",
            )
        )

    async def request(
        self,
        requester,
        *,
        description: str = "We need a design tool",
        created_at: Optional[datetime] = None,
    ):
        from clearstack.models.workflow import SoftwareRequest

        return await self._save(
            SoftwareRequest(
                tenant_id=requester.tenant_id,
                requester_id=requester.id,
                software_ref="Figma",
                description_need=description,
                created_at=created_at or datetime.now(timezone.utc),
            )
        )

    async def vote(self, request, voter):
        from clearstack.models.workflow import Vote

        return await self._save(
            Vote(tenant_id=request.tenant_id, request_id=request.id, voter_id=voter.id)
        )

    async def project(self, tenant, software=None, request=None):
        from clearstack.models.workflow import PurchaseProject

        return await self._save(
            PurchaseProject(
                tenant_id=tenant.id,
                software_id=software.id if software else None,
                request_id=request.id if request else None,
            )
        )

    async def task(
        self,
        project,
        assignee=None,
        *,
        title: str = "Collect quotes",
        due_date: Optional[date] = None,
        done: bool = False,
        updated_at: Optional[datetime] = None,
    ):
        from clearstack.models.workflow import Task

        task = Task(
            tenant_id=project.tenant_id,
            project_id=project.id,
            assignee_id=assignee.id if assignee else None,
            title=title,
            due_date=due_date,
            done=done,
        )
        if updated_at is not None:
            task.updated_at = updated_at
        return await self._save(task)

    async def economy_item(self, tenant, amount: Decimal):
        from clearstack.models.workflow import EconomyItem

        return await self._save(EconomyItem(tenant_id=tenant.id, estimated_amount=amount))

    async def deletion_entry(
        self,
        *,
        purge_after: datetime,
        user=None,
        tenant=None,
        status: str = "PENDING",
        processed_at: Optional[datetime] = None,
        requested_at: Optional[datetime] = None,
    ):
        from clearstack.models.deletion_queue import DeletionQueueEntry, DeletionReason

        return await self._save(
            DeletionQueueEntry(
                user_id=user.id if user else None,
                tenant_id=user.tenant_id if user else tenant.id,
                reason=(
                    DeletionReason.USER_REQUEST.value if user else DeletionReason.TENANT_REQUEST.value
                ),
                status=status,
                purge_after=purge_after,
                processed_at=processed_at,
                requested_at=requested_at or datetime.now(timezone.utc),
            )
        )


@pytest.fixture
def factory(db_session) -> DataFactory:
    return DataFactory(db_session)


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================

@pytest.fixture
def app():
    """Use the real ClearStack app."""
    from clearstack.main import app as clearstack_app
    from clearstack.shared.db.session import reset_db_runtime

    yield clearstack_app
    clearstack_app.dependency_overrides.clear()
    reset_db_runtime()


@pytest_asyncio.fixture
async def async_client(app, session_maker) -> AsyncGenerator:
    """Async test client. Each request gets its own session on the test DB."""
    from httpx import ASGITransport, AsyncClient

    from clearstack.shared.db.session import get_db

    async def _get_test_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def as_principal(app):
    """Authenticate subsequent requests as the given user."""
    from clearstack.shared.core.auth import CurrentUser, get_current_user

    def _set(user):
        principal = CurrentUser(
            id=user.id, tenant_id=user.tenant_id, email=user.email, role=user.role
        )
        app.dependency_overrides[get_current_user] = lambda: principal
        return principal

    return _set
