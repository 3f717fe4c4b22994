import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-fees.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from decimal import Decimal
from typing import AsyncGenerator, Callable, Optional
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.security import create_access_token
from app.core.models import ClassFeeStructure, SchoolClass, Student, Tenant
from app.db.session import Base, get_db
from app.main import app


@pytest.fixture()
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """A fresh SQLite database file per test, with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fees.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override the FastAPI dependency."""
    async with session_factory() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            async with session_factory() as request_session:
                yield request_session

        app.dependency_overrides[get_db] = override_get_db
        yield session
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def school(db_session: AsyncSession) -> Tenant:
    tenant = Tenant(organization_code="SCH-001", organization_name="Green Valley School")
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest.fixture()
async def other_school(db_session: AsyncSession) -> Tenant:
    tenant = Tenant(organization_code="SCH-002", organization_name="Hill Top School")
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest.fixture()
async def school_class(db_session: AsyncSession, school: Tenant) -> SchoolClass:
    cls = SchoolClass(tenant_id=school.id, name="Grade 5", level=5)
    db_session.add(cls)
    await db_session.commit()
    return cls


@pytest.fixture()
async def student(db_session: AsyncSession, school: Tenant, school_class: SchoolClass) -> Student:
    s = Student(
        tenant_id=school.id,
        class_id=school_class.id,
        user_id=uuid4(),
        admission_number="ADM-0001",
        full_name="Asha Rao",
    )
    db_session.add(s)
    await db_session.commit()
    return s


@pytest.fixture()
async def class_defaults(db_session: AsyncSession, school: Tenant, school_class: SchoolClass) -> None:
    for component, amount in (("tuition_fee", "800"), ("exam_fee", "200")):
        db_session.add(
            ClassFeeStructure(
                tenant_id=school.id,
                class_id=school_class.id,
                academic_year="2024-2025",
                component=component,
                amount=Decimal(amount),
            )
        )
    await db_session.commit()


@pytest.fixture()
def make_token() -> Callable[..., str]:
    def _make(tenant_id: UUID, role: str = "ADMIN", user_id: Optional[UUID] = None, **claims) -> str:
        subject = {
            "user_id": str(user_id or uuid4()),
            "tenant_id": str(tenant_id),
            "role": role,
        }
        subject.update(claims)
        return create_access_token(subject=subject)

    return _make


@pytest.fixture()
def auth_headers(make_token) -> Callable[..., dict]:
    def _headers(tenant_id: UUID, role: str = "ADMIN", **kwargs) -> dict:
        return {"Authorization": f"Bearer {make_token(tenant_id, role, **kwargs)}"}

    return _headers
