import os
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from unittest.mock import MagicMock, AsyncMock

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("API_SECRET_TOKEN", "test-static-token")
os.environ.setdefault("PUBLIC_BASE_URL", "https://vittaverde.test")

# Mock Redis BEFORE importing main.app so the idempotency store and health check use the mock
import redis.asyncio as redis
mock_redis = AsyncMock()
redis.from_url = MagicMock(return_value=mock_redis)
mock_redis.get.return_value = None
mock_redis.setex.return_value = True

from main import app
from app.core.database import get_db, Base
from app.core.config import settings
from app.core.security import create_access_token
from app.models.client import Client, Consultant
from app.models.user import User, UserRole
from app.repositories.stage_repo import StageRepository
from app.services.stage_service import StageService

# Use an in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

DEFAULT_PIPELINE = [
    "Novo",
    "Contato Inicial",
    "Aguardando Receita",
    "Receita Recebida",
    "Receita Validada",
    "Produtos Liberados",
    "Finalizado",
]


@pytest.fixture(autouse=True)
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ──────────────────────────────────────────────
# Users
# ──────────────────────────────────────────────

async def create_user(
    session: AsyncSession,
    full_name: str,
    role: UserRole,
    email: str | None = None,
    **fields,
) -> User:
    user = User(full_name=full_name, role=role, email=email, is_active=True, **fields)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def create_consultant(session: AsyncSession, full_name: str, commission_rate: str = "0.10") -> Consultant:
    user = await create_user(session, full_name, UserRole.CONSULTANT, email=f"{full_name.lower().replace(' ', '.')}@vv.test")
    consultant = Consultant(user=user, commission_rate=commission_rate, is_active=True)
    session.add(consultant)
    await session.commit()
    return consultant


async def create_client(session: AsyncSession, full_name: str, email: str, phone: str = "+5511999990000") -> Client:
    user = await create_user(session, full_name, UserRole.CLIENT, email=email, phone=phone)
    patient = Client(user=user)
    session.add(patient)
    await session.commit()
    return patient


def bearer(user: User) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin_user(db_session) -> User:
    return await create_user(db_session, "Admin Vitta", UserRole.ADMIN, email="admin@vv.test")


@pytest.fixture
async def consultant(db_session) -> Consultant:
    return await create_consultant(db_session, "Carla Souza")


@pytest.fixture
async def consultant_user(db_session, consultant) -> User:
    return await db_session.get(User, consultant.user_id)


@pytest.fixture
async def comercial_user(db_session) -> User:
    return await create_user(db_session, "Caio Comercial", UserRole.COMERCIAL, email="comercial@vv.test")


@pytest.fixture
def static_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.API_SECRET_TOKEN}"}


@pytest.fixture
def admin_headers(admin_user) -> dict[str, str]:
    return bearer(admin_user)


@pytest.fixture
def consultant_headers(consultant_user) -> dict[str, str]:
    return bearer(consultant_user)


# ──────────────────────────────────────────────
# Pipeline
# ──────────────────────────────────────────────

async def seed_stages(session: AsyncSession, names: list[str] = DEFAULT_PIPELINE):
    svc = StageService(StageRepository(session))
    stages = [await svc.create_stage(name) for name in names]
    await session.commit()
    return stages


@pytest.fixture
async def pipeline(db_session):
    return await seed_stages(db_session)
