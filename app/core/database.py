"""
Async engine and per-request session.

One request is one transaction: the lead status write and its history row, a stage rename and the
re-pointed leads, or an attribution and its tracking event all commit together or not at all.
"""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core.base import Base
from app.core.config import settings

# Import models to register them with Base.metadata
from app.models.user import User
from app.models.client import Client, Consultant, Order
from app.models.lead_stage import LeadStage
from app.models.lead import Lead
from app.models.history import LeadStageHistory
from app.models.affiliate import AffiliateTrackingEvent

engine_args: dict = {"echo": settings.DEBUG}

if settings.DATABASE_URL.startswith("sqlite"):
    # Local runs only; SQLite doesn't support pool_size/max_overflow
    engine_args["connect_args"] = {"check_same_thread": False}
else:
    engine_args.update({
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    })

engine: AsyncEngine = create_async_engine(settings.DATABASE_URL, **engine_args)

AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session, committed when the endpoint returns.
    A ``StaleDataError`` raised by the commit (concurrent lead edit) propagates to the middleware.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
