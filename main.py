from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from app.api.v1 import affiliates, consultants, lead_stages, leads
from app.api import affiliate_redirect
from app.api.health import router as health_router
from app.core.config import settings
from app.core.database import engine, Base
from app.core.logging import setup_logging, get_logger
from app.core.middleware import RequestLoggingMiddleware, ErrorHandlingMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    # Alembic owns the schema in production; this only helps local runs
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (SQLAlchemyError, OSError) as e:
        logger.warning("create_tables_failed", error=str(e))

    yield

    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Lead pipeline and affiliate attribution",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)
app.state.debug = settings.DEBUG

Instrumentator().instrument(app).expose(app)

# Add middleware (order matters - last added = first executed)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET_KEY, same_site="lax")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(leads.router, prefix="/api/v1/leads", tags=["leads"])
app.include_router(lead_stages.router, prefix="/api/v1/lead-stages", tags=["lead-stages"])
app.include_router(consultants.router, prefix="/api/v1/consultants", tags=["consultants"])
app.include_router(affiliates.router, prefix="/api/v1/affiliate", tags=["affiliate"])
# Catch-all, must stay last
app.include_router(affiliate_redirect.router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
