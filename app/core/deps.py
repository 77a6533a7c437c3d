"""
FastAPI dependencies for dependency injection.
"""
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.repositories.affiliate_repo import AffiliateRepository
from app.repositories.history_repo import HistoryRepository
from app.repositories.lead_repo import LeadRepository
from app.repositories.stage_repo import StageRepository
from app.repositories.user_repo import ClientRepository, ConsultantRepository
from app.services.affiliate_service import AffiliateService
from app.services.lead_service import LeadService
from app.services.stage_service import StageService


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_lead_repo(db: DbSession) -> LeadRepository:
    """Get LeadRepository instance."""
    return LeadRepository(db)


async def get_stage_repo(db: DbSession) -> StageRepository:
    """Get StageRepository instance."""
    return StageRepository(db)


async def get_history_repo(db: DbSession) -> HistoryRepository:
    return HistoryRepository(db)


async def get_client_repo(db: DbSession) -> ClientRepository:
    return ClientRepository(db)


async def get_consultant_repo(db: DbSession) -> ConsultantRepository:
    return ConsultantRepository(db)


async def get_stage_service(
    stage_repo: Annotated[StageRepository, Depends(get_stage_repo)]
) -> StageService:
    """Get StageService instance."""
    return StageService(stage_repo)


async def get_lead_service(
    lead_repo: Annotated[LeadRepository, Depends(get_lead_repo)],
    history_repo: Annotated[HistoryRepository, Depends(get_history_repo)],
    stage_repo: Annotated[StageRepository, Depends(get_stage_repo)],
) -> LeadService:
    """Get LeadService instance."""
    return LeadService(lead_repo, history_repo, stage_repo)


async def get_affiliate_service(db: DbSession) -> AffiliateService:
    """Get AffiliateService instance."""
    return AffiliateService(AffiliateRepository(db))
