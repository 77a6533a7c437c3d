"""
Consultant listing (assignment dropdown and commission rates).
"""
from fastapi import APIRouter, Depends, Query

from app.core.deps import get_consultant_repo
from app.core.security import require_role
from app.models.user import User, UserRole
from app.repositories.user_repo import ConsultantRepository
from app.schemas.user import ConsultantResponse

router = APIRouter()


@router.get("", response_model=list[ConsultantResponse])
async def list_consultants(
    include_inactive: bool = Query(default=False),
    _: User = Depends(require_role(UserRole.CONSULTANT)),
    repo: ConsultantRepository = Depends(get_consultant_repo),
):
    return await repo.get_all(active_only=not include_inactive)
