"""
Lead stage (kanban column) API endpoints.
"""
from fastapi import APIRouter, Depends, Query

from app.api.errors import raise_api_error, raise_not_found
from app.core.deps import get_stage_service
from app.core.security import require_role
from app.models.user import User, UserRole
from app.schemas.stage import (
    StageCreate,
    StageDeleteResponse,
    StageReorder,
    StageResponse,
    StageUpdate,
)
from app.services.stage_service import (
    DuplicateSlugError,
    InvalidStageNameError,
    StageNotFoundError,
    StageService,
)

router = APIRouter()

board_viewers = require_role(UserRole.CONSULTANT, UserRole.COMERCIAL)
stage_managers = require_role(UserRole.COMERCIAL)
admin_only = require_role(UserRole.ADMIN)


def _stage_not_found(stage_id: int, detail: str):
    raise_not_found("stage", detail, stage_id=stage_id)


def _duplicate_slug(e: DuplicateSlugError):
    raise_api_error(
        status_code=409,
        code="duplicate_slug",
        message="A stage with this name already exists",
        detail=str(e),
        context={"slug": e.slug},
    )


def _invalid_name(e: InvalidStageNameError):
    raise_api_error(status_code=400, code="invalid_stage_name", message="Invalid stage name", detail=str(e))


@router.get("", response_model=list[StageResponse])
async def list_stages(
    include_inactive: bool = Query(default=False),
    _: User = Depends(board_viewers),
    svc: StageService = Depends(get_stage_service),
):
    """Board columns in position order."""
    return await svc.list_stages(include_inactive=include_inactive)


@router.post("", response_model=StageResponse, status_code=201)
async def create_stage(
    data: StageCreate,
    _: User = Depends(admin_only),
    svc: StageService = Depends(get_stage_service),
):
    try:
        return await svc.create_stage(
            name=data.name,
            description=data.description,
            color=data.color,
            is_active=data.is_active,
            icon=data.icon,
        )
    except DuplicateSlugError as e:
        _duplicate_slug(e)
    except InvalidStageNameError as e:
        _invalid_name(e)


@router.post("/reorder", response_model=list[StageResponse])
async def reorder_stages(
    data: StageReorder,
    _: User = Depends(admin_only),
    svc: StageService = Depends(get_stage_service),
):
    try:
        return await svc.reorder_stages(data.stage_ids)
    except StageNotFoundError as e:
        _stage_not_found(data.stage_ids[0], str(e))


@router.patch("/{stage_id}", response_model=StageResponse)
async def update_stage(
    stage_id: int,
    data: StageUpdate,
    _: User = Depends(stage_managers),
    svc: StageService = Depends(get_stage_service),
):
    """Renaming re-derives the slug and moves the stage's leads along with it."""
    try:
        return await svc.update_stage(stage_id, data.model_dump(exclude_unset=True))
    except StageNotFoundError as e:
        _stage_not_found(stage_id, str(e))
    except DuplicateSlugError as e:
        _duplicate_slug(e)
    except InvalidStageNameError as e:
        _invalid_name(e)


@router.delete("/{stage_id}", response_model=StageDeleteResponse)
async def delete_stage(
    stage_id: int,
    _: User = Depends(stage_managers),
    svc: StageService = Depends(get_stage_service),
):
    """Hard delete. Leads left on the slug are reported back in ``warning``."""
    try:
        result = await svc.delete_stage(stage_id)
    except StageNotFoundError as e:
        _stage_not_found(stage_id, str(e))
    return StageDeleteResponse(
        stage_id=result.stage_id,
        slug=result.slug,
        orphaned_leads=result.orphaned_leads,
        warning=result.warning,
    )
