"""
Lead API endpoints.
"""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from starlette import status

from app.api.errors import raise_api_error, raise_not_found
from app.core.deps import get_client_repo, get_consultant_repo, get_lead_service
from app.core.idempotency import idempotency_key_header, idempotency_store
from app.core.security import require_role
from app.models.user import User, UserRole
from app.repositories.user_repo import ClientRepository, ConsultantRepository
from app.schemas.lead import (
    AutoLeadCreate,
    AutoLeadResponse,
    CommissionSummaryResponse,
    LeadAssign,
    LeadCreate,
    LeadHistoryResponse,
    LeadResponse,
    LeadStatusUpdate,
    LeadUpdate,
    PipelineStatsResponse,
)
from app.services.commission_service import aggregate_commissions, pipeline_stats
from app.services.lead_service import (
    ConsultantNotFoundError,
    EstimatedValueNotAllowedError,
    LeadAlreadyAssignedError,
    LeadNotFoundError,
    LeadService,
    PipelineNotConfiguredError,
    UnknownStageError,
)
from app.services.pipeline_rules import BackwardTransitionBlockedError

router = APIRouter()

# Board roles, following who works each column in the clinic
lead_editors = require_role(UserRole.CONSULTANT)
stage_movers = require_role(UserRole.CONSULTANT, UserRole.COMERCIAL)
intake_callers = require_role(UserRole.CLIENT)


def _not_found(lead_id: int):
    raise_not_found("lead", f"Lead {lead_id} not found", lead_id=lead_id)


def _pipeline_not_configured():
    raise_api_error(
        status_code=409,
        code="pipeline_not_configured",
        message="No lead stages configured",
        detail="Create at least one active lead stage before adding leads.",
    )


# ──────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────

@router.get("", response_model=list[LeadResponse])
async def list_leads(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    consultant_id: Optional[int] = Query(default=None),
    assigned_consultant_id: Optional[int] = Query(default=None),
    priority: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None, max_length=128, description="Search name, email, phone or company"),
    _: User = Depends(lead_editors),
    svc: LeadService = Depends(get_lead_service),
):
    return await svc.get_leads(
        status=status_filter,
        consultant_id=consultant_id,
        assigned_consultant_id=assigned_consultant_id,
        priority=priority,
        query=q,
    )


@router.get("/stats", response_model=PipelineStatsResponse)
async def lead_stats(
    _: User = Depends(stage_movers),
    svc: LeadService = Depends(get_lead_service),
):
    return pipeline_stats(await svc.get_leads())


@router.get("/commissions", response_model=CommissionSummaryResponse)
async def lead_commissions(
    salesperson_id: Optional[int] = Query(default=None, description="Consultant id to filter on"),
    current_user: User = Depends(stage_movers),
    svc: LeadService = Depends(get_lead_service),
    consultants: ConsultantRepository = Depends(get_consultant_repo),
):
    """Commission report over finalized leads. Consultants only ever see their own line."""
    if current_user.role == UserRole.CONSULTANT:
        own = await consultants.get_by_user_id(current_user.id)
        if not own:
            raise_api_error(
                status_code=403,
                code="consultant_profile_missing",
                message="No consultant profile for this user",
            )
        salesperson_id = own.id

    summary = aggregate_commissions(
        await svc.get_leads(),
        await consultants.get_all(active_only=False),
        salesperson_id=salesperson_id,
    )
    return asdict(summary)


@router.get("/{lead_id}", response_model=LeadResponse)
async def get_lead(
    lead_id: int,
    _: User = Depends(stage_movers),
    svc: LeadService = Depends(get_lead_service),
):
    try:
        return await svc.get_lead(lead_id)
    except LeadNotFoundError:
        _not_found(lead_id)


@router.get("/{lead_id}/history", response_model=list[LeadHistoryResponse])
async def get_lead_history(
    lead_id: int,
    _: User = Depends(stage_movers),
    svc: LeadService = Depends(get_lead_service),
):
    """Stage timeline, newest entry first."""
    try:
        return await svc.get_history(lead_id)
    except LeadNotFoundError:
        _not_found(lead_id)


# ──────────────────────────────────────────────
# Creation
# ──────────────────────────────────────────────

@router.post("", response_model=LeadResponse, status_code=status.HTTP_201_CREATED)
async def create_lead(
    data: LeadCreate,
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    current_user: User = Depends(lead_editors),
    svc: LeadService = Depends(get_lead_service),
):
    """Create a lead from the CRM form. It starts in the first active stage."""
    if idempotency_key:
        cached = await idempotency_store.get("create_lead", idempotency_key)
        if cached:
            return cached

    try:
        lead = await svc.create_lead(data, current_user)
    except PipelineNotConfiguredError:
        _pipeline_not_configured()

    if idempotency_key:
        await idempotency_store.remember(
            "create_lead", idempotency_key, LeadResponse.model_validate(lead).model_dump(mode="json")
        )
    return lead


@router.post("/auto", response_model=AutoLeadResponse)
async def create_auto_lead(
    data: AutoLeadCreate | None = None,
    current_user: User = Depends(intake_callers),
    svc: LeadService = Depends(get_lead_service),
    clients: ClientRepository = Depends(get_client_repo),
):
    """
    Intake hook, called once the patient finishes the anamnesis form.
    Patients get their own lead; admins may pass ``client_id`` explicitly.
    """
    if current_user.role == UserRole.CLIENT:
        client = await clients.get_by_user_id(current_user.id)
    elif data and data.client_id:
        client = await clients.get_by_id(data.client_id)
    else:
        client = None

    if not client:
        raise_not_found("client")

    try:
        lead, created = await svc.create_lead_for_client(client, current_user)
    except PipelineNotConfiguredError:
        _pipeline_not_configured()
    return {"lead": lead, "created": created}


# ──────────────────────────────────────────────
# Mutations
# ──────────────────────────────────────────────

@router.patch("/{lead_id}", response_model=LeadResponse)
async def update_lead(
    lead_id: int,
    data: LeadUpdate,
    _: User = Depends(lead_editors),
    svc: LeadService = Depends(get_lead_service),
):
    """Generic CRM edit. Blank values are ignored; status and owner have their own endpoints."""
    try:
        return await svc.update_lead_fields(lead_id, data.model_dump(exclude_unset=True))
    except LeadNotFoundError:
        _not_found(lead_id)


@router.patch("/{lead_id}/status", response_model=LeadResponse)
async def update_lead_status(
    lead_id: int,
    data: LeadStatusUpdate,
    current_user: User = Depends(stage_movers),
    svc: LeadService = Depends(get_lead_service),
):
    """Move a lead to another stage. Status and history are written together."""
    try:
        return await svc.update_lead_status(
            lead_id,
            data.status,
            current_user,
            notes=data.notes,
            estimated_value=data.estimated_value,
        )
    except LeadNotFoundError:
        _not_found(lead_id)
    except UnknownStageError as e:
        raise_api_error(
            status_code=400,
            code="unknown_stage",
            message="Unknown lead status",
            detail=str(e),
            context={"status": e.status},
        )
    except BackwardTransitionBlockedError as e:
        raise_api_error(
            status_code=422,
            code="backward_transition_blocked",
            message="Leads cannot move back once the prescription is validated",
            detail=str(e),
            context={"current_status": e.current_status, "target_status": e.target_status},
        )
    except EstimatedValueNotAllowedError as e:
        raise_api_error(
            status_code=400,
            code="estimated_value_not_allowed",
            message="Estimated value not allowed at this stage",
            detail=str(e),
        )


@router.patch("/{lead_id}/assign", response_model=LeadResponse)
async def assign_lead(
    lead_id: int,
    data: LeadAssign,
    current_user: User = Depends(lead_editors),
    svc: LeadService = Depends(get_lead_service),
):
    try:
        return await svc.assign_consultant(lead_id, data.consultant_id, current_user)
    except LeadNotFoundError:
        _not_found(lead_id)
    except ConsultantNotFoundError as e:
        raise_not_found("consultant", str(e), consultant_id=data.consultant_id)
    except LeadAlreadyAssignedError as e:
        raise_api_error(
            status_code=403,
            code="lead_already_assigned",
            message="Lead already assigned",
            detail=str(e),
            context={"lead_id": e.lead_id, "assigned_consultant_id": e.assigned_consultant_id},
        )


@router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lead(
    lead_id: int,
    _: User = Depends(lead_editors),
    svc: LeadService = Depends(get_lead_service),
):
    try:
        await svc.delete_lead(lead_id)
    except LeadNotFoundError:
        _not_found(lead_id)
