"""
LeadService owns all business rules for the lead lifecycle.

Rules enforced here (NOT in the API layer, NOT in the kanban client):
- Status must name an active stage of the registry
- Status change and its history entry are written in one transaction
- Forward-only rule after prescription validation (admins bypass)
- Estimated value is only accepted from the validation milestone onwards
- Non-admins can only assign a lead that is still unassigned
- Empty values never overwrite stored fields on a generic patch
"""
from datetime import datetime, UTC
from decimal import Decimal
from typing import Any, Optional

from app.core.logging import get_logger
from app.models.client import Client
from app.models.history import LeadStageHistory
from app.models.lead import Lead, LeadSource
from app.models.user import User, UserRole
from app.repositories.history_repo import HistoryRepository
from app.repositories.lead_repo import LeadRepository
from app.repositories.stage_repo import StageRepository
from app.repositories.user_repo import ClientRepository, ConsultantRepository, UserRepository
from app.schemas.lead import LeadCreate
from app.services.pipeline_rules import (
    BackwardTransitionBlockedError,
    ensure_forward_transition,
    is_at_or_past_validation,
)

logger = get_logger(__name__)


class LeadNotFoundError(Exception):
    """Raised when lead is not found."""
    pass


class ConsultantNotFoundError(Exception):
    """Raised when the consultant to assign does not exist."""
    pass


class UnknownStageError(Exception):
    """Raised when a status does not match any active stage slug."""

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Unknown lead status '{status}': no active stage has this slug.")


class PipelineNotConfiguredError(Exception):
    """Raised when a lead is created before any stage exists."""
    pass


class EstimatedValueNotAllowedError(Exception):
    """Raised when an estimated value is sent before the prescription is validated."""
    pass


class LeadAlreadyAssignedError(Exception):
    """Raised when a non-admin tries to take a lead that already has an owner."""

    def __init__(self, lead_id: int, assigned_consultant_id: Optional[int]):
        self.lead_id = lead_id
        self.assigned_consultant_id = assigned_consultant_id
        super().__init__(f"Lead {lead_id} is already assigned. Only admins can reassign it.")


# Fields the generic CRM edit form may patch. Status and ownership have dedicated paths.
EDITABLE_FIELDS = frozenset({
    "patient_name", "patient_email", "patient_phone",
    "priority", "notes", "source", "estimated_value",
    "company", "job_title", "lead_score", "tags",
    "last_interaction", "next_follow_up", "products_interest", "budget",
    "expected_close_date", "conversion_probability",
    "address", "city", "state", "zip_code",
    "linkedin", "instagram", "referral_source", "lost_reason",
})


def strip_empty_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Drop None and blank-string values so they never overwrite date/decimal columns."""
    cleaned = {}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        cleaned[key] = value
    return cleaned


class LeadService:
    def __init__(
        self,
        lead_repo: LeadRepository,
        history_repo: HistoryRepository,
        stage_repo: StageRepository,
    ):
        self.repo = lead_repo
        self.history_repo = history_repo
        self.stage_repo = stage_repo
        self.users = UserRepository(lead_repo.db)
        self.clients = ClientRepository(lead_repo.db)
        self.consultants = ConsultantRepository(lead_repo.db)

    # ──────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────

    async def get_lead(self, lead_id: int) -> Lead:
        lead = await self.repo.get_by_id(lead_id)
        if not lead:
            raise LeadNotFoundError(f"Lead {lead_id} not found")
        return lead

    async def get_leads(
        self,
        status: str | None = None,
        consultant_id: int | None = None,
        assigned_consultant_id: int | None = None,
        priority: str | None = None,
        query: str | None = None,
    ) -> list[Lead]:
        return await self.repo.get_all(
            status=status,
            consultant_id=consultant_id,
            assigned_consultant_id=assigned_consultant_id,
            priority=priority,
            query=query,
        )

    async def get_history(self, lead_id: int) -> list[LeadStageHistory]:
        await self.get_lead(lead_id)
        return await self.history_repo.get_by_lead_id(lead_id)

    # ──────────────────────────────────────────────
    # Creation
    # ──────────────────────────────────────────────

    async def _initial_status(self) -> str:
        stages = await self.stage_repo.get_all()
        if not stages:
            raise PipelineNotConfiguredError("No active lead stages configured.")
        return stages[0].slug

    async def _actor_consultant_id(self, actor: User) -> Optional[int]:
        if actor.id is None:
            return None
        consultant = await self.consultants.get_by_user_id(actor.id)
        return consultant.id if consultant else None

    async def create_lead(self, data: LeadCreate, actor: User) -> Lead:
        """Create a lead from the CRM form, linking it to an existing patient by email."""
        status = await self._initial_status()

        client_id = None
        existing_user = await self.users.get_by_email(data.patient_email)
        if existing_user and existing_user.role == UserRole.CLIENT:
            client = await self.clients.get_by_user_id(existing_user.id)
            if client:
                client_id = client.id

        consultant_id = data.consultant_id or await self._actor_consultant_id(actor)

        # Lead row and history row land in the same transaction (committed by the caller)
        lead = Lead(
            client_id=client_id,
            patient_name=data.patient_name,
            patient_email=data.patient_email,
            patient_phone=data.patient_phone,
            consultant_id=consultant_id,
            status=status,
            priority=data.priority.value,
            notes=data.notes,
            source=data.source or LeadSource.MANUAL.value,
            tags=list(data.tags),
        )
        lead = await self.repo.create(lead)
        self.history_repo.add(LeadStageHistory(
            lead_id=lead.id,
            previous_status=None,
            new_status=status,
            by_user_id=actor.id,
            notes=f"Lead criado no CRM por {actor.email or actor.full_name}",
        ))
        await self.repo.db.flush()

        logger.info("lead_created", lead_id=lead.id, status=status, client_found=client_id is not None)
        return lead

    async def create_lead_for_client(self, client: Client, actor: User) -> tuple[Lead, bool]:
        """
        Intake auto-lead: one lead per client.
        Returns (lead, created) where ``created`` is False if the client already had one.
        """
        existing = await self.repo.get_by_client_id(client.id)
        if existing:
            return existing, False

        status = await self._initial_status()
        user = client.user
        # Lead row and history row land in the same transaction (committed by the caller)
        lead = Lead(
            client_id=client.id,
            patient_name=user.full_name if user else None,
            patient_email=user.email if user else None,
            patient_phone=user.phone if user else None,
            status=status,
            source=LeadSource.INTAKE.value,
            notes="Lead automático criado após preenchimento do formulário",
        )
        lead = await self.repo.create(lead)
        self.history_repo.add(LeadStageHistory(
            lead_id=lead.id,
            previous_status=None,
            new_status=status,
            by_user_id=actor.id,
            notes="Lead criado automaticamente",
        ))
        await self.repo.db.flush()

        logger.info("lead_auto_created", lead_id=lead.id, client_id=client.id)
        return lead, True

    # ──────────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────────

    async def update_lead_fields(self, lead_id: int, fields: dict[str, Any]) -> Lead:
        """Generic CRM edit. Unknown and empty fields are ignored."""
        lead = await self.get_lead(lead_id)
        updates = strip_empty_fields({k: v for k, v in fields.items() if k in EDITABLE_FIELDS})
        for key, value in updates.items():
            if hasattr(value, "value") and key in ("priority", "source"):
                value = value.value
            setattr(lead, key, value)
        return await self.repo.save(lead)

    async def update_lead_status(
        self,
        lead_id: int,
        new_status: str,
        actor: User,
        notes: Optional[str] = None,
        estimated_value: Optional[Decimal] = None,
    ) -> Lead:
        """
        Move a lead to another stage.

        The status write and the history insert share one transaction: if either fails,
        neither is persisted.
        """
        lead = await self.get_lead(lead_id)

        active_slugs = {s.slug for s in await self.stage_repo.get_all()}
        if new_status not in active_slugs:
            raise UnknownStageError(new_status)

        ordered_slugs = [s.slug for s in await self.stage_repo.get_all(include_inactive=True)]
        previous_status = lead.status

        if new_status != previous_status:
            try:
                ensure_forward_transition(ordered_slugs, previous_status, new_status, actor.is_admin)
            except BackwardTransitionBlockedError:
                logger.warning(
                    "lead_backward_move_blocked",
                    lead_id=lead.id,
                    current_status=previous_status,
                    target_status=new_status,
                    by_user_id=actor.id,
                )
                raise

        if estimated_value is not None and not is_at_or_past_validation(ordered_slugs, new_status):
            raise EstimatedValueNotAllowedError(
                "Estimated value can only be set after prescription validation."
            )

        # Status UPDATE is flushed before the history INSERT, both in the caller's transaction
        if notes:
            lead.notes = notes
        if estimated_value is not None:
            lead.estimated_value = estimated_value

        if new_status != previous_status:
            lead.status = new_status
            await self.repo.db.flush()
            self.history_repo.add(LeadStageHistory(
                lead_id=lead.id,
                previous_status=previous_status,
                new_status=new_status,
                by_user_id=actor.id,
                notes=notes,
            ))
        lead = await self.repo.save(lead)
        if new_status != previous_status:
            logger.info(
                "lead_status_changed",
                lead_id=lead.id,
                previous_status=previous_status,
                new_status=new_status,
                by_user_id=actor.id,
            )
        return lead

    async def assign_consultant(self, lead_id: int, consultant_id: int, actor: User) -> Lead:
        lead = await self.get_lead(lead_id)
        consultant = await self.consultants.get_by_id(consultant_id)
        if not consultant:
            raise ConsultantNotFoundError(f"Consultant {consultant_id} not found")

        if actor.is_admin:
            lead.assigned_consultant_id = consultant.id
            lead.assigned_at = datetime.now(UTC)
            lead = await self.repo.save(lead)
        else:
            assigned = await self.repo.assign_if_unassigned(lead.id, consultant.id)
            if not assigned:
                await self.repo.db.refresh(lead)
                raise LeadAlreadyAssignedError(lead.id, lead.assigned_consultant_id)
            await self.repo.db.refresh(lead)

        logger.info("lead_assigned", lead_id=lead.id, consultant_id=consultant.id, by_user_id=actor.id)
        return lead

    async def delete_lead(self, lead_id: int) -> None:
        lead = await self.get_lead(lead_id)
        await self.repo.delete(lead)
        logger.info("lead_deleted", lead_id=lead_id)
