"""
StageService owns the kanban stage registry.

Rules enforced here:
- Slugs are derived from names and unique across active and inactive stages
- New stages are appended after the highest position
- Renaming a stage re-derives its slug and re-points leads that used the old slug
- Deleting a stage still holding leads is allowed, the caller gets a warning back
"""
from dataclasses import dataclass
from typing import Any, Optional

from app.core.logging import get_logger
from app.models.lead_stage import LeadStage
from app.repositories.stage_repo import StageRepository
from app.services.pipeline_rules import slugify

logger = get_logger(__name__)


class StageNotFoundError(Exception):
    """Raised when a stage id does not exist."""
    pass


class DuplicateSlugError(Exception):
    """Raised when a stage name maps onto a slug that is already taken."""

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"A stage with slug '{slug}' already exists.")


class InvalidStageNameError(Exception):
    """Raised when a stage name produces an empty slug."""
    pass


# Fallbacks for stages created by admins with colors/icons the board does not know
STAGE_ICONS: dict[str, str] = {
    "novo": "Sparkles",
    "contato_inicial": "PhoneCall",
    "aguardando_receita": "Clock",
    "receita_recebida": "FileText",
    "receita_validada": "CheckCircle",
    "produtos_liberados": "Package",
    "finalizado": "Heart",
}
DEFAULT_STAGE_ICON = "Circle"

STAGE_COLORS: dict[str, str] = {
    "blue": "#3b82f6",
    "green": "#22c55e",
    "yellow": "#eab308",
    "orange": "#f97316",
    "red": "#ef4444",
    "purple": "#a855f7",
    "pink": "#ec4899",
    "teal": "#14b8a6",
    "gray": "#6b7280",
}
DEFAULT_STAGE_COLOR = "#6b7280"


def stage_icon(slug: str, icon: Optional[str] = None) -> str:
    """Explicit icon wins, then the per-slug default, then the generic one."""
    if icon:
        return icon
    return STAGE_ICONS.get(slug, DEFAULT_STAGE_ICON)


def stage_color(color: Optional[str]) -> str:
    """Resolve a color name (or pass through a hex value) to a hex color."""
    if not color:
        return DEFAULT_STAGE_COLOR
    if color.startswith("#"):
        return color
    return STAGE_COLORS.get(color.lower(), DEFAULT_STAGE_COLOR)


@dataclass
class StageDeletionResult:
    stage_id: int
    slug: str
    orphaned_leads: int

    @property
    def warning(self) -> Optional[str]:
        if not self.orphaned_leads:
            return None
        return (
            f"{self.orphaned_leads} lead(s) still had status '{self.slug}' and now point "
            f"to a stage that no longer exists."
        )


class StageService:
    def __init__(self, stage_repo: StageRepository):
        self.repo = stage_repo

    async def list_stages(self, include_inactive: bool = False) -> list[LeadStage]:
        return await self.repo.get_all(include_inactive=include_inactive)

    async def ordered_slugs(self) -> list[str]:
        """Every stage slug (active or not) in board order."""
        return [s.slug for s in await self.repo.get_all(include_inactive=True)]

    async def get_stage(self, stage_id: int) -> LeadStage:
        stage = await self.repo.get_by_id(stage_id)
        if not stage:
            raise StageNotFoundError(f"Stage {stage_id} not found")
        return stage

    async def _derive_unique_slug(self, name: str, exclude_id: Optional[int] = None) -> str:
        slug = slugify(name)
        if not slug:
            raise InvalidStageNameError(f"Stage name '{name}' has no usable characters.")
        existing = await self.repo.get_by_slug(slug)
        if existing and existing.id != exclude_id:
            raise DuplicateSlugError(slug)
        return slug

    async def create_stage(
        self,
        name: str,
        description: Optional[str] = None,
        color: str = "blue",
        is_active: bool = True,
        icon: Optional[str] = None,
    ) -> LeadStage:
        slug = await self._derive_unique_slug(name)
        max_position = await self.repo.get_max_position()
        position = 0 if max_position is None else max_position + 1

        stage = LeadStage(
            name=name.strip(),
            slug=slug,
            description=description,
            color=color or "blue",
            icon=icon or stage_icon(slug),
            position=position,
            is_active=is_active,
        )
        stage = await self.repo.create(stage)
        logger.info("stage_created", slug=slug, position=position)
        return stage

    async def update_stage(self, stage_id: int, fields: dict[str, Any]) -> LeadStage:
        stage = await self.get_stage(stage_id)

        new_name = fields.get("name")
        if new_name is not None and new_name.strip() != stage.name:
            old_slug = stage.slug
            new_slug = await self._derive_unique_slug(new_name, exclude_id=stage.id)
            stage.name = new_name.strip()
            if new_slug != old_slug:
                stage.slug = new_slug
                moved = await self.repo.repoint_lead_statuses(old_slug, new_slug)
                logger.info("stage_renamed", old_slug=old_slug, new_slug=new_slug, leads_moved=moved)

        for attr in ("description", "color", "icon", "position", "is_active"):
            if attr in fields and fields[attr] is not None:
                setattr(stage, attr, fields[attr])

        return await self.repo.save(stage)

    async def delete_stage(self, stage_id: int) -> StageDeletionResult:
        stage = await self.get_stage(stage_id)
        orphaned = await self.repo.count_leads_with_status(stage.slug)
        result = StageDeletionResult(stage_id=stage.id, slug=stage.slug, orphaned_leads=orphaned)
        if orphaned:
            logger.warning("stage_deleted_with_leads", slug=stage.slug, leads=orphaned)
        await self.repo.delete(stage)
        return result

    async def reorder_stages(self, ordered_ids: list[int]) -> list[LeadStage]:
        """Rewrite positions as 0..n-1 following ``ordered_ids``; unlisted stages go last."""
        stages = await self.repo.get_all(include_inactive=True)
        by_id = {s.id: s for s in stages}
        unknown = [i for i in ordered_ids if i not in by_id]
        if unknown:
            raise StageNotFoundError(f"Stages {unknown} not found")

        listed = [by_id[i] for i in dict.fromkeys(ordered_ids)]
        rest = [s for s in stages if s.id not in set(ordered_ids)]
        for position, stage in enumerate(listed + rest):
            stage.position = position
        await self.repo.db.flush()
        return await self.repo.get_all(include_inactive=True)
