"""
Kanban drag-and-drop reconciliation.

One gesture moves through IDLE -> DRAGGING -> RESOLVING -> COMMITTING -> IDLE:

- DRAGGING:   the active lead id is captured;
- RESOLVING:  collision detection turns the drop position into a target stage;
- COMMITTING: the forward-only rule has passed and the move is applied to the local cache.

The engine is back in IDLE as soon as the optimistic move is installed, so other cards can be
dragged while the status PATCH is in flight. Each in-flight move reconciles on its own: a
confirmed PATCH makes the optimistic state authoritative, a failed one restores the pre-drag
snapshot (or only that card when the board has changed since). A card whose move is still saving
cannot be picked up again. Dropping outside every target, or on the lead's own column, is a no-op.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from app.core.logging import get_logger
from app.kanban.board import BoardCache, BoardSnapshot, LeadCard, StageColumn
from app.kanban.client import CRMClient, CRMClientError
from app.kanban.geometry import DropTarget, Point, Rect, TargetKind, pointer_within, rect_intersection
from app.services.pipeline_rules import is_backward_move_blocked

logger = get_logger(__name__)

# notifier(level, message) with level in {"success", "error"}
Notifier = Callable[[str, str], None]


class DragPhase(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    RESOLVING = "resolving"
    COMMITTING = "committing"


class DropOutcome(str, Enum):
    MOVED = "moved"
    NO_OP = "no_op"
    BLOCKED = "blocked"
    ROLLED_BACK = "rolled_back"


class DragStateError(Exception):
    """Raised when a gesture event arrives in the wrong phase."""
    pass


@dataclass(frozen=True)
class DropResult:
    outcome: DropOutcome
    lead_id: int
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    error: Optional[str] = None


def resolve_target_stage(
    snapshot: BoardSnapshot,
    active_lead_id: int,
    pointer: Point,
    active_rect: Rect,
    targets: Sequence[DropTarget],
) -> Optional[str]:
    """Column under the pointer, else the column of the most-overlapped other card."""
    columns = [t for t in targets if t.kind == TargetKind.COLUMN]
    hits = pointer_within(pointer, columns)
    if hits:
        return hits[0].stage_slug

    cards = [t for t in targets if t.kind == TargetKind.CARD and t.lead_id != active_lead_id]
    valid = set(snapshot.ordered_slugs())
    for target in rect_intersection(active_rect, cards):
        card = snapshot.get(target.lead_id)
        if card is not None:
            # A card left on a deleted or renamed stage is not a drop target
            return card.status if card.status in valid else None
    return None


class KanbanReconciler:
    def __init__(
        self,
        client: CRMClient,
        cache: BoardCache | None = None,
        is_admin: bool = False,
        notifier: Notifier | None = None,
    ):
        self.client = client
        self.cache = cache or BoardCache()
        self.is_admin = is_admin
        self._notify = notifier or (lambda level, message: None)
        self.phase = DragPhase.IDLE
        self.active_lead_id: Optional[int] = None
        self._saving: set[int] = set()

    async def refresh(self) -> BoardSnapshot:
        """Replace the local board with the server's stages and leads."""
        stages = [StageColumn.from_api(s) for s in await self.client.list_stages()]
        leads = [LeadCard.from_api(lead) for lead in await self.client.list_leads()]
        snapshot = BoardSnapshot(stages, leads)
        self.cache.replace(snapshot)
        return snapshot

    def start_drag(self, lead_id: int) -> None:
        if self.phase != DragPhase.IDLE:
            raise DragStateError(f"Cannot start a drag while {self.phase.value}")
        if self.cache.snapshot.get(lead_id) is None:
            raise DragStateError(f"Lead {lead_id} is not on the board")
        if lead_id in self._saving:
            raise DragStateError(f"Lead {lead_id} is still being saved")
        self.active_lead_id = lead_id
        self.phase = DragPhase.DRAGGING

    @property
    def saving(self) -> frozenset[int]:
        """Leads whose status PATCH has not answered yet."""
        return frozenset(self._saving)

    def cancel_drag(self) -> None:
        if self.phase == DragPhase.DRAGGING:
            self._reset()

    def _reset(self) -> None:
        self.active_lead_id = None
        self.phase = DragPhase.IDLE

    async def drop(self, pointer: Point, active_rect: Rect, targets: Sequence[DropTarget]) -> DropResult:
        """
        Resolve the drop and, for a real move, apply it locally and wait for the server.

        Everything up to the optimistic update runs without yielding to the event loop, and the
        engine is IDLE again before the PATCH is awaited.
        """
        if self.phase != DragPhase.DRAGGING or self.active_lead_id is None:
            raise DragStateError(f"Cannot drop while {self.phase.value}")

        lead_id = self.active_lead_id
        self.phase = DragPhase.RESOLVING
        try:
            before = self.cache.snapshot
            current = before.get(lead_id)
            target_status = resolve_target_stage(before, lead_id, pointer, active_rect, targets)

            if current is None or target_status is None or target_status == current.status:
                return DropResult(DropOutcome.NO_OP, lead_id, current.status if current else None, target_status)

            # Checked before touching the cache so a rejected move never flickers on the board
            if is_backward_move_blocked(before.ordered_slugs(), current.status, target_status, self.is_admin):
                message = "Leads com receita validada não podem voltar para etapas anteriores."
                logger.info("kanban_move_blocked", lead_id=lead_id, from_status=current.status, to_status=target_status)
                self._notify("error", message)
                return DropResult(DropOutcome.BLOCKED, lead_id, current.status, target_status, message)

            self.phase = DragPhase.COMMITTING
            optimistic = before.with_status(lead_id, target_status)
            self.cache.replace(optimistic)
            self._saving.add(lead_id)
        finally:
            self._reset()

        try:
            return await self._commit(before, optimistic, current, target_status)
        finally:
            self._saving.discard(lead_id)

    async def _commit(
        self,
        before: BoardSnapshot,
        optimistic: BoardSnapshot,
        current: LeadCard,
        target_status: str,
    ) -> DropResult:
        try:
            confirmed = await self.client.update_lead_status(current.id, target_status)
        except CRMClientError as e:
            self._rollback(before, optimistic, current)
            logger.warning(
                "kanban_move_rolled_back",
                lead_id=current.id,
                from_status=current.status,
                to_status=target_status,
                status_code=e.status_code,
                error=str(e),
            )
            self._notify("error", str(e))
            return DropResult(DropOutcome.ROLLED_BACK, current.id, current.status, target_status, str(e))

        self.cache.replace(self.cache.snapshot.with_lead(LeadCard.from_api(confirmed)))
        logger.info("kanban_move_confirmed", lead_id=current.id, from_status=current.status, to_status=target_status)
        self._notify("success", "Status atualizado com sucesso")
        return DropResult(DropOutcome.MOVED, current.id, current.status, target_status)

    def _rollback(self, before: BoardSnapshot, optimistic: BoardSnapshot, card: LeadCard) -> None:
        if self.cache.snapshot is optimistic:
            self.cache.replace(before)
        else:
            # The board was refreshed meanwhile: only put this card back
            self.cache.replace(self.cache.snapshot.with_lead(card))
