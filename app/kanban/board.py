"""
Local board state for the kanban client.

``BoardSnapshot`` is immutable: every move produces a new snapshot. ``BoardCache`` only holds a
reference to the current one, so taking a snapshot before an optimistic move and rolling back
to it are both plain reference assignments.
"""
from dataclasses import dataclass, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional


@dataclass(frozen=True)
class StageColumn:
    id: int
    slug: str
    name: str
    position: int

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "StageColumn":
        return cls(id=data["id"], slug=data["slug"], name=data["name"], position=data["position"])


@dataclass(frozen=True)
class LeadCard:
    id: int
    status: str
    patient_name: Optional[str] = None
    assigned_consultant_id: Optional[int] = None
    estimated_value: Optional[Decimal] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "LeadCard":
        value = data.get("estimated_value")
        return cls(
            id=data["id"],
            status=data["status"],
            patient_name=data.get("patient_name"),
            assigned_consultant_id=data.get("assigned_consultant_id"),
            estimated_value=Decimal(str(value)) if value is not None else None,
        )


class BoardSnapshot:
    """Stages in board order plus every lead card keyed by id."""

    __slots__ = ("_stages", "_leads")

    def __init__(self, stages: Iterable[StageColumn] = (), leads: Iterable[LeadCard] = ()):
        self._stages = tuple(sorted(stages, key=lambda s: (s.position, s.id)))
        self._leads = MappingProxyType({lead.id: lead for lead in leads})

    @property
    def stages(self) -> tuple[StageColumn, ...]:
        return self._stages

    @property
    def leads(self) -> Mapping[int, LeadCard]:
        return self._leads

    def ordered_slugs(self) -> list[str]:
        return [stage.slug for stage in self._stages]

    def get(self, lead_id: int) -> Optional[LeadCard]:
        return self._leads.get(lead_id)

    def column(self, slug: str) -> list[LeadCard]:
        return [lead for lead in self._leads.values() if lead.status == slug]

    def with_lead(self, card: LeadCard) -> "BoardSnapshot":
        leads = dict(self._leads)
        leads[card.id] = card
        return BoardSnapshot(self._stages, leads.values())

    def with_status(self, lead_id: int, status: str) -> "BoardSnapshot":
        return self.with_lead(replace(self._leads[lead_id], status=status))


class BoardCache:
    def __init__(self, snapshot: Optional[BoardSnapshot] = None):
        self._snapshot = snapshot or BoardSnapshot()

    @property
    def snapshot(self) -> BoardSnapshot:
        return self._snapshot

    def replace(self, snapshot: BoardSnapshot) -> BoardSnapshot:
        """Install ``snapshot`` and return the one it replaced."""
        previous, self._snapshot = self._snapshot, snapshot
        return previous
