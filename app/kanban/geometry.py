"""
Drop-target geometry for the kanban board.

Two-tier collision detection:
1. pointer-within: columns whose rectangle contains the pointer;
2. rectangle intersection: when the pointer is over no column (columns narrower than the
   card stack, gaps between columns), the card overlapping the dragged card the most wins
   and the drop adopts that card's column.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(self.width, 0) * max(self.height, 0)

    def contains(self, point: Point) -> bool:
        return self.x <= point.x <= self.right and self.y <= point.y <= self.bottom

    def intersection_area(self, other: "Rect") -> float:
        width = min(self.right, other.right) - max(self.x, other.x)
        height = min(self.bottom, other.bottom) - max(self.y, other.y)
        if width <= 0 or height <= 0:
            return 0.0
        return width * height


class TargetKind(str, Enum):
    COLUMN = "column"
    CARD = "card"


@dataclass(frozen=True)
class DropTarget:
    """A droppable region. Columns carry a stage slug, cards carry a lead id."""
    kind: TargetKind
    rect: Rect
    stage_slug: Optional[str] = None
    lead_id: Optional[int] = None

    @classmethod
    def column(cls, stage_slug: str, rect: Rect) -> "DropTarget":
        return cls(kind=TargetKind.COLUMN, rect=rect, stage_slug=stage_slug)

    @classmethod
    def card(cls, lead_id: int, rect: Rect) -> "DropTarget":
        return cls(kind=TargetKind.CARD, rect=rect, lead_id=lead_id)


def pointer_within(pointer: Point, targets: Iterable[DropTarget]) -> list[DropTarget]:
    """Targets containing the pointer, smallest first (nested regions win over outer ones)."""
    hits = [t for t in targets if t.rect.contains(pointer)]
    return sorted(hits, key=lambda t: t.rect.area)


def rect_intersection(active: Rect, targets: Iterable[DropTarget]) -> list[DropTarget]:
    """Targets overlapping ``active``, ordered by overlap ratio (intersection / union)."""
    scored = []
    for target in targets:
        overlap = active.intersection_area(target.rect)
        if overlap <= 0:
            continue
        union = active.area + target.rect.area - overlap
        scored.append((overlap / union if union else 0.0, target))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [target for _, target in scored]
