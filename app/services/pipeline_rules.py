"""
Pipeline rules shared by the server (LeadService) and the kanban client engine.

- Stage slugs are derived from stage names with ``slugify``.
- Forward-only rule: once a lead reaches the prescription-validation milestone, non-admin
  actors cannot move it to an earlier stage. Admins bypass the rule.
"""
import re
import unicodedata
from typing import Sequence

# Named milestones of the pipeline. They are part of the business process, not registry config.
VALIDATION_STAGE_SLUG = "receita_validada"
FINAL_STAGE_SLUG = "finalizado"
DEFAULT_INITIAL_STAGE_SLUG = "novo"

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s_]")
_WHITESPACE_RUN = re.compile(r"[\s_]+")


class BackwardTransitionBlockedError(Exception):
    """Raised when a non-admin tries to move a lead backwards past the validation milestone."""

    def __init__(self, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot move lead from '{current_status}' back to '{target_status}' "
            f"after prescription validation."
        )


def strip_diacritics(value: str) -> str:
    """Remove combining marks: 'Câmara' -> 'Camara'."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def slugify(name: str) -> str:
    """
    Derive a stage slug from its display name.

    >>> slugify("Receita Validada")
    'receita_validada'
    >>> slugify("  Contato   Inicial! ")
    'contato_inicial'
    """
    value = strip_diacritics(name).lower()
    value = _NON_SLUG_CHARS.sub("", value)
    value = _WHITESPACE_RUN.sub("_", value.strip())
    return value.strip("_")


def is_backward_move_blocked(
    ordered_slugs: Sequence[str],
    current_status: str,
    target_status: str,
    is_admin: bool,
) -> bool:
    """
    Apply the forward-only rule against a registry ordered by position.

    Unknown slugs (orphaned statuses, missing milestone) never block: the rule can only be
    evaluated when every index is known.
    """
    if is_admin:
        return False
    try:
        validation_idx = ordered_slugs.index(VALIDATION_STAGE_SLUG)
        current_idx = ordered_slugs.index(current_status)
        target_idx = ordered_slugs.index(target_status)
    except ValueError:
        return False
    return current_idx >= validation_idx and target_idx < current_idx


def ensure_forward_transition(
    ordered_slugs: Sequence[str],
    current_status: str,
    target_status: str,
    is_admin: bool,
) -> None:
    """Raise ``BackwardTransitionBlockedError`` if the move violates the forward-only rule."""
    if is_backward_move_blocked(ordered_slugs, current_status, target_status, is_admin):
        raise BackwardTransitionBlockedError(current_status, target_status)


def is_at_or_past_validation(ordered_slugs: Sequence[str], status: str) -> bool:
    """True when ``status`` sits at or after the validation milestone."""
    if VALIDATION_STAGE_SLUG not in ordered_slugs or status not in ordered_slugs:
        return False
    return ordered_slugs.index(status) >= ordered_slugs.index(VALIDATION_STAGE_SLUG)
