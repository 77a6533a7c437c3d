"""
Input sanitization.
Strips HTML/JS from free-text fields (patient names, notes, stage descriptions)
before they reach the database.
"""
from typing import Optional

import bleach


def sanitize_text(value: Optional[str], max_length: int = 1024) -> Optional[str]:
    """
    Strip all HTML tags from a string and enforce max length.
    None is returned unchanged.
    """
    if value is None:
        return None
    cleaned = bleach.clean(value, tags=[], strip=True)
    return cleaned.strip()[:max_length] or None


def sanitize_short(value: Optional[str]) -> Optional[str]:
    """Sanitize a short field (names, company, stage name), at most 256 chars."""
    return sanitize_text(value, max_length=256)


def sanitize_long(value: Optional[str]) -> Optional[str]:
    """Sanitize a long text field (notes, descriptions), at most 4096 chars."""
    return sanitize_text(value, max_length=4096)
