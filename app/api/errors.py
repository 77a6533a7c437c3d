"""
API error payloads.

Every handled error leaves the API as ``{"detail": {"code", "message", "detail", "context"}}``.
``code`` is stable and machine-readable; the kanban client and the admin UI branch on it.
"""
from __future__ import annotations

from typing import Any, NoReturn

from fastapi import HTTPException, Request


def build_error_payload(
    *,
    code: str,
    message: str,
    detail: Any = None,
    context: dict[str, Any] | None = None,
    request: Request | None = None,
) -> dict[str, Any]:
    payload_context = dict(context or {})
    if request is not None:
        # Middleware-level errors carry the request identity so they can be found in the logs
        payload_context.setdefault("request_id", getattr(request.state, "request_id", None))
        payload_context.setdefault("path", request.url.path)
        payload_context.setdefault("method", request.method)
    return {"code": code, "message": message, "detail": detail, "context": payload_context}


def raise_api_error(
    *,
    status_code: int,
    code: str,
    message: str,
    detail: Any = None,
    context: dict[str, Any] | None = None,
) -> NoReturn:
    raise HTTPException(
        status_code=status_code,
        detail=build_error_payload(code=code, message=message, detail=detail, context=context),
    )


def raise_not_found(resource: str, detail: Any = None, **context: Any) -> NoReturn:
    """404 with code ``<resource>_not_found``, e.g. ``raise_not_found("lead", lead_id=3)``."""
    raise_api_error(
        status_code=404,
        code=f"{resource}_not_found",
        message=f"{resource.replace('_', ' ').capitalize()} not found",
        detail=detail,
        context=context,
    )
