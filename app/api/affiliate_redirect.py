"""
Clean affiliate links: ``https://<site>/<code>`` (or any single-segment path with ``?ref=<code>``).

A valid vendor code is remembered in the visitor session, a click is tracked once per session
and the visitor is sent to the home page. Anything else is a plain 404. This router must be
included last so it never shadows a real route.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.errors import raise_api_error
from app.core.config import settings
from app.core.deps import get_affiliate_service
from app.core.logging import get_logger
from app.services.affiliate_service import AffiliateService

logger = get_logger(__name__)

router = APIRouter(tags=["affiliate"], include_in_schema=False)


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _not_found(candidate: str):
    raise_api_error(status_code=404, code="not_found", message="Not found", context={"path": f"/{candidate}"})


@router.get("/{candidate}")
async def affiliate_redirect(
    candidate: str,
    request: Request,
    ref: Optional[str] = Query(default=None, max_length=32),
    svc: AffiliateService = Depends(get_affiliate_service),
):
    if candidate.lower() in settings.AFFILIATE_RESERVED_ROUTES:
        _not_found(candidate)

    code = (ref or candidate).strip().upper()
    try:
        vendor = await svc.get_vendor_by_code(code)
        if vendor:
            await svc.track_click(
                code,
                session=request.session,
                ip_address=_client_ip(request),
                user_agent=request.headers.get("user-agent"),
                referrer=request.headers.get("referer"),
            )
    except SQLAlchemyError as e:
        # The visitor still lands on the site when tracking is down
        await svc.discard_changes()
        logger.error("affiliate_link_tracking_failed", code=code, error=str(e))
        return RedirectResponse(url="/", status_code=302)

    if not vendor:
        logger.info("affiliate_link_unknown_code", code=code)
        _not_found(candidate)
    return RedirectResponse(url="/", status_code=302)
