"""
Affiliate program API: vendor management, attribution hooks and vendor dashboards.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from app.api.errors import raise_api_error, raise_not_found
from app.core.deps import get_affiliate_service
from app.core.idempotency import idempotency_key_header, idempotency_store
from app.core.logging import get_logger
from app.core.security import get_current_user, require_role
from app.models.user import User, UserRole
from app.schemas.affiliate import (
    PurchaseTrack,
    RegistrationTrack,
    TrackResult,
    VendorActivationResponse,
    VendorClientResponse,
    VendorEnableRequest,
    VendorMetricsResponse,
    VendorSummaryResponse,
)
from app.services.affiliate_service import (
    SESSION_AFFILIATE_KEY,
    AffiliateService,
    DuplicateCustomCodeError,
    InvalidAffiliateCodeError,
    VendorNotFoundError,
    affiliate_link,
)

logger = get_logger(__name__)

router = APIRouter()

admin_only = require_role(UserRole.ADMIN)
client_or_admin = require_role(UserRole.CLIENT)


def _vendor_not_found(user_id: int):
    raise_not_found("vendor", f"User {user_id} not found", user_id=user_id)


async def _require_vendor(
    current_user: User = Depends(get_current_user),
    svc: AffiliateService = Depends(get_affiliate_service),
) -> User:
    """The caller must be an external vendor. Vendors flagged without a code get one now."""
    if current_user.id is None or not current_user.is_external_vendor:
        raise_api_error(
            status_code=403,
            code="vendor_required",
            message="Access denied: external vendor required",
            context={"role": current_user.role.value},
        )
    if not current_user.affiliate_code:
        await svc.enable_external_vendor(current_user.id)
    return current_user


# ──────────────────────────────────────────────
# Vendor management (admin)
# ──────────────────────────────────────────────

@router.post("/vendors/{user_id}/enable", response_model=VendorActivationResponse)
async def enable_vendor(
    user_id: int,
    data: VendorEnableRequest | None = None,
    _: User = Depends(admin_only),
    svc: AffiliateService = Depends(get_affiliate_service),
):
    """Turn a user into an external vendor. Calling it again returns the existing code."""
    data = data or VendorEnableRequest()
    try:
        activation = await svc.enable_external_vendor(
            user_id, commission_rate=data.commission_rate, custom_code=data.custom_code
        )
    except VendorNotFoundError:
        _vendor_not_found(user_id)
    except DuplicateCustomCodeError as e:
        raise_api_error(
            status_code=409,
            code="duplicate_affiliate_code",
            message="Affiliate code already in use",
            detail=str(e),
            context={"custom_code": e.code},
        )
    except InvalidAffiliateCodeError as e:
        raise_api_error(status_code=400, code="invalid_affiliate_code", message="Invalid affiliate code", detail=str(e))
    return VendorActivationResponse(
        user_id=user_id,
        affiliate_code=activation.affiliate_code,
        affiliate_link=activation.affiliate_link,
    )


@router.post("/vendors/{user_id}/disable", status_code=204)
async def disable_vendor(
    user_id: int,
    _: User = Depends(admin_only),
    svc: AffiliateService = Depends(get_affiliate_service),
):
    try:
        await svc.disable_external_vendor(user_id)
    except VendorNotFoundError:
        _vendor_not_found(user_id)


@router.get("/vendors", response_model=list[VendorSummaryResponse])
async def list_vendors(
    _: User = Depends(admin_only),
    svc: AffiliateService = Depends(get_affiliate_service),
):
    return [
        VendorSummaryResponse(
            user_id=vendor.id,
            full_name=vendor.full_name,
            email=vendor.email,
            affiliate_code=vendor.affiliate_code,
            affiliate_link=affiliate_link(vendor.affiliate_code) if vendor.affiliate_code else None,
            commission_rate=vendor.commission_rate,
            is_external_vendor=vendor.is_external_vendor,
            metrics=VendorMetricsResponse.model_validate(metrics),
        )
        for vendor, metrics in await svc.list_vendors()
    ]


# ──────────────────────────────────────────────
# Vendor dashboard
# ──────────────────────────────────────────────

@router.get("/me/metrics", response_model=VendorMetricsResponse)
async def my_metrics(
    vendor: User = Depends(_require_vendor),
    svc: AffiliateService = Depends(get_affiliate_service),
):
    return VendorMetricsResponse.model_validate(await svc.get_vendor_metrics(vendor.id))


@router.get("/me/clients", response_model=list[VendorClientResponse])
async def my_clients(
    vendor: User = Depends(_require_vendor),
    svc: AffiliateService = Depends(get_affiliate_service),
):
    return [
        VendorClientResponse(
            client_id=client.id,
            user_id=client.user_id,
            full_name=client.user.full_name if client.user else None,
            email=client.user.email if client.user else None,
            created_at=client.created_at,
        )
        for client in await svc.list_vendor_clients(vendor.id)
    ]


# ──────────────────────────────────────────────
# Attribution hooks (called by signup and checkout)
# ──────────────────────────────────────────────

@router.post("/registrations", response_model=TrackResult)
async def track_registration(
    request: Request,
    data: RegistrationTrack,
    current_user: User = Depends(client_or_admin),
    svc: AffiliateService = Depends(get_affiliate_service),
):
    """
    Attribute a new client to the vendor whose link brought them in. First vendor wins.

    The newly registered client calls this from their own browser: the client is the caller,
    and without an ``affiliate_code`` the code the clean link left in their session is used.
    Admins backfill attributions by naming both ``client_id`` and ``affiliate_code``.
    """
    if current_user.role == UserRole.CLIENT:
        client = await svc.get_client_for_user(current_user.id)
        if client is None:
            raise_not_found("client", f"User {current_user.id} has no client profile", user_id=current_user.id)
        client_id = client.id
        code = data.affiliate_code or request.session.get(SESSION_AFFILIATE_KEY)
    else:
        if data.client_id is None:
            raise_api_error(
                status_code=422,
                code="client_id_required",
                message="client_id is required when registering on behalf of a client",
            )
        client_id, code = data.client_id, data.affiliate_code

    if not code:
        return TrackResult(recorded=False)
    try:
        recorded = await svc.track_registration(code, client_id)
    except SQLAlchemyError as e:
        await svc.discard_changes()
        logger.error("affiliate_registration_hook_failed", client_id=client_id, error=str(e))
        recorded = False
    return TrackResult(recorded=recorded)


@router.post("/purchases", response_model=TrackResult)
async def track_purchase(
    data: PurchaseTrack,
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    _: User = Depends(admin_only),
    svc: AffiliateService = Depends(get_affiliate_service),
):
    """Record the vendor commission for a paid order. An order is only ever counted once."""
    if idempotency_key:
        cached = await idempotency_store.get("track_purchase", idempotency_key)
        if cached:
            return cached

    try:
        commission = await svc.track_purchase(data.client_id, data.order_id, data.order_value)
    except SQLAlchemyError as e:
        # Checkout must complete even when the commission could not be written
        await svc.discard_changes()
        logger.error("affiliate_purchase_hook_failed", order_id=data.order_id, error=str(e))
        return TrackResult(recorded=False)
    result = TrackResult(recorded=commission is not None, commission_value=commission)

    if idempotency_key:
        await idempotency_store.remember("track_purchase", idempotency_key, result.model_dump(mode="json"))
    return result
