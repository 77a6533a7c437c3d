"""
AffiliateService: attribution of clicks, registrations and purchases to external vendors.

Rules enforced here:
- Affiliate codes are uppercase alphanumerics and globally unique
- Enabling a vendor twice returns the existing code
- Tracking calls never raise to the caller: an unknown code, client or order is logged and
  ignored, and a failed event write is rolled back and logged
- A client is attributed to the first vendor that registers it, never re-attributed
- Purchase commission is a snapshot of the vendor rate at purchase time, recorded once per order
"""
import re
import secrets
import string
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.logging import get_logger
from app.models.affiliate import AffiliateTrackingEvent, AffiliateEventType
from app.models.client import Client
from app.models.user import User
from app.repositories.affiliate_repo import AffiliateRepository
from app.repositories.user_repo import ClientRepository, UserRepository
from app.services.pipeline_rules import strip_diacritics

logger = get_logger(__name__)

SESSION_AFFILIATE_KEY = "affiliate_code"
CODE_NAME_PART_LENGTH = 6
CODE_RANDOM_PART_LENGTH = 4
MAX_CODE_ATTEMPTS = 20

_BASE36 = string.digits + string.ascii_uppercase
_NON_CODE_CHARS = re.compile(r"[^A-Za-z0-9]")
_CENTS = Decimal("0.01")


class VendorNotFoundError(Exception):
    """Raised when the user to enable/disable as vendor does not exist."""
    pass


class DuplicateCustomCodeError(Exception):
    """Raised when a caller-chosen affiliate code is already taken."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f'Custom affiliate code "{code}" is already in use. Choose another one.')


class InvalidAffiliateCodeError(Exception):
    """Raised when a custom code has no usable characters."""
    pass


def normalize_code(raw: str) -> str:
    """'João-2024' -> 'JOAO2024'."""
    return _NON_CODE_CHARS.sub("", strip_diacritics(raw)).upper()


def random_code_suffix(length: int = CODE_RANDOM_PART_LENGTH) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def affiliate_link(code: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/{code.lower()}"


def _money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def _rate(raw: Optional[str]) -> Decimal:
    try:
        return Decimal(str(raw if raw not in (None, "") else settings.DEFAULT_COMMISSION_RATE))
    except InvalidOperation:
        return Decimal(settings.DEFAULT_COMMISSION_RATE)


@dataclass
class VendorActivation:
    affiliate_code: str
    affiliate_link: str


@dataclass
class VendorMetrics:
    clicks: int
    registrations: int
    purchases: int
    total_revenue: Decimal
    total_commission: Decimal
    conversion_rate: float
    recent_activity: list[AffiliateTrackingEvent] = field(default_factory=list)


class AffiliateService:
    def __init__(self, affiliate_repo: AffiliateRepository):
        self.repo = affiliate_repo
        self.users = UserRepository(affiliate_repo.db)
        self.clients = ClientRepository(affiliate_repo.db)

    # ──────────────────────────────────────────────
    # Vendor management
    # ──────────────────────────────────────────────

    async def generate_affiliate_code(
        self, full_name: str, user_id: int, custom_code: Optional[str] = None
    ) -> str:
        """
        Name prefix (6 chars) + 4 random base-36 chars, or the normalized custom code.
        Auto-generated collisions retry with a fresh suffix; custom collisions fail.
        """
        if custom_code is not None:
            code = normalize_code(custom_code)
            if not code:
                raise InvalidAffiliateCodeError(f'Custom affiliate code "{custom_code}" is empty once normalized.')
            if await self.users.affiliate_code_exists(code):
                raise DuplicateCustomCodeError(custom_code)
            return code

        name_part = normalize_code(full_name)[:CODE_NAME_PART_LENGTH]
        for _ in range(MAX_CODE_ATTEMPTS):
            code = f"{name_part}{random_code_suffix()}"
            if not await self.users.affiliate_code_exists(code):
                return code
            logger.info("affiliate_code_collision", user_id=user_id, code=code)
        raise RuntimeError(f"Could not generate a unique affiliate code for user {user_id}")

    async def enable_external_vendor(
        self,
        user_id: int,
        commission_rate: Optional[Decimal] = None,
        custom_code: Optional[str] = None,
    ) -> VendorActivation:
        user = await self.users.get_by_id(user_id)
        if not user:
            raise VendorNotFoundError(f"User {user_id} not found")

        if user.affiliate_code:
            if not user.is_external_vendor:
                user.is_external_vendor = True
                await self.users.save(user)
            logger.info("vendor_already_enabled", user_id=user.id, code=user.affiliate_code)
            return VendorActivation(user.affiliate_code, affiliate_link(user.affiliate_code))

        code = await self.generate_affiliate_code(user.full_name, user.id, custom_code)
        user.affiliate_code = code
        user.is_external_vendor = True
        user.commission_rate = str(commission_rate) if commission_rate is not None else settings.DEFAULT_COMMISSION_RATE
        await self.users.save(user)

        logger.info("vendor_enabled", user_id=user.id, code=code, commission_rate=user.commission_rate)
        return VendorActivation(code, affiliate_link(code))

    async def disable_external_vendor(self, user_id: int) -> None:
        """Stop attributing new traffic to the vendor. Code and history are kept."""
        user = await self.users.get_by_id(user_id)
        if not user:
            raise VendorNotFoundError(f"User {user_id} not found")
        user.is_external_vendor = False
        await self.users.save(user)
        logger.info("vendor_disabled", user_id=user.id)

    async def get_vendor_by_code(self, code: str) -> Optional[User]:
        return await self.users.get_by_affiliate_code(code)

    async def discard_changes(self) -> None:
        await self.repo.db.rollback()

    # ──────────────────────────────────────────────
    # Tracking
    # ──────────────────────────────────────────────

    async def _record(self, event: AffiliateTrackingEvent) -> bool:
        """Write a tracking event. A database error is logged and rolled back, never raised."""
        vendor_id, event_type = event.affiliate_vendor_id, event.event_type
        try:
            await self.repo.add_event(event)
        except SQLAlchemyError as e:
            await self.repo.db.rollback()
            logger.error(
                "affiliate_tracking_failed",
                vendor_id=vendor_id,
                event_type=event_type.value,
                error=str(e),
            )
            return False
        return True

    async def track_click(
        self,
        code: str,
        session: Optional[MutableMapping[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        referrer: Optional[str] = None,
    ) -> bool:
        """Record a click once per session. Returns True when an event was written."""
        vendor = await self.users.get_by_affiliate_code(code)
        if not vendor:
            logger.info("affiliate_click_invalid_code", code=code)
            return False

        if session is not None and session.get(SESSION_AFFILIATE_KEY) == code:
            return False

        vendor_id = vendor.id
        recorded = await self._record(AffiliateTrackingEvent(
            affiliate_vendor_id=vendor_id,
            event_type=AffiliateEventType.CLICK,
            ip_address=ip_address,
            user_agent=user_agent,
            referrer=referrer,
        ))
        if not recorded:
            return False
        if session is not None:
            session[SESSION_AFFILIATE_KEY] = code
        logger.info("affiliate_click_tracked", code=code, vendor_id=vendor_id, ip=ip_address)
        return True

    async def get_client_for_user(self, user_id: int) -> Optional[Client]:
        return await self.clients.get_by_user_id(user_id)

    async def track_registration(self, code: str, client_id: int) -> bool:
        vendor = await self.users.get_by_affiliate_code(code)
        if not vendor:
            logger.info("affiliate_registration_invalid_code", code=code, client_id=client_id)
            return False

        client = await self.clients.get_by_id(client_id)
        if not client:
            logger.info("affiliate_registration_unknown_client", code=code, client_id=client_id)
            return False

        if client.affiliate_vendor_id is not None and client.affiliate_vendor_id != vendor.id:
            logger.info(
                "affiliate_registration_already_attributed",
                client_id=client_id,
                vendor_id=client.affiliate_vendor_id,
                ignored_vendor_id=vendor.id,
            )
            return False

        vendor_id = vendor.id
        if not await self.clients.attribute_vendor_once(client_id, vendor_id):
            # Already linked to this same vendor
            return False

        # Rolling back a failed event write also undoes the attribution above
        if not await self._record(AffiliateTrackingEvent(
            affiliate_vendor_id=vendor_id,
            event_type=AffiliateEventType.REGISTRATION,
            client_id=client_id,
        )):
            return False
        await self.repo.db.refresh(client)
        logger.info("affiliate_registration_tracked", code=code, vendor_id=vendor_id, client_id=client_id)
        return True

    async def track_purchase(self, client_id: int, order_id: int, order_value: Any) -> Optional[Decimal]:
        """
        Returns the commission snapshot, or None when nothing was recorded: the client was not
        referred, the order is unknown or belongs to someone else, or it was already tracked.
        """
        client = await self.clients.get_by_id(client_id)
        if not client or client.affiliate_vendor_id is None:
            return None

        vendor = await self.users.get_by_id(client.affiliate_vendor_id)
        if not vendor:
            return None

        order = await self.clients.get_order(order_id)
        if order is None or order.client_id != client.id:
            logger.warning(
                "affiliate_purchase_unknown_order",
                client_id=client_id,
                order_id=order_id,
                order_client_id=order.client_id if order else None,
            )
            return None

        if await self.repo.purchase_recorded(order_id):
            logger.info("affiliate_purchase_already_tracked", client_id=client_id, order_id=order_id)
            return None

        vendor_id = vendor.id
        value = _money(order_value)
        commission = _money(value * _rate(vendor.commission_rate))

        await self.clients.link_order_to_vendor(order_id, vendor_id)
        if not await self._record(AffiliateTrackingEvent(
            affiliate_vendor_id=vendor_id,
            event_type=AffiliateEventType.PURCHASE,
            client_id=client_id,
            order_id=order_id,
            order_value=value,
            commission_value=commission,
        )):
            return None
        logger.info(
            "affiliate_purchase_tracked",
            vendor_id=vendor_id,
            client_id=client_id,
            order_id=order_id,
            order_value=str(value),
            commission=str(commission),
        )
        return commission

    # ──────────────────────────────────────────────
    # Reporting
    # ──────────────────────────────────────────────

    async def get_vendor_metrics(self, vendor_id: int) -> VendorMetrics:
        clicks = await self.repo.count_events(vendor_id, AffiliateEventType.CLICK)
        registrations = await self.repo.count_events(vendor_id, AffiliateEventType.REGISTRATION)
        purchases, revenue, commission = await self.repo.purchase_totals(vendor_id)
        return VendorMetrics(
            clicks=clicks,
            registrations=registrations,
            purchases=purchases,
            total_revenue=revenue,
            total_commission=commission,
            conversion_rate=registrations / clicks if clicks else 0.0,
            recent_activity=await self.repo.recent_events(vendor_id),
        )

    async def list_vendors(self) -> list[tuple[User, VendorMetrics]]:
        vendors = await self.users.get_external_vendors()
        return [(vendor, await self.get_vendor_metrics(vendor.id)) for vendor in vendors]

    async def list_vendor_clients(self, vendor_id: int) -> list[Client]:
        return await self.clients.get_by_vendor(vendor_id)
