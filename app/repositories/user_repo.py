"""
User Repository - database operations for users, clients, consultants and orders.
"""
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.client import Client, Consultant, Order
from app.models.user import User


class UserRepository:
    """Repository for User model operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return await self.session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get user by Email."""
        result = await self.session.execute(
            select(User).where(User.email == email)
        )
        return result.scalar_one_or_none()

    async def get_by_affiliate_code(self, code: str, active_vendor_only: bool = True) -> Optional[User]:
        """Exact, case-sensitive lookup on the stored (uppercase) affiliate code."""
        stmt = select(User).where(User.affiliate_code == code)
        if active_vendor_only:
            stmt = stmt.where(User.is_external_vendor == True)
        result = await self.session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def affiliate_code_exists(self, code: str) -> bool:
        return await self.get_by_affiliate_code(code, active_vendor_only=False) is not None

    async def get_external_vendors(self) -> list[User]:
        result = await self.session.execute(
            select(User)
            .where(User.is_external_vendor == True)
            .order_by(User.created_at.desc(), User.id.desc())
        )
        return list(result.scalars().all())

    async def save(self, user: User) -> User:
        """Save/update user."""
        await self.session.flush()
        await self.session.refresh(user)
        return user


class ClientRepository:
    """Repository for clients and the orders linked to them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, client_id: int) -> Optional[Client]:
        return await self.session.get(Client, client_id)

    async def get_by_user_id(self, user_id: int) -> Optional[Client]:
        result = await self.session.execute(select(Client).where(Client.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_by_vendor(self, vendor_id: int) -> list[Client]:
        result = await self.session.execute(
            select(Client)
            .where(Client.affiliate_vendor_id == vendor_id)
            .order_by(Client.created_at.desc(), Client.id.desc())
        )
        return list(result.scalars().all())

    async def attribute_vendor_once(self, client_id: int, vendor_id: int) -> bool:
        """Link a client to a vendor unless another vendor already owns the attribution."""
        stmt = (
            update(Client)
            .where(Client.id == client_id, Client.affiliate_vendor_id.is_(None))
            .values(affiliate_vendor_id=vendor_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_order(self, order_id: int) -> Optional[Order]:
        return await self.session.get(Order, order_id)

    async def link_order_to_vendor(self, order_id: int, vendor_id: int) -> bool:
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .values(affiliate_vendor_id=vendor_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class ConsultantRepository:
    """Repository for consultants (salespeople and their commission rates)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, consultant_id: int) -> Optional[Consultant]:
        return await self.session.get(Consultant, consultant_id)

    async def get_by_user_id(self, user_id: int) -> Optional[Consultant]:
        result = await self.session.execute(select(Consultant).where(Consultant.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_all(self, active_only: bool = True) -> list[Consultant]:
        stmt = select(Consultant)
        if active_only:
            stmt = stmt.where(Consultant.is_active == True)
        result = await self.session.execute(stmt.order_by(Consultant.id.asc()))
        return list(result.scalars().all())
