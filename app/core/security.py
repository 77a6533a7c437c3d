"""
API Security module.
Bearer JWT authentication and role guards.
"""
from datetime import datetime, UTC, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from starlette import status

from app.core.config import settings
from app.core.database import get_db
from app.models.user import User, UserRole
from app.repositories.user_repo import UserRepository
from app.schemas.token import TokenPayload

# HTTP Bearer authentication scheme
security = HTTPBearer()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a new JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def static_admin() -> User:
    """Service principal behind API_SECRET_TOKEN. Not persisted, so its id is None."""
    return User(id=None, username="api", full_name="API", role=UserRole.ADMIN, is_active=True)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Dependency to get the current authenticated user from JWT."""
    token = credentials.credentials
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    # Static token for service-to-service admin access
    if settings.API_SECRET_TOKEN and token == settings.API_SECRET_TOKEN:
        return static_admin()

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenPayload.model_validate(payload)
    except (JWTError, ValueError):
        raise credentials_exception

    user = await UserRepository(db).get_by_id(token_data.user_id)
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def require_role(*roles: UserRole):
    """
    Dependency factory: the current user must hold one of ``roles``.
    Admins always pass.
    """
    allowed = set(roles) | {UserRole.ADMIN}

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Operation forbidden. Required role: {', '.join(sorted(r.value for r in allowed))}"
            )
        return current_user

    return role_checker
