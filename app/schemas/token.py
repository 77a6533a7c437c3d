from typing import Optional

from pydantic import BaseModel, Field

from app.models.user import UserRole


class TokenPayload(BaseModel):
    """Claims of a CRM access token. ``sub`` is the user id, ``role`` is informational only."""
    user_id: int = Field(..., alias="sub")
    role: Optional[UserRole] = None
