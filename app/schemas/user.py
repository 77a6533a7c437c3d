from typing import Optional
from pydantic import BaseModel


class ConsultantResponse(BaseModel):
    id: int
    user_id: int
    full_name: Optional[str] = None
    commission_rate: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}
