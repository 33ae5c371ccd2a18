from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.models.enums import CategoryType


class CategoryResponse(BaseModel):
    id: str
    user_id: str
    name: str
    type: CategoryType
    color: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
