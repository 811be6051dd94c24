from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class MemoryCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=255)
    value: str = Field(..., min_length=1)
    context: Optional[str] = ""


class MemoryResponse(BaseModel):
    id: str
    key: str
    value: str
    context: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
