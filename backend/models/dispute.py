from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DisputeStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED_BUYER = "resolved_buyer"
    RESOLVED_SELLER = "resolved_seller"
    CLOSED = "closed"


class DisputeCreate(BaseModel):
    order_id: str
    seller_id: str
    reason: str = Field(..., min_length=1)
    description: Optional[str] = None


class DisputeStatusUpdate(BaseModel):
    status: DisputeStatus


class DisputeResolution(BaseModel):
    text: str = Field(..., min_length=1)
