from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ReturnStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    SHIPPED = "shipped"
    RECEIVED = "received"
    REFUNDED = "refunded"
    REJECTED = "rejected"


class ReturnCreate(BaseModel):
    order_id: str
    reason: str = Field(..., min_length=1)
    notes: Optional[str] = None


class ReturnStatusUpdate(BaseModel):
    status: ReturnStatus
    tracking_number: Optional[str] = None
    refund_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
