from decimal import Decimal
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RefundCreate(BaseModel):
    order_id: str
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    reason: Optional[str] = None


class RefundDecision(BaseModel):
    decision: Literal["approve", "reject"]
    reason: Optional[str] = None
