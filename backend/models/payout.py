from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutRequestCreate(BaseModel):
    amount: Decimal = Field(..., decimal_places=2)
    # Bank / provider fund-account reference; emptiness is a business
    # error (InvalidDestination), not a schema error.
    destination: str = ""


class SellerBalance(BaseModel):
    seller_id: str
    currency: str

    gross: Decimal
    fee: Decimal
    net: Decimal

    available: Decimal
    pending: Decimal
    paid: Decimal


class PayoutFailure(BaseModel):
    reason: str = Field(..., min_length=1)
