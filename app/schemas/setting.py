from decimal import Decimal

from pydantic import BaseModel, Field


class DepositThresholdResponse(BaseModel):
    """Share of the grand total (percent) that must be paid on deposit before ACCEPT. 0 = any deposit."""
    deposit_threshold_pct: Decimal


class DepositThresholdUpdate(BaseModel):
    deposit_threshold_pct: Decimal = Field(..., ge=0, le=100)
