from pydantic import Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


class StockAvailabilityResponse(BaseResponseSchema):
    """Stock position of a product (m²)."""
    product_id: uuid.UUID
    name: str
    sku: str
    current_stock: Decimal
    reserved_stock: Decimal
    available: Decimal
    reorder_point: Decimal
    is_low: bool


class StockAdjustmentCreate(BaseCreateSchema):
    """Manual on-hand correction. delta is signed m²."""
    product_id: uuid.UUID
    delta: Decimal
    reason: str = Field(..., min_length=1, max_length=500)


class StockInCreate(BaseCreateSchema):
    """Procurement receipt."""
    product_id: uuid.UUID
    quantity: Decimal = Field(..., gt=0)
    reference: Optional[str] = Field(None, max_length=100)


class StockMovementResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    movement_type: str
    quantity: Decimal
    reference: Optional[str] = None
    reason: Optional[str] = None
    quote_id: Optional[uuid.UUID] = None
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    created_at: datetime

