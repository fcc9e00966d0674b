from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid

from app.models.quote import QuoteAction
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


# ==================== LINE ITEM SCHEMAS ====================

class LineItemCreate(BaseCreateSchema):
    """
    Line item creation schema.

    Values are not range-checked here: negatives are clamped to 0 and the
    discount to 100% when the line is priced. Unset price, wastage and depth
    are copied from the selected product.
    """
    product_id: Optional[uuid.UUID] = None
    product_name: Optional[str] = None
    width: Decimal = Decimal("0")
    height: Decimal = Decimal("0")
    pieces: int = 1
    depth: Optional[Decimal] = None
    price_per_sqm: Optional[Decimal] = None
    wastage_percent: Optional[Decimal] = None
    discount_percent: Decimal = Decimal("0")


class LineItemUpdate(BaseUpdateSchema):
    """Line item partial update. Selecting a product copies its name, price, wastage and depth."""
    product_id: Optional[uuid.UUID] = None
    product_name: Optional[str] = None
    width: Optional[Decimal] = None
    height: Optional[Decimal] = None
    pieces: Optional[int] = None
    depth: Optional[Decimal] = None
    price_per_sqm: Optional[Decimal] = None
    wastage_percent: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None


class ExtractedLineItem(BaseCreateSchema):
    """Line proposed by the document-extraction service (still editable)."""
    product_name_guess: Optional[str] = None
    width: Decimal = Decimal("0")
    height: Decimal = Decimal("0")
    pieces: Optional[int] = None


class QuoteItemResponse(BaseResponseSchema):
    """Line item response schema."""
    id: uuid.UUID
    product_id: Optional[uuid.UUID] = None
    product_name: str
    width: Decimal
    height: Decimal
    pieces: int
    depth: Decimal
    price_per_sqm: Decimal
    wastage_percent: Decimal
    discount_percent: Decimal
    total_sqm: Decimal
    raw_price: Decimal
    final_price: Decimal
    is_completed: bool
    position: int


# ==================== QUOTE SCHEMAS ====================

class QuoteCreate(BaseCreateSchema):
    """Quote creation schema."""
    customer_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    items: List[LineItemCreate] = []


class QuoteHeaderUpdate(BaseUpdateSchema):
    """Quote header update schema."""
    customer_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    quote_date: Optional[date] = None


class QuoteResponse(BaseResponseSchema):
    """Quote response schema."""
    id: uuid.UUID
    quote_number: str
    order_number: Optional[str] = None
    customer_id: Optional[uuid.UUID] = None
    customer_name: Optional[str] = None
    sales_rep_id: str
    sales_rep_name: str
    quote_date: date
    status: str
    notes: Optional[str] = None
    discount_amount: Decimal
    sub_total: Decimal
    tax: Decimal
    grand_total: Decimal
    stock_reserved: bool
    stock_deducted: bool
    completion_date: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    items: List[QuoteItemResponse] = []
    created_at: datetime
    updated_at: datetime


class QuoteBrief(BaseResponseSchema):
    """Brief quote info for lists."""
    id: uuid.UUID
    quote_number: str
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    status: str
    grand_total: Decimal
    quote_date: date


class EditOutcomeResponse(BaseModel):
    """Result of an edit. applied=False means the quote is not editable by this actor."""
    applied: bool
    reason: Optional[str] = None
    quote: QuoteResponse


# ==================== WORKFLOW SCHEMAS ====================

class TransitionRequest(BaseModel):
    """Lifecycle transition request."""
    action: QuoteAction
    comment: Optional[str] = Field(None, max_length=2000)


class ApprovalLogResponse(BaseResponseSchema):
    """Approval history entry."""
    id: uuid.UUID
    actor_id: str
    actor_name: str
    actor_role: str
    action: str
    from_status: str
    to_status: str
    comment: Optional[str] = None
    created_at: datetime


class AllowedActionsResponse(BaseModel):
    """What the current actor may do with a quote."""
    status: str
    can_edit: bool
    actions: List[QuoteAction]
