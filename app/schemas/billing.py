from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid

from app.models.billing import InvoiceType, PaymentMethod
from app.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== INVOICE SCHEMAS ====================

class InvoiceCreate(BaseCreateSchema):
    """
    Invoice issuance schema.

    percentage applies to DEPOSIT and STANDARD invoices (defaults: deposit
    50%, standard 100%); FINAL always bills the remaining balance.
    """
    invoice_type: InvoiceType
    percentage: Optional[Decimal] = Field(None, gt=0, le=100)
    payment_terms_days: Optional[int] = Field(None, ge=0)
    issue_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceVoidRequest(BaseModel):
    reason: Optional[str] = None


class InvoiceResponse(BaseResponseSchema):
    """Invoice response schema."""
    id: uuid.UUID
    invoice_number: str
    quote_id: uuid.UUID
    order_number: Optional[str] = None
    customer_id: uuid.UUID
    customer_name: str
    invoice_type: str
    status: str
    issue_date: date
    due_date: date
    net_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    notes: Optional[str] = None
    created_by: str
    created_at: datetime


# ==================== PAYMENT SCHEMAS ====================

class PaymentCreate(BaseCreateSchema):
    """Payment recording schema."""
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    reference: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[date] = None


class PaymentResponse(BaseResponseSchema):
    """Payment response schema."""
    id: uuid.UUID
    invoice_id: uuid.UUID
    quote_id: uuid.UUID
    amount: Decimal
    method: str
    reference: Optional[str] = None
    payment_date: date
    recorded_by: str
    created_at: datetime


class InvoiceDetailResponse(InvoiceResponse):
    payments: List[PaymentResponse] = []


# ==================== LEDGER SUMMARY ====================

class QuoteLedgerSummary(BaseModel):
    """Invoiced / paid position of one order."""
    quote_id: uuid.UUID
    grand_total: Decimal
    invoiced_total: Decimal
    total_paid: Decimal
    deposit_paid: Decimal
    balance_due: Decimal
    invoices: List[InvoiceResponse] = []


class OverdueSweepResponse(BaseModel):
    as_of: date
    marked_overdue: int
