from typing import Annotated, Optional
import uuid
from datetime import date, datetime, timezone

from fastapi import APIRouter, Body, status, Depends

from app.api.deps import DB, CurrentActor, require_operation
from app.core.permissions import Actor, Operation
from app.schemas.billing import (
    InvoiceDetailResponse,
    InvoiceResponse,
    InvoiceVoidRequest,
    OverdueSweepResponse,
    PaymentCreate,
    PaymentResponse,
)
from app.services.finance_ledger_service import FinanceLedgerService


router = APIRouter(tags=["Invoices"])


@router.post("/sweep-overdue", response_model=OverdueSweepResponse)
async def sweep_overdue_invoices(
    db: DB,
    actor: Annotated[Actor, Depends(require_operation(Operation.SWEEP_OVERDUE))],
    as_of: Optional[date] = None,
):
    """
    Mark past-due invoices OVERDUE now instead of waiting for the daily job.
    Requires: FINANCE
    """
    today = as_of or datetime.now(timezone.utc).date()
    count = await FinanceLedgerService(db).sweep_overdue(today, actor=actor)
    return OverdueSweepResponse(as_of=today, marked_overdue=count)


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse)
async def get_invoice(
    invoice_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Get invoice with its payments."""
    service = FinanceLedgerService(db)
    invoice = await service.get_invoice(invoice_id)
    payments = await service.list_payments_for_invoice(invoice_id)
    response = InvoiceDetailResponse.model_validate(invoice)
    response.payments = [PaymentResponse.model_validate(p) for p in payments]
    return response


@router.post(
    "/{invoice_id}/payments",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    invoice_id: uuid.UUID,
    data: PaymentCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Record a payment against an invoice.
    Requires: FINANCE
    """
    invoice = await FinanceLedgerService(db).record_payment(
        invoice_id,
        data.amount,
        data.method,
        actor,
        reference=data.reference,
        payment_date=data.payment_date,
    )
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/void", response_model=InvoiceResponse)
async def void_invoice(
    invoice_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    data: Optional[InvoiceVoidRequest] = Body(None),
):
    """
    Void an invoice with no payments.
    Requires: FINANCE
    """
    reason = data.reason if data else None
    invoice = await FinanceLedgerService(db).void_invoice(invoice_id, actor, reason=reason)
    return InvoiceResponse.model_validate(invoice)
