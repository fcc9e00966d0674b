from typing import Optional, List
import uuid

from fastapi import APIRouter, status, Query, Body

from app.api.deps import DB, CurrentActor
from app.core.permissions import PermissionChecker
from app.models.quote import QuoteStatus
from app.schemas.audit_log import AuditLogResponse
from app.schemas.billing import InvoiceCreate, InvoiceResponse, QuoteLedgerSummary
from app.schemas.quote import (
    AllowedActionsResponse,
    ApprovalLogResponse,
    EditOutcomeResponse,
    ExtractedLineItem,
    LineItemCreate,
    LineItemUpdate,
    QuoteBrief,
    QuoteCreate,
    QuoteHeaderUpdate,
    QuoteItemResponse,
    QuoteResponse,
    TransitionRequest,
)
from app.services.audit_service import AuditService
from app.services.finance_ledger_service import FinanceLedgerService
from app.services.order_lifecycle_service import EditOutcome, OrderLifecycleService
from app.services.pricing_engine import balance_due


router = APIRouter(tags=["Quotes"])


def _build_edit_response(outcome: EditOutcome) -> EditOutcomeResponse:
    return EditOutcomeResponse(
        applied=outcome.applied,
        reason=outcome.reason,
        quote=QuoteResponse.model_validate(outcome.quote),
    )


# ==================== QUOTES ====================

@router.post(
    "",
    response_model=QuoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_quote(
    data: QuoteCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Create a DRAFT quote.
    Requires: SALES_REP or MANAGER
    """
    service = OrderLifecycleService(db)
    quote = await service.create_quote(
        actor,
        customer_id=data.customer_id,
        notes=data.notes,
        items=data.items,
    )
    return QuoteResponse.model_validate(quote)


@router.get("", response_model=List[QuoteBrief])
async def list_quotes(
    db: DB,
    actor: CurrentActor,
    quote_status: Optional[QuoteStatus] = Query(None, alias="status"),
    customer_id: Optional[uuid.UUID] = None,
    limit: int = Query(100, ge=1, le=500),
):
    """List quotes, newest first."""
    service = OrderLifecycleService(db)
    quotes = await service.list_quotes(
        status=quote_status.value if quote_status else None,
        customer_id=customer_id,
        limit=limit,
    )
    return [QuoteBrief.model_validate(q) for q in quotes]


@router.get("/{quote_id}", response_model=QuoteResponse)
async def get_quote(
    quote_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Get quote with line items."""
    quote = await OrderLifecycleService(db).get_quote(quote_id)
    return QuoteResponse.model_validate(quote)


@router.patch("/{quote_id}", response_model=EditOutcomeResponse)
async def update_quote_header(
    quote_id: uuid.UUID,
    data: QuoteHeaderUpdate,
    db: DB,
    actor: CurrentActor,
):
    """
    Update customer, notes, header discount or quote date.
    A quote that is not editable by the actor is returned unchanged with applied=false.
    """
    outcome = await OrderLifecycleService(db).update_header(quote_id, data, actor)
    return _build_edit_response(outcome)


# ==================== LINE ITEMS ====================

@router.put("/{quote_id}/items", response_model=EditOutcomeResponse)
async def replace_line_items(
    quote_id: uuid.UUID,
    items: List[LineItemCreate],
    db: DB,
    actor: CurrentActor,
):
    """Replace all line items."""
    outcome = await OrderLifecycleService(db).replace_line_items(quote_id, items, actor)
    return _build_edit_response(outcome)


@router.post("/{quote_id}/items", response_model=EditOutcomeResponse)
async def add_line_item(
    quote_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    data: Optional[LineItemCreate] = Body(None),
):
    """Add a line item (blank when no body is sent)."""
    outcome = await OrderLifecycleService(db).add_line_item(quote_id, actor, data)
    return _build_edit_response(outcome)


@router.patch("/{quote_id}/items/{item_id}", response_model=EditOutcomeResponse)
async def update_line_item(
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
    data: LineItemUpdate,
    db: DB,
    actor: CurrentActor,
):
    outcome = await OrderLifecycleService(db).update_line_item(quote_id, item_id, data, actor)
    return _build_edit_response(outcome)


@router.delete("/{quote_id}/items/{item_id}", response_model=EditOutcomeResponse)
async def remove_line_item(
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    outcome = await OrderLifecycleService(db).remove_line_item(quote_id, item_id, actor)
    return _build_edit_response(outcome)


@router.post("/{quote_id}/items/{item_id}/duplicate", response_model=EditOutcomeResponse)
async def duplicate_line_item(
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    outcome = await OrderLifecycleService(db).duplicate_line_item(quote_id, item_id, actor)
    return _build_edit_response(outcome)


@router.post("/{quote_id}/items/{item_id}/toggle-completed", response_model=QuoteItemResponse)
async def toggle_item_completed(
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """
    Tick / untick a line on the factory checklist.
    Requires: FACTORY or MANAGER, order ACCEPTED or IN_PRODUCTION
    """
    item = await OrderLifecycleService(db).toggle_item_completed(quote_id, item_id, actor)
    return QuoteItemResponse.model_validate(item)


@router.post("/{quote_id}/extracted-items", response_model=EditOutcomeResponse)
async def merge_extracted_items(
    quote_id: uuid.UUID,
    items: List[ExtractedLineItem],
    db: DB,
    actor: CurrentActor,
):
    """Append lines proposed by the document-extraction service."""
    outcome = await OrderLifecycleService(db).merge_extracted_items(quote_id, items, actor)
    return _build_edit_response(outcome)


# ==================== WORKFLOW ====================

@router.post("/{quote_id}/transitions", response_model=QuoteResponse)
async def transition_quote(
    quote_id: uuid.UUID,
    data: TransitionRequest,
    db: DB,
    actor: CurrentActor,
):
    """
    Apply a lifecycle action (SUBMIT, APPROVE, REJECT, ORDER, ACCEPT,
    START_WORK, READY, COMPLETE, CANCEL).

    Guard failures return 409 with the reason in `details`.
    """
    quote = await OrderLifecycleService(db).transition(quote_id, data.action, actor, data.comment)
    return QuoteResponse.model_validate(quote)


@router.get("/{quote_id}/allowed-actions", response_model=AllowedActionsResponse)
async def get_allowed_actions(
    quote_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    service = OrderLifecycleService(db)
    quote = await service.get_quote(quote_id)
    checker = PermissionChecker(actor)
    return AllowedActionsResponse(
        status=quote.status,
        can_edit=checker.can_edit(quote.status),
        actions=checker.allowed_actions(quote.status),
    )


@router.get("/{quote_id}/history", response_model=List[ApprovalLogResponse])
async def get_quote_history(
    quote_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Approval history, oldest first."""
    history = await OrderLifecycleService(db).get_history(quote_id)
    return [ApprovalLogResponse.model_validate(entry) for entry in history]


@router.get("/{quote_id}/audit", response_model=List[AuditLogResponse])
async def get_quote_audit(
    quote_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    await OrderLifecycleService(db).get_quote(quote_id)
    entries = await AuditService(db).list_for_entity("QUOTE", quote_id)
    return [AuditLogResponse.model_validate(entry) for entry in entries]


# ==================== INVOICES ====================

@router.post(
    "/{quote_id}/invoices",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def issue_invoice(
    quote_id: uuid.UUID,
    data: InvoiceCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Issue a DEPOSIT, STANDARD or FINAL invoice against an order.
    Requires: FINANCE or MANAGER
    """
    invoice = await FinanceLedgerService(db).issue_invoice(
        quote_id,
        data.invoice_type,
        actor,
        percentage=data.percentage,
        payment_terms_days=data.payment_terms_days,
        notes=data.notes,
        issue_date=data.issue_date,
    )
    return InvoiceResponse.model_validate(invoice)


@router.get("/{quote_id}/invoices", response_model=QuoteLedgerSummary)
async def get_quote_ledger(
    quote_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Invoices and paid totals of an order."""
    quote = await OrderLifecycleService(db).get_quote(quote_id)
    ledger = FinanceLedgerService(db)
    invoices = await ledger.list_invoices_for_quote(quote_id)
    total_paid = await ledger.total_paid_for_quote(quote_id)
    return QuoteLedgerSummary(
        quote_id=quote.id,
        grand_total=quote.grand_total,
        invoiced_total=await ledger.invoiced_total_for_quote(quote_id),
        total_paid=total_paid,
        deposit_paid=await ledger.deposit_paid_for_quote(quote_id),
        balance_due=balance_due(quote.grand_total, total_paid),
        invoices=[InvoiceResponse.model_validate(i) for i in invoices],
    )
