"""
Finance Ledger Service.

Handles:
- Deposit / standard / final invoice issuance against an order
- Payment recording with amount_paid always re-summed from payment rows
- Overdue sweep (ISSUED / PARTIALLY_PAID past due date -> OVERDUE)
- Voiding unpaid invoices
- Ledger queries used by lifecycle guards (customer debt, paid totals)

All invoice amounts are tax-inclusive; net and tax are split at issue time.
"""
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, List, Union

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import commit_or_raise, persistence_errors
from app.core.exceptions import (
    AlreadyFullyInvoiced,
    GuardViolation,
    InvoiceVoid,
    NotFoundError,
    ValidationError,
)
from app.core.permissions import Actor, INVOICEABLE_STATUSES, Operation, PermissionChecker
from app.models.billing import Invoice, InvoiceStatus, InvoiceType, Payment, PaymentMethod
from app.models.quote import Quote, QuoteStatus
from app.services.audit_service import AuditService
from app.services.pricing_engine import (
    PRECISION_THRESHOLD,
    balance_due,
    is_paid,
    round_money,
    split_gross,
    to_decimal,
)


logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

# Invoices that still count towards the order value
_LIVE_INVOICE = Invoice.status != InvoiceStatus.VOID.value


class FinanceLedgerService:
    """Service for invoices and payments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def generate_invoice_number(self) -> str:
        """Generate unique invoice number: INV-YYYYMMDD-XXXX"""
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        prefix = f"INV-{today}-"

        stmt = select(func.count(Invoice.id)).where(
            Invoice.invoice_number.like(f"{prefix}%")
        )
        count = (await self.db.execute(stmt)).scalar() or 0

        return f"{prefix}{(count + 1):04d}"

    async def get_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = await self.db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def list_invoices_for_quote(self, quote_id: uuid.UUID) -> List[Invoice]:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.quote_id == quote_id)
            .order_by(Invoice.created_at)
        )
        return list(result.scalars().all())

    async def list_payments_for_invoice(self, invoice_id: uuid.UUID) -> List[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.invoice_id == invoice_id)
            .order_by(Payment.created_at)
        )
        return list(result.scalars().all())

    # ==================== Ledger queries ====================

    async def _sum(self, column, *conditions) -> Decimal:
        await self.db.flush()
        stmt = select(func.coalesce(func.sum(column), 0)).where(*conditions)
        value = (await self.db.execute(stmt)).scalar()
        return round_money(to_decimal(value or 0))

    async def invoiced_total_for_quote(self, quote_id: uuid.UUID) -> Decimal:
        """Sum of non-void invoice totals raised against the order."""
        return await self._sum(Invoice.total_amount, Invoice.quote_id == quote_id, _LIVE_INVOICE)

    async def total_paid_for_quote(self, quote_id: uuid.UUID) -> Decimal:
        return await self._sum(Invoice.amount_paid, Invoice.quote_id == quote_id, _LIVE_INVOICE)

    async def deposit_paid_for_quote(self, quote_id: uuid.UUID) -> Decimal:
        return await self._sum(
            Invoice.amount_paid,
            Invoice.quote_id == quote_id,
            Invoice.invoice_type == InvoiceType.DEPOSIT.value,
            _LIVE_INVOICE,
        )

    async def customer_outstanding_debt(self, customer_id: uuid.UUID) -> Decimal:
        """Sum of balance_due over the customer's non-void invoices."""
        return await self._sum(Invoice.balance_due, Invoice.customer_id == customer_id, _LIVE_INVOICE)

    # ==================== Invoicing ====================

    @persistence_errors("issue invoice")
    async def issue_invoice(
        self,
        quote_id: uuid.UUID,
        invoice_type: Union[str, InvoiceType],
        actor: Actor,
        percentage: Optional[Decimal] = None,
        payment_terms_days: Optional[int] = None,
        notes: Optional[str] = None,
        issue_date: Optional[date] = None,
    ) -> Invoice:
        """
        Issue an invoice against an order.

        DEPOSIT and STANDARD bill percentage% of the grand total, capped at the
        part not yet invoiced. FINAL bills whatever remains.

        Raises:
            PermissionDenied: actor may not issue invoices
            ValidationError: unknown or unsupported type, bad percentage or terms
            GuardViolation: order is not in an invoiceable status
            AlreadyFullyInvoiced: nothing (more than a cent) left to bill
        """
        PermissionChecker(actor).require(Operation.ISSUE_INVOICE)

        try:
            invoice_type = InvoiceType(invoice_type)
        except ValueError:
            raise ValidationError(f"Unknown invoice type: {invoice_type}")
        if invoice_type == InvoiceType.CREDIT_NOTE:
            raise ValidationError("Credit notes cannot be issued from an order")

        quote = await self.db.get(Quote, quote_id)
        if not quote:
            raise NotFoundError("Quote", quote_id)
        if QuoteStatus(quote.status) not in INVOICEABLE_STATUSES:
            raise GuardViolation(
                f"A quote in status {quote.status} cannot be invoiced",
                {"quote_id": str(quote_id), "status": quote.status},
            )

        grand = to_decimal(quote.grand_total)
        remainder = max(_ZERO, grand - await self.invoiced_total_for_quote(quote_id))

        if invoice_type == InvoiceType.FINAL:
            amount = remainder
        else:
            if percentage is None:
                percentage = (
                    settings.DEFAULT_DEPOSIT_PERCENT if invoice_type == InvoiceType.DEPOSIT else 100
                )
            pct = to_decimal(percentage)
            if pct <= 0 or pct > 100:
                raise ValidationError(
                    "Invoice percentage must be greater than 0 and at most 100",
                    {"percentage": str(pct)},
                )
            amount = min(round_money(grand * pct / 100), remainder)

        amount = round_money(amount)
        if amount <= PRECISION_THRESHOLD:
            raise AlreadyFullyInvoiced(quote_id)

        terms = settings.DEFAULT_PAYMENT_TERMS_DAYS if payment_terms_days is None else payment_terms_days
        if terms < 0:
            raise ValidationError("Payment terms cannot be negative", {"payment_terms_days": terms})

        issued_on = issue_date or datetime.now(timezone.utc).date()
        net, tax_amount = split_gross(amount)

        invoice = Invoice(
            invoice_number=await self.generate_invoice_number(),
            quote_id=quote.id,
            order_number=quote.order_number,
            customer_id=quote.customer_id,
            customer_name=quote.customer_name or "",
            invoice_type=invoice_type.value,
            status=InvoiceStatus.ISSUED.value,
            issue_date=issued_on,
            due_date=issued_on + timedelta(days=terms),
            net_amount=net,
            tax_amount=tax_amount,
            total_amount=amount,
            amount_paid=_ZERO,
            balance_due=amount,
            notes=notes,
            created_by=actor.actor_id,
        )
        self.db.add(invoice)
        await commit_or_raise(self.db)

        logger.info(
            f"Issued {invoice_type.value} invoice {invoice.invoice_number} for {amount} "
            f"on order {quote.order_number}"
        )
        await AuditService(self.db).log_invoice_issued(invoice, actor)
        return invoice

    @persistence_errors("void invoice")
    async def void_invoice(
        self,
        invoice_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Invoice:
        """Void an invoice that has no payments recorded against it."""
        PermissionChecker(actor).require(Operation.VOID_INVOICE)

        invoice = await self.get_invoice(invoice_id)
        if invoice.is_void:
            raise InvoiceVoid(invoice_id)

        payment_count = (await self.db.execute(
            select(func.count(Payment.id)).where(Payment.invoice_id == invoice_id)
        )).scalar() or 0
        if payment_count:
            raise GuardViolation(
                "Invoices with recorded payments cannot be voided",
                {"invoice_id": str(invoice_id), "payments": payment_count},
            )

        old_status = invoice.status
        invoice.status = InvoiceStatus.VOID.value
        invoice.balance_due = _ZERO
        await commit_or_raise(self.db)

        logger.info(f"Voided invoice {invoice.invoice_number} ({reason or 'no reason given'})")
        await AuditService(self.db).log_invoice_voided(invoice, old_status, actor, reason)
        return invoice

    # ==================== Payments ====================

    @persistence_errors("record payment")
    async def record_payment(
        self,
        invoice_id: uuid.UUID,
        amount: Decimal,
        method: Union[str, PaymentMethod],
        actor: Actor,
        reference: Optional[str] = None,
        payment_date: Optional[date] = None,
    ) -> Invoice:
        """
        Record a payment and reconcile the invoice.

        amount_paid is re-summed from every payment row of the invoice, so
        concurrent payments cannot lose an update.

        Raises:
            PermissionDenied: actor may not record payments
            ValidationError: non-positive amount or unknown method
            InvoiceVoid: the invoice has been voided
        """
        PermissionChecker(actor).require(Operation.RECORD_PAYMENT)

        amount = round_money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", {"amount": str(amount)})
        try:
            method = PaymentMethod(method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {method}")

        invoice = await self.get_invoice(invoice_id)
        if invoice.is_void:
            raise InvoiceVoid(invoice_id)

        payment = Payment(
            invoice_id=invoice.id,
            quote_id=invoice.quote_id,
            amount=amount,
            method=method.value,
            reference=reference,
            payment_date=payment_date or datetime.now(timezone.utc).date(),
            recorded_by=actor.actor_id,
        )
        self.db.add(payment)

        paid = await self._sum(Payment.amount, Payment.invoice_id == invoice.id)
        total = to_decimal(invoice.total_amount)
        invoice.amount_paid = paid
        invoice.balance_due = round_money(balance_due(total, paid))
        invoice.status = (
            InvoiceStatus.PAID.value if is_paid(total, paid) else InvoiceStatus.PARTIALLY_PAID.value
        )
        await commit_or_raise(self.db)

        logger.info(
            f"Payment of {amount} ({method.value}) on invoice {invoice.invoice_number}: "
            f"paid {paid}, balance {invoice.balance_due}, status {invoice.status}"
        )
        await AuditService(self.db).log_payment_recorded(payment, invoice, actor)
        return invoice

    # ==================== Overdue ====================

    @persistence_errors("sweep overdue invoices")
    async def sweep_overdue(self, today: Optional[date] = None, actor: Optional[Actor] = None) -> int:
        """
        Mark ISSUED / PARTIALLY_PAID invoices past their due date as OVERDUE.

        Idempotent: already-overdue, paid and void invoices are untouched.
        Returns the number of invoices changed.
        """
        if actor is not None:
            PermissionChecker(actor).require(Operation.SWEEP_OVERDUE)

        today = today or datetime.now(timezone.utc).date()
        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.status.in_([InvoiceStatus.ISSUED.value, InvoiceStatus.PARTIALLY_PAID.value]))
            .where(Invoice.due_date < today)
            .values(status=InvoiceStatus.OVERDUE.value)
            .execution_options(synchronize_session="fetch")
        )
        await commit_or_raise(self.db)

        count = result.rowcount or 0
        if count:
            logger.info(f"Marked {count} invoice(s) overdue as of {today}")
        return count
