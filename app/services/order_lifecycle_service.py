"""
Order Lifecycle Service.

Owns the quote -> order aggregate:
- Quote building (header, line items, extracted-item merge) with totals
  recomputed on every change
- The lifecycle state machine (SUBMIT ... COMPLETE, REJECT, CANCEL) driven by
  the permission tables in app/core/permissions.py
- Guards evaluated against customer, invoice and product state, and the
  side effects (order number, stock reservation / deduction / release)

A transition runs in one database transaction together with its approval
log row. A failed guard rolls the transaction back and raises; nothing is
left half-applied. The audit entry is written after the commit.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.database import commit_or_raise, persistence_errors
from app.core.exceptions import (
    BalanceOutstanding,
    CreditHold,
    CreditLimitExceeded,
    DepositRequired,
    EngineError,
    GuardViolation,
    NotFoundError,
    ValidationError,
)
from app.core.permissions import (
    Actor,
    COMMENT_REQUIRED,
    Operation,
    PermissionChecker,
    PRODUCTION_STATUSES,
)
from app.models.customer import Customer
from app.models.product import Product
from app.models.quote import ApprovalLog, Quote, QuoteAction, QuoteItem, QuoteStatus
from app.schemas.quote import ExtractedLineItem, LineItemCreate, LineItemUpdate, QuoteHeaderUpdate
from app.services.audit_service import AuditService
from app.services.finance_ledger_service import FinanceLedgerService
from app.services.inventory_reservation_service import InventoryReservationService, aggregate_items
from app.services.pricing_engine import (
    DEFAULT_WASTAGE_PERCENT,
    PRECISION_THRESHOLD,
    balance_due,
    clamp_line_inputs,
    is_paid,
    price_line,
    quote_totals,
    round_money,
    to_decimal,
)
from app.services.settings_service import SettingsService


logger = logging.getLogger(__name__)

DEFAULT_DEPTH = Decimal("0.03")


@dataclass
class EditOutcome:
    """
    Result of a quote edit.

    applied=False is a no-op rejection (quote not editable by this actor in
    its current status); the quote is returned unchanged.
    """
    applied: bool
    quote: Quote
    reason: Optional[str] = None


class OrderLifecycleService:
    """Service for building quotes and moving them through the order lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.inventory = InventoryReservationService(db)
        self.ledger = FinanceLedgerService(db)
        self.audit = AuditService(db)

    # ==================== Numbering ====================

    async def generate_quote_number(self) -> str:
        """Generate quote number: Q-<count + offset>"""
        count = (await self.db.execute(select(func.count(Quote.id)))).scalar() or 0
        return f"Q-{count + settings.QUOTE_NUMBER_OFFSET}"

    async def generate_order_number(self) -> str:
        """Generate unique order number: ORD-YYYYMMDD-XXXX"""
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        prefix = f"ORD-{today}-"

        stmt = select(func.count(Quote.id)).where(
            Quote.order_number.like(f"{prefix}%")
        )
        count = (await self.db.execute(stmt)).scalar() or 0

        return f"{prefix}{(count + 1):04d}"

    # ==================== Loading ====================

    async def get_quote(self, quote_id: uuid.UUID) -> Quote:
        """Get quote with line items, always re-read from the database."""
        result = await self.db.execute(
            select(Quote)
            .options(selectinload(Quote.items))
            .where(Quote.id == quote_id)
            .execution_options(populate_existing=True)
        )
        quote = result.scalar_one_or_none()
        if not quote:
            raise NotFoundError("Quote", quote_id)
        return quote

    async def list_quotes(
        self,
        status: Optional[str] = None,
        customer_id: Optional[uuid.UUID] = None,
        limit: int = 100,
    ) -> List[Quote]:
        query = select(Quote).order_by(Quote.created_at.desc()).limit(limit)
        if status:
            query = query.where(Quote.status == status)
        if customer_id:
            query = query.where(Quote.customer_id == customer_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_history(self, quote_id: uuid.UUID) -> List[ApprovalLog]:
        """Approval history of a quote, oldest first."""
        await self.get_quote(quote_id)
        result = await self.db.execute(
            select(ApprovalLog)
            .where(ApprovalLog.quote_id == quote_id)
            .order_by(ApprovalLog.created_at)
        )
        return list(result.scalars().all())

    async def _get_product(self, product_id: uuid.UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    async def _get_customer(self, customer_id: uuid.UUID) -> Customer:
        customer = await self.db.get(Customer, customer_id)
        if not customer:
            raise NotFoundError("Customer", customer_id)
        return customer

    # ==================== Pricing helpers ====================

    def _reprice_item(self, item: QuoteItem) -> None:
        inputs = clamp_line_inputs(
            width=item.width,
            height=item.height,
            pieces=item.pieces,
            price_per_sqm=item.price_per_sqm,
            wastage_percent=item.wastage_percent,
            discount_percent=item.discount_percent,
        )
        item.width = inputs.width
        item.height = inputs.height
        item.pieces = inputs.pieces
        item.price_per_sqm = inputs.price_per_sqm
        item.wastage_percent = inputs.wastage_percent
        item.discount_percent = inputs.discount_percent
        item.depth = max(Decimal("0"), to_decimal(item.depth))

        pricing = price_line(inputs)
        item.total_sqm = pricing.total_sqm
        item.raw_price = pricing.raw_price
        item.final_price = pricing.final_price

    def _recompute_totals(self, quote: Quote) -> None:
        quote.discount_amount = round_money(max(Decimal("0"), to_decimal(quote.discount_amount)))
        totals = quote_totals([item.final_price for item in quote.items], quote.discount_amount)
        quote.sub_total = totals.sub_total
        quote.tax = totals.tax
        quote.grand_total = totals.grand_total

    def _new_item(self, position: int) -> QuoteItem:
        return QuoteItem(
            product_id=None,
            product_name="",
            width=Decimal("0"),
            height=Decimal("0"),
            pieces=1,
            depth=DEFAULT_DEPTH,
            price_per_sqm=Decimal("0"),
            wastage_percent=Decimal("0"),
            discount_percent=Decimal("0"),
            is_completed=False,
            position=position,
        )

    def _next_position(self, quote: Quote) -> int:
        return max((item.position for item in quote.items), default=-1) + 1

    async def _apply_line_fields(self, item: QuoteItem, fields: Dict[str, Any]) -> None:
        """Apply submitted fields to a line; a product selection is copied first so explicit values win."""
        if "product_id" in fields:
            product_id = fields.pop("product_id")
            if product_id is None:
                item.product_id = None
            else:
                product = await self._get_product(product_id)
                item.product_id = product.id
                item.product_name = product.name
                item.price_per_sqm = product.price_per_sqm
                item.wastage_percent = product.default_wastage_percent
                if product.thickness:
                    item.depth = product.default_depth

        for field, value in fields.items():
            if value is not None:
                setattr(item, field, value)

        self._reprice_item(item)

    # ==================== Editing ====================

    def _edit_refusal(self, quote: Quote, actor: Actor) -> Optional[str]:
        if PermissionChecker(actor).can_edit(quote.status):
            return None
        return f"Quote {quote.quote_number} is not editable by {actor.role.value} in status {quote.status}"

    async def _save_edit(self, quote: Quote, actor: Actor, change: str) -> EditOutcome:
        self._recompute_totals(quote)
        await commit_or_raise(self.db)
        logger.info(f"Quote {quote.quote_number} edited by {actor.actor_id}: {change}")
        return EditOutcome(applied=True, quote=quote)

    async def _load_for_edit(self, quote_id: uuid.UUID, actor: Actor):
        quote = await self.get_quote(quote_id)
        reason = self._edit_refusal(quote, actor)
        if reason:
            logger.info(reason)
        return quote, reason

    def _find_item(self, quote: Quote, item_id: uuid.UUID) -> QuoteItem:
        for item in quote.items:
            if item.id == item_id:
                return item
        raise NotFoundError("QuoteItem", item_id)

    @persistence_errors("create quote")
    async def create_quote(
        self,
        actor: Actor,
        customer_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        items: Optional[List[LineItemCreate]] = None,
    ) -> Quote:
        """Create a DRAFT quote owned by the acting sales rep."""
        PermissionChecker(actor).require(Operation.CREATE_QUOTE)

        quote = Quote(
            quote_number=await self.generate_quote_number(),
            sales_rep_id=actor.actor_id,
            sales_rep_name=actor.actor_name,
            status=QuoteStatus.DRAFT.value,
            notes=notes,
            discount_amount=Decimal("0"),
            stock_reserved=False,
            stock_deducted=False,
            items=[],
        )
        if customer_id:
            customer = await self._get_customer(customer_id)
            quote.customer_id = customer.id
            quote.customer_name = customer.display_name

        for position, data in enumerate(items or []):
            item = self._new_item(position)
            await self._apply_line_fields(item, data.model_dump(exclude_unset=True))
            quote.items.append(item)

        self._recompute_totals(quote)
        self.db.add(quote)
        await commit_or_raise(self.db)

        logger.info(f"Created quote {quote.quote_number} for {actor.actor_id}")
        await self.audit.log(
            action="CREATE",
            entity_type="QUOTE",
            entity_id=quote.id,
            actor=actor,
            new_values={"quote_number": quote.quote_number, "grand_total": quote.grand_total},
        )
        return quote

    @persistence_errors("update quote")
    async def update_header(self, quote_id: uuid.UUID, data: QuoteHeaderUpdate, actor: Actor) -> EditOutcome:
        quote, reason = await self._load_for_edit(quote_id, actor)
        if reason:
            return EditOutcome(applied=False, quote=quote, reason=reason)

        fields = data.model_dump(exclude_unset=True)
        if fields.get("customer_id"):
            customer = await self._get_customer(fields["customer_id"])
            quote.customer_id = customer.id
            quote.customer_name = customer.display_name
        if "notes" in fields:
            quote.notes = fields["notes"]
        if fields.get("discount_amount") is not None:
            quote.discount_amount = fields["discount_amount"]
        if fields.get("quote_date") is not None:
            quote.quote_date = fields["quote_date"]

        return await self._save_edit(quote, actor, f"header {sorted(fields)}")

    @persistence_errors("add line item")
    async def add_line_item(
        self,
        quote_id: uuid.UUID,
        actor: Actor,
        data: Optional[LineItemCreate] = None,
    ) -> EditOutcome:
        quote, reason = await self._load_for_edit(quote_id, actor)
        if reason:
            return EditOutcome(applied=False, quote=quote, reason=reason)

        item = self._new_item(self._next_position(quote))
        if data is not None:
            await self._apply_line_fields(item, data.model_dump(exclude_unset=True))
        else:
            self._reprice_item(item)
        quote.items.append(item)
        return await self._save_edit(quote, actor, "line added")

    @persistence_errors("update line item")
    async def update_line_item(
        self,
        quote_id: uuid.UUID,
        item_id: uuid.UUID,
        data: LineItemUpdate,
        actor: Actor,
    ) -> EditOutcome:
        quote, reason = await self._load_for_edit(quote_id, actor)
        if reason:
            return EditOutcome(applied=False, quote=quote, reason=reason)

        item = self._find_item(quote, item_id)
        await self._apply_line_fields(item, data.model_dump(exclude_unset=True))
        return await self._save_edit(quote, actor, f"line {item_id} updated")

    @persistence_errors("remove line item")
    async def remove_line_item(self, quote_id: uuid.UUID, item_id: uuid.UUID, actor: Actor) -> EditOutcome:
        quote, reason = await self._load_for_edit(quote_id, actor)
        if reason:
            return EditOutcome(applied=False, quote=quote, reason=reason)

        item = self._find_item(quote, item_id)
        quote.items.remove(item)
        return await self._save_edit(quote, actor, f"line {item_id} removed")

    @persistence_errors("duplicate line item")
    async def duplicate_line_item(self, quote_id: uuid.UUID, item_id: uuid.UUID, actor: Actor) -> EditOutcome:
        quote, reason = await self._load_for_edit(quote_id, actor)
        if reason:
            return EditOutcome(applied=False, quote=quote, reason=reason)

        source = self._find_item(quote, item_id)
        copy = self._new_item(self._next_position(quote))
        for field in (
            "product_id", "product_name", "width", "height", "pieces", "depth",
            "price_per_sqm", "wastage_percent", "discount_percent",
        ):
            setattr(copy, field, getattr(source, field))
        self._reprice_item(copy)
        quote.items.append(copy)
        return await self._save_edit(quote, actor, f"line {item_id} duplicated")

    @persistence_errors("replace line items")
    async def replace_line_items(
        self,
        quote_id: uuid.UUID,
        items: List[LineItemCreate],
        actor: Actor,
    ) -> EditOutcome:
        """Replace every line of the quote with the given list."""
        quote, reason = await self._load_for_edit(quote_id, actor)
        if reason:
            return EditOutcome(applied=False, quote=quote, reason=reason)

        new_items = []
        for position, data in enumerate(items):
            item = self._new_item(position)
            await self._apply_line_fields(item, data.model_dump(exclude_unset=True))
            new_items.append(item)
        quote.items = new_items
        return await self._save_edit(quote, actor, f"{len(new_items)} lines replaced")

    @persistence_errors("merge extracted items")
    async def merge_extracted_items(
        self,
        quote_id: uuid.UUID,
        items: List[ExtractedLineItem],
        actor: Actor,
    ) -> EditOutcome:
        """
        Append lines proposed by document extraction.

        The product is matched by case-insensitive name containment; unmatched
        lines keep the guessed name and no product, and must be fixed before
        the quote can be submitted.
        """
        quote, reason = await self._load_for_edit(quote_id, actor)
        if reason:
            return EditOutcome(applied=False, quote=quote, reason=reason)

        products = list((await self.db.execute(select(Product).order_by(Product.name))).scalars().all())
        position = self._next_position(quote)

        for extracted in items:
            guess = (extracted.product_name_guess or "").strip()
            matched = None
            if guess:
                matched = next((p for p in products if guess.lower() in p.name.lower()), None)

            item = self._new_item(position)
            position += 1
            item.width = extracted.width
            item.height = extracted.height
            item.pieces = extracted.pieces or 1
            if matched:
                item.product_id = matched.id
                item.product_name = matched.name
                item.price_per_sqm = matched.price_per_sqm
                item.wastage_percent = matched.default_wastage_percent
                item.depth = matched.default_depth
            else:
                item.product_name = guess or "Extracted"
                item.wastage_percent = DEFAULT_WASTAGE_PERCENT
            self._reprice_item(item)
            quote.items.append(item)

        return await self._save_edit(quote, actor, f"{len(items)} extracted lines merged")

    @persistence_errors("update line item")
    async def toggle_item_completed(self, quote_id: uuid.UUID, item_id: uuid.UUID, actor: Actor) -> QuoteItem:
        """Flip a line's factory checklist flag while the order is in production."""
        PermissionChecker(actor).require(Operation.TOGGLE_ITEM_COMPLETED)

        quote = await self.get_quote(quote_id)
        if QuoteStatus(quote.status) not in PRODUCTION_STATUSES:
            raise GuardViolation(
                f"Checklist can only be changed while the order is in production (status {quote.status})",
                {"status": quote.status},
            )
        item = self._find_item(quote, item_id)
        item.is_completed = not item.is_completed
        await commit_or_raise(self.db)
        return item

    # ==================== Workflow ====================

    async def allowed_actions(self, quote_id: uuid.UUID, actor: Actor) -> List[QuoteAction]:
        quote = await self.get_quote(quote_id)
        return PermissionChecker(actor).allowed_actions(quote.status)

    @persistence_errors("apply quote transition")
    async def transition(
        self,
        quote_id: uuid.UUID,
        action: Union[str, QuoteAction],
        actor: Actor,
        comment: Optional[str] = None,
    ) -> Quote:
        """
        Apply a lifecycle action to a quote.

        Raises:
            IllegalTransition: action not defined from the current status
            PermissionDenied: actor's role may not perform the action
            ValidationError: required comment missing
            GuardViolation (subclasses): a business precondition failed
            ConcurrencyConflict / PersistenceFailure: commit failed
        """
        try:
            action = QuoteAction(action)
        except ValueError:
            raise ValidationError(f"Unknown action: {action}")

        quote = await self.get_quote(quote_id)
        from_status = quote.status
        to_status = PermissionChecker(actor).check_transition(action, from_status)

        comment = (comment or "").strip() or None
        if action in COMMENT_REQUIRED and not comment:
            raise ValidationError(f"A comment is required to {action.value}", {"action": action.value})

        try:
            await self._run_guards_and_effects(quote, action, actor, comment)
        except EngineError as e:
            await self.db.rollback()
            logger.info(f"{action.value} refused for quote {quote_id}: {e.message}")
            raise

        quote.status = to_status.value
        self.db.add(ApprovalLog(
            quote_id=quote.id,
            actor_id=actor.actor_id,
            actor_name=actor.actor_name,
            actor_role=actor.role.value,
            action=action.value,
            from_status=from_status,
            to_status=to_status.value,
            comment=comment,
        ))
        await commit_or_raise(self.db)

        logger.info(
            f"Quote {quote.quote_number}: {from_status} -> {to_status.value} "
            f"({action.value} by {actor.actor_id})"
        )
        await self.audit.log_status_change(quote.id, action.value, from_status, to_status.value, actor, comment)
        return quote

    async def _run_guards_and_effects(
        self,
        quote: Quote,
        action: QuoteAction,
        actor: Actor,
        comment: Optional[str],
    ) -> None:
        if action == QuoteAction.SUBMIT:
            self._check_submittable(quote)
        elif action == QuoteAction.ORDER:
            await self._place_order(quote, actor)
        elif action == QuoteAction.ACCEPT:
            await self._check_deposit(quote)
        elif action == QuoteAction.COMPLETE:
            await self._complete(quote, actor)
        elif action == QuoteAction.CANCEL:
            await self._cancel(quote, actor, comment)

    def _check_submittable(self, quote: Quote) -> None:
        if not quote.items:
            raise GuardViolation("Quote has no line items", {"reason": "NO_LINE_ITEMS"})
        if not quote.customer_id:
            raise GuardViolation("No customer selected", {"reason": "NO_CUSTOMER"})
        missing = [item.position for item in quote.items if item.product_id is None]
        if missing:
            raise GuardViolation(
                "Every line item must reference a product",
                {"reason": "LINE_WITHOUT_PRODUCT", "positions": missing},
            )

    async def _place_order(self, quote: Quote, actor: Actor) -> None:
        self._check_submittable(quote)
        customer = await self._get_customer(quote.customer_id)
        if customer.credit_hold:
            raise CreditHold(customer.id)

        grand = to_decimal(quote.grand_total)
        limit = to_decimal(customer.credit_limit)
        if limit > 0:
            debt = await self.ledger.customer_outstanding_debt(customer.id)
            if debt + grand > limit:
                raise CreditLimitExceeded(debt, limit, grand)

        if not quote.order_number:
            quote.order_number = await self.generate_order_number()

        items = aggregate_items(quote.items)
        await self.inventory.reserve_items(items, quote_id=quote.id, actor=actor)
        quote.stock_reserved = bool(items)

    async def _check_deposit(self, quote: Quote) -> None:
        threshold = await SettingsService(self.db).get_deposit_threshold_pct()
        paid = await self.ledger.deposit_paid_for_quote(quote.id)

        if threshold > 0:
            required = round_money(to_decimal(quote.grand_total) * threshold / 100)
            if paid < required - PRECISION_THRESHOLD:
                raise DepositRequired(paid, required)
        elif paid <= 0:
            raise DepositRequired(paid, PRECISION_THRESHOLD)

    async def _complete(self, quote: Quote, actor: Actor) -> None:
        grand = to_decimal(quote.grand_total)
        paid = await self.ledger.total_paid_for_quote(quote.id)
        if not is_paid(grand, paid):
            raise BalanceOutstanding(round_money(balance_due(grand, paid)))

        if not quote.stock_deducted:
            if quote.stock_reserved:
                await self.inventory.deduct_items(aggregate_items(quote.items), quote_id=quote.id, actor=actor)
                quote.stock_reserved = False
            quote.stock_deducted = True
        quote.completion_date = datetime.now(timezone.utc)

    async def _cancel(self, quote: Quote, actor: Actor, reason: Optional[str]) -> None:
        if quote.stock_reserved and not quote.stock_deducted:
            await self.inventory.release_items(aggregate_items(quote.items), quote_id=quote.id, actor=actor)
            quote.stock_reserved = False
        quote.cancellation_reason = reason
