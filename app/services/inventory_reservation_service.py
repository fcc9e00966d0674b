"""
Inventory Reservation Service for slab stock.

Prevents overselling with a reserve-then-convert discipline:
1. reserve()              - ORDER commits stock to the order (reserved_stock += sqm)
2. convert_to_deduction() - COMPLETE consumes it (current_stock and reserved_stock -= sqm)
3. release()              - CANCEL gives it back (reserved_stock -= sqm)

Each step is a single conditional UPDATE so two concurrent reservations can
never both succeed against the same available quantity. The reservation
primitives do not commit; the caller owns the transaction. Stock-in and
manual adjustments are standalone operations and commit themselves.
"""
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List, Iterable

from sqlalchemy import select, update, case, func, literal
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import commit_or_raise, persistence_errors
from app.core.exceptions import InsufficientStock, NotFoundError, ValidationError
from app.core.permissions import Actor, Operation, PermissionChecker
from app.models.inventory import StockMovement, StockMovementType
from app.models.product import Product
from app.services.audit_service import AuditService
from app.services.pricing_engine import to_decimal


logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


@dataclass
class ReservationItem:
    """Quantity of one product to reserve, release or deduct."""
    product_id: uuid.UUID
    sqm: Decimal


@dataclass
class StockAvailability:
    """Point-in-time stock position of a product."""
    product_id: uuid.UUID
    name: str
    sku: str
    current_stock: Decimal
    reserved_stock: Decimal
    available: Decimal
    reorder_point: Decimal

    @property
    def is_low(self) -> bool:
        return self.available <= self.reorder_point

    @classmethod
    def from_product(cls, product: Product) -> "StockAvailability":
        current = to_decimal(product.current_stock)
        reserved = to_decimal(product.reserved_stock)
        return cls(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            current_stock=current,
            reserved_stock=reserved,
            available=current - reserved,
            reorder_point=to_decimal(product.reorder_point),
        )


def aggregate_items(lines: Iterable) -> List[ReservationItem]:
    """
    Sum line quantities per product, preserving first-seen order.

    Accepts anything with product_id and total_sqm attributes (quote lines).
    Lines without a product are skipped.
    """
    totals: "OrderedDict[uuid.UUID, Decimal]" = OrderedDict()
    for line in lines:
        if line.product_id is None:
            continue
        totals[line.product_id] = totals.get(line.product_id, _ZERO) + to_decimal(line.total_sqm)
    return [ReservationItem(product_id=pid, sqm=sqm) for pid, sqm in totals.items() if sqm > 0]


def _floored(expr):
    """SQL expression for max(0, expr), portable across SQLite and PostgreSQL."""
    return case((expr < 0, literal(0)), else_=expr)


def _stock_margin(expr):
    """
    Stock difference rounded to the stored precision (3 dp).

    SQLite evaluates NUMERIC arithmetic in floating point, so 0.3 - 0.1 - 0.2
    comes out a hair below zero; rounding keeps exact fits comparable.
    """
    return func.round(expr, 3)


class InventoryReservationService:
    """Manages reservations and on-hand stock for products."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_product(self, product_id: uuid.UUID) -> Product:
        """Load a product with fresh column values (bypassing the identity map)."""
        result = await self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    def _movement(
        self,
        product_id: uuid.UUID,
        movement_type: StockMovementType,
        quantity: Decimal,
        quote_id: Optional[uuid.UUID] = None,
        actor: Optional[Actor] = None,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> StockMovement:
        movement = StockMovement(
            product_id=product_id,
            movement_type=movement_type.value,
            quantity=quantity,
            quote_id=quote_id,
            reason=reason,
            reference=reference,
            actor_id=actor.actor_id if actor else None,
            actor_name=actor.actor_name if actor else None,
        )
        self.db.add(movement)
        return movement

    # ==================== Reservation primitives ====================

    @persistence_errors("reserve stock")
    async def reserve(
        self,
        product_id: uuid.UUID,
        sqm: Decimal,
        quote_id: Optional[uuid.UUID] = None,
        actor: Optional[Actor] = None,
    ) -> None:
        """
        Commit sqm of a product to an order.

        Raises:
            InsufficientStock: current_stock - reserved_stock < sqm at the time of the UPDATE
            NotFoundError: product does not exist
        """
        sqm = to_decimal(sqm)
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .where(_stock_margin(Product.current_stock - Product.reserved_stock - sqm) >= 0)
            .values(reserved_stock=Product.reserved_stock + sqm)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            product = await self._load_product(product_id)
            available = to_decimal(product.current_stock) - to_decimal(product.reserved_stock)
            logger.info(f"Reservation refused for {product.sku}: available {available}, requested {sqm}")
            raise InsufficientStock(product_id, available, sqm)

        self._movement(product_id, StockMovementType.RESERVATION, sqm, quote_id=quote_id, actor=actor)

    @persistence_errors("release stock")
    async def release(
        self,
        product_id: uuid.UUID,
        sqm: Decimal,
        quote_id: Optional[uuid.UUID] = None,
        actor: Optional[Actor] = None,
    ) -> None:
        """Give back a reservation. reserved_stock never drops below 0."""
        sqm = to_decimal(sqm)
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(reserved_stock=_floored(Product.reserved_stock - sqm))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError("Product", product_id)

        self._movement(product_id, StockMovementType.RELEASE, -sqm, quote_id=quote_id, actor=actor)

    @persistence_errors("deduct stock")
    async def convert_to_deduction(
        self,
        product_id: uuid.UUID,
        sqm: Decimal,
        quote_id: Optional[uuid.UUID] = None,
        actor: Optional[Actor] = None,
    ) -> None:
        """Consume a reservation: on-hand and reserved both drop by sqm, floored at 0."""
        sqm = to_decimal(sqm)
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                current_stock=_floored(Product.current_stock - sqm),
                reserved_stock=_floored(Product.reserved_stock - sqm),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError("Product", product_id)

        self._movement(product_id, StockMovementType.DEDUCTION, -sqm, quote_id=quote_id, actor=actor)

    async def reserve_items(
        self,
        items: List[ReservationItem],
        quote_id: Optional[uuid.UUID] = None,
        actor: Optional[Actor] = None,
    ) -> None:
        """Reserve several products. The first shortage aborts; caller rolls back."""
        for item in items:
            await self.reserve(item.product_id, item.sqm, quote_id=quote_id, actor=actor)

    async def release_items(
        self,
        items: List[ReservationItem],
        quote_id: Optional[uuid.UUID] = None,
        actor: Optional[Actor] = None,
    ) -> None:
        for item in items:
            await self.release(item.product_id, item.sqm, quote_id=quote_id, actor=actor)

    async def deduct_items(
        self,
        items: List[ReservationItem],
        quote_id: Optional[uuid.UUID] = None,
        actor: Optional[Actor] = None,
    ) -> None:
        for item in items:
            await self.convert_to_deduction(item.product_id, item.sqm, quote_id=quote_id, actor=actor)

    # ==================== On-hand adjustments ====================

    @persistence_errors("adjust stock")
    async def _adjust_on_hand(
        self,
        product_id: uuid.UUID,
        delta: Decimal,
        movement_type: StockMovementType,
        reason: str,
        actor: Actor,
        reference: Optional[str] = None,
        audit_action: str = "STOCK_ADJUST",
    ) -> StockAvailability:
        product = await self._load_product(product_id)
        old_stock = to_decimal(product.current_stock)

        await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(current_stock=_floored(Product.current_stock + delta))
            .execution_options(synchronize_session=False)
        )
        product = await self._load_product(product_id)
        new_stock = to_decimal(product.current_stock)

        self._movement(
            product_id,
            movement_type,
            new_stock - old_stock,
            actor=actor,
            reason=reason,
            reference=reference,
        )
        await commit_or_raise(self.db)

        logger.info(f"Stock for {product.sku} changed {old_stock} -> {new_stock} by {actor.actor_id}: {reason}")
        await AuditService(self.db).log_stock_adjustment(
            product_id, old_stock, new_stock, actor, reason, action=audit_action
        )
        return StockAvailability.from_product(product)

    async def manual_adjust(
        self,
        product_id: uuid.UUID,
        delta: Decimal,
        reason: str,
        actor: Actor,
    ) -> StockAvailability:
        """Correct on-hand stock by a signed delta. Result is floored at 0."""
        PermissionChecker(actor).require(Operation.ADJUST_STOCK)
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for stock adjustments")

        return await self._adjust_on_hand(
            product_id,
            to_decimal(delta),
            StockMovementType.ADJUSTMENT,
            reason.strip(),
            actor,
        )

    async def record_stock_in(
        self,
        product_id: uuid.UUID,
        quantity: Decimal,
        reference: Optional[str],
        actor: Actor,
    ) -> StockAvailability:
        """Receive procured stock (m²) into on-hand."""
        PermissionChecker(actor).require(Operation.STOCK_IN)
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError("Stock-in quantity must be positive", {"quantity": str(quantity)})

        reason = f"Procurement: {reference or 'Manual Stock In'}"
        return await self._adjust_on_hand(
            product_id,
            quantity,
            StockMovementType.PROCUREMENT,
            reason,
            actor,
            reference=reference,
            audit_action="STOCK_IN",
        )

    # ==================== Queries ====================

    async def get_availability(self, product_id: uuid.UUID) -> StockAvailability:
        product = await self._load_product(product_id)
        return StockAvailability.from_product(product)

    async def list_low_stock(self) -> List[StockAvailability]:
        """Products whose available stock is at or below their reorder point."""
        result = await self.db.execute(
            select(Product)
            .where(_stock_margin(Product.current_stock - Product.reserved_stock - Product.reorder_point) <= 0)
            .order_by(Product.name)
            .execution_options(populate_existing=True)
        )
        return [StockAvailability.from_product(p) for p in result.scalars().all()]

    async def list_movements(
        self,
        product_id: Optional[uuid.UUID] = None,
        quote_id: Optional[uuid.UUID] = None,
        limit: int = 100,
    ) -> List[StockMovement]:
        query = select(StockMovement).order_by(StockMovement.created_at.desc()).limit(limit)
        if product_id:
            query = query.where(StockMovement.product_id == product_id)
        if quote_id:
            query = query.where(StockMovement.quote_id == quote_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())
