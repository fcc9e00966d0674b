from typing import Optional, List
import uuid

from fastapi import APIRouter, Query

from app.api.deps import DB, CurrentActor
from app.schemas.inventory import (
    StockAdjustmentCreate,
    StockAvailabilityResponse,
    StockInCreate,
    StockMovementResponse,
)
from app.services.inventory_reservation_service import InventoryReservationService


router = APIRouter(tags=["Inventory"])


@router.get("/products/{product_id}/availability", response_model=StockAvailabilityResponse)
async def get_availability(
    product_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """On-hand, reserved and available stock of a product (m²)."""
    availability = await InventoryReservationService(db).get_availability(product_id)
    return StockAvailabilityResponse.model_validate(availability)


@router.get("/low-stock", response_model=List[StockAvailabilityResponse])
async def list_low_stock(
    db: DB,
    actor: CurrentActor,
):
    """Products at or below their reorder point."""
    items = await InventoryReservationService(db).list_low_stock()
    return [StockAvailabilityResponse.model_validate(i) for i in items]


@router.post("/adjustments", response_model=StockAvailabilityResponse)
async def adjust_stock(
    data: StockAdjustmentCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Correct on-hand stock by a signed delta (floored at 0).
    Requires: MANAGER
    """
    availability = await InventoryReservationService(db).manual_adjust(
        data.product_id, data.delta, data.reason, actor
    )
    return StockAvailabilityResponse.model_validate(availability)


@router.post("/stock-in", response_model=StockAvailabilityResponse)
async def record_stock_in(
    data: StockInCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Receive procured stock.
    Requires: MANAGER
    """
    availability = await InventoryReservationService(db).record_stock_in(
        data.product_id, data.quantity, data.reference, actor
    )
    return StockAvailabilityResponse.model_validate(availability)


@router.get("/movements", response_model=List[StockMovementResponse])
async def list_movements(
    db: DB,
    actor: CurrentActor,
    product_id: Optional[uuid.UUID] = None,
    quote_id: Optional[uuid.UUID] = None,
    limit: int = Query(100, ge=1, le=500),
):
    movements = await InventoryReservationService(db).list_movements(
        product_id=product_id, quote_id=quote_id, limit=limit
    )
    return [StockMovementResponse.model_validate(m) for m in movements]
