from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Quote / order lifecycle
    quotes,
    # Finance
    invoices,
    # Stock
    inventory,
    # Runtime settings
    settings,
)

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Quotes & Orders ====================
api_router.include_router(
    quotes.router,
    prefix="/quotes",
    tags=["Quotes"]
)

# ==================== Invoices & Payments ====================
api_router.include_router(
    invoices.router,
    prefix="/invoices",
    tags=["Invoices"]
)

# ==================== Inventory ====================
api_router.include_router(
    inventory.router,
    prefix="/inventory",
    tags=["Inventory"]
)

# ==================== Settings ====================
api_router.include_router(
    settings.router,
    prefix="/settings",
    tags=["Settings"]
)
