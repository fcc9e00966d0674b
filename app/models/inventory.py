import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import QuantityType, UUIDType


class StockMovementType(str, Enum):
    """Stock movement type enumeration."""
    PROCUREMENT = "PROCUREMENT"    # Goods received from a supplier
    ADJUSTMENT = "ADJUSTMENT"      # Manual on-hand correction
    RESERVATION = "RESERVATION"    # Committed to an order
    RELEASE = "RELEASE"            # Reservation given back (cancel)
    DEDUCTION = "DEDUCTION"        # Consumed at order completion


class StockMovement(Base):
    """
    Stock ledger entry.

    quantity is signed m²: positive for stock coming in (or reserved),
    negative for stock going out (or released).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index('ix_stock_movement_product_created', 'product_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )

    movement_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="PROCUREMENT, ADJUSTMENT, RESERVATION, RELEASE, DEDUCTION"
    )
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)

    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    quote_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("quotes.id", ondelete="SET NULL"),
        nullable=True
    )

    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<StockMovement(type='{self.movement_type}', qty={self.quantity})>"
