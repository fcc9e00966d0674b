import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Text, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import MoneyType, PercentType, QuantityType, UUIDType


class Product(Base):
    """
    Stone slab product sold by the square metre.

    current_stock is the on-hand quantity, reserved_stock the share already
    committed to open orders. Both are in m².
    """
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Pricing
    price_per_sqm: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    default_wastage_percent: Mapped[Decimal] = mapped_column(PercentType, default=15, nullable=False)

    # Slab thickness in cm
    thickness: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)

    # Inventory (m²)
    current_stock: Mapped[Decimal] = mapped_column(QuantityType, default=0, nullable=False)
    reserved_stock: Mapped[Decimal] = mapped_column(QuantityType, default=0, nullable=False)
    reorder_point: Mapped[Decimal] = mapped_column(QuantityType, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def available_stock(self) -> Decimal:
        return Decimal(str(self.current_stock or 0)) - Decimal(str(self.reserved_stock or 0))

    @property
    def default_depth(self) -> Decimal:
        """Slab depth in metres, derived from thickness in cm (0.03 when unknown)."""
        if self.thickness:
            return Decimal(str(self.thickness)) / Decimal("100")
        return Decimal("0.03")

    def __repr__(self) -> str:
        return f"<Product(sku='{self.sku}', name='{self.name}')>"
