import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import MoneyType, UUIDType


class Customer(Base):
    """Customer account. credit_limit of 0 means unlimited credit."""
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Credit control
    credit_limit: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    credit_hold: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def display_name(self) -> str:
        return self.company_name or self.name

    def __repr__(self) -> str:
        return f"<Customer(name='{self.display_name}')>"
