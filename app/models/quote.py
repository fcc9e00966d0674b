import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import String, Boolean, Date, DateTime, ForeignKey, Integer, Text, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import MoneyType, PercentType, QuantityType, UUIDType


class QuoteStatus(str, Enum):
    """Quote/order lifecycle status."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ORDERED = "ORDERED"
    ACCEPTED = "ACCEPTED"
    IN_PRODUCTION = "IN_PRODUCTION"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class QuoteAction(str, Enum):
    """Actions that move a quote between statuses."""
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ORDER = "ORDER"
    ACCEPT = "ACCEPT"
    START_WORK = "START_WORK"
    READY = "READY"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"


class Quote(Base):
    """
    Quote / order aggregate.

    The same row is a quote until the ORDER transition assigns an
    order_number, and an order afterwards. Rows are never deleted;
    CANCELLED is the terminal abort state.
    """
    __tablename__ = "quotes"
    __table_args__ = (
        Index('ix_quote_status_created', 'status', 'created_at'),
        Index('ix_quote_customer_status', 'customer_id', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification
    quote_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    order_number: Mapped[Optional[str]] = mapped_column(
        String(30),
        unique=True,
        nullable=True,
        index=True
    )

    # Parties
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=True
    )
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    sales_rep_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sales_rep_name: Mapped[str] = mapped_column(String(200), nullable=False)

    quote_date: Mapped[date] = mapped_column(
        Date,
        default=lambda: datetime.now(timezone.utc).date(),
        nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(50),
        default=QuoteStatus.DRAFT.value,
        nullable=False,
        index=True,
        comment="DRAFT, SUBMITTED, APPROVED, REJECTED, ORDERED, ACCEPTED, IN_PRODUCTION, READY, COMPLETED, CANCELLED"
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Amounts
    discount_amount: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    sub_total: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    tax: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    grand_total: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)

    # Stock flags
    stock_reserved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stock_deducted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    # Relationships
    items: Mapped[List["QuoteItem"]] = relationship(
        "QuoteItem",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteItem.position",
        lazy="selectin"
    )

    @property
    def is_order(self) -> bool:
        return self.order_number is not None

    def __repr__(self) -> str:
        return f"<Quote(number='{self.quote_number}', status='{self.status}')>"


class QuoteItem(Base):
    """Quote line item. Dimensions in metres, prices per m²."""
    __tablename__ = "quote_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Product (nullable only while the line is being edited)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=True
    )
    product_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)

    # Dimensions
    width: Mapped[Decimal] = mapped_column(Numeric(10, 3), default=0, nullable=False)
    height: Mapped[Decimal] = mapped_column(Numeric(10, 3), default=0, nullable=False)
    pieces: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    depth: Mapped[Decimal] = mapped_column(Numeric(6, 3), default=Decimal("0.03"), nullable=False)

    # Pricing inputs
    price_per_sqm: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    wastage_percent: Mapped[Decimal] = mapped_column(PercentType, default=0, nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(PercentType, default=0, nullable=False)

    # Derived
    total_sqm: Mapped[Decimal] = mapped_column(QuantityType, default=0, nullable=False)
    raw_price: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    final_price: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)

    # Factory checklist
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    quote: Mapped["Quote"] = relationship("Quote", back_populates="items")

    def __repr__(self) -> str:
        return f"<QuoteItem(product='{self.product_name}', sqm={self.total_sqm})>"


class ApprovalLog(Base):
    """
    Append-only history of quote transitions.

    One row per successful transition, written in the same transaction as
    the status change. Queried separately from the quote.
    """
    __tablename__ = "quote_approval_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    from_status: Mapped[str] = mapped_column(String(50), nullable=False)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<ApprovalLog(action='{self.action}', from='{self.from_status}', to='{self.to_status}')>"
