"""
Billing models: customer invoices and the payments recorded against them.

Invoice amounts are tax-inclusive: net_amount = total_amount / 1.15 and
tax_amount = total_amount - net_amount. amount_paid is always the sum of the
invoice's payment rows.
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Date, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import MoneyType, UUIDType


class InvoiceType(str, Enum):
    """Invoice type enumeration."""
    DEPOSIT = "DEPOSIT"
    FINAL = "FINAL"
    STANDARD = "STANDARD"
    CREDIT_NOTE = "CREDIT_NOTE"


class InvoiceStatus(str, Enum):
    """Invoice status enumeration."""
    ISSUED = "ISSUED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    VOID = "VOID"


class PaymentMethod(str, Enum):
    """Payment method enumeration."""
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"
    CHECK = "CHECK"
    CARD = "CARD"


class Invoice(Base):
    """Customer invoice raised against an order."""
    __tablename__ = "invoices"
    __table_args__ = (
        Index('ix_invoice_customer_status', 'customer_id', 'status'),
        Index('ix_invoice_status_due', 'status', 'due_date'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True
    )

    # Order reference
    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("quotes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    order_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Customer (denormalised at issue time)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False
    )
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)

    invoice_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="DEPOSIT, FINAL, STANDARD, CREDIT_NOTE"
    )
    status: Mapped[str] = mapped_column(
        String(50),
        default=InvoiceStatus.ISSUED.value,
        nullable=False,
        index=True,
        comment="ISSUED, PARTIALLY_PAID, PAID, OVERDUE, VOID"
    )

    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Amounts
    net_amount: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    balance_due: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

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
    def is_void(self) -> bool:
        return self.status == InvoiceStatus.VOID.value

    def __repr__(self) -> str:
        return f"<Invoice(number='{self.invoice_number}', status='{self.status}')>"


class Payment(Base):
    """Payment received against an invoice. Immutable once recorded."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("quotes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    method: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="BANK_TRANSFER, CASH, CHECK, CARD"
    )
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    recorded_by: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Payment(amount={self.amount}, method='{self.method}')>"
