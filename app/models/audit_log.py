import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType


class AuditLog(Base):
    """
    Append-only audit trail.
    Records: quote transitions, stock adjustments, invoices, payments, settings changes.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Who performed the action
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Actions: CREATE, UPDATE, STATUS_CHANGE, STOCK_ADJUST, STOCK_IN,
    #          INVOICE_ISSUED, INVOICE_VOIDED, PAYMENT_RECORDED, etc.

    # Entity being modified
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Entity types: QUOTE, PRODUCT, CUSTOMER, INVOICE, PAYMENT, SETTINGS

    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Change tracking
    old_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"
