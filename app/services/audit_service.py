import logging
from typing import Optional, Dict, Any, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.permissions import Actor
from app.models.audit_log import AuditLog


logger = logging.getLogger(__name__)


class AuditService:
    """
    Audit service for the quote, stock, invoice and settings trail.

    Writes are best-effort: each entry is committed in its own session after
    the caller's transaction has committed, and a failed write is logged and
    dropped. An audit failure never undoes the business operation.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[Any] = None,
        actor: Optional[Actor] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Create an audit log entry.

        Args:
            action: The action performed (CREATE, STATUS_CHANGE, STOCK_ADJUST, etc.)
            entity_type: Type of entity (QUOTE, PRODUCT, INVOICE, etc.)
            entity_id: ID of the affected entity
            actor: Who performed the action
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)
            reason: Free-text reason or comment

        Returns:
            The created AuditLog entry, or None if auditing is disabled or the write failed
        """
        if not settings.AUDIT_LOG_ENABLED:
            return None

        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor_id=actor.actor_id if actor else None,
            actor_name=actor.actor_name if actor else None,
            old_values=old_values,
            new_values=new_values,
            reason=reason,
        )
        try:
            await self._write(audit_log)
        except SQLAlchemyError as e:
            logger.warning(f"Audit write failed for {entity_type} {entity_id} ({action}): {e}")
            return None
        return audit_log

    async def _write(self, audit_log: AuditLog) -> None:
        async with AsyncSession(self.db.bind, expire_on_commit=False) as session:
            session.add(audit_log)
            await session.commit()

    async def log_status_change(
        self,
        quote_id: Any,
        action: str,
        from_status: str,
        to_status: str,
        actor: Actor,
        comment: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Log a quote lifecycle transition."""
        return await self.log(
            action="STATUS_CHANGE",
            entity_type="QUOTE",
            entity_id=quote_id,
            actor=actor,
            old_values={"status": from_status},
            new_values={"status": to_status, "action": action},
            reason=comment,
        )

    async def log_stock_adjustment(
        self,
        product_id: Any,
        old_stock: Any,
        new_stock: Any,
        actor: Actor,
        reason: str,
        action: str = "STOCK_ADJUST",
    ) -> Optional[AuditLog]:
        """Log an on-hand stock change."""
        return await self.log(
            action=action,
            entity_type="PRODUCT",
            entity_id=product_id,
            actor=actor,
            old_values={"current_stock": old_stock},
            new_values={"current_stock": new_stock},
            reason=reason,
        )

    async def log_invoice_issued(self, invoice, actor: Actor) -> Optional[AuditLog]:
        return await self.log(
            action="INVOICE_ISSUED",
            entity_type="INVOICE",
            entity_id=invoice.id,
            actor=actor,
            new_values={
                "invoice_number": invoice.invoice_number,
                "invoice_type": invoice.invoice_type,
                "total_amount": invoice.total_amount,
                "quote_id": invoice.quote_id,
            },
        )

    async def log_invoice_voided(self, invoice, old_status: str, actor: Actor, reason: Optional[str]) -> Optional[AuditLog]:
        return await self.log(
            action="INVOICE_VOIDED",
            entity_type="INVOICE",
            entity_id=invoice.id,
            actor=actor,
            old_values={"status": old_status},
            new_values={"status": invoice.status},
            reason=reason,
        )

    async def log_payment_recorded(self, payment, invoice, actor: Actor) -> Optional[AuditLog]:
        return await self.log(
            action="PAYMENT_RECORDED",
            entity_type="PAYMENT",
            entity_id=payment.id,
            actor=actor,
            new_values={
                "invoice_id": invoice.id,
                "amount": payment.amount,
                "method": payment.method,
                "invoice_status": invoice.status,
                "balance_due": invoice.balance_due,
            },
        )

    async def log_setting_changed(self, key: str, old_value: Optional[str], new_value: str, actor: Actor) -> Optional[AuditLog]:
        return await self.log(
            action="UPDATE",
            entity_type="SETTINGS",
            entity_id=key,
            actor=actor,
            old_values={"value": old_value},
            new_values={"value": new_value},
        )

    async def list_for_entity(
        self,
        entity_type: str,
        entity_id: Any,
        limit: Optional[int] = None,
    ) -> List[AuditLog]:
        """Audit entries for one entity, newest first."""
        query = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type)
            .where(AuditLog.entity_id == str(entity_id))
            .order_by(AuditLog.created_at.desc())
            .limit(limit or settings.AUDIT_LOG_PAGE_SIZE)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
