"""
Overdue Invoice Sweep Job.

Marks ISSUED / PARTIALLY_PAID invoices whose due date has passed as OVERDUE,
then summarises everything overdue by aging bucket:
- 1-30 days overdue
- 31-60 days overdue
- 61-90 days overdue
- 90+ days overdue

Triggers:
- Daily scheduled job (via APScheduler)
- POST /api/v1/invoices/sweep-overdue (Finance)
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import EngineError
from app.models.billing import Invoice, InvoiceStatus
from app.services.finance_ledger_service import FinanceLedgerService

logger = logging.getLogger(__name__)

AGING_BUCKETS = [
    {"label": "1-30 days", "min_days": 1, "max_days": 30},
    {"label": "31-60 days", "min_days": 31, "max_days": 60},
    {"label": "61-90 days", "min_days": 61, "max_days": 90},
    {"label": "90+ days", "min_days": 91, "max_days": 99999},
]


async def run_overdue_sweep_job(db: AsyncSession, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Sweep overdue invoices and build the aging summary.

    Returns:
        Summary with the number of invoices newly marked overdue and
        per-bucket counts and outstanding amounts
    """
    logger.info("Starting overdue invoice sweep...")
    today = today or datetime.now(timezone.utc).date()

    results = {
        "started_at": datetime.now(timezone.utc).isoformat(),
        "as_of": today.isoformat(),
        "marked_overdue": 0,
        "overdue_invoices": 0,
        "total_overdue_amount": 0,
        "aging_summary": {},
        "errors": [],
    }

    try:
        results["marked_overdue"] = await FinanceLedgerService(db).sweep_overdue(today)

        result = await db.execute(
            select(Invoice).where(Invoice.status == InvoiceStatus.OVERDUE.value)
        )
        overdue_invoices = list(result.scalars().all())
        results["overdue_invoices"] = len(overdue_invoices)

        summary = {
            bucket["label"]: {"count": 0, "total_amount": Decimal("0")}
            for bucket in AGING_BUCKETS
        }
        total_overdue = Decimal("0")

        for invoice in overdue_invoices:
            days_overdue = (today - invoice.due_date).days
            amount_due = invoice.balance_due or Decimal("0")
            total_overdue += amount_due

            for bucket in AGING_BUCKETS:
                if bucket["min_days"] <= days_overdue <= bucket["max_days"]:
                    summary[bucket["label"]]["count"] += 1
                    summary[bucket["label"]]["total_amount"] += amount_due
                    break

        results["total_overdue_amount"] = float(total_overdue)
        results["aging_summary"] = {
            label: {"count": data["count"], "total_amount": float(data["total_amount"])}
            for label, data in summary.items()
        }

    except (EngineError, SQLAlchemyError) as e:
        error_msg = f"Overdue sweep job failed: {e}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

    results["completed_at"] = datetime.now(timezone.utc).isoformat()
    logger.info(
        f"Overdue sweep completed: {results['marked_overdue']} newly overdue, "
        f"{results['overdue_invoices']} overdue in total, "
        f"{results['total_overdue_amount']:,.2f} outstanding"
    )

    return results


def register_overdue_job(scheduler):
    """
    Register the overdue sweep with APScheduler.

    Runs daily at OVERDUE_SWEEP_HOUR:OVERDUE_SWEEP_MINUTE in the scheduler timezone.
    """
    from app.database import get_db_session

    async def job_wrapper():
        async with get_db_session() as db:
            await run_overdue_sweep_job(db)

    scheduler.add_job(
        job_wrapper,
        'cron',
        hour=settings.OVERDUE_SWEEP_HOUR,
        minute=settings.OVERDUE_SWEEP_MINUTE,
        id='overdue_invoice_sweep',
        name='Daily overdue invoice sweep',
        replace_existing=True,
    )

    logger.info(
        f"Overdue sweep job registered to run daily at "
        f"{settings.OVERDUE_SWEEP_HOUR:02d}:{settings.OVERDUE_SWEEP_MINUTE:02d} ({settings.SCHEDULER_TIMEZONE})"
    )
