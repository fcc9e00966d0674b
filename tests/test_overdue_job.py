"""Overdue sweep job tests."""

from datetime import date
from decimal import Decimal

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.jobs.overdue_invoices import register_overdue_job, run_overdue_sweep_job
from app.models.billing import InvoiceStatus, InvoiceType, PaymentMethod
from app.services.finance_ledger_service import FinanceLedgerService

from conftest import FINANCE, make_customer, make_order


class TestOverdueSweepJob:
    async def test_marks_and_buckets_overdue_invoices(self, db):
        customer = await make_customer(db)
        order = await make_order(db, customer, grand_total=Decimal("10000"))
        ledger = FinanceLedgerService(db)
        invoice = await ledger.issue_invoice(
            order.id, InvoiceType.DEPOSIT, FINANCE,
            payment_terms_days=30, issue_date=date(2026, 1, 1),
        )
        invoice_id = invoice.id
        await ledger.record_payment(invoice_id, Decimal("1000"), PaymentMethod.CASH, FINANCE)

        results = await run_overdue_sweep_job(db, today=date(2026, 2, 15))

        assert results["errors"] == []
        assert results["marked_overdue"] == 1
        assert results["overdue_invoices"] == 1
        assert results["total_overdue_amount"] == 4000.0
        assert results["aging_summary"]["1-30 days"] == {"count": 1, "total_amount": 4000.0}
        assert results["aging_summary"]["90+ days"]["count"] == 0
        assert (await ledger.get_invoice(invoice_id)).status == InvoiceStatus.OVERDUE.value

    async def test_second_run_marks_nothing_new(self, db):
        customer = await make_customer(db)
        order = await make_order(db, customer, grand_total=Decimal("2000"))
        await FinanceLedgerService(db).issue_invoice(
            order.id, InvoiceType.STANDARD, FINANCE, issue_date=date(2026, 1, 1),
        )

        first = await run_overdue_sweep_job(db, today=date(2026, 5, 1))
        second = await run_overdue_sweep_job(db, today=date(2026, 5, 1))

        assert first["marked_overdue"] == 1
        assert second["marked_overdue"] == 0
        assert second["overdue_invoices"] == 1
        assert second["aging_summary"]["90+ days"]["count"] == 1

    async def test_nothing_due(self, db):
        results = await run_overdue_sweep_job(db, today=date(2026, 1, 1))

        assert results["marked_overdue"] == 0
        assert results["total_overdue_amount"] == 0


class TestRegistration:
    def test_registers_daily_cron_job(self):
        scheduler = AsyncIOScheduler()

        register_overdue_job(scheduler)

        job = scheduler.get_job("overdue_invoice_sweep")
        assert job is not None
        assert job.name == "Daily overdue invoice sweep"
        assert "cron" in str(job.trigger)
