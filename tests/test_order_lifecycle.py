"""Order lifecycle tests: quote editing, transitions, guards and side effects."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    BalanceOutstanding,
    ConcurrencyConflict,
    CreditHold,
    CreditLimitExceeded,
    DepositRequired,
    GuardViolation,
    IllegalTransition,
    InsufficientStock,
    PermissionDenied,
    PersistenceFailure,
    ValidationError,
)
from app.models.billing import InvoiceType, PaymentMethod
from app.models.inventory import StockMovementType
from app.models.quote import QuoteAction, QuoteStatus
from app.schemas.quote import ExtractedLineItem, LineItemCreate, LineItemUpdate, QuoteHeaderUpdate
from app.services.audit_service import AuditService
from app.services.finance_ledger_service import FinanceLedgerService
from app.services.inventory_reservation_service import InventoryReservationService
from app.services.order_lifecycle_service import OrderLifecycleService
from app.services.settings_service import SettingsService

from conftest import (
    ADMIN,
    FACTORY,
    FINANCE,
    MANAGER,
    SALES,
    line,
    make_customer,
    make_open_invoice,
    make_order,
    make_product,
)


async def approved_quote(db, customer, *items):
    service = OrderLifecycleService(db)
    quote = await service.create_quote(SALES, customer_id=customer.id, items=list(items))
    await service.transition(quote.id, QuoteAction.SUBMIT, SALES)
    await service.transition(quote.id, QuoteAction.APPROVE, MANAGER)
    return quote


async def pay_in_full(db, quote_id, invoice_type=InvoiceType.FINAL, percentage=None):
    ledger = FinanceLedgerService(db)
    invoice = await ledger.issue_invoice(quote_id, invoice_type, FINANCE, percentage=percentage)
    await ledger.record_payment(invoice.id, invoice.total_amount, PaymentMethod.BANK_TRANSFER, FINANCE)
    return invoice


async def accepted_order(db, customer, product):
    """Quote for 100 m² (grand total 11500) ordered, deposit paid and accepted."""
    service = OrderLifecycleService(db)
    quote = await approved_quote(db, customer, line(product))
    await service.transition(quote.id, QuoteAction.ORDER, SALES)
    await pay_in_full(db, quote.id, InvoiceType.DEPOSIT)
    await service.transition(quote.id, QuoteAction.ACCEPT, FACTORY)
    return quote


class TestQuoteBuilding:
    async def test_create_prices_lines(self, db):
        customer = await make_customer(db)
        product = await make_product(db, wastage=Decimal("15"))

        quote = await OrderLifecycleService(db).create_quote(
            SALES, customer_id=customer.id, notes="Kitchen top", items=[line(product)]
        )

        assert quote.status == QuoteStatus.DRAFT.value
        assert quote.quote_number == "Q-1000"
        assert quote.sales_rep_id == SALES.actor_id
        assert quote.customer_name == customer.name
        item = quote.items[0]
        assert item.product_name == product.name
        assert item.total_sqm == Decimal("100")
        assert item.wastage_percent == Decimal("15")
        assert item.final_price == Decimal("11500")
        assert quote.sub_total == Decimal("11500")
        assert quote.tax == Decimal("1725")
        assert quote.grand_total == Decimal("13225")

    async def test_explicit_line_values_override_product(self, db):
        product = await make_product(db, wastage=Decimal("15"))

        quote = await OrderLifecycleService(db).create_quote(
            SALES, items=[line(product, price_per_sqm=Decimal("80"), wastage_percent=Decimal("0"))]
        )

        assert quote.items[0].final_price == Decimal("8000")

    async def test_quote_numbers_increment(self, db):
        service = OrderLifecycleService(db)
        first = await service.create_quote(SALES)
        second = await service.create_quote(MANAGER)
        assert (first.quote_number, second.quote_number) == ("Q-1000", "Q-1001")

    async def test_finance_cannot_create(self, db):
        with pytest.raises(PermissionDenied):
            await OrderLifecycleService(db).create_quote(FINANCE)

    async def test_negative_input_clamped(self, db):
        product = await make_product(db)
        quote = await OrderLifecycleService(db).create_quote(
            SALES, items=[line(product, width="-3", discount_percent=Decimal("150"))]
        )
        item = quote.items[0]
        assert item.width == 0
        assert item.discount_percent == Decimal("100")
        assert item.final_price == 0

    async def test_header_discount(self, db):
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, items=[line(product)])

        outcome = await service.update_header(quote.id, QuoteHeaderUpdate(discount_amount=Decimal("1000")), SALES)

        assert outcome.applied
        assert outcome.quote.sub_total == Decimal("10000")
        assert outcome.quote.tax == Decimal("1350")
        assert outcome.quote.grand_total == Decimal("10350")

    async def test_update_line(self, db):
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, items=[line(product)])

        outcome = await service.update_line_item(
            quote.id, quote.items[0].id, LineItemUpdate(width=Decimal("5")), SALES
        )

        assert outcome.quote.items[0].total_sqm == Decimal("50")
        assert outcome.quote.grand_total == Decimal("5750")

    async def test_add_duplicate_remove(self, db):
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, items=[line(product)])

        outcome = await service.duplicate_line_item(quote.id, quote.items[0].id, SALES)
        assert len(outcome.quote.items) == 2
        assert outcome.quote.grand_total == Decimal("23000")

        outcome = await service.add_line_item(quote.id, SALES)
        blank = outcome.quote.items[-1]
        assert blank.product_id is None
        assert blank.wastage_percent == 0
        assert blank.position == 2

        outcome = await service.remove_line_item(quote.id, blank.id, SALES)
        assert len(outcome.quote.items) == 2
        assert outcome.quote.grand_total == Decimal("23000")

    async def test_replace_lines(self, db):
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, items=[line(product), line(product)])

        outcome = await service.replace_line_items(quote.id, [line(product, width="1", height="1")], SALES)

        assert len(outcome.quote.items) == 1
        assert outcome.quote.grand_total == Decimal("115")

    async def test_merge_extracted_items(self, db):
        product = await make_product(db, name="Carrara White", wastage=Decimal("10"))
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES)

        outcome = await service.merge_extracted_items(quote.id, [
            ExtractedLineItem(product_name_guess="carrara", width=Decimal("2"), height=Decimal("3"), pieces=2),
            ExtractedLineItem(product_name_guess="Mystery stone", width=Decimal("1"), height=Decimal("1")),
        ], SALES)

        matched, unmatched = outcome.quote.items
        assert matched.product_id == product.id
        assert matched.total_sqm == Decimal("12")
        assert matched.wastage_percent == Decimal("10")
        assert unmatched.product_id is None
        assert unmatched.product_name == "Mystery stone"
        assert unmatched.pieces == 1
        assert unmatched.wastage_percent == Decimal("15")


class TestEditability:
    async def test_finance_edit_is_a_no_op(self, db):
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, items=[line(product)])

        outcome = await service.update_header(quote.id, QuoteHeaderUpdate(discount_amount=Decimal("500")), FINANCE)

        assert not outcome.applied
        assert outcome.reason
        assert (await service.get_quote(quote.id)).discount_amount == 0

    async def test_submitted_quote_editable_by_manager_only(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, customer_id=customer.id, items=[line(product)])
        await service.transition(quote.id, QuoteAction.SUBMIT, SALES)

        refused = await service.add_line_item(quote.id, SALES)
        assert not refused.applied
        assert len(refused.quote.items) == 1

        applied = await service.add_line_item(quote.id, MANAGER)
        assert applied.applied
        assert len(applied.quote.items) == 2

    async def test_rejected_quote_editable_again(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, customer_id=customer.id, items=[line(product)])
        await service.transition(quote.id, QuoteAction.SUBMIT, SALES)
        await service.transition(quote.id, QuoteAction.REJECT, MANAGER, comment="Price too low")

        outcome = await service.update_header(quote.id, QuoteHeaderUpdate(notes="Revised"), SALES)
        assert outcome.applied

        quote = await service.transition(quote.id, QuoteAction.SUBMIT, SALES)
        assert quote.status == QuoteStatus.SUBMITTED.value

    async def test_checklist_only_in_production(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, customer_id=customer.id, items=[line(product)])

        with pytest.raises(GuardViolation):
            await service.toggle_item_completed(quote.id, quote.items[0].id, FACTORY)

    async def test_checklist_toggle(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        quote = await accepted_order(db, customer, product)
        service = OrderLifecycleService(db)
        quote = await service.get_quote(quote.id)

        item = await service.toggle_item_completed(quote.id, quote.items[0].id, FACTORY)
        assert item.is_completed
        item = await service.toggle_item_completed(quote.id, quote.items[0].id, FACTORY)
        assert not item.is_completed

        with pytest.raises(PermissionDenied):
            await service.toggle_item_completed(quote.id, quote.items[0].id, SALES)


class TestSubmitAndReview:
    async def test_submit_needs_customer(self, db):
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, items=[line(product)])

        with pytest.raises(GuardViolation) as exc:
            await service.transition(quote.id, QuoteAction.SUBMIT, SALES)
        assert exc.value.details["reason"] == "NO_CUSTOMER"

    async def test_submit_needs_lines(self, db):
        customer = await make_customer(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, customer_id=customer.id)

        with pytest.raises(GuardViolation) as exc:
            await service.transition(quote.id, QuoteAction.SUBMIT, SALES)
        assert exc.value.details["reason"] == "NO_LINE_ITEMS"

    async def test_submit_needs_product_on_every_line(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, customer_id=customer.id, items=[line(product)])
        await service.add_line_item(quote.id, SALES)

        with pytest.raises(GuardViolation) as exc:
            await service.transition(quote.id, QuoteAction.SUBMIT, SALES)
        assert exc.value.details["positions"] == [1]

    async def test_reject_requires_comment(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, customer_id=customer.id, items=[line(product)])
        await service.transition(quote.id, QuoteAction.SUBMIT, SALES)

        with pytest.raises(ValidationError):
            await service.transition(quote.id, QuoteAction.REJECT, MANAGER, comment="   ")

    async def test_history_is_append_only_log(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        quote = await approved_quote(db, customer, line(product))

        history = await OrderLifecycleService(db).get_history(quote.id)

        assert [(h.action, h.from_status, h.to_status) for h in history] == [
            ("SUBMIT", "DRAFT", "SUBMITTED"),
            ("APPROVE", "SUBMITTED", "APPROVED"),
        ]
        assert history[1].actor_role == "MANAGER"

    async def test_unknown_action(self, db):
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES)
        with pytest.raises(ValidationError):
            await service.transition(quote.id, "TELEPORT", SALES)


class TestPlaceOrder:
    async def test_credit_limit_end_to_end(self, db):
        customer = await make_customer(db, credit_limit=Decimal("100000"))
        product = await make_product(db, current_stock=Decimal("500"))
        product_id = product.id
        earlier = await make_order(db, customer, grand_total=Decimal("90000"))
        debt_id = (await make_open_invoice(db, earlier, Decimal("90000"))).id
        service = OrderLifecycleService(db)
        quote = await approved_quote(db, customer, line(product))
        quote_id = quote.id
        assert quote.grand_total == Decimal("11500")

        with pytest.raises(CreditLimitExceeded) as exc:
            await service.transition(quote_id, QuoteAction.ORDER, SALES)
        assert exc.value.debt == Decimal("90000")
        assert exc.value.limit == Decimal("100000")

        refused = await service.get_quote(quote_id)
        assert refused.status == QuoteStatus.APPROVED.value
        assert refused.order_number is None

        # Customer pays down the earlier order to 50000
        await FinanceLedgerService(db).record_payment(debt_id, Decimal("40000"), PaymentMethod.CASH, FINANCE)

        ordered = await service.transition(quote_id, QuoteAction.ORDER, SALES)
        order_number = ordered.order_number
        assert ordered.status == QuoteStatus.ORDERED.value
        assert order_number.startswith("ORD-")
        assert order_number.endswith("-0001")
        assert ordered.stock_reserved
        assert (await InventoryReservationService(db).get_availability(product_id)).reserved_stock == Decimal("100")

        with pytest.raises(IllegalTransition):
            await service.transition(quote_id, QuoteAction.ORDER, SALES)

        again = await service.get_quote(quote_id)
        assert again.order_number == order_number
        assert (await InventoryReservationService(db).get_availability(product_id)).reserved_stock == Decimal("100")

    async def test_zero_limit_means_unlimited(self, db):
        customer = await make_customer(db, credit_limit=Decimal("0"))
        product = await make_product(db)
        earlier = await make_order(db, customer, grand_total=Decimal("900000"))
        await make_open_invoice(db, earlier, Decimal("900000"))
        quote = await approved_quote(db, customer, line(product))

        ordered = await OrderLifecycleService(db).transition(quote.id, QuoteAction.ORDER, FINANCE)
        assert ordered.status == QuoteStatus.ORDERED.value

    async def test_credit_hold(self, db):
        customer = await make_customer(db, credit_hold=True)
        product = await make_product(db)
        quote = await approved_quote(db, customer, line(product))

        with pytest.raises(CreditHold):
            await OrderLifecycleService(db).transition(quote.id, QuoteAction.ORDER, SALES)

    async def test_insufficient_stock_reserves_nothing(self, db):
        customer = await make_customer(db)
        plenty = await make_product(db, name="Calacatta", current_stock=Decimal("500"))
        scarce = await make_product(db, name="Nero Marquina", current_stock=Decimal("40"))
        plenty_id, scarce_id = plenty.id, scarce.id
        service = OrderLifecycleService(db)
        quote = await approved_quote(db, customer, line(plenty), line(scarce))
        quote_id = quote.id

        with pytest.raises(InsufficientStock) as exc:
            await service.transition(quote_id, QuoteAction.ORDER, SALES)
        assert exc.value.product_id == scarce_id
        assert exc.value.requested == Decimal("100")

        inventory = InventoryReservationService(db)
        assert (await inventory.get_availability(plenty_id)).reserved_stock == 0
        assert (await inventory.get_availability(scarce_id)).reserved_stock == 0
        assert await inventory.list_movements(quote_id=quote_id) == []
        quote = await service.get_quote(quote_id)
        assert quote.status == QuoteStatus.APPROVED.value
        assert not quote.stock_reserved

    async def test_lines_of_same_product_reserved_together(self, db):
        customer = await make_customer(db)
        product = await make_product(db, current_stock=Decimal("150"))
        quote = await approved_quote(db, customer, line(product), line(product, width="5"))

        await OrderLifecycleService(db).transition(quote.id, QuoteAction.ORDER, SALES)

        movements = await InventoryReservationService(db).list_movements(quote_id=quote.id)
        assert [(m.movement_type, m.quantity) for m in movements] == [
            (StockMovementType.RESERVATION.value, Decimal("150")),
        ]


class TestAcceptAndComplete:
    async def test_accept_requires_deposit(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote_id = (await approved_quote(db, customer, line(product))).id
        await service.transition(quote_id, QuoteAction.ORDER, SALES)

        with pytest.raises(DepositRequired):
            await service.transition(quote_id, QuoteAction.ACCEPT, FACTORY)

        await pay_in_full(db, quote_id, InvoiceType.DEPOSIT, percentage=Decimal("10"))
        accepted = await service.transition(quote_id, QuoteAction.ACCEPT, FACTORY)
        assert accepted.status == QuoteStatus.ACCEPTED.value

    async def test_accept_honours_deposit_threshold(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        await SettingsService(db).set_deposit_threshold_pct(Decimal("60"), ADMIN)
        quote_id = (await approved_quote(db, customer, line(product))).id
        await service.transition(quote_id, QuoteAction.ORDER, SALES)
        await pay_in_full(db, quote_id, InvoiceType.DEPOSIT, percentage=Decimal("50"))

        with pytest.raises(DepositRequired) as exc:
            await service.transition(quote_id, QuoteAction.ACCEPT, FACTORY)
        assert exc.value.paid == Decimal("5750")
        assert exc.value.required == Decimal("6900")

        await pay_in_full(db, quote_id, InvoiceType.DEPOSIT, percentage=Decimal("10"))
        accepted = await service.transition(quote_id, QuoteAction.ACCEPT, FACTORY)
        assert accepted.status == QuoteStatus.ACCEPTED.value

    async def test_complete_requires_full_payment_and_deducts_once(self, db):
        customer = await make_customer(db)
        product = await make_product(db, current_stock=Decimal("500"))
        product_id = product.id
        service = OrderLifecycleService(db)
        quote_id = (await accepted_order(db, customer, product)).id
        await service.transition(quote_id, QuoteAction.START_WORK, FACTORY)
        await service.transition(quote_id, QuoteAction.READY, FACTORY)

        with pytest.raises(BalanceOutstanding) as exc:
            await service.transition(quote_id, QuoteAction.COMPLETE, SALES)
        assert exc.value.balance_due == Decimal("5750")

        await pay_in_full(db, quote_id, InvoiceType.FINAL)
        completed = await service.transition(quote_id, QuoteAction.COMPLETE, SALES)

        assert completed.status == QuoteStatus.COMPLETED.value
        assert completed.stock_deducted
        assert completed.completion_date is not None
        availability = await InventoryReservationService(db).get_availability(product_id)
        assert availability.current_stock == Decimal("400")
        assert availability.reserved_stock == 0

        with pytest.raises(IllegalTransition):
            await service.transition(quote_id, QuoteAction.COMPLETE, SALES)
        with pytest.raises(IllegalTransition):
            await service.transition(quote_id, QuoteAction.CANCEL, MANAGER, comment="Too late")
        assert (await InventoryReservationService(db).get_availability(product_id)).current_stock == Decimal("400")

        movements = await InventoryReservationService(db).list_movements(quote_id=quote_id)
        assert sorted(m.movement_type for m in movements) == [
            StockMovementType.DEDUCTION.value,
            StockMovementType.RESERVATION.value,
        ]

    async def test_no_skipping_stages(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await approved_quote(db, customer, line(product))

        with pytest.raises(IllegalTransition):
            await service.transition(quote.id, QuoteAction.START_WORK, ADMIN)
        with pytest.raises(IllegalTransition):
            await service.transition(quote.id, QuoteAction.COMPLETE, ADMIN)


class TestCancel:
    async def test_cancel_releases_reservation(self, db):
        customer = await make_customer(db)
        product = await make_product(db, current_stock=Decimal("500"))
        service = OrderLifecycleService(db)
        quote = await approved_quote(db, customer, line(product))
        await service.transition(quote.id, QuoteAction.ORDER, SALES)

        cancelled = await service.transition(quote.id, QuoteAction.CANCEL, MANAGER, comment="Customer withdrew")

        assert cancelled.status == QuoteStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Customer withdrew"
        assert not cancelled.stock_reserved
        availability = await InventoryReservationService(db).get_availability(product.id)
        assert availability.reserved_stock == 0
        assert availability.current_stock == Decimal("500")

    async def test_cancel_draft(self, db):
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES)

        cancelled = await service.transition(quote.id, QuoteAction.CANCEL, MANAGER, comment="Duplicate")
        assert cancelled.status == QuoteStatus.CANCELLED.value

    async def test_cancel_requires_comment_and_manager(self, db):
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES)

        with pytest.raises(ValidationError):
            await service.transition(quote.id, QuoteAction.CANCEL, MANAGER)
        with pytest.raises(PermissionDenied):
            await service.transition(quote.id, QuoteAction.CANCEL, SALES, comment="Mine")


class TestAuditTrail:
    async def test_transitions_are_audited(self, db):
        customer = await make_customer(db)
        product = await make_product(db)
        quote = await approved_quote(db, customer, line(product))

        entries = await AuditService(db).list_for_entity("QUOTE", quote.id)

        changes = [e for e in entries if e.action == "STATUS_CHANGE"]
        assert len(changes) == 2
        assert {e.new_values["status"] for e in changes} == {"SUBMITTED", "APPROVED"}

    async def test_audit_failure_does_not_undo_transition(self, db, session_factory, monkeypatch):
        customer = await make_customer(db)
        product = await make_product(db)
        service = OrderLifecycleService(db)
        quote = await service.create_quote(SALES, customer_id=customer.id, items=[line(product)])

        async def broken_write(self, audit_log):
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))

        monkeypatch.setattr(AuditService, "_write", broken_write)

        submitted = await service.transition(quote.id, QuoteAction.SUBMIT, SALES)
        assert submitted.status == QuoteStatus.SUBMITTED.value

        async with session_factory() as fresh:
            stored = await OrderLifecycleService(fresh).get_quote(quote.id)
            assert stored.status == QuoteStatus.SUBMITTED.value
            entries = await AuditService(fresh).list_for_entity("QUOTE", quote.id)
            assert [e.action for e in entries] == ["CREATE"]


class TestConcurrentOrders:
    async def test_competing_orders_reserve_once(self, db, session_factory):
        customer = await make_customer(db)
        product = await make_product(db, current_stock=Decimal("150"))
        product_id = product.id
        first = await approved_quote(db, customer, line(product))
        second = await approved_quote(db, customer, line(product))
        quote_ids = [first.id, second.id]

        async def place_order(quote_id):
            async with session_factory() as session:
                quote = await OrderLifecycleService(session).transition(quote_id, QuoteAction.ORDER, SALES)
                return quote.status

        results = await asyncio.gather(*(place_order(qid) for qid in quote_ids), return_exceptions=True)

        assert results.count(QuoteStatus.ORDERED.value) == 1
        refused = [r for r in results if r != QuoteStatus.ORDERED.value]
        assert len(refused) == 1
        assert isinstance(refused[0], InsufficientStock)

        async with session_factory() as check:
            availability = await InventoryReservationService(check).get_availability(product_id)
            statuses = sorted([
                (await OrderLifecycleService(check).get_quote(qid)).status for qid in quote_ids
            ])
        assert availability.reserved_stock == Decimal("100")
        assert statuses == sorted([QuoteStatus.APPROVED.value, QuoteStatus.ORDERED.value])


class TestPersistenceErrors:
    async def test_duplicate_quote_number_is_a_conflict(self, db, monkeypatch):
        customer = await make_customer(db)
        customer_id = customer.id

        async def fixed_number(self):
            return "Q-1000"

        monkeypatch.setattr(OrderLifecycleService, "generate_quote_number", fixed_number)
        service = OrderLifecycleService(db)
        first = await service.create_quote(SALES, customer_id=customer_id)
        first_id = first.id

        with pytest.raises(ConcurrencyConflict) as exc:
            await service.create_quote(SALES, customer_id=customer_id)

        assert exc.value.retryable
        assert (await service.get_quote(first_id)).quote_number == "Q-1000"

    async def test_database_error_during_order_leaves_quote_approved(self, db, session_factory, monkeypatch):
        customer = await make_customer(db, credit_limit=Decimal("50000"))
        product = await make_product(db)
        product_id = product.id
        quote = await approved_quote(db, customer, line(product))
        quote_id = quote.id

        async def unavailable(self, customer_id):
            raise OperationalError("SELECT invoices", {}, Exception("database is locked"))

        monkeypatch.setattr(FinanceLedgerService, "customer_outstanding_debt", unavailable)

        with pytest.raises(PersistenceFailure) as exc:
            await OrderLifecycleService(db).transition(quote_id, QuoteAction.ORDER, SALES)

        assert exc.value.retryable
        assert exc.value.details == {"operation": "apply quote transition"}

        async with session_factory() as fresh:
            stored = await OrderLifecycleService(fresh).get_quote(quote_id)
            assert stored.status == QuoteStatus.APPROVED.value
            assert stored.order_number is None
            availability = await InventoryReservationService(fresh).get_availability(product_id)
            assert availability.reserved_stock == 0
