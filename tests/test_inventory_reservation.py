"""Inventory reservation tests."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    InsufficientStock,
    NotFoundError,
    PermissionDenied,
    PersistenceFailure,
    ValidationError,
)
from app.models.inventory import StockMovementType
from app.services.audit_service import AuditService
from app.services.inventory_reservation_service import (
    InventoryReservationService,
    ReservationItem,
    aggregate_items,
)

from conftest import FACTORY, MANAGER, make_product


class TestReservation:
    async def test_reserve_release_round_trip(self, db):
        product = await make_product(db, current_stock=Decimal("40"), reserved_stock=Decimal("5"))
        service = InventoryReservationService(db)

        await service.reserve(product.id, Decimal("12.5"))
        await db.commit()
        assert (await service.get_availability(product.id)).reserved_stock == Decimal("17.5")

        await service.release(product.id, Decimal("12.5"))
        await db.commit()
        availability = await service.get_availability(product.id)
        assert availability.reserved_stock == Decimal("5")
        assert availability.current_stock == Decimal("40")

    async def test_reserve_more_than_available(self, db):
        product = await make_product(db, current_stock=Decimal("10"), reserved_stock=Decimal("4"))
        service = InventoryReservationService(db)

        with pytest.raises(InsufficientStock) as exc:
            await service.reserve(product.id, Decimal("7"))

        assert exc.value.available == Decimal("6")
        assert exc.value.requested == Decimal("7")
        assert exc.value.details["product_id"] == str(product.id)

    async def test_reserve_exactly_available(self, db):
        product = await make_product(db, current_stock=Decimal("10"))
        service = InventoryReservationService(db)

        await service.reserve(product.id, Decimal("10"))
        await db.commit()

        assert (await service.get_availability(product.id)).available == 0

    async def test_reserve_exact_fractional_quantity(self, db):
        product = await make_product(db, current_stock=Decimal("0.3"), reserved_stock=Decimal("0.1"))
        product_id = product.id
        service = InventoryReservationService(db)

        await service.reserve(product_id, Decimal("0.2"))
        await db.commit()

        availability = await service.get_availability(product_id)
        assert availability.reserved_stock == Decimal("0.3")
        assert availability.available == 0

    async def test_reserve_unknown_product(self, db):
        import uuid

        with pytest.raises(NotFoundError):
            await InventoryReservationService(db).reserve(uuid.uuid4(), Decimal("1"))

    async def test_release_floors_at_zero(self, db):
        product = await make_product(db, current_stock=Decimal("10"), reserved_stock=Decimal("2"))
        service = InventoryReservationService(db)

        await service.release(product.id, Decimal("5"))
        await db.commit()

        assert (await service.get_availability(product.id)).reserved_stock == 0

    async def test_deduction_consumes_reservation(self, db):
        product = await make_product(db, current_stock=Decimal("30"))
        service = InventoryReservationService(db)

        await service.reserve(product.id, Decimal("8"))
        await service.convert_to_deduction(product.id, Decimal("8"))
        await db.commit()

        availability = await service.get_availability(product.id)
        assert availability.current_stock == Decimal("22")
        assert availability.reserved_stock == 0

    async def test_movements_recorded(self, db):
        product = await make_product(db, current_stock=Decimal("30"))
        service = InventoryReservationService(db)

        await service.reserve(product.id, Decimal("8"))
        await service.release(product.id, Decimal("8"))
        await db.commit()

        movements = await service.list_movements(product_id=product.id)
        by_type = {m.movement_type: m.quantity for m in movements}
        assert by_type[StockMovementType.RESERVATION.value] == Decimal("8")
        assert by_type[StockMovementType.RELEASE.value] == Decimal("-8")


class TestConcurrentReservation:
    async def test_stale_reader_cannot_oversell(self, session_factory):
        async with session_factory() as seed:
            product = await make_product(seed, current_stock=Decimal("10"))

        async with session_factory() as a, session_factory() as b:
            # B has seen 10 available before A reserves
            assert (await InventoryReservationService(b).get_availability(product.id)).available == 10

            await InventoryReservationService(a).reserve(product.id, Decimal("8"))
            await a.commit()

            with pytest.raises(InsufficientStock) as exc:
                await InventoryReservationService(b).reserve(product.id, Decimal("5"))
            assert exc.value.available == Decimal("2")

    async def test_second_reservation_after_commit_sees_new_stock(self, session_factory):
        async with session_factory() as seed:
            product = await make_product(seed, current_stock=Decimal("10"))

        async with session_factory() as a, session_factory() as b:
            await InventoryReservationService(a).reserve(product.id, Decimal("6"))
            await a.commit()
            await InventoryReservationService(b).reserve(product.id, Decimal("4"))
            await b.commit()

        async with session_factory() as check:
            availability = await InventoryReservationService(check).get_availability(product.id)
        assert availability.reserved_stock == Decimal("10")
        assert availability.available == 0

    async def test_simultaneous_reservations_allow_one(self, session_factory):
        async with session_factory() as seed:
            product = await make_product(seed, current_stock=Decimal("10"))
            product_id = product.id

        async def reserve_and_commit(quantity):
            async with session_factory() as session:
                try:
                    await InventoryReservationService(session).reserve(product_id, quantity)
                    await session.commit()
                except InsufficientStock:
                    await session.rollback()
                    raise

        results = await asyncio.gather(
            reserve_and_commit(Decimal("8")),
            reserve_and_commit(Decimal("8")),
            return_exceptions=True,
        )

        assert results.count(None) == 1
        refused = [r for r in results if r is not None]
        assert len(refused) == 1
        assert isinstance(refused[0], InsufficientStock)
        assert refused[0].available == Decimal("2")

        async with session_factory() as check:
            availability = await InventoryReservationService(check).get_availability(product_id)
        assert availability.reserved_stock == Decimal("8")
        assert availability.available == Decimal("2")


class TestAggregation:
    def test_sums_per_product_and_skips_unlinked_lines(self):
        import uuid
        from types import SimpleNamespace

        slab_a, slab_b = uuid.uuid4(), uuid.uuid4()
        lines = [
            SimpleNamespace(product_id=slab_a, total_sqm=Decimal("3.5")),
            SimpleNamespace(product_id=None, total_sqm=Decimal("9")),
            SimpleNamespace(product_id=slab_b, total_sqm=Decimal("2")),
            SimpleNamespace(product_id=slab_a, total_sqm=Decimal("1.5")),
            SimpleNamespace(product_id=slab_b, total_sqm=Decimal("0")),
        ]

        assert aggregate_items(lines) == [
            ReservationItem(product_id=slab_a, sqm=Decimal("5.0")),
            ReservationItem(product_id=slab_b, sqm=Decimal("2")),
        ]


class TestStockAdjustments:
    async def test_stock_in(self, db):
        product = await make_product(db, current_stock=Decimal("10"))
        service = InventoryReservationService(db)

        availability = await service.record_stock_in(product.id, Decimal("25"), "PO-77", MANAGER)

        assert availability.current_stock == Decimal("35")
        movements = await service.list_movements(product_id=product.id)
        assert movements[0].movement_type == StockMovementType.PROCUREMENT.value
        assert movements[0].reason == "Procurement: PO-77"

    async def test_stock_in_without_reference(self, db):
        product = await make_product(db, current_stock=Decimal("0"))
        service = InventoryReservationService(db)

        await service.record_stock_in(product.id, Decimal("5"), None, MANAGER)

        movements = await service.list_movements(product_id=product.id)
        assert movements[0].reason == "Procurement: Manual Stock In"

    async def test_stock_in_rejects_non_positive(self, db):
        product = await make_product(db)
        with pytest.raises(ValidationError):
            await InventoryReservationService(db).record_stock_in(product.id, Decimal("0"), None, MANAGER)

    async def test_manual_adjust_floors_at_zero(self, db):
        product = await make_product(db, current_stock=Decimal("4"))
        service = InventoryReservationService(db)

        availability = await service.manual_adjust(product.id, Decimal("-10"), "Broken slab", MANAGER)

        assert availability.current_stock == 0
        movements = await service.list_movements(product_id=product.id)
        assert movements[0].quantity == Decimal("-4")

    async def test_manual_adjust_requires_reason(self, db):
        product = await make_product(db)
        with pytest.raises(ValidationError):
            await InventoryReservationService(db).manual_adjust(product.id, Decimal("1"), "  ", MANAGER)

    async def test_factory_cannot_adjust(self, db):
        product = await make_product(db)
        with pytest.raises(PermissionDenied):
            await InventoryReservationService(db).manual_adjust(product.id, Decimal("1"), "Count", FACTORY)

    async def test_adjustment_is_audited(self, db):
        product = await make_product(db, current_stock=Decimal("4"))
        await InventoryReservationService(db).manual_adjust(product.id, Decimal("6"), "Recount", MANAGER)

        entries = await AuditService(db).list_for_entity("PRODUCT", product.id)
        assert len(entries) == 1
        assert entries[0].action == "STOCK_ADJUST"
        assert entries[0].reason == "Recount"
        assert entries[0].actor_id == MANAGER.actor_id

    async def test_low_stock(self, db):
        low = await make_product(db, name="Nero Marquina", current_stock=Decimal("5"),
                                 reserved_stock=Decimal("3"), reorder_point=Decimal("2"))
        await make_product(db, name="Calacatta", current_stock=Decimal("50"), reorder_point=Decimal("2"))

        items = await InventoryReservationService(db).list_low_stock()

        assert [i.product_id for i in items] == [low.id]
        assert items[0].is_low

    async def test_low_stock_at_fractional_reorder_point(self, db):
        product = await make_product(db, current_stock=Decimal("0.3"), reserved_stock=Decimal("0.1"),
                                     reorder_point=Decimal("0.2"))

        items = await InventoryReservationService(db).list_low_stock()

        assert [i.product_id for i in items] == [product.id]


class TestDatabaseFailures:
    async def test_failed_reserve_is_retryable(self, db, monkeypatch):
        product = await make_product(db, current_stock=Decimal("10"))
        product_id = product.id

        async def locked(*args, **kwargs):
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "execute", locked)

        with pytest.raises(PersistenceFailure) as exc:
            await InventoryReservationService(db).reserve(product_id, Decimal("4"))

        assert exc.value.retryable
        assert exc.value.details == {"operation": "reserve stock"}
        assert isinstance(exc.value.__cause__, OperationalError)

        monkeypatch.undo()
        assert (await InventoryReservationService(db).get_availability(product_id)).reserved_stock == 0
