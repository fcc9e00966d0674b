"""Pytest fixtures for order engine tests."""

import os
import uuid
from datetime import date
from decimal import Decimal

# Configure the app before anything imports app.config
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.permissions import Actor, Role
from app.database import Base, custom_json_dumps, get_db, import_models
from app.models.billing import Invoice, InvoiceStatus, InvoiceType
from app.models.customer import Customer
from app.models.product import Product
from app.models.quote import Quote, QuoteStatus
from app.schemas.quote import LineItemCreate


ADMIN = Actor("admin-1", "Alem Admin", Role.ADMIN)
SALES = Actor("rep-1", "Sara Sales", Role.SALES_REP)
MANAGER = Actor("mgr-1", "Mulu Manager", Role.MANAGER)
FINANCE = Actor("fin-1", "Fikir Finance", Role.FINANCE)
FACTORY = Actor("fac-1", "Fasil Factory", Role.FACTORY)


def actor_headers(actor: Actor) -> dict:
    return {
        "X-Actor-Id": actor.actor_id,
        "X-Actor-Name": actor.actor_name,
        "X-Actor-Role": actor.role.value,
    }


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so separate sessions get separate connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}",
        json_serializer=custom_json_dumps,
    )
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ==================== Seed helpers ====================

async def make_product(
    db: AsyncSession,
    name: str = "Carrara White",
    price_per_sqm: Decimal = Decimal("100"),
    current_stock: Decimal = Decimal("500"),
    reserved_stock: Decimal = Decimal("0"),
    wastage: Decimal = Decimal("0"),
    thickness: Decimal = None,
    reorder_point: Decimal = Decimal("0"),
) -> Product:
    product = Product(
        name=name,
        sku=f"SKU-{uuid.uuid4().hex[:8].upper()}",
        price_per_sqm=price_per_sqm,
        default_wastage_percent=wastage,
        thickness=thickness,
        current_stock=current_stock,
        reserved_stock=reserved_stock,
        reorder_point=reorder_point,
    )
    db.add(product)
    await db.commit()
    return product


async def make_customer(
    db: AsyncSession,
    name: str = "Abebe Kebede",
    credit_limit: Decimal = Decimal("0"),
    credit_hold: bool = False,
) -> Customer:
    customer = Customer(name=name, credit_limit=credit_limit, credit_hold=credit_hold)
    db.add(customer)
    await db.commit()
    return customer


async def make_order(
    db: AsyncSession,
    customer: Customer,
    grand_total: Decimal = Decimal("10000"),
    status: QuoteStatus = QuoteStatus.ORDERED,
) -> Quote:
    """Insert an order row directly, bypassing the lifecycle."""
    quote = Quote(
        quote_number=f"Q-{uuid.uuid4().hex[:6]}",
        order_number=f"ORD-TEST-{uuid.uuid4().hex[:6]}",
        customer_id=customer.id,
        customer_name=customer.display_name,
        sales_rep_id=SALES.actor_id,
        sales_rep_name=SALES.actor_name,
        status=status.value,
        discount_amount=Decimal("0"),
        sub_total=grand_total,
        tax=Decimal("0"),
        grand_total=grand_total,
        items=[],
    )
    db.add(quote)
    await db.commit()
    return quote


async def make_open_invoice(
    db: AsyncSession,
    quote: Quote,
    total: Decimal,
    due_date: date = date(2026, 1, 31),
) -> Invoice:
    """Insert an unpaid invoice row directly (existing customer debt)."""
    invoice = Invoice(
        invoice_number=f"INV-TEST-{uuid.uuid4().hex[:6]}",
        quote_id=quote.id,
        order_number=quote.order_number,
        customer_id=quote.customer_id,
        customer_name=quote.customer_name,
        invoice_type=InvoiceType.STANDARD.value,
        status=InvoiceStatus.ISSUED.value,
        issue_date=date(2026, 1, 1),
        due_date=due_date,
        net_amount=total,
        tax_amount=Decimal("0"),
        total_amount=total,
        amount_paid=Decimal("0"),
        balance_due=total,
        created_by=FINANCE.actor_id,
    )
    db.add(invoice)
    await db.commit()
    return invoice


def line(product: Product, width="10", height="10", pieces=1, **kwargs) -> LineItemCreate:
    """A 100 m² line of the product at its list price unless overridden."""
    return LineItemCreate(
        product_id=product.id,
        width=Decimal(width),
        height=Decimal(height),
        pieces=pieces,
        **kwargs,
    )
