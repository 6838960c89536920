"""
Pytest configuration and fixtures.

Ogni test lavora su un database SQLite temporaneo (aiosqlite) creato dai
metadati dei modelli: i servizi girano sullo stesso codice SQLAlchemy
usato con PostgreSQL, senza advisory lock.
"""

import itertools
import os
import tempfile
import uuid
from decimal import Decimal
from typing import Any, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.models import Account, Base, Budget, BudgetItem, Part
from app.services.notifications import CollectingNotificationSink


# ============================================================
# Database
# ============================================================


@pytest_asyncio.fixture
async def engine():
    """Crea un database SQLite temporaneo con tutte le tabelle."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()
        if os.path.exists(db_path):
            os.unlink(db_path)


@pytest.fixture
def session_factory(engine):
    """Session factory con le stesse opzioni di AsyncSessionLocal."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    """Sessione di lavoro del test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def reload():
    """
    Rilegge un oggetto dal database ignorando la cache di sessione.

    Necessario dopo un rollback, quando gli oggetti in sessione sono scaduti.
    """
    async def _reload(session: AsyncSession, model: Any, object_id: uuid.UUID) -> Any:
        result = await session.execute(
            select(model)
            .where(model.id == object_id)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one()

    return _reload


@pytest.fixture
def notifier():
    return CollectingNotificationSink()


# ============================================================
# Dati di base
# ============================================================


@pytest_asyncio.fixture
async def cash_account(db):
    """Conto cassa (primo in ordine alfabetico)."""
    account = Account(name="Cassa", is_active=True)
    db.add(account)
    await db.commit()
    return account


@pytest_asyncio.fixture
async def bank_account(db):
    account = Account(name="Conto corrente", is_active=True)
    db.add(account)
    await db.commit()
    return account


@pytest_asyncio.fixture
async def brake_pads(db):
    """Ricambio con 5 pezzi a magazzino."""
    part = Part(
        code="PF-001",
        description="Pastiglie freno anteriori",
        sale_price=Decimal("150.00"),
        stock_quantity=5,
        min_stock_level=2,
    )
    db.add(part)
    await db.commit()
    return part


@pytest_asyncio.fixture
async def oil_filter(db):
    """Ricambio con 1 pezzo a magazzino."""
    part = Part(
        code="FO-010",
        description="Filtro olio",
        sale_price=Decimal("40.00"),
        stock_quantity=1,
    )
    db.add(part)
    await db.commit()
    return part


@pytest.fixture
def budget_factory(db):
    """
    Crea preventivi persistiti.

    Senza voci crea un preventivo di sola manodopera da 1000.00.
    """
    numbers = itertools.count(1)

    async def _create(
        items: Optional[list[dict]] = None,
        status: str = "approved",
    ) -> Budget:
        if items is None:
            items = [
                {
                    "item_type": "service",
                    "description": "Manodopera",
                    "quantity": Decimal("1"),
                    "unit_price": Decimal("1000.00"),
                }
            ]
        budget = Budget(
            budget_number=next(numbers),
            customer_id=uuid.uuid4(),
            vehicle_id=uuid.uuid4(),
            status=status,
        )
        budget.items = [BudgetItem(position=i, **item) for i, item in enumerate(items)]
        budget.total_cost = sum(
            (item["quantity"] * item["unit_price"] for item in items),
            Decimal("0"),
        ).quantize(Decimal("0.01"))
        db.add(budget)
        await db.commit()
        return budget

    return _create


@pytest.fixture
def part_item():
    """Voce di preventivo per un ricambio."""
    def _item(part: Part, quantity: int, unit_price: str) -> dict:
        return {
            "item_type": "part",
            "description": part.description,
            "quantity": Decimal(quantity),
            "unit_price": Decimal(unit_price),
            "part_id": part.id,
        }

    return _item


@pytest.fixture
def service_item():
    def _item(description: str, unit_price: str) -> dict:
        return {
            "item_type": "service",
            "description": description,
            "quantity": Decimal("1"),
            "unit_price": Decimal(unit_price),
        }

    return _item
