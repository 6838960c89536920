"""
Tests per il ciclo di vita degli Ordini di Servizio.
"""

import datetime
import uuid
from decimal import Decimal

import pytest

from app.core.exceptions import BusinessValidationError, NotFoundError
from app.core.locks import KeyedLock
from app.schemas.ledger import PaymentMethod
from app.schemas.service_order import ServiceOrderStatus
from app.schemas.settlement import ConversionRequest, PaymentLineInput, PaymentLineStatus
from app.services.conversion_service import ConversionService
from app.services.service_order_service import ServiceOrderService


@pytest.fixture
def service():
    return ServiceOrderService()


@pytest.fixture
def make_order(db, budget_factory, notifier):
    """Crea un ordine convertendo un nuovo preventivo da 1000."""
    converter = ConversionService(
        locks=KeyedLock(),
        notifier=notifier,
        today=lambda: datetime.date(2026, 1, 10),
    )

    async def _create():
        budget = await budget_factory()
        return await converter.convert(
            db,
            ConversionRequest(
                budget_id=budget.id,
                payment_lines=[
                    PaymentLineInput(
                        method=PaymentMethod.BOLETO,
                        status=PaymentLineStatus.PENDING,
                        amount=Decimal("1000"),
                    )
                ],
            ),
        )

    return _create


# ============================================================
# Tests per le letture
# ============================================================


class TestQueries:
    """Lista, dettaglio e ricerca per numero."""

    async def test_get_all_newest_first(self, db, service, make_order):
        first = await make_order()
        second = await make_order()

        orders, total = await service.get_all(db)

        assert total == 2
        assert [o.id for o in orders] == [second.order_id, first.order_id]

    async def test_get_all_filters(self, db, service, make_order):
        first = await make_order()
        await make_order()
        await service.change_status(db, first.order_id, ServiceOrderStatus.IN_PROGRESS)
        await db.commit()

        by_status, total = await service.get_all(db, status_filter=ServiceOrderStatus.IN_PROGRESS)
        assert total == 1
        assert by_status[0].id == first.order_id

        by_budget, total = await service.get_all(db, budget_id=first.budget_id)
        assert total == 1
        assert by_budget[0].budget_id == first.budget_id

    async def test_pagination(self, db, service, make_order):
        for _ in range(3):
            await make_order()

        page, total = await service.get_all(db, page=2, per_page=2)

        assert total == 3
        assert len(page) == 1
        assert page[0].order_number == 1

    async def test_get_by_number(self, db, service, make_order):
        result = await make_order()

        order = await service.get_by_number(db, result.order_number)

        assert order.id == result.order_id
        assert order.display_number == "000001"

    async def test_not_found(self, db, service):
        with pytest.raises(NotFoundError):
            await service.get_by_id(db, uuid.uuid4())
        with pytest.raises(NotFoundError):
            await service.get_by_number(db, 42)


# ============================================================
# Tests per le transizioni di stato
# ============================================================


class TestChangeStatus:
    """Transizioni operative dell'ordine."""

    async def test_full_lifecycle(self, db, service, make_order):
        result = await make_order()

        order = await service.change_status(db, result.order_id, ServiceOrderStatus.IN_PROGRESS)
        assert order.status == "in_progress"
        order = await service.change_status(db, result.order_id, ServiceOrderStatus.AWAITING_PAYMENT)
        assert order.completed_at is None
        order = await service.change_status(db, result.order_id, ServiceOrderStatus.COMPLETED)

        assert order.status == "completed"
        assert order.completed_at is not None

    async def test_back_to_pending(self, db, service, make_order):
        result = await make_order()
        await service.change_status(db, result.order_id, ServiceOrderStatus.IN_PROGRESS)

        order = await service.change_status(db, result.order_id, ServiceOrderStatus.PENDING)

        assert order.status == "pending"

    async def test_invalid_transition(self, db, service, make_order):
        result = await make_order()

        with pytest.raises(BusinessValidationError):
            await service.change_status(db, result.order_id, ServiceOrderStatus.COMPLETED)

    async def test_cancel_only_through_reversal(self, db, service, make_order):
        result = await make_order()

        with pytest.raises(BusinessValidationError):
            await service.change_status(db, result.order_id, ServiceOrderStatus.CANCELED)

    async def test_completed_is_final(self, db, service, make_order):
        result = await make_order()
        for status in (
            ServiceOrderStatus.IN_PROGRESS,
            ServiceOrderStatus.AWAITING_PAYMENT,
            ServiceOrderStatus.COMPLETED,
        ):
            await service.change_status(db, result.order_id, status)

        with pytest.raises(BusinessValidationError):
            await service.change_status(db, result.order_id, ServiceOrderStatus.IN_PROGRESS)
