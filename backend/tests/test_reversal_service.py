"""
Tests per l'annullamento degli Ordini di Servizio.
"""

import datetime
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    AlreadyCanceledError,
    BusinessValidationError,
    HasSettledPaymentsError,
    NotFoundError,
    PreconditionFailedError,
)
from app.core.locks import KeyedLock
from app.models import Budget, LedgerTransaction, Part, ServiceOrder, StockMovement
from app.schemas.ledger import PaymentMethod, TransactionReverse
from app.schemas.service_order import ServiceOrderStatus
from app.schemas.settlement import ConversionRequest, PaymentLineInput, PaymentLineStatus
from app.services.conversion_service import ConversionService
from app.services.ledger_service import LedgerService
from app.services.notifications import CollectingNotificationSink
from app.services.persistence_service import PersistenceService
from app.services.reversal_service import ReversalService, build_stock_restores
from app.services.service_order_service import ServiceOrderService

TODAY = datetime.date(2026, 1, 10)
REASON = "Cliente ha rinunciato al lavoro"


@pytest.fixture
def locks():
    """Lo stesso registro di lock per conversione e annullamento."""
    return KeyedLock()


@pytest.fixture
def converter(locks):
    return ConversionService(
        persistence=PersistenceService(),
        locks=locks,
        notifier=CollectingNotificationSink(),
        today=lambda: TODAY,
    )


@pytest.fixture
def service(locks, notifier):
    return ReversalService(persistence=PersistenceService(), locks=locks, notifier=notifier)


@pytest.fixture
def convert(db, converter):
    """Converte un preventivo con le righe di pagamento indicate."""
    async def _convert(budget_id: uuid.UUID, *lines: PaymentLineInput):
        return await converter.convert(
            db, ConversionRequest(budget_id=budget_id, payment_lines=list(lines))
        )

    return _convert


def pending(amount: str) -> PaymentLineInput:
    return PaymentLineInput(
        method=PaymentMethod.BOLETO,
        status=PaymentLineStatus.PENDING,
        amount=Decimal(amount),
    )


def paid(amount: str, account_id: uuid.UUID) -> PaymentLineInput:
    return PaymentLineInput(
        method=PaymentMethod.CASH,
        status=PaymentLineStatus.PAID,
        account_id=account_id,
        amount=Decimal(amount),
    )


# ============================================================
# Tests per l'annullamento riuscito
# ============================================================


class TestCancel:
    """Annullamento di ordini senza incassi registrati."""

    async def test_cancel_restores_everything(
        self, db, reload, service, notifier, convert, budget_factory, part_item, service_item, brake_pads
    ):
        part_id = brake_pads.id
        budget = await budget_factory(
            items=[part_item(brake_pads, 2, "150.00"), service_item("Montaggio", "100.00")]
        )
        budget_id = budget.id
        conversion = await convert(budget_id, pending("400"))

        result = await service.cancel(db, conversion.order_id, REASON)

        assert result.order_id == conversion.order_id
        assert result.budget_id == budget_id
        assert result.voided_transactions == 1
        assert result.restored_parts == 1
        assert result.canceled_at is not None

        budget = await reload(db, Budget, budget_id)
        assert budget.status == "approved"
        assert budget.service_order_id is None

        assert (await reload(db, Part, part_id)).stock_quantity == 5

        order = await reload(db, ServiceOrder, conversion.order_id)
        assert order.status == "canceled"
        assert order.cancel_reason == REASON
        assert sorted(m.movement_type for m in order.stock_movements) == ["in", "out"]

        transaction = order.transactions[0]
        assert transaction.status == "voided"
        assert transaction.void_reason == REASON
        assert transaction.voided_at is not None

        assert notifier.notifications[-1].title == "Ordine annullato"

    async def test_restores_sorted_by_part_id(
        self, db, reload, convert, budget_factory, part_item, brake_pads, oil_filter
    ):
        pads_id, filter_id = brake_pads.id, oil_filter.id
        budget = await budget_factory(
            items=[part_item(oil_filter, 1, "40.00"), part_item(brake_pads, 2, "150.00")]
        )
        conversion = await convert(budget.id, pending("340"))

        order = await reload(db, ServiceOrder, conversion.order_id)
        restores = build_stock_restores(order)

        assert [r.part_id for r in restores] == sorted([pads_id, filter_id])
        quantities = {r.part_id: r.quantity for r in restores}
        assert quantities == {pads_id: 2, filter_id: 1}

    async def test_budget_can_be_converted_again(self, db, service, convert, budget_factory):
        budget = await budget_factory()
        budget_id = budget.id
        first = await convert(budget_id, pending("1000"))

        await service.cancel(db, first.order_id, REASON)
        second = await convert(budget_id, pending("1000"))

        assert second.order_id != first.order_id
        assert second.order_number == first.order_number + 1

    async def test_reason_is_stripped(self, db, reload, service, convert, budget_factory):
        budget = await budget_factory()
        conversion = await convert(budget.id, pending("1000"))

        await service.cancel(db, conversion.order_id, "   Errore di inserimento   ")

        order = await reload(db, ServiceOrder, conversion.order_id)
        assert order.cancel_reason == "Errore di inserimento"

    async def test_cancel_after_reversing_payment(
        self, db, reload, service, convert, budget_factory, cash_account
    ):
        """Dopo lo storno dell'incasso l'ordine può essere annullato."""
        budget = await budget_factory()
        conversion = await convert(budget.id, paid("1000", cash_account.id))
        order = await reload(db, ServiceOrder, conversion.order_id)
        transaction_id = order.transactions[0].id

        await LedgerService().reverse_transaction(
            db, transaction_id, TransactionReverse(reason="Incasso registrato per errore")
        )
        await db.commit()

        result = await service.cancel(db, conversion.order_id, REASON)

        assert result.voided_transactions == 0
        transaction = await reload(db, LedgerTransaction, transaction_id)
        assert transaction.status == "reversed"


# ============================================================
# Tests per gli annullamenti rifiutati
# ============================================================


class TestCancelRejected:
    """Un annullamento rifiutato non modifica nulla."""

    async def test_settled_payments_block_cancel(
        self, db, reload, service, convert, budget_factory, part_item, brake_pads, cash_account
    ):
        part_id = brake_pads.id
        budget = await budget_factory(items=[part_item(brake_pads, 2, "150.00")])
        budget_id = budget.id
        conversion = await convert(budget_id, paid("100", cash_account.id), pending("200"))

        with pytest.raises(HasSettledPaymentsError) as exc_info:
            await service.cancel(db, conversion.order_id, REASON)

        assert exc_info.value.extra == {"paid_transactions": 1}
        assert "storno" in exc_info.value.detail

        budget = await reload(db, Budget, budget_id)
        assert budget.status == "converted"
        assert budget.service_order_id == conversion.order_id
        assert (await reload(db, Part, part_id)).stock_quantity == 3

        order = await reload(db, ServiceOrder, conversion.order_id)
        assert order.status == "pending"
        assert sorted(t.status for t in order.transactions) == ["paid", "pending"]

    async def test_settled_payment_checked_inside_commit(
        self, db, reload, convert, budget_factory, cash_account
    ):
        """La verifica vincolante è nella transazione di annullamento."""
        budget = await budget_factory()
        budget_id = budget.id
        conversion = await convert(budget_id, paid("1000", cash_account.id))

        with pytest.raises(HasSettledPaymentsError):
            await PersistenceService().commit_reversal(db, conversion.order_id, [], [], REASON)

        assert (await reload(db, Budget, budget_id)).status == "converted"

    @pytest.mark.parametrize("reason", ["", "    ", "abc", " ab  "])
    async def test_short_reason(self, db, reload, service, convert, budget_factory, reason):
        budget = await budget_factory()
        conversion = await convert(budget.id, pending("1000"))

        with pytest.raises(BusinessValidationError) as exc_info:
            await service.cancel(db, conversion.order_id, reason)

        assert exc_info.value.extra == {"field": "reason"}
        order = await reload(db, ServiceOrder, conversion.order_id)
        assert order.status == "pending"

    async def test_already_canceled(self, db, service, convert, budget_factory):
        budget = await budget_factory()
        conversion = await convert(budget.id, pending("1000"))
        await service.cancel(db, conversion.order_id, REASON)

        with pytest.raises(AlreadyCanceledError):
            await service.cancel(db, conversion.order_id, REASON)

    async def test_completed_order_not_cancelable(self, db, service, convert, budget_factory):
        budget = await budget_factory()
        conversion = await convert(budget.id, pending("1000"))
        orders = ServiceOrderService()
        for status in (
            ServiceOrderStatus.IN_PROGRESS,
            ServiceOrderStatus.AWAITING_PAYMENT,
            ServiceOrderStatus.COMPLETED,
        ):
            await orders.change_status(db, conversion.order_id, status)
        await db.commit()

        with pytest.raises(PreconditionFailedError):
            await service.cancel(db, conversion.order_id, REASON)

    async def test_order_not_found(self, db, service):
        with pytest.raises(NotFoundError):
            await service.cancel(db, uuid.uuid4(), REASON)

    async def test_stock_movements_of_canceled_order(
        self, db, service, convert, budget_factory, part_item, brake_pads
    ):
        part_id = brake_pads.id
        budget = await budget_factory(items=[part_item(brake_pads, 3, "150.00")])
        conversion = await convert(budget.id, pending("450"))

        await service.cancel(db, conversion.order_id, REASON)

        result = await db.execute(
            select(StockMovement)
            .where(StockMovement.part_id == part_id)
            .order_by(StockMovement.movement_type)
        )
        movements = result.scalars().all()
        assert [(m.movement_type, m.quantity) for m in movements] == [("in", 3), ("out", 3)]
