"""
Tests per conti e movimenti finanziari.
"""

import datetime
import uuid
from decimal import Decimal

import pytest

from app.core.exceptions import BusinessValidationError, NotFoundError, PreconditionFailedError
from app.core.locks import KeyedLock
from app.models import Account, LedgerTransaction, ServiceOrder
from app.schemas.ledger import PaymentMethod, TransactionReverse, TransactionSettle, TransactionStatus
from app.schemas.settlement import ConversionRequest, PaymentLineInput, PaymentLineStatus
from app.services.conversion_service import ConversionService
from app.services.ledger_service import LedgerService


@pytest.fixture
def service():
    return LedgerService()


@pytest.fixture
def pending_order(db, reload, budget_factory, notifier):
    """Converte un preventivo da 1000 con un boleto da incassare; restituisce l'ordine."""
    async def _create() -> ServiceOrder:
        budget = await budget_factory()
        converter = ConversionService(
            locks=KeyedLock(),
            notifier=notifier,
            today=lambda: datetime.date(2026, 1, 10),
        )
        result = await converter.convert(
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
        return await reload(db, ServiceOrder, result.order_id)

    return _create


# ============================================================
# Tests per i conti
# ============================================================


class TestAccounts:
    """Anagrafica conti."""

    async def test_list_active_accounts_by_name(self, db, service, cash_account, bank_account):
        db.add(Account(name="Vecchia cassa", is_active=False))
        await db.commit()

        accounts = await service.list_accounts(db)

        assert [a.name for a in accounts] == ["Cassa", "Conto corrente"]

    async def test_include_inactive(self, db, service, cash_account):
        db.add(Account(name="Vecchia cassa", is_active=False))
        await db.commit()

        accounts = await service.list_accounts(db, include_inactive=True)

        assert len(accounts) == 2

    async def test_account_not_found(self, db, service):
        with pytest.raises(NotFoundError):
            await service.get_account(db, uuid.uuid4())


# ============================================================
# Tests per incasso e storno
# ============================================================


class TestSettle:
    """Registrazione degli incassi sui movimenti pendenti."""

    async def test_full_settlement(self, db, service, pending_order, cash_account):
        order = await pending_order()
        transaction_id = order.transactions[0].id

        settled = await service.settle_transaction(
            db,
            transaction_id,
            TransactionSettle(account_id=cash_account.id, payment_method=PaymentMethod.PIX),
        )
        await db.commit()

        assert settled.id == transaction_id
        assert settled.status == "paid"
        assert settled.account_id == cash_account.id
        assert settled.payment_method == "pix"
        assert settled.transaction_date is not None

    async def test_partial_settlement_splits_transaction(self, db, service, pending_order, cash_account):
        order = await pending_order()
        transaction_id = order.transactions[0].id

        settled = await service.settle_transaction(
            db,
            transaction_id,
            TransactionSettle(account_id=cash_account.id, amount=Decimal("400")),
        )
        await db.commit()

        assert settled.id != transaction_id
        assert settled.amount == Decimal("400.00")
        assert settled.status == "paid"
        assert settled.description.endswith("(parziale)")
        assert settled.service_order_id == order.id

        transactions = await service.list_order_transactions(db, order.id)
        amounts = {t.status: t.amount for t in transactions}
        assert amounts == {"paid": Decimal("400.00"), "pending": Decimal("600.00")}

        only_pending = await service.list_order_transactions(
            db, order.id, status_filter=TransactionStatus.PENDING
        )
        assert [t.id for t in only_pending] == [transaction_id]

    async def test_amount_above_due_rejected(self, db, service, pending_order, cash_account):
        order = await pending_order()

        with pytest.raises(BusinessValidationError) as exc_info:
            await service.settle_transaction(
                db,
                order.transactions[0].id,
                TransactionSettle(account_id=cash_account.id, amount=Decimal("1000.01")),
            )

        assert exc_info.value.extra == {"field": "amount"}

    async def test_inactive_account_rejected(self, db, service, pending_order):
        account = Account(name="Conto chiuso", is_active=False)
        db.add(account)
        await db.commit()
        order = await pending_order()

        with pytest.raises(BusinessValidationError):
            await service.settle_transaction(
                db, order.transactions[0].id, TransactionSettle(account_id=account.id)
            )

    async def test_only_pending_can_be_settled(self, db, service, pending_order, cash_account):
        order = await pending_order()
        transaction_id = order.transactions[0].id
        await service.settle_transaction(db, transaction_id, TransactionSettle(account_id=cash_account.id))
        await db.commit()

        with pytest.raises(PreconditionFailedError):
            await service.settle_transaction(
                db, transaction_id, TransactionSettle(account_id=cash_account.id)
            )

    async def test_transaction_not_found(self, db, service, cash_account):
        with pytest.raises(NotFoundError):
            await service.settle_transaction(
                db, uuid.uuid4(), TransactionSettle(account_id=cash_account.id)
            )


class TestReverse:
    """Storno degli incassi."""

    async def test_reverse_paid_transaction(self, db, reload, service, pending_order, cash_account):
        order = await pending_order()
        transaction_id = order.transactions[0].id
        await service.settle_transaction(db, transaction_id, TransactionSettle(account_id=cash_account.id))
        await db.commit()

        reversed_ = await service.reverse_transaction(
            db, transaction_id, TransactionReverse(reason="  Incasso duplicato  ")
        )
        await db.commit()

        assert reversed_.status == "reversed"
        assert reversed_.void_reason == "Incasso duplicato"
        assert reversed_.voided_at is not None
        transaction = await reload(db, LedgerTransaction, transaction_id)
        assert transaction.amount == Decimal("1000.00")

    async def test_pending_cannot_be_reversed(self, db, service, pending_order):
        order = await pending_order()

        with pytest.raises(PreconditionFailedError):
            await service.reverse_transaction(
                db, order.transactions[0].id, TransactionReverse(reason="Storno non dovuto")
            )

    def test_reverse_reason_is_required(self):
        with pytest.raises(ValueError):
            TransactionReverse(reason="no")
