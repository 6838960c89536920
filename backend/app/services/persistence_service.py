"""
Service Layer per la persistenza atomica di conversione e annullamento
Progetto: Officina Budget Engine

Unico punto in cui preventivo, ordine di servizio, movimenti finanziari e
giacenze vengono modificati insieme. Ogni operazione di commit è una sola
transazione: o tutto viene applicato, o nulla.

Le precondizioni sono verificate dentro la transazione con UPDATE
condizionali (stato del preventivo, giacenza disponibile): il loro
rowcount è la fonte di verità, non la lettura fatta dal chiamante.
"""

import datetime
import logging
import uuid
import zlib
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AlreadyCanceledError,
    AlreadyConvertedError,
    AppException,
    BusinessValidationError,
    HasSettledPaymentsError,
    InsufficientStockError,
    NotFoundError,
    PersistenceFailureError,
    PreconditionFailedError,
    UnbalancedAllocationError,
)
from app.models import (
    Account,
    Budget,
    LedgerTransaction,
    Part,
    ServiceOrder,
    ServiceOrderItem,
    StockMovement,
)
from app.schemas.budget import BudgetStatus
from app.schemas.ledger import TransactionDirection, TransactionStatus
from app.schemas.service_order import ServiceOrderStatus
from app.schemas.settlement import OrderDraft, StockDelta, TransactionDraft

# Logger per questo modulo
logger = logging.getLogger(__name__)

ORDER_NUMBER_LOCK = "service_order_number"


def advisory_lock_key(value: object) -> int:
    """Chiave int64 stabile per pg_advisory_xact_lock."""
    return zlib.crc32(str(value).encode("utf-8"))


class PersistenceService:
    """
    Letture e commit atomici usati dagli orchestratori.

    I metodi commit_* chiudono la transazione della sessione: commit in
    caso di successo, rollback in caso di qualunque errore. Gli errori di
    storage vengono tradotti in PersistenceFailureError.
    """

    # ------------------------------------------------------------
    # Letture
    # ------------------------------------------------------------

    async def read_budget(self, db: AsyncSession, budget_id: uuid.UUID) -> Budget:
        """
        Legge un preventivo con le sue voci, ignorando la cache di sessione.

        Raises:
            NotFoundError: Se il preventivo non esiste
        """
        result = await db.execute(
            select(Budget)
            .where(Budget.id == budget_id)
            .execution_options(populate_existing=True)
        )
        budget = result.scalar_one_or_none()
        if budget is None:
            raise NotFoundError(f"Preventivo {budget_id} non trovato")
        return budget

    async def read_order(self, db: AsyncSession, order_id: uuid.UUID) -> ServiceOrder:
        """
        Legge un ordine di servizio con voci, movimenti e giacenze.

        Raises:
            NotFoundError: Se l'ordine non esiste
        """
        result = await db.execute(
            select(ServiceOrder)
            .where(ServiceOrder.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Ordine di servizio {order_id} non trovato")
        return order

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    async def _advisory_lock(self, db: AsyncSession, key: object) -> None:
        # Solo PostgreSQL: sugli altri dialetti valgono lock di processo e
        # UPDATE condizionali
        if db.get_bind().dialect.name != "postgresql":
            return
        await db.execute(
            text("SELECT pg_advisory_xact_lock(:lock_key)"),
            {"lock_key": advisory_lock_key(key)},
        )

    async def _next_order_number(self, db: AsyncSession) -> int:
        """Prossimo numero progressivo di ordine (max + 1)."""
        await self._advisory_lock(db, ORDER_NUMBER_LOCK)
        result = await db.execute(select(func.max(ServiceOrder.order_number)))
        last_number = result.scalar_one_or_none()
        return (last_number or 0) + 1

    async def _check_accounts(
        self,
        db: AsyncSession,
        transaction_drafts: Sequence[TransactionDraft],
    ) -> None:
        """
        Verifica che i conti indicati sui movimenti esistano e siano attivi.

        Raises:
            BusinessValidationError: Conto inesistente o disattivato
        """
        account_ids = {d.account_id for d in transaction_drafts if d.account_id is not None}
        if not account_ids:
            return
        result = await db.execute(
            select(Account.id).where(
                Account.id.in_(account_ids),
                Account.is_active.is_(True),
            )
        )
        active_ids = set(result.scalars().all())
        for draft in transaction_drafts:
            if draft.account_id is not None and draft.account_id not in active_ids:
                raise BusinessValidationError(
                    f"Conto di destinazione {draft.account_id} inesistente o non attivo",
                    extra={"field": "account_id", "account_id": str(draft.account_id)},
                )

    async def _reserve_stock(
        self,
        db: AsyncSession,
        delta: StockDelta,
        now: datetime.datetime,
    ) -> None:
        """
        Scarica la giacenza con un UPDATE condizionale (stock >= quantità).

        Raises:
            InsufficientStockError: Se la giacenza non basta o il ricambio
                non è attivo
        """
        result = await db.execute(
            update(Part)
            .where(
                Part.id == delta.part_id,
                Part.is_active.is_(True),
                Part.stock_quantity >= delta.quantity,
            )
            .values(
                stock_quantity=Part.stock_quantity - delta.quantity,
                updated_at=now,
            )
        )
        if result.rowcount == 1:
            return

        part_result = await db.execute(
            select(Part)
            .where(Part.id == delta.part_id)
            .execution_options(populate_existing=True)
        )
        part = part_result.scalar_one_or_none()
        available = part.stock_quantity if part is not None and part.is_active else 0
        label = delta.description or (part.description if part is not None else str(delta.part_id))
        raise InsufficientStockError(
            f"Giacenza insufficiente per {label}: disponibili {available}, richiesti {delta.quantity}",
            extra={
                "part_id": str(delta.part_id),
                "available": available,
                "requested": delta.quantity,
            },
        )

    async def _release_stock(
        self,
        db: AsyncSession,
        delta: StockDelta,
        now: datetime.datetime,
    ) -> None:
        result = await db.execute(
            update(Part)
            .where(Part.id == delta.part_id)
            .values(
                stock_quantity=Part.stock_quantity + delta.quantity,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            raise PreconditionFailedError(
                f"Ricambio {delta.part_id} non più presente in anagrafica"
            )

    # ------------------------------------------------------------
    # Commit della conversione
    # ------------------------------------------------------------

    async def commit_conversion(
        self,
        db: AsyncSession,
        order_draft: OrderDraft,
        transaction_drafts: Sequence[TransactionDraft],
        stock_deltas: Sequence[StockDelta],
    ) -> ServiceOrder:
        """
        Crea atomicamente ordine, voci, movimenti e scarichi di magazzino e
        porta il preventivo in stato converted.

        Logica:
        1. Advisory lock sul preventivo (PostgreSQL) e SELECT FOR UPDATE
        2. Verifica stato approved e totale lordo invariato
        3. Nuova verifica della quadratura e dei conti di destinazione
        4. Scarico giacenze con UPDATE condizionale, in ordine di part_id
        5. Numerazione progressiva e creazione dell'ordine
        6. UPDATE condizionale approved → converted (at-most-once)
        7. Commit

        Raises:
            NotFoundError: Preventivo inesistente
            AlreadyConvertedError: Preventivo non più approvato
            UnbalancedAllocationError: Totale cambiato o allocazione non in quadratura
            BusinessValidationError: Conto di destinazione inesistente o non attivo
            InsufficientStockError: Giacenza insufficiente
            PersistenceFailureError: Errore di storage, nulla è stato applicato
        """
        budget_id = order_draft.budget_id
        now = datetime.datetime.now(datetime.timezone.utc)

        try:
            await self._advisory_lock(db, budget_id)

            result = await db.execute(
                select(Budget)
                .where(Budget.id == budget_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            budget = result.scalar_one_or_none()
            if budget is None:
                raise NotFoundError(f"Preventivo {budget_id} non trovato")
            if budget.status != BudgetStatus.APPROVED.value or budget.service_order_id is not None:
                raise AlreadyConvertedError(
                    extra={"budget_id": str(budget_id), "status": budget.status}
                )
            if budget.total_cost != order_draft.gross_amount:
                raise UnbalancedAllocationError(
                    "Il totale del preventivo è cambiato: aggiornare la regolazione",
                    extra={
                        "expected_gross": str(order_draft.gross_amount),
                        "current_gross": str(budget.total_cost),
                    },
                )

            allocated = sum((t.amount for t in transaction_drafts), Decimal("0"))
            difference = order_draft.total_amount - allocated
            if abs(difference) > settings.allocation_tolerance:
                raise UnbalancedAllocationError(
                    f"Valori divergenti: netto {order_draft.total_amount}, allocato {allocated}",
                    extra={"difference": str(difference)},
                )

            await self._check_accounts(db, transaction_drafts)

            # Ricambi sempre nello stesso ordine: i lock di riga non si incrociano
            for delta in sorted(stock_deltas, key=lambda d: d.part_id):
                await self._reserve_stock(db, delta, now)

            order_number = await self._next_order_number(db)
            order = ServiceOrder(
                order_number=order_number,
                budget_id=budget_id,
                customer_id=order_draft.customer_id,
                vehicle_id=order_draft.vehicle_id,
                status=ServiceOrderStatus.PENDING.value,
                gross_amount=order_draft.gross_amount,
                discount_amount=order_draft.discount_amount,
                total_amount=order_draft.total_amount,
            )
            order.items = [
                ServiceOrderItem(
                    position=item.position,
                    item_type=item.item_type.value,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    unit_cost=item.unit_cost,
                    part_id=item.part_id,
                )
                for item in order_draft.items
            ]
            db.add(order)
            await db.flush()

            reference = f"OdS {order.display_number}"
            for draft in transaction_drafts:
                db.add(
                    LedgerTransaction(
                        service_order_id=order.id,
                        amount=draft.amount,
                        direction=TransactionDirection.INCOME.value,
                        status=draft.status.value,
                        payment_method=draft.payment_method.value,
                        account_id=draft.account_id,
                        description=f"{reference} - {draft.description}",
                        due_date=draft.due_date,
                        transaction_date=draft.transaction_date,
                        installment_number=draft.installment_number,
                        notes=draft.notes,
                    )
                )
            for delta in stock_deltas:
                db.add(
                    StockMovement(
                        part_id=delta.part_id,
                        service_order_id=order.id,
                        movement_type="out",
                        quantity=delta.quantity,
                        reference=reference,
                        notes="Scarico per conversione preventivo",
                    )
                )

            link = await db.execute(
                update(Budget)
                .where(
                    Budget.id == budget_id,
                    Budget.status == BudgetStatus.APPROVED.value,
                    Budget.service_order_id.is_(None),
                )
                .values(
                    status=BudgetStatus.CONVERTED.value,
                    service_order_id=order.id,
                    updated_at=now,
                )
            )
            if link.rowcount != 1:
                raise AlreadyConvertedError(extra={"budget_id": str(budget_id)})

            await db.commit()

        except AppException:
            await db.rollback()
            raise
        except IntegrityError as exc:
            await db.rollback()
            message = str(exc.orig)
            if "uq_service_orders_active_budget" in message or "service_orders.budget_id" in message:
                raise AlreadyConvertedError(extra={"budget_id": str(budget_id)}) from exc
            logger.exception("Violazione di integrità nella conversione del preventivo %s", budget_id)
            raise PersistenceFailureError() from exc
        except (SQLAlchemyError, TimeoutError) as exc:
            await db.rollback()
            logger.exception("Errore di persistenza nella conversione del preventivo %s", budget_id)
            raise PersistenceFailureError() from exc

        logger.info(
            "Preventivo %s convertito nell'ordine %s (%d movimenti, %d scarichi)",
            budget_id, order.display_number, len(transaction_drafts), len(stock_deltas),
        )
        return await self.read_order(db, order.id)

    # ------------------------------------------------------------
    # Commit dell'annullamento
    # ------------------------------------------------------------

    async def commit_reversal(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        stock_restores: Sequence[StockDelta],
        transaction_voids: Sequence[uuid.UUID],
        reason: str,
    ) -> ServiceOrder:
        """
        Annulla atomicamente un ordine di servizio.

        Ripristina le giacenze, annulla i movimenti pendenti, riporta il
        preventivo in stato approved scollegandolo dall'ordine e marca
        l'ordine come canceled.

        Raises:
            NotFoundError: Ordine inesistente
            AlreadyCanceledError: Ordine già annullato
            PreconditionFailedError: Ordine completato o dati cambiati nel frattempo
            HasSettledPaymentsError: Esistono movimenti incassati
            PersistenceFailureError: Errore di storage, nulla è stato applicato
        """
        now = datetime.datetime.now(datetime.timezone.utc)

        try:
            budget_result = await db.execute(
                select(ServiceOrder.budget_id).where(ServiceOrder.id == order_id)
            )
            budget_id = budget_result.scalar_one_or_none()
            if budget_id is None:
                raise NotFoundError(f"Ordine di servizio {order_id} non trovato")
            await self._advisory_lock(db, budget_id)

            result = await db.execute(
                select(ServiceOrder)
                .where(ServiceOrder.id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            order = result.scalar_one()
            if order.status == ServiceOrderStatus.CANCELED.value:
                raise AlreadyCanceledError(extra={"order_id": str(order_id)})
            if order.status == ServiceOrderStatus.COMPLETED.value:
                raise PreconditionFailedError(
                    "Un ordine completato non può essere annullato",
                    extra={"order_id": str(order_id), "status": order.status},
                )

            paid_result = await db.execute(
                select(func.count())
                .select_from(LedgerTransaction)
                .where(
                    LedgerTransaction.service_order_id == order_id,
                    LedgerTransaction.status == TransactionStatus.PAID.value,
                )
            )
            paid_count = paid_result.scalar_one()
            if paid_count:
                raise HasSettledPaymentsError(extra={"paid_transactions": paid_count})

            for delta in sorted(stock_restores, key=lambda d: d.part_id):
                await self._release_stock(db, delta, now)
                db.add(
                    StockMovement(
                        part_id=delta.part_id,
                        service_order_id=order_id,
                        movement_type="in",
                        quantity=delta.quantity,
                        reference=f"OdS {order.display_number}",
                        notes="Ripristino per annullamento ordine",
                    )
                )

            if transaction_voids:
                voided = await db.execute(
                    update(LedgerTransaction)
                    .where(
                        LedgerTransaction.id.in_(list(transaction_voids)),
                        LedgerTransaction.service_order_id == order_id,
                        LedgerTransaction.status == TransactionStatus.PENDING.value,
                    )
                    .values(
                        status=TransactionStatus.VOIDED.value,
                        voided_at=now,
                        void_reason=reason,
                        updated_at=now,
                    )
                )
                if voided.rowcount != len(transaction_voids):
                    raise PreconditionFailedError(
                        "I movimenti dell'ordine sono cambiati: aggiornare e riprovare"
                    )

            pending_result = await db.execute(
                select(func.count())
                .select_from(LedgerTransaction)
                .where(
                    LedgerTransaction.service_order_id == order_id,
                    LedgerTransaction.status == TransactionStatus.PENDING.value,
                )
            )
            if pending_result.scalar_one():
                raise PreconditionFailedError(
                    "I movimenti dell'ordine sono cambiati: aggiornare e riprovare"
                )

            reverted = await db.execute(
                update(Budget)
                .where(
                    Budget.id == order.budget_id,
                    Budget.status == BudgetStatus.CONVERTED.value,
                    Budget.service_order_id == order_id,
                )
                .values(
                    status=BudgetStatus.APPROVED.value,
                    service_order_id=None,
                    updated_at=now,
                )
            )
            if reverted.rowcount != 1:
                raise PreconditionFailedError(
                    "Il preventivo di origine non è collegato a questo ordine"
                )

            canceled = await db.execute(
                update(ServiceOrder)
                .where(
                    ServiceOrder.id == order_id,
                    ServiceOrder.status.notin_(
                        [ServiceOrderStatus.CANCELED.value, ServiceOrderStatus.COMPLETED.value]
                    ),
                )
                .values(
                    status=ServiceOrderStatus.CANCELED.value,
                    canceled_at=now,
                    cancel_reason=reason,
                    updated_at=now,
                )
            )
            if canceled.rowcount != 1:
                raise AlreadyCanceledError(extra={"order_id": str(order_id)})

            await db.commit()

        except AppException:
            await db.rollback()
            raise
        except (SQLAlchemyError, TimeoutError) as exc:
            await db.rollback()
            logger.exception("Errore di persistenza nell'annullamento dell'ordine %s", order_id)
            raise PersistenceFailureError() from exc

        logger.info(
            "Ordine %s annullato: %d movimenti annullati, %d ricambi ripristinati",
            order_id, len(transaction_voids), len(stock_restores),
        )
        return await self.read_order(db, order_id)
