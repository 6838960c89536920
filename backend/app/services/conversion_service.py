"""
Service Layer per la conversione Preventivo → Ordine di Servizio
Progetto: Officina Budget Engine

Orchestrazione della conversione: verifica preliminare, calcolo
dell'allocazione sul totale persistito, costruzione delle bozze e commit
atomico tramite PersistenceService. Ogni errore viene propagato al
chiamante: nessun retry automatico, nessun errore silenziato.
"""

import datetime
import logging
import uuid
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AlreadyConvertedError,
    BusinessValidationError,
    PersistenceFailureError,
    UnbalancedAllocationError,
)
from app.core.locks import KeyedLock, LockTimeoutError, budget_locks
from app.models import Budget, Part
from app.schemas.budget import BudgetItemType, BudgetStatus, ConversionReadiness
from app.schemas.ledger import PAYMENT_METHOD_LABELS, PaymentMethod
from app.schemas.settlement import (
    AllocationPreviewRequest,
    AllocationSummary,
    ConversionRequest,
    ConversionResult,
    OrderDraft,
    OrderItemDraft,
    PaymentLineStatus,
    StockDelta,
    TransactionDraft,
)
from app.services.allocation import compute_allocation, resolve_discount
from app.services.notifications import LoggingNotificationSink, Notification, NotificationSink, Severity
from app.services.payment_builder import local_today
from app.services.persistence_service import PersistenceService

# Logger per questo modulo
logger = logging.getLogger(__name__)


def build_stock_deltas(budget: Budget) -> list[StockDelta]:
    """
    Aggrega le quantità da scaricare per ricambio, in ordine di part_id.

    Raises:
        BusinessValidationError: Se una voce ricambio ha quantità non intera
    """
    totals: dict[uuid.UUID, int] = {}
    labels: dict[uuid.UUID, str] = {}
    for item in budget.items:
        if item.item_type != BudgetItemType.PART.value or item.part_id is None:
            continue
        quantity = Decimal(item.quantity)
        if quantity != quantity.to_integral_value():
            raise BusinessValidationError(
                f"La quantità del ricambio '{item.description}' deve essere intera"
            )
        totals[item.part_id] = totals.get(item.part_id, 0) + int(quantity)
        labels.setdefault(item.part_id, item.description)
    return [
        StockDelta(part_id=part_id, quantity=quantity, description=labels[part_id])
        for part_id, quantity in sorted(totals.items())
    ]


class ConversionService:
    """
    Converte un preventivo approvato in un ordine di servizio.

    La conversione di uno stesso preventivo è serializzata nel processo da
    un lock per chiave; l'unicità è comunque garantita dall'UPDATE
    condizionale eseguito dal servizio di persistenza.
    """

    def __init__(
        self,
        persistence: Optional[PersistenceService] = None,
        locks: Optional[KeyedLock] = None,
        notifier: Optional[NotificationSink] = None,
        today: Optional[Callable[[], datetime.date]] = None,
    ) -> None:
        self.persistence = persistence or PersistenceService()
        self.locks = locks or budget_locks
        self.notifier = notifier or LoggingNotificationSink()
        self._today = today or local_today

    # ------------------------------------------------------------
    # Verifiche preliminari
    # ------------------------------------------------------------

    async def check_conversion_readiness(
        self,
        db: AsyncSession,
        budget_id: uuid.UUID,
    ) -> ConversionReadiness:
        """
        Elenca i motivi per cui la conversione fallirebbe adesso.

        Controlla lo stato del preventivo e la giacenza di ogni ricambio.
        Non acquisisce lock: l'esito è indicativo, la verifica
        vincolante avviene nel commit.
        """
        budget = await self.persistence.read_budget(db, budget_id)
        problems: list[str] = []

        if budget.status != BudgetStatus.APPROVED.value:
            problems.append(
                f"Il preventivo è in stato '{budget.status}': solo i preventivi approvati "
                "possono essere convertiti"
            )

        try:
            deltas = build_stock_deltas(budget)
        except BusinessValidationError as exc:
            problems.append(exc.detail)
            deltas = []

        if deltas:
            result = await db.execute(
                select(Part)
                .where(Part.id.in_([d.part_id for d in deltas]))
                .execution_options(populate_existing=True)
            )
            parts = {part.id: part for part in result.scalars().all()}
            for delta in deltas:
                part = parts.get(delta.part_id)
                if part is None or not part.is_active:
                    problems.append(f"Ricambio '{delta.description}' non disponibile")
                elif part.stock_quantity < delta.quantity:
                    problems.append(
                        f"Giacenza insufficiente per '{delta.description}': "
                        f"disponibili {part.stock_quantity}, richiesti {delta.quantity}"
                    )

        return ConversionReadiness(
            budget_id=budget.id,
            status=BudgetStatus(budget.status),
            ready=not problems,
            problems=problems,
        )

    async def preview_allocation(
        self,
        db: AsyncSession,
        budget_id: uuid.UUID,
        data: AllocationPreviewRequest,
    ) -> AllocationSummary:
        """Riepilogo allocazione calcolato sul totale persistito del preventivo."""
        budget = await self.persistence.read_budget(db, budget_id)
        discount = resolve_discount(budget.total_cost, data.discount_value, data.discount_type)
        return compute_allocation(
            budget.total_cost,
            discount,
            data.payment_amounts,
            data.installment_values,
        )

    # ------------------------------------------------------------
    # Costruzione delle bozze
    # ------------------------------------------------------------

    def _build_order_draft(self, budget: Budget, allocation: AllocationSummary) -> OrderDraft:
        return OrderDraft(
            budget_id=budget.id,
            customer_id=budget.customer_id,
            vehicle_id=budget.vehicle_id,
            gross_amount=allocation.gross,
            discount_amount=allocation.discount,
            total_amount=allocation.net,
            items=tuple(
                OrderItemDraft(
                    position=item.position,
                    item_type=BudgetItemType(item.item_type),
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    unit_cost=item.unit_cost,
                    part_id=item.part_id,
                )
                for item in budget.items
            ),
        )

    def _build_transaction_drafts(
        self,
        budget: Budget,
        request: ConversionRequest,
        now: datetime.datetime,
        today: datetime.date,
    ) -> list[TransactionDraft]:
        """
        Righe paid → incassate adesso; righe pending e rate → da incassare
        alla scadenza.
        """
        drafts: list[TransactionDraft] = []

        for line in request.payment_lines:
            label = PAYMENT_METHOD_LABELS[line.method]
            if line.status == PaymentLineStatus.PAID:
                drafts.append(
                    TransactionDraft(
                        amount=line.amount,
                        status=PaymentLineStatus.PAID,
                        payment_method=line.method,
                        account_id=line.account_id,
                        description=f"Incasso preventivo #{budget.budget_number} ({label})",
                        due_date=today,
                        transaction_date=now,
                        notes=line.note,
                    )
                )
            else:
                drafts.append(
                    TransactionDraft(
                        amount=line.amount,
                        status=PaymentLineStatus.PENDING,
                        payment_method=line.method,
                        account_id=line.account_id,
                        description=f"Da incassare preventivo #{budget.budget_number} ({label})",
                        due_date=line.due_date or today,
                        notes=line.note,
                    )
                )

        total_installments = len(request.installments)
        for installment in request.installments:
            drafts.append(
                TransactionDraft(
                    amount=installment.value,
                    status=PaymentLineStatus.PENDING,
                    payment_method=PaymentMethod(settings.default_installment_method),
                    description=(
                        f"Rata {installment.number}/{total_installments} "
                        f"preventivo #{budget.budget_number}"
                    ),
                    due_date=installment.due_date,
                    installment_number=installment.number,
                    notes="Generata dal piano rate",
                )
            )

        return drafts

    # ------------------------------------------------------------
    # Conversione
    # ------------------------------------------------------------

    async def convert(self, db: AsyncSession, request: ConversionRequest) -> ConversionResult:
        """
        Converte un preventivo approvato in ordine di servizio.

        Logica:
        1. Lock di processo sul preventivo
        2. Lettura: se non approvato → AlreadyConvertedError
        3. Allocazione sul totale persistito: se non in quadratura → UnbalancedAllocationError
        4. Bozze di ordine, movimenti e scarichi
        5. Commit atomico (verifica vincolante di stato, quadratura e giacenze)

        Args:
            db: Sessione database
            request: Righe di pagamento, rate e sconto

        Returns:
            ConversionResult con id e numero del nuovo ordine

        Raises:
            NotFoundError, AlreadyConvertedError, UnbalancedAllocationError,
            InsufficientStockError, PersistenceFailureError
            BusinessValidationError: Conto di destinazione inesistente o non attivo
        """
        try:
            async with self.locks.acquire(request.budget_id, timeout=settings.lock_timeout_seconds):
                budget = await self.persistence.read_budget(db, request.budget_id)
                if budget.status != BudgetStatus.APPROVED.value:
                    logger.warning(
                        "Conversione rifiutata: preventivo %s in stato %s",
                        budget.id, budget.status,
                    )
                    raise AlreadyConvertedError(
                        extra={"budget_id": str(budget.id), "status": budget.status}
                    )

                discount = resolve_discount(
                    budget.total_cost, request.discount_value, request.discount_type
                )
                allocation = compute_allocation(
                    budget.total_cost,
                    discount,
                    request.payment_lines,
                    request.installments,
                )
                if not allocation.balanced:
                    logger.warning(
                        "Conversione rifiutata: preventivo %s non in quadratura (differenza %s)",
                        budget.id, allocation.difference,
                    )
                    raise UnbalancedAllocationError(
                        f"Valori divergenti: netto {allocation.net}, allocato {allocation.allocated}",
                        extra={
                            "net": str(allocation.net),
                            "allocated": str(allocation.allocated),
                            "difference": str(allocation.difference),
                        },
                    )

                now = datetime.datetime.now(datetime.timezone.utc)
                order_draft = self._build_order_draft(budget, allocation)
                transaction_drafts = self._build_transaction_drafts(
                    budget, request, now, self._today()
                )
                stock_deltas = build_stock_deltas(budget)

                order = await self.persistence.commit_conversion(
                    db, order_draft, transaction_drafts, stock_deltas
                )
        except LockTimeoutError as exc:
            raise PersistenceFailureError(
                "Il preventivo è bloccato da un'altra operazione: nessuna modifica applicata"
            ) from exc

        self.notifier.notify(
            Notification(
                title="Ordine di servizio generato",
                description=(
                    f"L'ordine {order.display_number} è stato creato e i movimenti "
                    "finanziari sono stati registrati"
                ),
                severity=Severity.SUCCESS,
            )
        )
        return ConversionResult(
            order_id=order.id,
            order_number=order.order_number,
            display_number=order.display_number,
            budget_id=order.budget_id,
            gross_amount=order.gross_amount,
            discount_amount=order.discount_amount,
            total_amount=order.total_amount,
            transactions_created=len(transaction_drafts),
        )


conversion_service = ConversionService()
