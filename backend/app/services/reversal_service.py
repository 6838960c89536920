"""
Service Layer per l'annullamento degli Ordini di Servizio
Progetto: Officina Budget Engine

Annullare un ordine significa disfare la conversione: giacenze
ripristinate, movimenti pendenti annullati, preventivo di nuovo approvato
e riconvertibile. Un ordine con incassi già registrati non può essere
annullato finché l'operatore non ha stornato gli incassi.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AlreadyCanceledError,
    HasSettledPaymentsError,
    PersistenceFailureError,
    PreconditionFailedError,
)
from app.core.locks import KeyedLock, LockTimeoutError, budget_locks
from app.models import ServiceOrder
from app.schemas.ledger import TransactionStatus, validate_reason_field
from app.schemas.service_order import ServiceOrderStatus
from app.schemas.settlement import ReversalRequest, ReversalResult, StockDelta
from app.services.notifications import LoggingNotificationSink, Notification, NotificationSink, Severity
from app.services.persistence_service import PersistenceService

# Logger per questo modulo
logger = logging.getLogger(__name__)


def build_stock_restores(order: ServiceOrder) -> list[StockDelta]:
    """Un ricarico per ogni ricambio scaricato dall'ordine, in ordine di part_id."""
    totals: dict[uuid.UUID, int] = {}
    for movement in order.stock_movements:
        if movement.movement_type != "out":
            continue
        totals[movement.part_id] = totals.get(movement.part_id, 0) + movement.quantity
    return [
        StockDelta(part_id=part_id, quantity=quantity)
        for part_id, quantity in sorted(totals.items())
    ]


class ReversalService:
    """
    Annulla un ordine di servizio e riporta il preventivo in stato approved.
    """

    def __init__(
        self,
        persistence: Optional[PersistenceService] = None,
        locks: Optional[KeyedLock] = None,
        notifier: Optional[NotificationSink] = None,
    ) -> None:
        self.persistence = persistence or PersistenceService()
        self.locks = locks or budget_locks
        self.notifier = notifier or LoggingNotificationSink()

    def _check_cancellable(self, order: ServiceOrder) -> None:
        """
        Verifica rapida sullo stato letto; la verifica vincolante è nel commit.

        Raises:
            AlreadyCanceledError: Ordine già annullato
            PreconditionFailedError: Ordine completato
            HasSettledPaymentsError: Esistono incassi registrati
        """
        if order.status == ServiceOrderStatus.CANCELED.value:
            raise AlreadyCanceledError(extra={"order_id": str(order.id)})
        if order.status == ServiceOrderStatus.COMPLETED.value:
            raise PreconditionFailedError(
                "Un ordine completato non può essere annullato",
                extra={"order_id": str(order.id), "status": order.status},
            )
        paid = [t for t in order.transactions if t.status == TransactionStatus.PAID.value]
        if paid:
            logger.warning(
                "Annullamento rifiutato: ordine %s con %d incassi registrati",
                order.display_number, len(paid),
            )
            raise HasSettledPaymentsError(extra={"paid_transactions": len(paid)})

    async def cancel(self, db: AsyncSession, order_id: uuid.UUID, reason: str) -> ReversalResult:
        """
        Annulla un ordine di servizio.

        Args:
            db: Sessione database
            order_id: UUID dell'ordine
            reason: Motivo (almeno 5 caratteri dopo lo strip)

        Returns:
            ReversalResult con il conteggio di movimenti e ricambi trattati

        Raises:
            BusinessValidationError: Motivo mancante o troppo corto
            NotFoundError, AlreadyCanceledError, PreconditionFailedError,
            HasSettledPaymentsError, PersistenceFailureError
        """
        reason = validate_reason_field(reason)
        return await self.reverse(db, ReversalRequest(order_id=order_id, reason=reason))

    async def reverse(self, db: AsyncSession, request: ReversalRequest) -> ReversalResult:
        """Annulla l'ordine descritto da una richiesta già validata."""
        order_id, reason = request.order_id, request.reason

        order = await self.persistence.read_order(db, order_id)
        try:
            async with self.locks.acquire(order.budget_id, timeout=settings.lock_timeout_seconds):
                order = await self.persistence.read_order(db, order_id)
                self._check_cancellable(order)

                stock_restores = build_stock_restores(order)
                transaction_voids = [
                    t.id for t in order.transactions
                    if t.status == TransactionStatus.PENDING.value
                ]

                order = await self.persistence.commit_reversal(
                    db, order_id, stock_restores, transaction_voids, reason
                )
        except LockTimeoutError as exc:
            raise PersistenceFailureError(
                "Il preventivo è bloccato da un'altra operazione: nessuna modifica applicata"
            ) from exc

        self.notifier.notify(
            Notification(
                title="Ordine annullato",
                description=(
                    f"L'ordine {order.display_number} è stato annullato e il preventivo "
                    "è di nuovo disponibile per la conversione"
                ),
                severity=Severity.SUCCESS,
            )
        )
        return ReversalResult(
            order_id=order.id,
            order_number=order.order_number,
            budget_id=order.budget_id,
            canceled_at=order.canceled_at,
            voided_transactions=len(transaction_voids),
            restored_parts=len(stock_restores),
        )


reversal_service = ReversalService()
