"""
Service Layer per il ciclo di vita degli Ordini di Servizio
Progetto: Officina Budget Engine

Gestisce le transizioni di stato operative (lavorazione, attesa
pagamento, completamento). Non tocca movimenti finanziari né giacenze:
l'annullamento passa esclusivamente da reversal_service.
"""

import datetime
import logging
import uuid
from typing import Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BusinessValidationError, NotFoundError, PreconditionFailedError
from app.models import ServiceOrder
from app.schemas.service_order import VALID_TRANSITIONS, ServiceOrderStatus

# Logger per questo modulo
logger = logging.getLogger(__name__)


class ServiceOrderService:
    """
    Service per la consultazione e le transizioni di stato degli ordini.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.
    """

    async def get_all(
        self,
        db: AsyncSession,
        status_filter: Optional[ServiceOrderStatus] = None,
        budget_id: Optional[uuid.UUID] = None,
        customer_id: Optional[uuid.UUID] = None,
        page: int = 1,
        per_page: int = 10,
    ) -> tuple[list[ServiceOrder], int]:
        """
        Recupera la lista paginata degli ordini di servizio.

        Args:
            db: Sessione database
            status_filter: Filtro opzionale per stato
            budget_id: Filtro opzionale per preventivo di origine
            customer_id: Filtro opzionale per cliente
            page: Numero pagina (default 1)
            per_page: Elementi per pagina (default 10)

        Returns:
            Tuple di (lista ordini, totale count)
        """
        conditions = []

        if status_filter:
            conditions.append(ServiceOrder.status == status_filter.value)

        if budget_id:
            conditions.append(ServiceOrder.budget_id == budget_id)

        if customer_id:
            conditions.append(ServiceOrder.customer_id == customer_id)

        query = select(ServiceOrder)
        if conditions:
            query = query.where(and_(*conditions))

        # Più recenti prima
        query = query.order_by(ServiceOrder.order_number.desc())

        offset = (page - 1) * per_page
        query = query.offset(offset).limit(per_page)

        result = await db.execute(query)
        orders = list(result.scalars().all())

        count_query = select(func.count()).select_from(ServiceOrder)
        if conditions:
            count_query = count_query.where(and_(*conditions))

        count_result = await db.execute(count_query)
        total = count_result.scalar_one()

        return orders, total

    async def get_by_id(self, db: AsyncSession, order_id: uuid.UUID) -> ServiceOrder:
        """
        Recupera un ordine di servizio per ID.

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

    async def get_by_number(self, db: AsyncSession, order_number: int) -> ServiceOrder:
        """Recupera un ordine per numero progressivo."""
        result = await db.execute(
            select(ServiceOrder).where(ServiceOrder.order_number == order_number)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Ordine di servizio {order_number:06d} non trovato")
        return order

    async def change_status(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        new_status: ServiceOrderStatus,
    ) -> ServiceOrder:
        """
        Cambia lo stato di un ordine validando la transizione.

        Il passaggio a completed registra completed_at. L'aggiornamento è
        condizionato allo stato letto: se nel frattempo l'ordine è stato
        annullato o modificato, la transizione viene rifiutata.

        Args:
            db: Sessione database
            order_id: UUID dell'ordine
            new_status: Nuovo stato

        Returns:
            L'ordine aggiornato

        Raises:
            NotFoundError: Se l'ordine non esiste
            BusinessValidationError: Se la transizione non è valida
            PreconditionFailedError: Se lo stato è cambiato nel frattempo
        """
        order = await self.get_by_id(db, order_id)
        current_status = ServiceOrderStatus(order.status)

        if new_status == ServiceOrderStatus.CANCELED:
            raise BusinessValidationError(
                "Per annullare un ordine usare l'operazione di annullamento, "
                "che ripristina giacenze e movimenti"
            )

        valid_next = VALID_TRANSITIONS.get(current_status, [])
        if new_status not in valid_next:
            raise BusinessValidationError(
                f"Transizione non valida da '{current_status.value}' a '{new_status.value}'. "
                f"Transizioni valide: {[s.value for s in valid_next]}"
            )

        now = datetime.datetime.now(datetime.timezone.utc)
        values = {"status": new_status.value, "updated_at": now}
        if new_status == ServiceOrderStatus.COMPLETED:
            values["completed_at"] = now

        result = await db.execute(
            update(ServiceOrder)
            .where(
                ServiceOrder.id == order_id,
                ServiceOrder.status == current_status.value,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            raise PreconditionFailedError(
                "Lo stato dell'ordine è cambiato nel frattempo: aggiornare e riprovare"
            )

        logger.info(
            "Ordine %s: stato %s → %s",
            order.display_number, current_status.value, new_status.value,
        )
        return await self.get_by_id(db, order_id)


service_order_service = ServiceOrderService()
