"""
Router FastAPI per gli Ordini di Servizio
Progetto: Officina Budget Engine

Consultazione, transizioni di stato e annullamento degli ordini.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.service_order import (
    ServiceOrderCancel,
    ServiceOrderList,
    ServiceOrderRead,
    ServiceOrderStatus,
    ServiceOrderStatusUpdate,
)
from app.schemas.settlement import ReversalResult
from app.services.reversal_service import reversal_service
from app.services.service_order_service import service_order_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Router con prefix e tag
router = APIRouter(
    prefix="/service-orders",
    tags=["Ordini di Servizio"],
)


@router.get(
    "/",
    name="ods_lista",
    summary="Lista ordini di servizio",
    description="Recupera la lista paginata degli ordini di servizio con eventuali filtri.",
    response_model=ServiceOrderList,
    status_code=status.HTTP_200_OK,
)
async def get_service_orders(
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: int = Query(10, ge=1, le=100, description="Elementi per pagina"),
    status_filter: Optional[ServiceOrderStatus] = Query(None, description="Filtro per stato"),
    budget_id: Optional[uuid.UUID] = Query(None, description="Filtro per preventivo"),
    customer_id: Optional[uuid.UUID] = Query(None, description="Filtro per cliente"),
    db: AsyncSession = Depends(get_db),
) -> ServiceOrderList:
    orders, total = await service_order_service.get_all(
        db=db,
        status_filter=status_filter,
        budget_id=budget_id,
        customer_id=customer_id,
        page=page,
        per_page=per_page,
    )

    return ServiceOrderList(
        items=[ServiceOrderRead.model_validate(order) for order in orders],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=0,  # calcolato automaticamente dal model_validator
    )


@router.get(
    "/{order_id}",
    name="ods_dettaglio",
    summary="Dettaglio ordine di servizio",
    response_model=ServiceOrderRead,
    status_code=status.HTTP_200_OK,
)
async def get_service_order(
    order_id: uuid.UUID = Path(..., description="UUID dell'ordine di servizio"),
    db: AsyncSession = Depends(get_db),
) -> ServiceOrderRead:
    order = await service_order_service.get_by_id(db, order_id)
    return ServiceOrderRead.model_validate(order)


@router.patch(
    "/{order_id}/status",
    name="ods_cambia_stato",
    summary="Cambia stato ordine di servizio",
    description=(
        "Transizioni: pending → in_progress → awaiting_payment → completed. "
        "Per annullare usare l'endpoint /cancel."
    ),
    response_model=ServiceOrderRead,
    status_code=status.HTTP_200_OK,
)
async def change_service_order_status(
    data: ServiceOrderStatusUpdate,
    order_id: uuid.UUID = Path(..., description="UUID dell'ordine di servizio"),
    db: AsyncSession = Depends(get_db),
) -> ServiceOrderRead:
    order = await service_order_service.change_status(db, order_id, data.status)
    await db.commit()
    return ServiceOrderRead.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    name="ods_annulla",
    summary="Annulla ordine di servizio",
    description=(
        "Annulla l'ordine: ripristina le giacenze, annulla i movimenti pendenti "
        "e riporta il preventivo in stato approvato. Rifiutato se esistono incassi registrati."
    ),
    response_model=ReversalResult,
    status_code=status.HTTP_200_OK,
)
async def cancel_service_order(
    data: ServiceOrderCancel,
    order_id: uuid.UUID = Path(..., description="UUID dell'ordine di servizio"),
    db: AsyncSession = Depends(get_db),
) -> ReversalResult:
    """
    Annulla l'ordine. Il commit avviene nel service.

    Raises:
        AlreadyCanceledError (409), HasSettledPaymentsError (422),
        PersistenceFailureError (500)
    """
    return await reversal_service.cancel(db, order_id, data.reason)
