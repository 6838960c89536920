"""
Router FastAPI per i Preventivi
Progetto: Officina Budget Engine

Definisce gli endpoint per la gestione dei preventivi e per la loro
conversione in ordine di servizio.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.budget import (
    BudgetCreate,
    BudgetRead,
    BudgetStatusUpdate,
    ConversionReadiness,
)
from app.schemas.settlement import (
    AllocationPreviewRequest,
    AllocationSummary,
    ConversionPayload,
    ConversionRequest,
    ConversionResult,
)
from app.services.budget_service import budget_service
from app.services.conversion_service import conversion_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Router con prefix e tag
router = APIRouter(
    prefix="/budgets",
    tags=["Preventivi"],
)


@router.post(
    "/",
    name="preventivo_crea",
    summary="Crea preventivo",
    description="Crea un preventivo in stato draft. Il totale lordo è calcolato dalle voci.",
    response_model=BudgetRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_budget(
    data: BudgetCreate,
    db: AsyncSession = Depends(get_db),
) -> BudgetRead:
    budget = await budget_service.create(db, data)
    await db.commit()
    return BudgetRead.model_validate(budget)


@router.get(
    "/{budget_id}",
    name="preventivo_dettaglio",
    summary="Dettaglio preventivo",
    response_model=BudgetRead,
    status_code=status.HTTP_200_OK,
)
async def get_budget(
    budget_id: uuid.UUID = Path(..., description="UUID del preventivo"),
    db: AsyncSession = Depends(get_db),
) -> BudgetRead:
    budget = await budget_service.get_by_id(db, budget_id)
    return BudgetRead.model_validate(budget)


@router.patch(
    "/{budget_id}/status",
    name="preventivo_cambia_stato",
    summary="Cambia stato preventivo",
    description="Transizioni manuali: draft → quoted → approved/rejected, rejected → quoted.",
    response_model=BudgetRead,
    status_code=status.HTTP_200_OK,
)
async def change_budget_status(
    data: BudgetStatusUpdate,
    budget_id: uuid.UUID = Path(..., description="UUID del preventivo"),
    db: AsyncSession = Depends(get_db),
) -> BudgetRead:
    budget = await budget_service.change_status(db, budget_id, data.status)
    await db.commit()
    return BudgetRead.model_validate(budget)


@router.get(
    "/{budget_id}/readiness",
    name="preventivo_verifica_conversione",
    summary="Verifica convertibilità",
    description="Elenca i motivi (stato, giacenze) per cui la conversione fallirebbe.",
    response_model=ConversionReadiness,
    status_code=status.HTTP_200_OK,
)
async def check_readiness(
    budget_id: uuid.UUID = Path(..., description="UUID del preventivo"),
    db: AsyncSession = Depends(get_db),
) -> ConversionReadiness:
    return await conversion_service.check_conversion_readiness(db, budget_id)


@router.post(
    "/{budget_id}/allocation-preview",
    name="preventivo_anteprima_allocazione",
    summary="Anteprima allocazione",
    description="Calcola netto, allocato, residuo e quadratura sul totale persistito.",
    response_model=AllocationSummary,
    status_code=status.HTTP_200_OK,
)
async def preview_allocation(
    data: AllocationPreviewRequest,
    budget_id: uuid.UUID = Path(..., description="UUID del preventivo"),
    db: AsyncSession = Depends(get_db),
) -> AllocationSummary:
    return await conversion_service.preview_allocation(db, budget_id, data)


@router.post(
    "/{budget_id}/convert",
    name="preventivo_converti",
    summary="Converti in ordine di servizio",
    description=(
        "Converte un preventivo approvato in ordine di servizio registrando "
        "incassi, importi da incassare e rate. Operazione atomica."
    ),
    response_model=ConversionResult,
    status_code=status.HTTP_201_CREATED,
)
async def convert_budget(
    data: ConversionPayload,
    budget_id: uuid.UUID = Path(..., description="UUID del preventivo"),
    db: AsyncSession = Depends(get_db),
) -> ConversionResult:
    """
    Converte il preventivo. Il commit avviene nel service.

    Raises:
        AlreadyConvertedError (409), UnbalancedAllocationError (422),
        InsufficientStockError (422), PersistenceFailureError (500)
    """
    request = ConversionRequest(budget_id=budget_id, **data.model_dump())
    return await conversion_service.convert(db, request)
