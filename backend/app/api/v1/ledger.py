"""
Router FastAPI per Conti e Movimenti Finanziari
Progetto: Officina Budget Engine
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.ledger import (
    AccountRead,
    TransactionRead,
    TransactionReverse,
    TransactionSettle,
    TransactionStatus,
)
from app.services.ledger_service import ledger_service
from app.services.service_order_service import service_order_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Router con prefix e tag
router = APIRouter(
    tags=["Movimenti Finanziari"],
)


@router.get(
    "/accounts",
    name="conti_lista",
    summary="Lista conti",
    description="Conti di destinazione disponibili per gli incassi.",
    response_model=list[AccountRead],
    status_code=status.HTTP_200_OK,
)
async def get_accounts(
    include_inactive: bool = Query(False, description="Includi i conti non attivi"),
    db: AsyncSession = Depends(get_db),
) -> list[AccountRead]:
    accounts = await ledger_service.list_accounts(db, include_inactive=include_inactive)
    return [AccountRead.model_validate(account) for account in accounts]


@router.get(
    "/service-orders/{order_id}/transactions",
    name="ods_movimenti",
    summary="Movimenti di un ordine di servizio",
    response_model=list[TransactionRead],
    status_code=status.HTTP_200_OK,
)
async def get_order_transactions(
    order_id: uuid.UUID = Path(..., description="UUID dell'ordine di servizio"),
    status_filter: Optional[TransactionStatus] = Query(None, description="Filtro per stato"),
    db: AsyncSession = Depends(get_db),
) -> list[TransactionRead]:
    # 404 se l'ordine non esiste
    await service_order_service.get_by_id(db, order_id)
    transactions = await ledger_service.list_order_transactions(db, order_id, status_filter)
    return [TransactionRead.model_validate(t) for t in transactions]


@router.post(
    "/transactions/{transaction_id}/settle",
    name="movimento_incassa",
    summary="Registra incasso",
    description=(
        "Registra l'incasso di un movimento pendente. Un importo inferiore al dovuto "
        "divide il movimento lasciando pendente il residuo."
    ),
    response_model=TransactionRead,
    status_code=status.HTTP_200_OK,
)
async def settle_transaction(
    data: TransactionSettle,
    transaction_id: uuid.UUID = Path(..., description="UUID del movimento"),
    db: AsyncSession = Depends(get_db),
) -> TransactionRead:
    transaction = await ledger_service.settle_transaction(db, transaction_id, data)
    await db.commit()
    return TransactionRead.model_validate(transaction)


@router.post(
    "/transactions/{transaction_id}/reverse",
    name="movimento_storna",
    summary="Storna incasso",
    description="Storna un incasso registrato (paid → reversed).",
    response_model=TransactionRead,
    status_code=status.HTTP_200_OK,
)
async def reverse_transaction(
    data: TransactionReverse,
    transaction_id: uuid.UUID = Path(..., description="UUID del movimento"),
    db: AsyncSession = Depends(get_db),
) -> TransactionRead:
    transaction = await ledger_service.reverse_transaction(db, transaction_id, data)
    await db.commit()
    return TransactionRead.model_validate(transaction)
