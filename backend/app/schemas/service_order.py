"""
Schemas Pydantic per gli Ordini di Servizio
Progetto: Officina Budget Engine

Definisce gli schemi di validazione e serializzazione per l'API.
"""

import datetime
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from app.schemas.budget import BudgetItemType
from app.schemas.ledger import TransactionRead, validate_reason_field


# -------------------------------------------------------------------
# Enum per gli stati dell'ordine di servizio
# -------------------------------------------------------------------

class ServiceOrderStatus(str, Enum):
    """Enum che definisce i possibili stati di un ordine di servizio."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_PAYMENT = "awaiting_payment"
    COMPLETED = "completed"
    CANCELED = "canceled"


# -------------------------------------------------------------------
# Matrice delle transizioni di stato valide
# -------------------------------------------------------------------

# Nota: CANCELED non compare come destinazione. L'annullamento passa
# esclusivamente da reversal_service, che ripristina giacenze e movimenti.
VALID_TRANSITIONS: dict[ServiceOrderStatus, list[ServiceOrderStatus]] = {
    ServiceOrderStatus.PENDING: [ServiceOrderStatus.IN_PROGRESS],
    ServiceOrderStatus.IN_PROGRESS: [
        ServiceOrderStatus.AWAITING_PAYMENT,
        ServiceOrderStatus.PENDING,
    ],
    ServiceOrderStatus.AWAITING_PAYMENT: [
        ServiceOrderStatus.COMPLETED,
        ServiceOrderStatus.IN_PROGRESS,
    ],
    ServiceOrderStatus.COMPLETED: [],  # Stato finale
    ServiceOrderStatus.CANCELED: [],  # Stato finale
}


# -------------------------------------------------------------------
# Schemas per ServiceOrderItem
# -------------------------------------------------------------------

class ServiceOrderItemRead(BaseModel):
    """Voce dell'ordine, copiata dal preventivo."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    position: int
    item_type: BudgetItemType
    description: str
    quantity: Decimal
    unit_price: Decimal
    unit_cost: Decimal
    part_id: Optional[uuid.UUID]

    @computed_field
    @property
    def line_total(self) -> Decimal:
        """Totale della riga (quantity * unit_price)."""
        return self.quantity * self.unit_price


class StockMovementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    part_id: uuid.UUID
    movement_type: str
    quantity: int
    reference: Optional[str]
    created_at: datetime.datetime


# -------------------------------------------------------------------
# Schemas per ServiceOrder
# -------------------------------------------------------------------

class ServiceOrderRead(BaseModel):
    """
    Schema per la lettura di un ordine di servizio.

    Include voci, movimenti finanziari e movimenti di magazzino.
    """
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: int
    budget_id: uuid.UUID
    customer_id: uuid.UUID
    vehicle_id: Optional[uuid.UUID]
    status: ServiceOrderStatus
    gross_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    completed_at: Optional[datetime.datetime]
    canceled_at: Optional[datetime.datetime]
    cancel_reason: Optional[str]
    created_at: datetime.datetime
    updated_at: datetime.datetime
    items: list[ServiceOrderItemRead] = Field(default_factory=list)
    transactions: list[TransactionRead] = Field(default_factory=list)
    stock_movements: list[StockMovementRead] = Field(default_factory=list)

    @computed_field
    @property
    def display_number(self) -> str:
        """Numero ordine con zero-padding a 6 cifre."""
        return f"{self.order_number:06d}"


class ServiceOrderStatusUpdate(BaseModel):
    """
    Schema per il cambio di stato di un ordine di servizio.

    Per annullare un ordine usare l'endpoint di annullamento.
    """
    status: ServiceOrderStatus = Field(..., description="Nuovo stato dell'ordine")


class ServiceOrderCancel(BaseModel):
    """Richiesta di annullamento di un ordine di servizio."""
    reason: str = Field(..., max_length=1000, description="Motivo dell'annullamento")

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Motivo obbligatorio, almeno 5 caratteri dopo lo strip."""
        return validate_reason_field(v)


# -------------------------------------------------------------------
# Schema per lista paginata
# -------------------------------------------------------------------

class ServiceOrderList(BaseModel):
    """
    Schema per la risposta paginata degli ordini di servizio.

    Attributes:
        items: Lista degli ordini
        total: Numero totale di record
        page: Pagina corrente
        per_page: Record per pagina
        total_pages: Numero totale di pagine (calcolato automaticamente)
    """
    items: list[ServiceOrderRead]
    total: int
    page: int
    per_page: int
    total_pages: int = 0

    @model_validator(mode="after")
    def compute_total_pages(self) -> "ServiceOrderList":
        """Calcola automaticamente il numero totale di pagine."""
        if self.per_page > 0:
            self.total_pages = (self.total + self.per_page - 1) // self.per_page
        return self
