"""
Schemas Pydantic per i Preventivi
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
    model_validator,
)


# -------------------------------------------------------------------
# Enum per gli stati del preventivo
# -------------------------------------------------------------------

class BudgetStatus(str, Enum):
    """Enum che definisce i possibili stati di un preventivo."""
    DRAFT = "draft"
    QUOTED = "quoted"
    APPROVED = "approved"
    CONVERTED = "converted"
    REJECTED = "rejected"


class BudgetItemType(str, Enum):
    """Enum che definisce i tipi di voce di un preventivo."""
    SERVICE = "service"
    PART = "part"
    EXTERNAL_SERVICE = "external_service"


# -------------------------------------------------------------------
# Matrice delle transizioni di stato manuali
# -------------------------------------------------------------------

# CONVERTED non compare come destinazione: ci si arriva solo tramite
# conversione, e se ne esce solo tramite annullamento dell'ordine.
VALID_TRANSITIONS: dict[BudgetStatus, list[BudgetStatus]] = {
    BudgetStatus.DRAFT: [BudgetStatus.QUOTED],
    BudgetStatus.QUOTED: [BudgetStatus.APPROVED, BudgetStatus.REJECTED],
    BudgetStatus.APPROVED: [BudgetStatus.REJECTED],
    BudgetStatus.REJECTED: [BudgetStatus.QUOTED],
    BudgetStatus.CONVERTED: [],
}


# -------------------------------------------------------------------
# Schemas per BudgetItem
# -------------------------------------------------------------------

class BudgetItemBase(BaseModel):
    """
    Schema base per le voci di preventivo.

    Attributes:
        item_type: service, part, external_service
        description: Descrizione della voce
        quantity: Quantità (intera per i ricambi)
        unit_price: Prezzo unitario di vendita
        unit_cost: Costo unitario
        part_id: Ricambio a magazzino (obbligatorio per item_type = part)
    """
    item_type: BudgetItemType
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(default=Decimal("1"), gt=Decimal("0"))
    unit_price: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    unit_cost: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    part_id: Optional[uuid.UUID] = None


class BudgetItemCreate(BudgetItemBase):
    """Schema per la creazione di una voce di preventivo."""

    @model_validator(mode="after")
    def validate_part_reference(self) -> "BudgetItemCreate":
        """Le voci ricambio devono indicare il ricambio e una quantità intera."""
        if self.item_type == BudgetItemType.PART:
            if self.part_id is None:
                raise ValueError("Le voci di tipo ricambio devono indicare il ricambio")
            if self.quantity != self.quantity.to_integral_value():
                raise ValueError("La quantità di un ricambio deve essere intera")
        return self


class BudgetItemRead(BudgetItemBase):
    """Schema per la lettura di una voce di preventivo."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    budget_id: uuid.UUID
    position: int

    @computed_field
    @property
    def line_total(self) -> Decimal:
        """Totale della riga (quantity * unit_price)."""
        return self.quantity * self.unit_price


# -------------------------------------------------------------------
# Schemas per Budget
# -------------------------------------------------------------------

class BudgetCreate(BaseModel):
    """
    Schema per la creazione di un preventivo.

    Il totale lordo viene calcolato dalle voci.
    """
    customer_id: uuid.UUID
    vehicle_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=5000)
    items: list[BudgetItemCreate] = Field(..., min_length=1)


class BudgetStatusUpdate(BaseModel):
    """Schema per il cambio di stato manuale di un preventivo."""
    status: BudgetStatus = Field(..., description="Nuovo stato del preventivo")


class BudgetRead(BaseModel):
    """Schema per la lettura di un preventivo."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    budget_number: int
    customer_id: uuid.UUID
    vehicle_id: Optional[uuid.UUID]
    status: BudgetStatus
    total_cost: Decimal
    service_order_id: Optional[uuid.UUID]
    notes: Optional[str]
    created_at: datetime.datetime
    updated_at: datetime.datetime
    items: list[BudgetItemRead] = Field(default_factory=list)


class ConversionReadiness(BaseModel):
    """
    Esito del controllo preliminare alla conversione.

    Attributes:
        ready: True se il preventivo può essere convertito
        problems: Motivi leggibili per cui la conversione fallirebbe
    """
    budget_id: uuid.UUID
    status: BudgetStatus
    ready: bool
    problems: list[str] = Field(default_factory=list)
