"""
Schemas Pydantic per la Regolazione del Preventivo
Progetto: Officina Budget Engine

Contiene:
- Input della conversione (righe di pagamento, rate, sconto)
- Esiti di conversione e annullamento
- Riepilogo dell'allocazione (lettura live)
- Bozze interne passate al servizio di persistenza
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
    field_validator,
    model_validator,
)

from app.core.config import settings
from app.schemas.budget import BudgetItemType
from app.schemas.ledger import PaymentMethod, validate_reason_field


class PaymentLineStatus(str, Enum):
    """Una riga di pagamento è incassata subito o resta da incassare."""
    PAID = "paid"
    PENDING = "pending"


class DiscountType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


# -------------------------------------------------------------------
# Riepilogo allocazione
# -------------------------------------------------------------------

class AllocationSummary(BaseModel):
    """
    Riepilogo dell'allocazione di un valore netto.

    Attributes:
        gross: Totale lordo del preventivo
        discount: Sconto effettivo (già limitato a [0, gross])
        net: gross - discount
        allocated: Somma di righe di pagamento e rate
        remaining: max(0, net - allocated)
        difference: net - allocated (con segno)
        balanced: |difference| <= tolleranza
    """
    model_config = ConfigDict(frozen=True)

    gross: Decimal
    discount: Decimal
    net: Decimal
    allocated: Decimal
    remaining: Decimal
    difference: Decimal
    balanced: bool


class AllocationPreviewRequest(BaseModel):
    """Richiesta di anteprima allocazione sul totale persistito del preventivo."""
    discount_type: DiscountType = DiscountType.FIXED
    discount_value: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    payment_amounts: list[Decimal] = Field(default_factory=list)
    installment_values: list[Decimal] = Field(default_factory=list)


# -------------------------------------------------------------------
# Righe di pagamento e rate
# -------------------------------------------------------------------

class PaymentLineInput(BaseModel):
    """
    Riga di pagamento inviata alla conversione.

    Attributes:
        id: Identificativo stabile della riga (assegnato dal builder)
        method: Metodo di pagamento
        status: paid (incassato ora) o pending (da incassare)
        account_id: Conto di destinazione, obbligatorio se paid
        amount: Importo (> 0, al massimo due decimali)
        note: Nota libera (es. NSU della carta)
        due_date: Scadenza delle righe pending (default: oggi)
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    method: PaymentMethod
    status: PaymentLineStatus = PaymentLineStatus.PAID
    account_id: Optional[uuid.UUID] = None
    amount: Decimal = Field(..., gt=Decimal("0"), decimal_places=2)
    note: Optional[str] = Field(None, max_length=500)
    due_date: Optional[datetime.date] = None

    @model_validator(mode="after")
    def validate_account(self) -> "PaymentLineInput":
        """Una riga incassata deve indicare il conto di destinazione."""
        if self.status == PaymentLineStatus.PAID and self.account_id is None:
            raise ValueError(
                f"Selezionare il conto di destinazione per il pagamento di {self.amount}"
            )
        return self


class PaymentLineDraft(BaseModel):
    """
    Riga di pagamento in lavorazione nel builder.

    A differenza di PaymentLineInput ammette metodo e conto mancanti e
    importo zero: la completezza viene verificata da validate().
    """
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    method: Optional[PaymentMethod] = None
    status: PaymentLineStatus = PaymentLineStatus.PAID
    account_id: Optional[uuid.UUID] = None
    amount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    note: Optional[str] = Field(None, max_length=500)
    due_date: Optional[datetime.date] = None


class InstallmentInput(BaseModel):
    """Rata del piano di pagamento. Nasce sempre in stato pending."""
    model_config = ConfigDict(frozen=True)

    number: int = Field(..., ge=1)
    value: Decimal = Field(..., gt=Decimal("0"), decimal_places=2)
    due_date: datetime.date


# -------------------------------------------------------------------
# Conversione
# -------------------------------------------------------------------

class ConversionPayload(BaseModel):
    """
    Corpo della richiesta di conversione.

    Lo sconto viene riapplicato al totale persistito del preventivo, non a
    quello visto dal client.
    """
    discount_type: DiscountType = DiscountType.FIXED
    discount_value: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    payment_lines: list[PaymentLineInput] = Field(default_factory=list)
    installments: list[InstallmentInput] = Field(default_factory=list)

    @field_validator("installments")
    @classmethod
    def validate_installment_numbers(cls, v: list[InstallmentInput]) -> list[InstallmentInput]:
        """Le rate devono essere numerate 1..N in ordine."""
        if len(v) > settings.max_installments:
            raise ValueError(f"Massimo {settings.max_installments} rate")
        for expected, installment in enumerate(v, start=1):
            if installment.number != expected:
                raise ValueError("Le rate devono essere numerate in sequenza a partire da 1")
        return v

    @model_validator(mode="after")
    def validate_payload(self) -> "ConversionPayload":
        """Identificativi di riga univoci e percentuale entro 100."""
        ids = [line.id for line in self.payment_lines]
        if len(ids) != len(set(ids)):
            raise ValueError("Identificativi delle righe di pagamento duplicati")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Lo sconto percentuale non può superare 100")
        return self


class ConversionRequest(ConversionPayload):
    """Richiesta completa di conversione di un preventivo approvato."""
    budget_id: uuid.UUID


class ConversionResult(BaseModel):
    """
    Esito di una conversione riuscita.

    Attributes:
        order_id: UUID del nuovo ordine di servizio
        order_number: Numero progressivo assegnato
        display_number: Numero con zero-padding a 6 cifre
        transactions_created: Numero di movimenti finanziari creati
    """
    order_id: uuid.UUID
    order_number: int
    display_number: str
    budget_id: uuid.UUID
    gross_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    transactions_created: int


# -------------------------------------------------------------------
# Annullamento
# -------------------------------------------------------------------

class ReversalRequest(BaseModel):
    order_id: uuid.UUID
    reason: str = Field(..., max_length=1000)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        return validate_reason_field(v)


class ReversalResult(BaseModel):
    """
    Esito di un annullamento riuscito.

    Attributes:
        voided_transactions: Movimenti pendenti annullati
        restored_parts: Ricambi la cui giacenza è stata ripristinata
    """
    order_id: uuid.UUID
    order_number: int
    budget_id: uuid.UUID
    canceled_at: datetime.datetime
    voided_transactions: int
    restored_parts: int


# -------------------------------------------------------------------
# Bozze interne per il servizio di persistenza
# -------------------------------------------------------------------

class OrderItemDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: int
    item_type: BudgetItemType
    description: str
    quantity: Decimal
    unit_price: Decimal
    unit_cost: Decimal
    part_id: Optional[uuid.UUID] = None


class OrderDraft(BaseModel):
    """Ordine di servizio da creare, calcolato dal preventivo."""
    model_config = ConfigDict(frozen=True)

    budget_id: uuid.UUID
    customer_id: uuid.UUID
    vehicle_id: Optional[uuid.UUID]
    gross_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    items: tuple[OrderItemDraft, ...] = ()


class TransactionDraft(BaseModel):
    """Movimento finanziario da creare insieme all'ordine."""
    model_config = ConfigDict(frozen=True)

    amount: Decimal = Field(..., gt=Decimal("0"), decimal_places=2)
    status: PaymentLineStatus
    payment_method: PaymentMethod
    account_id: Optional[uuid.UUID] = None
    description: str
    due_date: Optional[datetime.date] = None
    transaction_date: Optional[datetime.datetime] = None
    installment_number: Optional[int] = None
    notes: Optional[str] = None


class StockDelta(BaseModel):
    """Quantità di un ricambio da scaricare (conversione) o ricaricare (annullamento)."""
    model_config = ConfigDict(frozen=True)

    part_id: uuid.UUID
    quantity: int = Field(..., gt=0)
    description: str = ""
