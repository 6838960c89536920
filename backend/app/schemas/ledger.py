"""
Schemas Pydantic per Conti e Movimenti Finanziari
Progetto: Officina Budget Engine
"""

import datetime
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.config import settings
from app.core.exceptions import BusinessValidationError


class PaymentMethod(str, Enum):
    """Metodi di pagamento accettati."""
    CASH = "cash"
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BOLETO = "boleto"
    BANK_TRANSFER = "bank_transfer"


PAYMENT_METHOD_LABELS: dict[PaymentMethod, str] = {
    PaymentMethod.CASH: "Contanti",
    PaymentMethod.PIX: "PIX",
    PaymentMethod.CREDIT_CARD: "Carta di credito",
    PaymentMethod.DEBIT_CARD: "Carta di debito",
    PaymentMethod.BOLETO: "Boleto",
    PaymentMethod.BANK_TRANSFER: "Bonifico",
}


class TransactionStatus(str, Enum):
    """
    Stati di un movimento finanziario.

    - paid: incassato su un conto
    - pending: da incassare (scadenza)
    - voided: annullato insieme all'ordine di servizio
    - reversed: incasso stornato manualmente
    """
    PAID = "paid"
    PENDING = "pending"
    VOIDED = "voided"
    REVERSED = "reversed"


class TransactionDirection(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


def validate_reason_field(v: str) -> str:
    """
    Valida e normalizza un motivo di annullamento o storno.

    Raises:
        BusinessValidationError: Se il motivo, senza spazi, è più corto
            di settings.cancel_reason_min_length
    """
    v = (v or "").strip()
    if len(v) < settings.cancel_reason_min_length:
        raise BusinessValidationError(
            f"Il motivo deve avere almeno {settings.cancel_reason_min_length} caratteri",
            extra={"field": "reason"},
        )
    return v


class AccountRead(BaseModel):
    """Schema per la lettura di un conto."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    is_active: bool


class TransactionRead(BaseModel):
    """Schema per la lettura di un movimento finanziario."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    service_order_id: Optional[uuid.UUID]
    amount: Decimal
    direction: TransactionDirection
    status: TransactionStatus
    payment_method: PaymentMethod
    account_id: Optional[uuid.UUID]
    description: str
    due_date: Optional[datetime.date]
    transaction_date: Optional[datetime.datetime]
    installment_number: Optional[int]
    notes: Optional[str]
    voided_at: Optional[datetime.datetime]
    void_reason: Optional[str]
    created_at: datetime.datetime


class TransactionSettle(BaseModel):
    """
    Schema per la registrazione di un incasso su un movimento pendente.

    Attributes:
        account_id: Conto su cui è entrato il denaro
        amount: Importo incassato (default: intero importo del movimento).
            Un importo inferiore divide il movimento in una parte incassata
            e un residuo pendente.
        payment_method: Metodo effettivo (default: quello del movimento)
        paid_at: Data/ora dell'incasso (default: adesso)
    """
    account_id: uuid.UUID
    amount: Optional[Decimal] = Field(None, gt=Decimal("0"))
    payment_method: Optional[PaymentMethod] = None
    paid_at: Optional[datetime.datetime] = None


class TransactionReverse(BaseModel):
    """Schema per lo storno di un incasso."""
    reason: str = Field(..., max_length=1000)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        return validate_reason_field(v)
