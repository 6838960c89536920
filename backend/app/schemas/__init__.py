"""
Schemas Pydantic per il progetto Officina Budget Engine

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle richieste e risposte API.
"""

# Import degli schemi per renderli disponibili tramite import diretto
# es: from app.schemas import BudgetRead, ConversionRequest, etc.

from app.schemas.budget import (
    BudgetCreate,
    BudgetItemCreate,
    BudgetItemRead,
    BudgetItemType,
    BudgetRead,
    BudgetStatus,
    BudgetStatusUpdate,
    ConversionReadiness,
)
from app.schemas.ledger import (
    AccountRead,
    PaymentMethod,
    TransactionDirection,
    TransactionRead,
    TransactionReverse,
    TransactionSettle,
    TransactionStatus,
)
from app.schemas.service_order import (
    ServiceOrderCancel,
    ServiceOrderItemRead,
    ServiceOrderList,
    ServiceOrderRead,
    ServiceOrderStatus,
    ServiceOrderStatusUpdate,
)
from app.schemas.settlement import (
    AllocationPreviewRequest,
    AllocationSummary,
    ConversionPayload,
    ConversionRequest,
    ConversionResult,
    DiscountType,
    InstallmentInput,
    PaymentLineDraft,
    PaymentLineInput,
    PaymentLineStatus,
    ReversalRequest,
    ReversalResult,
)

__all__ = [
    # Budget
    "BudgetCreate",
    "BudgetItemCreate",
    "BudgetItemRead",
    "BudgetItemType",
    "BudgetRead",
    "BudgetStatus",
    "BudgetStatusUpdate",
    "ConversionReadiness",
    # Ledger
    "AccountRead",
    "PaymentMethod",
    "TransactionDirection",
    "TransactionRead",
    "TransactionReverse",
    "TransactionSettle",
    "TransactionStatus",
    # ServiceOrder
    "ServiceOrderCancel",
    "ServiceOrderItemRead",
    "ServiceOrderList",
    "ServiceOrderRead",
    "ServiceOrderStatus",
    "ServiceOrderStatusUpdate",
    # Settlement
    "AllocationPreviewRequest",
    "AllocationSummary",
    "ConversionPayload",
    "ConversionRequest",
    "ConversionResult",
    "DiscountType",
    "InstallmentInput",
    "PaymentLineDraft",
    "PaymentLineInput",
    "PaymentLineStatus",
    "ReversalRequest",
    "ReversalResult",
]
