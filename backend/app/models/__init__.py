"""
Modelli Database SQLAlchemy
Progetto: Officina Budget Engine

Import centralizzato di tutti i modelli per Alembic e usage generico.

Modelli:
- Budget / BudgetItem: Preventivi e relative voci
- ServiceOrder / ServiceOrderItem: Ordini di servizio generati dalla conversione
- Account / LedgerTransaction: Conti di destinazione e movimenti finanziari
- Part / StockMovement: Ricambi a magazzino e movimenti di giacenza
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from app.models.budget import Budget, BudgetItem
from app.models.service_order import ServiceOrder, ServiceOrderItem
from app.models.ledger import Account, LedgerTransaction
from app.models.part import Part, StockMovement

__all__ = [
    "Base",
    "Budget",
    "BudgetItem",
    "ServiceOrder",
    "ServiceOrderItem",
    "Account",
    "LedgerTransaction",
    "Part",
    "StockMovement",
]
