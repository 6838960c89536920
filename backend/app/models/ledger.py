"""
Modelli SQLAlchemy per la contabilità di cassa
Progetto: Officina Budget Engine

Contiene:
- Account: Conto/cassa di destinazione degli incassi
- LedgerTransaction: Movimento finanziario (incassato o da incassare)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.service_order import ServiceOrder


class Account(Base, UUIDMixin, TimestampMixin):
    """
    Conto di destinazione (cassa, conto bancario, POS).

    Un movimento incassato deve sempre indicare il conto su cui è
    entrato il denaro.
    """

    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        doc="Nome del conto",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="Conto selezionabile per nuovi incassi",
    )

    def __repr__(self) -> str:
        return f"Account(name={self.name!r})"


class LedgerTransaction(Base, UUIDMixin, TimestampMixin):
    """
    Movimento finanziario.

    I movimenti non vengono mai cancellati: l'annullamento di un ordine
    porta i movimenti pendenti in stato 'voided', lo storno esplicito di
    un incasso porta il movimento in stato 'reversed'.

    Il collegamento all'ordine di servizio è un riferimento debole
    (ondelete SET NULL) usato per tracciabilità, mai per cancellazioni a
    cascata.

    Attributes:
        service_order_id: Ordine di servizio di origine
        amount: Importo (> 0)
        direction: income, expense
        status: paid, pending, voided, reversed
        payment_method: cash, pix, credit_card, debit_card, boleto, bank_transfer
        account_id: Conto (obbligatorio se paid)
        description: Descrizione del movimento
        due_date: Scadenza (movimenti pendenti)
        transaction_date: Data/ora effettiva dell'incasso
        installment_number: Numero rata (movimenti generati dal piano rate)
        notes: Note libere (es. NSU della carta)
        voided_at / void_reason: Annullamento o storno
    """

    __tablename__ = "ledger_transactions"

    service_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("service_orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        doc="Ordine di servizio di origine",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="Importo del movimento",
    )

    direction: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="income",
        doc="Direzione: income, expense",
    )

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        doc="Stato: paid, pending, voided, reversed",
    )

    payment_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Metodo di pagamento",
    )

    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        doc="Conto di destinazione",
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Descrizione del movimento",
    )

    due_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        doc="Data di scadenza",
    )

    transaction_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Data/ora effettiva del movimento",
    )

    installment_number: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Numero rata nel piano di pagamento",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Note libere",
    )

    voided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Data/ora annullamento o storno",
    )

    void_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Motivo annullamento o storno",
    )

    service_order: Mapped[Optional["ServiceOrder"]] = relationship(
        "ServiceOrder",
        back_populates="transactions",
        doc="Ordine di servizio di origine",
    )

    account: Mapped[Optional["Account"]] = relationship(
        "Account",
        lazy="joined",
        doc="Conto di destinazione",
    )

    __table_args__ = (
        Index("ix_ledger_transactions_status_due", "status", "due_date"),
        CheckConstraint("amount > 0", name="ck_ledger_transactions_amount_positive"),
        CheckConstraint(
            "direction IN ('income', 'expense')",
            name="ck_ledger_transactions_direction",
        ),
        CheckConstraint(
            "status IN ('paid', 'pending', 'voided', 'reversed')",
            name="ck_ledger_transactions_status",
        ),
        CheckConstraint(
            "status <> 'paid' OR account_id IS NOT NULL",
            name="ck_ledger_transactions_paid_account",
        ),
    )

    def __repr__(self) -> str:
        return f"<LedgerTransaction(amount={self.amount}, status={self.status}, method={self.payment_method})>"
