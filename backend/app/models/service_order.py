"""
Modelli SQLAlchemy per gli Ordini di Servizio
Progetto: Officina Budget Engine

 Contiene:
- ServiceOrder: Ordine di servizio vincolante creato dalla conversione di un preventivo
- ServiceOrderItem: Voci copiate dal preventivo
"""


from __future__ import annotations
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, text
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.ledger import LedgerTransaction
    from app.models.part import StockMovement


# Gli stati sono definiti in app.schemas.service_order.ServiceOrderStatus


class ServiceOrder(Base, UUIDMixin, TimestampMixin):
    """
    Modello per gli ordini di servizio (OdS).

    Creato una sola volta per ogni conversione riuscita di un preventivo.
    Referenzia il preventivo di origine senza possederlo.

    Attributes:
        order_number: Numero progressivo (mostrato con 6 cifre)
        budget_id: Preventivo di origine
        customer_id / vehicle_id: Riferimenti copiati dal preventivo
        status: pending, in_progress, awaiting_payment, completed, canceled
        gross_amount: Totale lordo del preventivo al momento della conversione
        discount_amount: Sconto applicato in chiusura
        total_amount: Valore netto (gross_amount - discount_amount)
        completed_at: Data/ora completamento
        canceled_at: Data/ora annullamento
        cancel_reason: Motivo dell'annullamento

    States:
        pending → in_progress → awaiting_payment → completed
           ↓           ↓               ↓
        canceled    canceled        canceled   (solo tramite annullamento)
    """

    __tablename__ = "service_orders"

    order_number: Mapped[int] = mapped_column(
        Integer,
        unique=True,
        nullable=False,
        doc="Numero progressivo dell'ordine",
    )

    budget_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("budgets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        doc="Preventivo di origine",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
        doc="Riferimento al cliente",
    )

    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        nullable=True,
        doc="Riferimento al veicolo",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        doc="Stato corrente dell'ordine",
    )

    gross_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="Totale lordo",
    )

    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        doc="Sconto applicato",
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="Valore netto dell'ordine",
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Data/ora completamento",
    )

    canceled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Data/ora annullamento",
    )

    cancel_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Motivo dell'annullamento",
    )

    items: Mapped[List["ServiceOrderItem"]] = relationship(
        "ServiceOrderItem",
        back_populates="service_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ServiceOrderItem.position",
        doc="Voci copiate dal preventivo",
    )

    transactions: Mapped[List["LedgerTransaction"]] = relationship(
        "LedgerTransaction",
        back_populates="service_order",
        lazy="selectin",
        passive_deletes=True,
        doc="Movimenti finanziari collegati (riferimento debole)",
    )

    stock_movements: Mapped[List["StockMovement"]] = relationship(
        "StockMovement",
        back_populates="service_order",
        lazy="selectin",
        passive_deletes=True,
        doc="Movimenti di magazzino generati dall'ordine",
    )

    __table_args__ = (
        Index("ix_service_orders_status", "status"),
        Index("ix_service_orders_status_created", "status", "created_at"),
        # Al massimo un ordine non annullato per preventivo
        Index(
            "uq_service_orders_active_budget",
            "budget_id",
            unique=True,
            postgresql_where=text("status <> 'canceled'"),
            sqlite_where=text("status <> 'canceled'"),
        ),
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'awaiting_payment', 'completed', 'canceled')",
            name="ck_service_orders_status",
        ),
        CheckConstraint("total_amount >= 0", name="ck_service_orders_total"),
    )

    @property
    def display_number(self) -> str:
        """Numero ordine con zero-padding a 6 cifre."""
        return f"{self.order_number:06d}"

    def __repr__(self) -> str:
        return f"<ServiceOrder(number={self.order_number}, status={self.status}, budget_id={self.budget_id})>"


class ServiceOrderItem(Base, UUIDMixin, TimestampMixin):
    """
    Voce di un ordine di servizio, copiata dal preventivo alla conversione.
    """

    __tablename__ = "service_order_items"

    service_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("service_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    item_type: Mapped[str] = mapped_column(String(20), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    part_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("parts.id", ondelete="RESTRICT"),
        nullable=True,
    )

    service_order: Mapped["ServiceOrder"] = relationship(
        "ServiceOrder",
        back_populates="items",
    )

    __table_args__ = (
        CheckConstraint(
            "item_type IN ('service', 'part', 'external_service')",
            name="ck_service_order_items_item_type",
        ),
    )

    @hybrid_property
    def line_total(self) -> Decimal:
        """Totale della riga (quantity * unit_price)."""
        return self.quantity * self.unit_price

    def __repr__(self) -> str:
        return f"<ServiceOrderItem(type={self.item_type}, description={self.description[:30]})>"
