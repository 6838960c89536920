"""
Modelli SQLAlchemy per Ricambi e Magazzino
Progetto: Officina Budget Engine

Contiene:
- Part: Ricambi a magazzino con giacenza
- StockMovement: Movimenti di magazzino (scarico alla conversione, carico all'annullamento)
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.service_order import ServiceOrder


class Part(Base, UUIDMixin, TimestampMixin):
    """
    Modello per l'anagrafica ricambi.

    Attributes:
        code: Codice identificativo univoco del ricambio
        description: Descrizione del ricambio
        sale_price: Prezzo di vendita
        stock_quantity: Giacenza attuale (mai negativa)
        min_stock_level: Livello minimo giacenza per alert
        is_active: Indica se il ricambio è attivo/disponibile

    Properties:
        is_below_minimum: True se stock < min_stock_level
    """

    __tablename__ = "parts"

    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        doc="Codice identificativo univoco del ricambio",
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Descrizione del ricambio",
    )

    sale_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        doc="Prezzo di vendita",
    )

    stock_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Giacenza attuale",
    )

    min_stock_level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Livello minimo giacenza per alert",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        doc="Indica se il ricambio è attivo/disponibile",
    )

    stock_movements: Mapped[List["StockMovement"]] = relationship(
        "StockMovement",
        back_populates="part",
        lazy="noload",
        doc="Storico movimenti di magazzino",
    )

    __table_args__ = (
        Index("ix_parts_active_stock", "is_active", "stock_quantity"),
        CheckConstraint("stock_quantity >= 0", name="ck_parts_stock_non_negative"),
    )

    @property
    def is_below_minimum(self) -> bool:
        """True se la giacenza è sotto il livello minimo."""
        return self.stock_quantity < self.min_stock_level

    def __repr__(self) -> str:
        return f"Part(code={self.code!r}, stock={self.stock_quantity})"


class StockMovement(Base, UUIDMixin, TimestampMixin):
    """
    Modello per i movimenti di magazzino.

    Attributes:
        part_id: UUID del ricambio
        service_order_id: Ordine di servizio che ha generato il movimento
        movement_type: in (carico), out (scarico)
        quantity: Quantità movimentata (sempre positiva, il segno è dato dal tipo)
        reference: Riferimento leggibile (es. "OdS 000012")
        notes: Note aggiuntive
    """

    __tablename__ = "stock_movements"

    part_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("parts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        doc="UUID del ricambio",
    )

    service_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("service_orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        doc="Ordine di servizio di origine",
    )

    movement_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        doc="Tipo di movimento: in, out",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Quantità movimentata",
    )

    reference: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="Riferimento (es. numero ordine)",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Note aggiuntive",
    )

    part: Mapped["Part"] = relationship(
        "Part",
        back_populates="stock_movements",
        lazy="noload",
        doc="Ricambio associato al movimento",
    )

    service_order: Mapped[Optional["ServiceOrder"]] = relationship(
        "ServiceOrder",
        back_populates="stock_movements",
        doc="Ordine di servizio di origine",
    )

    __table_args__ = (
        CheckConstraint(
            "movement_type IN ('in', 'out')",
            name="ck_stock_movements_type",
        ),
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity"),
    )

    def __repr__(self) -> str:
        return f"StockMovement(part_id={self.part_id}, type={self.movement_type}, quantity={self.quantity})"
