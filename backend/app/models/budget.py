"""
Modelli SQLAlchemy per i Preventivi
Progetto: Officina Budget Engine

Contiene:
- Budget: Preventivo prezzato approvabile dal cliente
- BudgetItem: Voci del preventivo (servizio, ricambio, servizio esterno)
"""


from __future__ import annotations
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.part import Part


# Gli stati sono definiti in app.schemas.budget.BudgetStatus


class Budget(Base, UUIDMixin, TimestampMixin):
    """
    Modello per i preventivi (budgets).

    Un preventivo approvato viene convertito in ordine di servizio dal
    servizio di conversione. Il collegamento all'ordine corrente è un
    riferimento debole (service_order_id senza FK): l'ordine referenzia il
    preventivo, non viceversa.

    Attributes:
        id: UUID primary key
        budget_number: Numero progressivo del preventivo
        customer_id: Riferimento al cliente (anagrafica esterna)
        vehicle_id: Riferimento al veicolo (anagrafica esterna)
        status: draft, quoted, approved, converted, rejected
        total_cost: Totale lordo del preventivo
        service_order_id: Ordine di servizio attivo generato dal preventivo
        notes: Note interne

    States:
        draft → quoted → approved → converted
                   ↓        ↑          ↓ (solo annullamento OdS)
                rejected    └──────────┘
    """

    __tablename__ = "budgets"

    budget_number: Mapped[int] = mapped_column(
        Integer,
        unique=True,
        nullable=False,
        doc="Numero progressivo del preventivo",
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
        index=True,
        doc="Riferimento al veicolo",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        doc="Stato corrente del preventivo",
    )

    total_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        doc="Totale lordo (somma delle voci)",
    )

    service_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        nullable=True,
        doc="Ordine di servizio attivo generato da questo preventivo",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Note interne",
    )

    items: Mapped[List["BudgetItem"]] = relationship(
        "BudgetItem",
        back_populates="budget",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BudgetItem.position",
        doc="Voci del preventivo",
    )

    __table_args__ = (
        Index("ix_budgets_status", "status"),
        CheckConstraint(
            "status IN ('draft', 'quoted', 'approved', 'converted', 'rejected')",
            name="ck_budgets_status",
        ),
        CheckConstraint("total_cost >= 0", name="ck_budgets_total_cost"),
    )

    def __repr__(self) -> str:
        return f"<Budget(number={self.budget_number}, status={self.status}, total={self.total_cost})>"


class BudgetItem(Base, UUIDMixin, TimestampMixin):
    """
    Voce di un preventivo.

    Le voci di tipo 'part' referenziano un ricambio a magazzino: alla
    conversione la quantità viene scaricata dalla giacenza.

    Attributes:
        budget_id: UUID del preventivo padre
        position: Ordine di visualizzazione
        item_type: service, part, external_service
        description: Descrizione della voce
        quantity: Quantità (intera per i ricambi)
        unit_price: Prezzo unitario di vendita
        unit_cost: Costo unitario (margine)
        part_id: Ricambio associato (solo item_type = part)
    """

    __tablename__ = "budget_items"

    budget_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("budgets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="UUID del preventivo padre",
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Ordine di visualizzazione",
    )

    item_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Tipo di voce: service, part, external_service",
    )

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        doc="Descrizione della voce",
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("1"),
        doc="Quantità",
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        doc="Prezzo unitario di vendita",
    )

    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        doc="Costo unitario",
    )

    part_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("parts.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        doc="Ricambio associato (solo voci di tipo part)",
    )

    budget: Mapped["Budget"] = relationship(
        "Budget",
        back_populates="items",
        doc="Preventivo padre",
    )

    part: Mapped[Optional["Part"]] = relationship(
        "Part",
        lazy="joined",
        doc="Ricambio associato",
    )

    __table_args__ = (
        CheckConstraint(
            "item_type IN ('service', 'part', 'external_service')",
            name="ck_budget_items_item_type",
        ),
        CheckConstraint(
            "item_type <> 'part' OR part_id IS NOT NULL",
            name="ck_budget_items_part_required",
        ),
        CheckConstraint("quantity > 0", name="ck_budget_items_quantity"),
    )

    @hybrid_property
    def line_total(self) -> Decimal:
        """Totale della riga (quantity * unit_price)."""
        return self.quantity * self.unit_price

    @line_total.expression
    def line_total(cls) -> Numeric:
        from sqlalchemy import cast

        return cast(cls.quantity * cls.unit_price, Numeric(12, 2))

    def __repr__(self) -> str:
        return f"<BudgetItem(type={self.item_type}, description={self.description[:30]})>"
