"""
Service Layer per i Preventivi
Progetto: Officina Budget Engine

Creazione dei preventivi e transizioni manuali di stato. Lo stato
converted non è mai impostato da qui: lo gestiscono conversione e
annullamento.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BusinessValidationError, NotFoundError
from app.models import Budget, BudgetItem, Part
from app.schemas.budget import VALID_TRANSITIONS, BudgetCreate, BudgetItemType, BudgetStatus
from app.services.allocation import CENT

# Logger per questo modulo
logger = logging.getLogger(__name__)


class BudgetService:
    """Service per la gestione dei preventivi."""

    async def _next_budget_number(self, db: AsyncSession) -> int:
        result = await db.execute(select(func.max(Budget.budget_number)))
        return (result.scalar_one_or_none() or 0) + 1

    async def get_by_id(self, db: AsyncSession, budget_id: uuid.UUID) -> Budget:
        """
        Recupera un preventivo per ID con le sue voci.

        Raises:
            NotFoundError: Se il preventivo non esiste
        """
        result = await db.execute(
            select(Budget)
            .where(Budget.id == budget_id)
            .execution_options(populate_existing=True)
        )
        budget = result.scalar_one_or_none()
        if budget is None:
            raise NotFoundError(f"Preventivo {budget_id} non trovato")
        return budget

    async def create(self, db: AsyncSession, data: BudgetCreate) -> Budget:
        """
        Crea un preventivo in stato draft.

        Il totale lordo è la somma delle righe (quantity * unit_price)
        arrotondata al centesimo. Le voci ricambio devono riferire un
        ricambio attivo.

        Raises:
            NotFoundError: Se un ricambio non esiste o non è attivo
        """
        part_ids = {item.part_id for item in data.items if item.item_type == BudgetItemType.PART}
        if part_ids:
            result = await db.execute(
                select(Part.id).where(Part.id.in_(part_ids), Part.is_active.is_(True))
            )
            found = set(result.scalars().all())
            missing = part_ids - found
            if missing:
                raise NotFoundError(
                    f"Ricambi non trovati o non attivi: {', '.join(sorted(str(m) for m in missing))}"
                )

        budget = Budget(
            budget_number=await self._next_budget_number(db),
            customer_id=data.customer_id,
            vehicle_id=data.vehicle_id,
            status=BudgetStatus.DRAFT.value,
            notes=data.notes,
        )
        total = Decimal("0")
        items = []
        for position, item_data in enumerate(data.items):
            items.append(
                BudgetItem(
                    position=position,
                    item_type=item_data.item_type.value,
                    description=item_data.description,
                    quantity=item_data.quantity,
                    unit_price=item_data.unit_price,
                    unit_cost=item_data.unit_cost,
                    part_id=item_data.part_id,
                )
            )
            total += item_data.quantity * item_data.unit_price
        budget.items = items
        budget.total_cost = total.quantize(CENT)

        db.add(budget)
        await db.flush()

        logger.info("Creato preventivo #%s per un totale di %s", budget.budget_number, budget.total_cost)
        return await self.get_by_id(db, budget.id)

    async def change_status(
        self,
        db: AsyncSession,
        budget_id: uuid.UUID,
        new_status: BudgetStatus,
    ) -> Budget:
        """
        Cambia lo stato di un preventivo validando la transizione.

        Raises:
            NotFoundError: Se il preventivo non esiste
            BusinessValidationError: Se la transizione non è valida o
                coinvolge lo stato converted
        """
        budget = await self.get_by_id(db, budget_id)
        current_status = BudgetStatus(budget.status)

        if new_status == BudgetStatus.CONVERTED or current_status == BudgetStatus.CONVERTED:
            raise BusinessValidationError(
                "Lo stato 'converted' è gestito solo da conversione e annullamento dell'ordine"
            )

        valid_next = VALID_TRANSITIONS.get(current_status, [])
        if new_status not in valid_next:
            raise BusinessValidationError(
                f"Transizione non valida da '{current_status.value}' a '{new_status.value}'. "
                f"Transizioni valide: {[s.value for s in valid_next]}"
            )

        budget.status = new_status.value
        await db.flush()

        logger.info(
            "Preventivo #%s: stato %s → %s",
            budget.budget_number, current_status.value, new_status.value,
        )
        return budget


budget_service = BudgetService()
