"""
Service Layer per Conti e Movimenti Finanziari
Progetto: Officina Budget Engine

Contiene:
- Anagrafica conti (sola lettura)
- Consultazione dei movimenti di un ordine
- Registrazione di un incasso su un movimento pendente (anche parziale)
- Storno di un incasso, passo richiesto prima di annullare un ordine
  con pagamenti registrati
"""

import datetime
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BusinessValidationError, NotFoundError, PreconditionFailedError
from app.models import Account, LedgerTransaction
from app.schemas.ledger import (
    TransactionReverse,
    TransactionSettle,
    TransactionStatus,
)
from app.services.allocation import to_money

# Logger per questo modulo
logger = logging.getLogger(__name__)


class LedgerService:
    """
    Service per conti e movimenti finanziari.

    Le operazioni di scrittura eseguono solo flush: il commit è a carico
    dell'endpoint, come per gli altri service CRUD.
    """

    # ------------------------------------------------------------
    # Conti
    # ------------------------------------------------------------

    async def list_accounts(
        self,
        db: AsyncSession,
        include_inactive: bool = False,
    ) -> list[Account]:
        """Conti disponibili ordinati per nome (default: solo attivi)."""
        query = select(Account).order_by(Account.name)
        if not include_inactive:
            query = query.where(Account.is_active.is_(True))
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_account(self, db: AsyncSession, account_id: uuid.UUID) -> Account:
        account = await db.get(Account, account_id)
        if account is None:
            raise NotFoundError(f"Conto {account_id} non trovato")
        return account

    # ------------------------------------------------------------
    # Movimenti
    # ------------------------------------------------------------

    async def get_transaction(
        self,
        db: AsyncSession,
        transaction_id: uuid.UUID,
        for_update: bool = False,
    ) -> LedgerTransaction:
        """
        Recupera un movimento per ID.

        Raises:
            NotFoundError: Se il movimento non esiste
        """
        query = (
            select(LedgerTransaction)
            .where(LedgerTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update(of=LedgerTransaction)
        result = await db.execute(query)
        transaction = result.unique().scalar_one_or_none()
        if transaction is None:
            raise NotFoundError(f"Movimento {transaction_id} non trovato")
        return transaction

    async def list_order_transactions(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        status_filter: Optional[TransactionStatus] = None,
    ) -> list[LedgerTransaction]:
        """Movimenti di un ordine in ordine di scadenza."""
        query = select(LedgerTransaction).where(LedgerTransaction.service_order_id == order_id)
        if status_filter:
            query = query.where(LedgerTransaction.status == status_filter.value)
        query = query.order_by(
            LedgerTransaction.due_date.asc(),
            LedgerTransaction.installment_number.asc(),
            LedgerTransaction.created_at.asc(),
        )
        result = await db.execute(query)
        return list(result.unique().scalars().all())

    async def settle_transaction(
        self,
        db: AsyncSession,
        transaction_id: uuid.UUID,
        data: TransactionSettle,
    ) -> LedgerTransaction:
        """
        Registra l'incasso di un movimento pendente.

        Un importo inferiore al movimento lo divide: viene creato un nuovo
        movimento paid per l'importo incassato e il movimento originale
        resta pending per il residuo.

        Returns:
            Il movimento paid (l'originale, o quello nuovo se parziale)

        Raises:
            NotFoundError: Movimento o conto inesistente
            PreconditionFailedError: Movimento non più pendente
            BusinessValidationError: Conto inattivo o importo superiore al dovuto
        """
        transaction = await self.get_transaction(db, transaction_id, for_update=True)
        if transaction.status != TransactionStatus.PENDING.value:
            raise PreconditionFailedError(
                f"Il movimento è in stato '{transaction.status}': solo i movimenti "
                "pendenti possono essere incassati"
            )

        account = await self.get_account(db, data.account_id)
        if not account.is_active:
            raise BusinessValidationError(
                f"Il conto '{account.name}' non è attivo",
                extra={"field": "account_id"},
            )

        amount = to_money(data.amount) if data.amount is not None else transaction.amount
        if amount > transaction.amount:
            raise BusinessValidationError(
                f"L'importo {amount} supera il dovuto di {transaction.amount}",
                extra={"field": "amount"},
            )

        paid_at = data.paid_at or datetime.datetime.now(datetime.timezone.utc)
        method = data.payment_method.value if data.payment_method else transaction.payment_method

        if amount < transaction.amount:
            settled = LedgerTransaction(
                service_order_id=transaction.service_order_id,
                amount=amount,
                direction=transaction.direction,
                status=TransactionStatus.PAID.value,
                payment_method=method,
                account_id=account.id,
                description=f"{transaction.description} (parziale)",
                due_date=transaction.due_date,
                transaction_date=paid_at,
                installment_number=transaction.installment_number,
                notes=transaction.notes,
            )
            transaction.amount = transaction.amount - amount
            db.add(settled)
            await db.flush()
            logger.info(
                "Incasso parziale di %s su movimento %s, residuo %s",
                amount, transaction.id, transaction.amount,
            )
            return settled

        transaction.status = TransactionStatus.PAID.value
        transaction.account_id = account.id
        transaction.payment_method = method
        transaction.transaction_date = paid_at
        await db.flush()
        logger.info("Incassato movimento %s di %s su %s", transaction.id, amount, account.name)
        return transaction

    async def reverse_transaction(
        self,
        db: AsyncSession,
        transaction_id: uuid.UUID,
        data: TransactionReverse,
    ) -> LedgerTransaction:
        """
        Storna un incasso: paid → reversed.

        Raises:
            NotFoundError: Movimento inesistente
            PreconditionFailedError: Movimento non in stato paid
        """
        transaction = await self.get_transaction(db, transaction_id, for_update=True)
        if transaction.status != TransactionStatus.PAID.value:
            raise PreconditionFailedError(
                f"Il movimento è in stato '{transaction.status}': solo gli incassi "
                "registrati possono essere stornati"
            )

        transaction.status = TransactionStatus.REVERSED.value
        transaction.voided_at = datetime.datetime.now(datetime.timezone.utc)
        transaction.void_reason = data.reason
        await db.flush()

        logger.info("Stornato movimento %s di %s", transaction.id, transaction.amount)
        return transaction


ledger_service = LedgerService()
