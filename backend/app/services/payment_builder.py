"""
Costruzione interattiva della regolazione
Progetto: Officina Budget Engine

Il PaymentLineBuilder accompagna l'operatore nella chiusura di un
preventivo: righe di pagamento indirizzate per identificativo stabile,
sconto, piano rate generato dal residuo, riepilogo live e validazione
prima dell'invio. Non accede al database.
"""

import datetime
import logging
import uuid
from decimal import ROUND_DOWN, Decimal
from typing import Any, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.core.exceptions import BusinessValidationError, NotFoundError, UnbalancedAllocationError
from app.schemas.ledger import PaymentMethod
from app.schemas.settlement import (
    AllocationSummary,
    ConversionRequest,
    DiscountType,
    InstallmentInput,
    PaymentLineDraft,
    PaymentLineInput,
    PaymentLineStatus,
)
from app.services.allocation import (
    CENT,
    ZERO,
    compute_allocation,
    resolve_discount,
    to_money,
    to_percentage,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def local_today() -> datetime.date:
    """Data odierna nel fuso orario dell'officina."""
    return datetime.datetime.now(ZoneInfo(settings.timezone)).date()


def split_installments(
    total: Decimal,
    count: int,
    interval_days: int,
    start: datetime.date,
) -> tuple[InstallmentInput, ...]:
    """
    Divide `total` in `count` rate.

    Ogni rata vale total / count troncato al centesimo, l'ultima assorbe
    il resto. Le scadenze cadono a start + interval_days * i, i = 1..count.

    Raises:
        BusinessValidationError: Se le rate risulterebbero nulle
    """
    per_installment = (total / count).quantize(CENT, rounding=ROUND_DOWN)
    if per_installment <= 0:
        raise BusinessValidationError(
            f"Residuo di {total} troppo basso per {count} rate",
            extra={"field": "installments"},
        )
    last = total - per_installment * (count - 1)
    return tuple(
        InstallmentInput(
            number=i,
            value=last if i == count else per_installment,
            due_date=start + datetime.timedelta(days=interval_days * i),
        )
        for i in range(1, count + 1)
    )


class PaymentLineBuilder:
    """
    Stato di lavoro della regolazione di un preventivo.

    Le righe sono identificate da un UUID assegnato alla creazione: le
    operazioni di modifica e rimozione non dipendono dalla posizione.
    Il piano rate è una tupla immutabile sostituita per intero a ogni
    rigenerazione; se esiste, viene rigenerato con la stessa
    configurazione quando cambia il residuo non rateizzato.

    Example:
        builder = PaymentLineBuilder(Decimal("900"), accounts=[cash.id])
        builder.set_discount(Decimal("100"))
        builder.add_payment_line(method=PaymentMethod.PIX, amount=Decimal("300"))
        builder.generate_installments(2, 30)
        request = builder.build_request(budget.id)
    """

    def __init__(
        self,
        gross_total: Any,
        accounts: Iterable[Any] = (),
        discount_value: Any = ZERO,
        discount_type: DiscountType = DiscountType.FIXED,
        today: Optional[Callable[[], datetime.date]] = None,
        tolerance: Optional[Decimal] = None,
    ) -> None:
        """
        Args:
            gross_total: Totale lordo del preventivo
            accounts: Conti disponibili (UUID o oggetti con `id`); il primo
                è il default delle nuove righe
            discount_value / discount_type: Sconto iniziale
            today: Orologio iniettabile (default: data locale dell'officina)
            tolerance: Tolleranza di quadratura (default da settings)
        """
        self._gross = to_money(gross_total, "totale lordo")
        self._account_ids = [getattr(a, "id", a) for a in accounts]
        self._today = today or local_today
        self._tolerance = tolerance
        self._lines: dict[uuid.UUID, PaymentLineDraft] = {}
        self._installments: tuple[InstallmentInput, ...] = ()
        self._schedule: Optional[tuple[int, int]] = None
        self._apply_discount(discount_value, discount_type)

    # ------------------------------------------------------------
    # Letture
    # ------------------------------------------------------------

    @property
    def gross_total(self) -> Decimal:
        return self._gross

    @property
    def discount(self) -> Decimal:
        """Sconto effettivo in valuta."""
        return self._discount

    @property
    def net_value(self) -> Decimal:
        return self._gross - self._discount

    @property
    def lines(self) -> tuple[PaymentLineDraft, ...]:
        """Righe di pagamento nell'ordine di inserimento."""
        return tuple(self._lines.values())

    @property
    def installments(self) -> tuple[InstallmentInput, ...]:
        return self._installments

    def get_line(self, line_id: uuid.UUID) -> PaymentLineDraft:
        try:
            return self._lines[line_id]
        except KeyError:
            raise NotFoundError(f"Riga di pagamento {line_id} non trovata")

    def summary(self) -> AllocationSummary:
        """Riepilogo live: netto, allocato, residuo, quadratura."""
        return compute_allocation(
            self._gross,
            self._discount,
            self._lines.values(),
            self._installments,
            tolerance=self._tolerance,
        )

    def unscheduled_remaining(self) -> Decimal:
        """Netto meno le righe di pagamento, escluse le rate."""
        paid = sum((line.amount for line in self._lines.values()), ZERO)
        return max(ZERO, self.net_value - paid)

    # ------------------------------------------------------------
    # Righe di pagamento
    # ------------------------------------------------------------

    def add_payment_line(
        self,
        method: Optional[PaymentMethod] = None,
        status: PaymentLineStatus = PaymentLineStatus.PAID,
        amount: Any = None,
        account_id: Any = _UNSET,
        note: Optional[str] = None,
        due_date: Optional[datetime.date] = None,
    ) -> PaymentLineDraft:
        """
        Aggiunge una riga di pagamento.

        Se non specificati, l'importo è il residuo corrente e il conto è
        il primo disponibile.

        Returns:
            La riga creata, con il suo identificativo stabile
        """
        if amount is None:
            amount = self.summary().remaining
        if account_id is _UNSET:
            account_id = self._account_ids[0] if self._account_ids else None

        line = PaymentLineDraft(
            method=method,
            status=status,
            account_id=account_id,
            amount=to_money(amount),
            note=note,
            due_date=due_date,
        )
        self._lines[line.id] = line
        logger.debug("Aggiunta riga di pagamento %s di %s", line.id, line.amount)
        self._refresh_schedule()
        return line

    def update_payment_line(self, line_id: uuid.UUID, **changes: Any) -> PaymentLineDraft:
        """
        Modifica i campi di una riga esistente.

        Raises:
            NotFoundError: Se la riga non esiste
            BusinessValidationError: Se si tenta di cambiarne l'identificativo
        """
        current = self.get_line(line_id)
        if "id" in changes and changes["id"] != line_id:
            raise BusinessValidationError("L'identificativo di una riga non può cambiare")
        if "amount" in changes:
            changes["amount"] = to_money(changes["amount"])

        updated = PaymentLineDraft.model_validate({**current.model_dump(), **changes})
        self._lines[line_id] = updated
        if "amount" in changes:
            self._refresh_schedule()
        return updated

    def remove_payment_line(self, line_id: uuid.UUID) -> None:
        """Rimuove una riga; le altre mantengono i propri identificativi."""
        self.get_line(line_id)
        del self._lines[line_id]
        self._refresh_schedule()

    # ------------------------------------------------------------
    # Sconto e piano rate
    # ------------------------------------------------------------

    def set_discount(
        self,
        value: Any,
        discount_type: DiscountType = DiscountType.FIXED,
    ) -> AllocationSummary:
        """Imposta lo sconto e restituisce il nuovo riepilogo."""
        self._apply_discount(value, discount_type)
        self._refresh_schedule()
        return self.summary()

    def _apply_discount(self, value: Any, discount_type: DiscountType) -> None:
        if discount_type == DiscountType.PERCENTAGE:
            percentage = to_percentage(value)
            if percentage > 100:
                raise BusinessValidationError(
                    "Lo sconto percentuale non può superare 100",
                    extra={"field": "discount_value"},
                )
            self._discount = resolve_discount(self._gross, percentage, discount_type)
            self._discount_value = percentage
        else:
            self._discount = resolve_discount(self._gross, value, discount_type)
            self._discount_value = self._discount
        self._discount_type = discount_type

    def generate_installments(
        self,
        count: int,
        interval_days: Optional[int] = None,
    ) -> tuple[InstallmentInput, ...]:
        """
        Genera il piano rate sul residuo non coperto dalle righe di pagamento.

        Sostituisce per intero l'eventuale piano precedente. La prima rata
        scade a oggi + interval_days.

        Args:
            count: Numero di rate (1..settings.max_installments)
            interval_days: Giorni tra le rate (default da settings)

        Raises:
            BusinessValidationError: Parametri fuori intervallo o nessun
                residuo da rateizzare
        """
        if interval_days is None:
            interval_days = settings.default_installment_interval_days
        if count < 1 or count > settings.max_installments:
            raise BusinessValidationError(
                f"Il numero di rate deve essere compreso tra 1 e {settings.max_installments}",
                extra={"field": "count"},
            )
        if interval_days < 1:
            raise BusinessValidationError(
                "L'intervallo tra le rate deve essere di almeno 1 giorno",
                extra={"field": "interval_days"},
            )

        base = self.unscheduled_remaining()
        if base <= 0:
            raise BusinessValidationError(
                "Nessun residuo da rateizzare",
                extra={"field": "installments"},
            )

        self._installments = split_installments(base, count, interval_days, self._today())
        self._schedule = (count, interval_days)
        logger.debug("Generate %d rate su %s", count, base)
        return self._installments

    def clear_installments(self) -> None:
        self._installments = ()
        self._schedule = None

    def _refresh_schedule(self) -> None:
        # Rigenera il piano esistente sul nuovo residuo, o lo elimina se
        # non c'è più nulla da rateizzare
        if self._schedule is None:
            return
        count, interval_days = self._schedule
        base = self.unscheduled_remaining()
        try:
            self._installments = split_installments(base, count, interval_days, self._today())
        except BusinessValidationError:
            self.clear_installments()

    # ------------------------------------------------------------
    # Validazione e invio
    # ------------------------------------------------------------

    def validate(self) -> AllocationSummary:
        """
        Verifica che la regolazione possa essere inviata.

        Raises:
            BusinessValidationError: Con extra {"line_id", "field"} per la
                prima riga incompleta
            UnbalancedAllocationError: Se il totale allocato non quadra
        """
        for line in self._lines.values():
            if line.status == PaymentLineStatus.PAID and line.account_id is None:
                raise BusinessValidationError(
                    f"Selezionare il conto di destinazione per il pagamento di {line.amount}",
                    extra={"line_id": str(line.id), "field": "account_id"},
                )
            if line.method is None:
                raise BusinessValidationError(
                    f"Selezionare il metodo di pagamento per il valore {line.amount}",
                    extra={"line_id": str(line.id), "field": "method"},
                )
            if line.amount <= 0:
                raise BusinessValidationError(
                    "L'importo deve essere maggiore di zero",
                    extra={"line_id": str(line.id), "field": "amount"},
                )

        summary = self.summary()
        if not summary.balanced:
            raise UnbalancedAllocationError(
                f"Valori divergenti: netto {summary.net}, allocato {summary.allocated}",
                extra={
                    "net": str(summary.net),
                    "allocated": str(summary.allocated),
                    "difference": str(summary.difference),
                },
            )
        return summary

    def build_request(self, budget_id: uuid.UUID) -> ConversionRequest:
        """Valida e produce la richiesta di conversione."""
        self.validate()
        return ConversionRequest(
            budget_id=budget_id,
            discount_type=self._discount_type,
            discount_value=self._discount_value,
            payment_lines=[
                PaymentLineInput(
                    id=line.id,
                    method=line.method,
                    status=line.status,
                    account_id=line.account_id,
                    amount=line.amount,
                    note=line.note,
                    due_date=line.due_date,
                )
                for line in self._lines.values()
            ],
            installments=list(self._installments),
        )
