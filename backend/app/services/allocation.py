"""
Allocazione del valore netto
Progetto: Officina Budget Engine

Funzioni pure per calcolare valore netto, totale allocato, residuo e
quadratura di una regolazione. Nessun accesso al database: vengono
richiamate a ogni modifica dell'operatore e di nuovo
prima del commit.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from app.core.config import settings
from app.core.exceptions import BusinessValidationError
from app.schemas.settlement import AllocationSummary, DiscountType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any, field: str = "importo") -> Decimal:
    """
    Converte un valore in Decimal a due cifre decimali (arrotondamento half-up).

    Accetta Decimal, int, str (anche con la virgola) e float, convertito
    passando dalla sua rappresentazione testuale.

    Raises:
        BusinessValidationError: Se il valore non è numerico o è negativo
    """
    if value is None:
        return ZERO
    if isinstance(value, str):
        value = value.strip().replace(",", ".") or "0"
    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise BusinessValidationError(f"Valore non numerico per {field}: {value!r}")
    if not amount.is_finite():
        raise BusinessValidationError(f"Valore non numerico per {field}: {value!r}")
    if amount < 0:
        raise BusinessValidationError(f"Il valore di {field} non può essere negativo")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_percentage(value: Any, field: str = "discount_value") -> Decimal:
    """
    Converte una percentuale di sconto in Decimal, senza arrotondamenti.

    Raises:
        BusinessValidationError: Se il valore non è numerico o è negativo
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, str):
        value = value.strip().replace(",", ".") or "0"
    try:
        percentage = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise BusinessValidationError(
            f"Percentuale di sconto non numerica: {value!r}", extra={"field": field}
        )
    if not percentage.is_finite():
        raise BusinessValidationError(
            f"Percentuale di sconto non numerica: {value!r}", extra={"field": field}
        )
    if percentage < 0:
        raise BusinessValidationError("Lo sconto non può essere negativo", extra={"field": field})
    return percentage


def resolve_discount(
    gross: Any,
    value: Any,
    discount_type: DiscountType = DiscountType.FIXED,
) -> Decimal:
    """
    Traduce uno sconto (fisso o percentuale) in un importo fisso.

    Lo sconto percentuale è arrotondato half-up al centesimo. Il risultato
    è sempre limitato a [0, gross].

    Args:
        gross: Totale lordo
        value: Importo fisso o percentuale (0-100)
        discount_type: fixed o percentage

    Returns:
        Sconto effettivo in valuta
    """
    gross = to_money(gross, "totale lordo")
    if discount_type == DiscountType.PERCENTAGE:
        percentage = to_percentage(value)
        discount = (gross * percentage / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        discount = to_money(value, "sconto")
    return min(discount, gross)


def _amount_of(entry: Any) -> Any:
    # Righe di pagamento (amount), rate (value) o importi semplici
    if hasattr(entry, "amount"):
        return entry.amount
    if hasattr(entry, "value"):
        return entry.value
    return entry


def compute_allocation(
    gross: Any,
    discount: Any = ZERO,
    payment_lines: Iterable[Any] = (),
    installments: Iterable[Any] = (),
    tolerance: Optional[Decimal] = None,
) -> AllocationSummary:
    """
    Calcola il riepilogo dell'allocazione.

    net = gross - discount (sconto limitato a [0, gross]),
    allocated = somma righe + somma rate,
    remaining = max(0, net - allocated),
    balanced = |net - allocated| <= tolleranza.

    Un'allocazione in eccesso ha remaining = 0 ma non è in quadratura se
    l'eccedenza supera la tolleranza.

    Args:
        gross: Totale lordo del preventivo
        discount: Sconto fisso già risolto
        payment_lines: Righe di pagamento (oggetti con `amount` o importi)
        installments: Rate (oggetti con `value` o importi)
        tolerance: Tolleranza assoluta (default: settings.allocation_tolerance)

    Returns:
        AllocationSummary
    """
    if tolerance is None:
        tolerance = settings.allocation_tolerance

    gross = to_money(gross, "totale lordo")
    discount = min(to_money(discount, "sconto"), gross)
    net = gross - discount

    allocated = ZERO
    for line in payment_lines:
        allocated += to_money(_amount_of(line))
    for installment in installments:
        allocated += to_money(_amount_of(installment), "rata")

    difference = net - allocated
    return AllocationSummary(
        gross=gross,
        discount=discount,
        net=net,
        allocated=allocated,
        remaining=max(ZERO, difference),
        difference=difference,
        balanced=abs(difference) <= tolerance,
    )
