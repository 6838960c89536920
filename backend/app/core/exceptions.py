"""
Eccezioni Custom per l'applicazione.
Progetto: Officina Budget Engine

Definisce eccezioni specifiche del dominio per una gestione
centralizzata degli errori.

Tassonomia:
- BusinessValidationError: input non valido prima dell'invio (allocazione
  sbilanciata, conto mancante su una riga pagata, metodo mancante) → 422
- PreconditionFailedError: stato obsoleto (già convertito, già annullato) → 409,
  da segnalare con invito ad aggiornare, mai ritentato come errore transitorio
- BusinessRuleViolationError: regola di business violata (pagamenti già
  incassati, giacenza insufficiente) → 422, messaggio riportato testualmente
- TransactionalFailureError: il commit atomico è fallito → 500, nulla va
  considerato applicato

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
"""

from typing import Any, Dict, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "BusinessValidationError",
    "ValidationError",       # alias di BusinessValidationError
    "UnbalancedAllocationError",
    "ConflictError",
    "PreconditionFailedError",
    "AlreadyConvertedError",
    "AlreadyCanceledError",
    "BusinessRuleViolationError",
    "InsufficientStockError",
    "HasSettledPaymentsError",
    "TransactionalFailureError",
    "PersistenceFailureError",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Tutte le eccezioni custom ereditano da questa classe base.

    Attributes:
        status_code: HTTP status code da restituire al client
        error_code: Identificativo univoco dell'errore per il frontend
        title: Titolo breve della notifica mostrata all'operatore
        severity: Gravità della notifica (info, warning, error)
        detail: Messaggio di errore leggibile per l'utente
        extra: Dizionario con dati aggiuntivi per il frontend
    """

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"
    title: str = "Errore"
    severity: str = "error"

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Inizializza l'eccezione.

        Args:
            detail: Messaggio di errore dettagliato
            error_code: Identificativo univoco (default: quello di classe)
            extra: Dati aggiuntivi da passare al frontend (default: None)
        """
        self.detail = detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra if extra is not None else None
        self.status_code = self.__class__.status_code
        super().__init__(detail)


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.
    """

    status_code: int = 404
    error_code: str = "RESOURCE_NOT_FOUND"
    title: str = "Risorsa non trovata"

    def __init__(
        self,
        detail: str = "Risorsa non trovata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class BusinessValidationError(ValueError, AppException):
    """
    Eccezione sollevata per dati non validi prima dell'invio.

    Eredita da ValueError per essere catturata dai validatori Pydantic.
    Il campo `extra` può indicare la riga e il campo da evidenziare,
    es. {"line_id": "...", "field": "account_id"}.

    Esempi di utilizzo:
        - "Selezionare il conto di destinazione per il pagamento di 150.00"
        - "Selezionare il metodo di pagamento per il valore 80.00"
        - "L'importo deve essere maggiore di zero"
    """

    status_code: int = 422
    error_code: str = "BUSINESS_VALIDATION_ERROR"
    title: str = "Errore di validazione"
    severity: str = "warning"

    def __init__(
        self,
        detail: str = "Validazione dati fallita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, extra)


# Alias per compatibilità
ValidationError = BusinessValidationError


class UnbalancedAllocationError(BusinessValidationError):
    """
    L'allocazione non riconcilia con il valore netto entro la tolleranza.
    """

    error_code: str = "UNBALANCED_ALLOCATION"
    title: str = "Valori divergenti"

    def __init__(
        self,
        detail: str = "Il totale allocato non corrisponde al valore netto",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class ConflictError(AppException):
    """
    Eccezione sollevata per conflitti di stato.

    Utilizzata quando un'operazione non può essere eseguita
    a causa dello stato corrente della risorsa.
    """

    status_code: int = 409
    error_code: str = "CONFLICT_STATE"
    title: str = "Conflitto di stato"
    severity: str = "warning"

    def __init__(
        self,
        detail: str = "Conflitto di stato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class PreconditionFailedError(ConflictError):
    """
    Lo stato persistito non soddisfa più le precondizioni dell'operazione.

    Il client sta lavorando su dati obsoleti: va invitato ad aggiornare,
    l'operazione non va ritentata automaticamente.
    """

    error_code: str = "PRECONDITION_FAILED"
    title: str = "Dati non aggiornati"

    def __init__(
        self,
        detail: str = "Lo stato della risorsa è cambiato, aggiornare e riprovare",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class AlreadyConvertedError(PreconditionFailedError):
    """Il preventivo non è (più) in stato approvato."""

    error_code: str = "ALREADY_CONVERTED"
    title: str = "Preventivo già convertito"

    def __init__(
        self,
        detail: str = "Il preventivo non è più approvato o è già stato convertito",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class AlreadyCanceledError(PreconditionFailedError):
    """L'ordine di servizio è già annullato."""

    error_code: str = "ALREADY_CANCELED"
    title: str = "Ordine già annullato"

    def __init__(
        self,
        detail: str = "L'ordine di servizio è già stato annullato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class BusinessRuleViolationError(AppException):
    """
    Eccezione sollevata per violazioni delle regole di business.

    Il messaggio viene riportato testualmente all'operatore per guidare
    il passo manuale successivo.
    """

    status_code: int = 422
    error_code: str = "BUSINESS_RULE_VIOLATION"
    title: str = "Operazione non consentita"

    def __init__(
        self,
        detail: str = "Regola di business violata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class InsufficientStockError(BusinessRuleViolationError):
    """Un ricambio del preventivo non può essere riservato."""

    error_code: str = "INSUFFICIENT_STOCK"
    title: str = "Giacenza insufficiente"

    def __init__(
        self,
        detail: str = "Giacenza insufficiente",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class HasSettledPaymentsError(BusinessRuleViolationError):
    """L'ordine ha movimenti già incassati: serve prima uno storno finanziario."""

    error_code: str = "HAS_SETTLED_PAYMENTS"
    title: str = "Pagamenti già registrati"

    def __init__(
        self,
        detail: str = (
            "Non è possibile annullare: esistono pagamenti registrati. "
            "Effettuare prima lo storno finanziario."
        ),
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class TransactionalFailureError(AppException):
    """
    Il commit atomico è fallito.

    Il chiamante deve assumere che nulla sia stato applicato e non
    proseguire con alcuna navigazione di successo.
    """

    status_code: int = 500
    error_code: str = "TRANSACTIONAL_FAILURE"
    title: str = "Operazione non completata"

    def __init__(
        self,
        detail: str = "L'operazione non è stata registrata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class PersistenceFailureError(TransactionalFailureError):
    """Errore generico di trasporto o di storage durante il commit."""

    error_code: str = "PERSISTENCE_FAILURE"

    def __init__(
        self,
        detail: str = "Errore di persistenza: nessuna modifica è stata applicata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)
