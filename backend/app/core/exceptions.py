"""
Eccezioni di dominio
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Ogni classe porta con sé status HTTP, error_code e messaggio di default;
l'handler registrato in main.py le rende come
{"detail", "error_code", "extra"}.

Tassonomia:
- BusinessValidationError (422): input non valido (intervallo date, importi
  negativi, campi obbligatori mancanti). Sollevata prima di qualsiasi lettura
  dal ledger.
- AllocationStateError (409): operazione non consentita nello stato corrente
  del versamento (es. commit su un versamento in attesa). Nessun effetto parziale.
- LedgerStoreError (503): lettura/scrittura sul ledger fallita. I commit non
  lasciano righe parziali; l'operatore ripete l'intera operazione.
- NotFoundError (404) e DuplicateError (409): lookup e vincoli unique.

Le violazioni del vincolo di non doppio finanziamento non sono eccezioni:
l'audit le registra a livello WARNING e le restituisce (ConsistencyViolation).

NOTA: BusinessValidationError non è pydantic.ValidationError. La prima
riguarda le regole di business ed è gestita dal nostro handler, la seconda
il formato dell'input ed è gestita da FastAPI. Entrambe → 422.
"""

from typing import Any, Dict, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "DuplicateError",
    "BusinessValidationError",
    "AllocationStateError",
    "LedgerStoreError",
]


class AppException(Exception):
    """
    Base delle eccezioni di dominio.

    Attributes:
        status_code: Status HTTP della risposta
        error_code: Codice stabile per il client (interfaccia di approvazione)
        detail: Messaggio leggibile
        extra: Dati strutturati aggiuntivi (id versamento, metodi, stato...)
    """

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"
    default_detail: str = "Errore interno del server"

    def __init__(
        self,
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.detail = detail if detail is not None else self.default_detail
        self.error_code = error_code if error_code is not None else type(self).error_code
        self.extra = extra
        self.status_code = type(self).status_code
        super().__init__(self.detail)

    def to_response(self) -> Dict[str, Any]:
        """Corpo JSON della risposta di errore."""
        return {"detail": self.detail, "error_code": self.error_code, "extra": self.extra}


class NotFoundError(AppException):
    """Entità cercata inesistente (versamento, metodo, fattura originale)."""

    status_code = 404
    error_code = "RESOURCE_NOT_FOUND"
    default_detail = "Risorsa non trovata"


class DuplicateError(AppException):
    """Violazione di un vincolo unique (es. numero fattura già importato)."""

    status_code = 409
    error_code = "DUPLICATE_RESOURCE"
    default_detail = "Risorsa già esistente"


class BusinessValidationError(ValueError, AppException):
    """
    Violazione delle regole di business.

    Eredita anche da ValueError: sollevata dentro un validatore
    Pydantic viene convertita in errore di validazione dello schema.

    Esempi:
        - "La data di fine precede la data di inizio"
        - "L'importo netto del versamento non può essere negativo"
        - "Metodi di pagamento inesistenti o disattivati"
    """

    status_code = 422
    error_code = "BUSINESS_VALIDATION_ERROR"
    default_detail = "Validazione dati fallita"

    def __init__(
        self,
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # AppException.__init__ direttamente: ValueError.__init__ non conosce error_code/extra
        AppException.__init__(self, detail, error_code, extra)


class AllocationStateError(AppException):
    """
    Operazione non consentita nello stato corrente del versamento.

    Esempi:
        - commit delle allocazioni su un versamento in attesa o rifiutato
        - approvazione o rifiuto di un versamento già revisionato
        - modifica di un versamento già revisionato
    """

    status_code = 409
    error_code = "ALLOCATION_STATE_ERROR"
    default_detail = "Operazione non consentita nello stato corrente"


class LedgerStoreError(AppException):
    """
    Ledger temporaneamente non raggiungibile.

    Per i commit in background il retry avviene solo al prossimo
    trigger utile, mai in un ciclo immediato.
    """

    status_code = 503
    error_code = "LEDGER_STORE_UNAVAILABLE"
    default_detail = "Archivio contabile temporaneamente non disponibile"
