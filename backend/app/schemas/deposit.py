"""
Schemas Pydantic per i Versamenti
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Contiene:
- Enum: DepositStatus
- Schemas per il gruppo di metodi (MethodGroupEntry)
- Schemas per Deposit (create, update, reject, read)
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class DepositStatus(str, Enum):
    """Stati del versamento. approved e rejected sono terminali."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# -------------------------------------------------------------------
# Schemas per il gruppo di metodi
# -------------------------------------------------------------------

class MethodGroupEntry(BaseModel):
    """Elemento della lista ordinata di metodi coperti dal versamento."""

    payment_method_id: uuid.UUID = Field(..., description="UUID del metodo di pagamento")

    model_config = ConfigDict(from_attributes=True)


def _check_period(start_date: Optional[date], end_date: Optional[date]) -> None:
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValueError("La data di fine non può precedere la data di inizio")


# -------------------------------------------------------------------
# Schemas per Deposit
# -------------------------------------------------------------------

class DepositCreate(BaseModel):
    """
    Schema per la registrazione di un versamento.

    total_amount e tax_amount arrivano dal modulo di caricamento
    (calcolo fiscale a monte). Se net_amount non è indicato vale
    total_amount + tax_amount.
    """

    start_date: date = Field(..., description="Inizio periodo (incluso)")
    end_date: date = Field(..., description="Fine periodo (inclusa)")
    total_amount: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)
    tax_amount: Decimal = Field(default=Decimal("0.00"), max_digits=14, decimal_places=2)
    net_amount: Optional[Decimal] = Field(
        None,
        ge=0,
        max_digits=14,
        decimal_places=2,
        description="Fondi disponibili (default: total_amount + tax_amount)",
    )
    payment_method_id: Optional[uuid.UUID] = Field(
        None,
        description="Metodo principale (default: primo elemento di method_group)",
    )
    method_group: list[MethodGroupEntry] = Field(
        default_factory=list,
        description="Metodi in ordine di priorità",
    )
    notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def validate_deposit(self) -> "DepositCreate":
        _check_period(self.start_date, self.end_date)
        if self.payment_method_id is None and not self.method_group:
            raise ValueError("Indicare payment_method_id oppure almeno un metodo in method_group")
        if self.net_amount is None:
            net = self.total_amount + self.tax_amount
            if net < 0:
                raise ValueError("L'importo netto del versamento non può essere negativo")
            self.net_amount = net
        return self

    @property
    def primary_method_id(self) -> uuid.UUID:
        """Metodo principale: esplicito oppure il primo del gruppo."""
        if self.method_group:
            return self.method_group[0].payment_method_id
        return self.payment_method_id


# Colonne NOT NULL: in modifica si possono omettere, non annullare
_NOT_NULL_ON_UPDATE = ("start_date", "end_date", "total_amount", "tax_amount", "net_amount", "method_group")


class DepositUpdate(BaseModel):
    """
    Schema per la modifica di un versamento in attesa (tutti i campi opzionali).

    Solo notes accetta null esplicito; per gli altri campi null è un errore.
    """

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_amount: Optional[Decimal] = Field(None, ge=0, max_digits=14, decimal_places=2)
    tax_amount: Optional[Decimal] = Field(None, max_digits=14, decimal_places=2)
    net_amount: Optional[Decimal] = Field(None, ge=0, max_digits=14, decimal_places=2)
    method_group: Optional[list[MethodGroupEntry]] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def validate_update(self) -> "DepositUpdate":
        cleared = [f for f in _NOT_NULL_ON_UPDATE if f in self.model_fields_set and getattr(self, f) is None]
        if cleared:
            raise ValueError(f"Campi non annullabili: {', '.join(cleared)}")
        _check_period(self.start_date, self.end_date)
        return self


class DepositApprove(BaseModel):
    """Dati di approvazione."""

    reviewed_by: Optional[str] = Field(None, max_length=100)


class DepositReject(BaseModel):
    """Dati di rifiuto: il motivo è obbligatorio."""

    reason: str = Field(..., min_length=1, max_length=2000)
    reviewed_by: Optional[str] = Field(None, max_length=100)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Il motivo del rifiuto è obbligatorio")
        return v


class DepositRead(BaseModel):
    """Schema di lettura di un versamento."""

    id: uuid.UUID
    start_date: date
    end_date: date
    total_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    payment_method_id: uuid.UUID
    method_group: list[MethodGroupEntry]
    status: DepositStatus
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    gap_covered: Optional[Decimal] = None
    gap_uncovered: Optional[Decimal] = None
    remaining_amount: Optional[Decimal] = None
    allocations_refreshed_at: Optional[datetime] = None
    is_fully_processed: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DepositList(BaseModel):
    """Lista paginata di versamenti."""

    items: list[DepositRead]
    total: int
    page: int
    per_page: int
