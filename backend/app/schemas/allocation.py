"""
Schemas Pydantic per le Allocazioni
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Contiene:
- MethodAllocation / AllocationPlan: risultato dell'algoritmo a cascata
- PreviewResult: anteprima in cache con timestamp
- AllocationRead: riga del ledger allocazioni
- Schemas per le operazioni amministrative (clear, refresh-all, audit)
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# -------------------------------------------------------------------
# Piano di allocazione
# -------------------------------------------------------------------

class MethodAllocation(BaseModel):
    """Passo della cascata per un singolo metodo."""

    payment_method_id: uuid.UUID
    gap_available: Decimal = Field(..., description="Gap del metodo prima di questo passo")
    gap_covered: Decimal = Field(..., description="Fondi del versamento assegnati al metodo")
    gap_uncovered: Decimal = Field(..., description="Gap che resta scoperto")
    remaining_after: Decimal = Field(..., description="Fondi residui dopo il passo")


class AllocationPlan(BaseModel):
    """
    Piano di allocazione di un versamento.

    Vale sempre total_gap_covered + total_remaining == net_amount.
    """

    deposit_id: Optional[uuid.UUID] = None
    net_amount: Decimal
    per_method: list[MethodAllocation]
    total_gap_covered: Decimal
    total_gap_uncovered: Decimal
    total_remaining: Decimal

    def covered_by_method(self) -> dict[uuid.UUID, Decimal]:
        """Importi coperti per metodo (occorrenze ripetute sommate, ordine preservato)."""
        covered: dict[uuid.UUID, Decimal] = {}
        for step in self.per_method:
            covered[step.payment_method_id] = (
                covered.get(step.payment_method_id, Decimal("0.00")) + step.gap_covered
            )
        return covered


class PreviewResult(BaseModel):
    """Anteprima restituita all'interfaccia di approvazione."""

    deposit_id: uuid.UUID
    plan: AllocationPlan
    computed_at: datetime = Field(..., description="Istante del calcolo (ordine last-write-wins)")
    cached: bool = Field(False, description="True se servita dalla cache")
    stale: bool = Field(False, description="True se il ricalcolo è fallito e si serve la copia precedente")


# -------------------------------------------------------------------
# Ledger allocazioni
# -------------------------------------------------------------------

class AllocationRead(BaseModel):
    """Riga del ledger allocazioni."""

    id: uuid.UUID
    deposit_id: uuid.UUID
    payment_method_id: uuid.UUID
    allocation_date: date
    period_start: date
    period_end: date
    allocated_amount: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AllocationClearRequest(BaseModel):
    """Cancellazione amministrativa delle righe di un periodo."""

    payment_method_id: Optional[uuid.UUID] = Field(None, description="None = tutti i metodi")
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_period(self) -> "AllocationClearRequest":
        if self.end_date < self.start_date:
            raise ValueError("La data di fine non può precedere la data di inizio")
        return self


class AllocationClearResult(BaseModel):
    deleted_count: int


class ConsistencyViolation(BaseModel):
    """Violazione del vincolo di non doppio finanziamento (non bloccante)."""

    payment_method_id: uuid.UUID
    period_start: date
    period_end: date
    net_sales: Decimal
    approved_allocations: Decimal
    excess: Decimal


class AuditReport(BaseModel):
    """Esito del controllo di consistenza del ledger allocazioni."""

    checked_buckets: int
    violations: list[ConsistencyViolation] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.violations


class RefreshAllResult(BaseModel):
    """Statistiche del ricalcolo completo delle allocazioni."""

    total_deposits_processed: int
    total_rows_written: int
    total_gap_covered: Decimal
    total_gap_uncovered: Decimal
    total_remaining: Decimal
    processing_time_seconds: float
    audit: AuditReport
