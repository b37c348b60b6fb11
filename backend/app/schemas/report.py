"""
Schemas Pydantic per i Report di riconciliazione
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Granularity(str, Enum):
    """Granularità delle viste per periodo."""
    DAILY = "daily"
    MONTHLY = "monthly"


class PeriodGap(BaseModel):
    """Gap aggregato di un periodo (uno o tutti i metodi)."""

    payment_method_id: Optional[uuid.UUID] = None
    start_date: date
    end_date: date
    net_sales: Decimal = Field(..., description="Fatture - note di credito")
    approved: Decimal = Field(..., description="Allocazioni dei versamenti approvati")
    pending: Decimal = Field(..., description="Importo netto dei versamenti in attesa")
    gap: Decimal = Field(..., description="max(0, net_sales - approved)")


class MethodSummary(BaseModel):
    """Riepilogo per metodo di pagamento."""

    payment_method_id: uuid.UUID
    name: str
    net_invoices: Decimal
    approved_alloc: Decimal
    pending_amount: Decimal
    gap: Decimal


class PeriodBucket(BaseModel):
    """Riga della vista giornaliera/mensile."""

    period_start: date
    period_end: date
    sales: Decimal
    approved: Decimal
    gap: Decimal
