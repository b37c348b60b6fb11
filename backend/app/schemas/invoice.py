"""
Schemas Pydantic per le Vendite
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Contiene:
- Enums: DocumentState
- Schemas per Invoice
- Schemas per CreditNote

Sono l'interfaccia con l'importazione vendite: le righe arrivano già
normalizzate (nessun parsing CSV/Excel in questo servizio).
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class DocumentState(str, Enum):
    """Stato di fatture e note di credito. Solo 'posted' è riconciliato."""
    DRAFT = "draft"
    POSTED = "posted"


# -------------------------------------------------------------------
# Schemas per Invoice
# -------------------------------------------------------------------

class InvoiceCreate(BaseModel):
    """Fattura di vendita importata."""

    invoice_number: str = Field(..., min_length=1, max_length=50)
    payment_method_id: uuid.UUID
    invoice_date: date
    sale_order_date: Optional[date] = Field(
        None,
        description="Data ordine di vendita (default: invoice_date)",
    )
    amount_total: Decimal = Field(..., max_digits=14, decimal_places=2)
    state: DocumentState = DocumentState.POSTED
    partner_name: Optional[str] = Field(None, max_length=255)


class InvoiceRead(BaseModel):
    id: uuid.UUID
    invoice_number: str
    payment_method_id: uuid.UUID
    invoice_date: date
    sale_order_date: date
    amount_total: Decimal
    state: DocumentState
    partner_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceBulkResult(BaseModel):
    """Esito di un'importazione multipla."""

    created: int
    skipped_duplicates: list[str] = Field(default_factory=list)


# -------------------------------------------------------------------
# Schemas per CreditNote
# -------------------------------------------------------------------

class CreditNoteCreate(BaseModel):
    """
    Nota di credito importata.

    original_invoice_id è obbligatorio: le note senza fattura
    abbinata vengono scartate dall'importazione.
    Metodo di pagamento e data ordine vengono ereditati dalla fattura.
    """

    credit_note_number: str = Field(..., min_length=1, max_length=50)
    original_invoice_id: uuid.UUID
    credit_date: date
    amount_total: Decimal = Field(..., max_digits=14, decimal_places=2)
    state: DocumentState = DocumentState.POSTED
    reason: Optional[str] = Field(None, max_length=2000)


class CreditNoteRead(BaseModel):
    id: uuid.UUID
    credit_note_number: str
    original_invoice_id: uuid.UUID
    payment_method_id: uuid.UUID
    credit_date: date
    sale_order_date: date
    amount_total: Decimal
    state: DocumentState
    reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
