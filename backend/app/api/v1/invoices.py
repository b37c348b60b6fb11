"""
Router FastAPI per il ledger vendite
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Endpoint usati dall'importazione vendite per registrare fatture
e note di credito già normalizzate.
"""

import logging
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.invoice import (
    CreditNoteCreate,
    CreditNoteRead,
    InvoiceBulkResult,
    InvoiceCreate,
    InvoiceRead,
)
from app.services.ledger_service import LedgerService

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Istanza del service
ledger_service = LedgerService()

# Router con prefix e tag
router = APIRouter(
    prefix="/invoices",
    tags=["Fatture"],
)

# Router separato per le note di credito
credit_notes_router = APIRouter(
    prefix="/credit-notes",
    tags=["Note di Credito"],
)


# -------------------------------------------------------------------
# Endpoints per Fatture
# -------------------------------------------------------------------

@router.get(
    "/",
    name="fatture_lista",
    summary="Lista fatture",
    description="Fatture filtrate per metodo di pagamento e data ordine di vendita.",
    response_model=list[InvoiceRead],
)
async def list_invoices(
    payment_method_id: Optional[uuid.UUID] = Query(None, description="Filtro metodo di pagamento"),
    start_date: Optional[date] = Query(None, description="Data ordine da"),
    end_date: Optional[date] = Query(None, description="Data ordine a"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> list[InvoiceRead]:
    invoices = await ledger_service.list_invoices(
        db=db,
        payment_method_id=payment_method_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return [InvoiceRead.model_validate(i) for i in invoices]


@router.post(
    "/",
    name="fattura_crea",
    summary="Registra fattura",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    invoice_data: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    """
    Raises:
        NotFoundError: metodo di pagamento inesistente
        DuplicateError: numero fattura già importato
    """
    invoice = await ledger_service.create_invoice(db=db, data=invoice_data)
    return InvoiceRead.model_validate(invoice)


@router.post(
    "/bulk",
    name="fatture_importa",
    summary="Importazione multipla",
    description="Registra più fatture in un'unica transazione, saltando i numeri già presenti.",
    response_model=InvoiceBulkResult,
    status_code=status.HTTP_201_CREATED,
)
async def create_invoices_bulk(
    items: list[InvoiceCreate] = Body(...),
    db: AsyncSession = Depends(get_db),
) -> InvoiceBulkResult:
    return await ledger_service.create_invoices_bulk(db=db, items=items)


# -------------------------------------------------------------------
# Endpoints per Note di Credito
# -------------------------------------------------------------------

@credit_notes_router.get(
    "/",
    name="note_di_credito_lista",
    summary="Lista note di credito",
    response_model=list[CreditNoteRead],
)
async def list_credit_notes(
    original_invoice_id: Optional[uuid.UUID] = Query(None, description="Filtro fattura originale"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> list[CreditNoteRead]:
    notes = await ledger_service.list_credit_notes(
        db=db, original_invoice_id=original_invoice_id, limit=limit, offset=offset
    )
    return [CreditNoteRead.model_validate(n) for n in notes]


@credit_notes_router.post(
    "/",
    name="nota_di_credito_crea",
    summary="Registra nota di credito",
    description="Metodo di pagamento e data ordine vengono ereditati dalla fattura originale.",
    response_model=CreditNoteRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_credit_note(
    credit_note_data: CreditNoteCreate,
    db: AsyncSession = Depends(get_db),
) -> CreditNoteRead:
    credit_note = await ledger_service.create_credit_note(db=db, data=credit_note_data)
    return CreditNoteRead.model_validate(credit_note)
