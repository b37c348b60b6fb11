"""
Service Layer per il ledger vendite
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Interfaccia con l'importazione vendite:
- metodi di pagamento (creazione, lista, disattivazione)
- fatture (singole e multiple)
- note di credito (ereditano metodo e data ordine dalla fattura originale)
"""

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BusinessValidationError, DuplicateError, NotFoundError
from app.models import CreditNote, Invoice, PaymentMethod
from app.schemas.invoice import CreditNoteCreate, InvoiceBulkResult, InvoiceCreate
from app.schemas.payment_method import PaymentMethodCreate

logger = logging.getLogger(__name__)


class LedgerService:
    """Service per metodi di pagamento, fatture e note di credito."""

    # ------------------------------------------------------------
    # Metodi di pagamento
    # ------------------------------------------------------------
    async def create_payment_method(self, db: AsyncSession, data: PaymentMethodCreate) -> PaymentMethod:
        method = PaymentMethod(code=data.code.strip(), name=data.name.strip())
        db.add(method)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore IntegrityError creazione metodo di pagamento: %s", e.orig)
            raise DuplicateError(f"Metodo di pagamento con codice '{data.code}' già esistente")
        await db.refresh(method)
        logger.info("Creato metodo di pagamento %s (%s)", method.code, method.id)
        return method

    async def list_payment_methods(self, db: AsyncSession, include_inactive: bool = False) -> list[PaymentMethod]:
        stmt = select(PaymentMethod).order_by(PaymentMethod.name.asc())
        if not include_inactive:
            stmt = stmt.where(PaymentMethod.is_active == True)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_payment_method(self, db: AsyncSession, payment_method_id: uuid.UUID) -> PaymentMethod:
        method = await db.get(PaymentMethod, payment_method_id)
        if method is None:
            raise NotFoundError(f"Metodo di pagamento {payment_method_id} non trovato")
        return method

    async def deactivate_payment_method(self, db: AsyncSession, payment_method_id: uuid.UUID) -> PaymentMethod:
        """Disattivazione logica: i metodi non vengono mai cancellati."""
        method = await self.get_payment_method(db, payment_method_id)
        method.is_active = False
        await db.commit()
        await db.refresh(method)
        logger.info("Disattivato metodo di pagamento %s", method.code)
        return method

    # ------------------------------------------------------------
    # Fatture
    # ------------------------------------------------------------
    def _build_invoice(self, data: InvoiceCreate) -> Invoice:
        return Invoice(
            invoice_number=data.invoice_number.strip(),
            payment_method_id=data.payment_method_id,
            partner_name=data.partner_name,
            invoice_date=data.invoice_date,
            sale_order_date=data.sale_order_date or data.invoice_date,
            amount_total=data.amount_total,
            state=data.state.value,
        )

    async def create_invoice(self, db: AsyncSession, data: InvoiceCreate) -> Invoice:
        """
        Registra una fattura.

        Raises:
            NotFoundError: metodo di pagamento inesistente
            DuplicateError: numero fattura già presente
        """
        await self.get_payment_method(db, data.payment_method_id)

        invoice = self._build_invoice(data)
        db.add(invoice)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore IntegrityError creazione fattura: %s", e.orig)
            raise DuplicateError(f"Fattura {data.invoice_number} già importata")
        await db.refresh(invoice)
        logger.info("Registrata fattura %s (%s)", invoice.invoice_number, invoice.amount_total)
        return invoice

    async def create_invoices_bulk(self, db: AsyncSession, items: list[InvoiceCreate]) -> InvoiceBulkResult:
        """
        Importa più fatture in un'unica transazione.

        I numeri già presenti (a database o ripetuti nel lotto) vengono
        saltati e riportati nell'esito.
        """
        numbers = {item.invoice_number.strip() for item in items}
        method_ids = {item.payment_method_id for item in items}

        existing = set(
            (await db.execute(select(Invoice.invoice_number).where(Invoice.invoice_number.in_(numbers))))
            .scalars()
            .all()
        )
        known_methods = set(
            (await db.execute(select(PaymentMethod.id).where(PaymentMethod.id.in_(method_ids))))
            .scalars()
            .all()
        )
        unknown = method_ids - known_methods
        if unknown:
            raise BusinessValidationError(
                "Metodi di pagamento inesistenti nel lotto",
                extra={"payment_method_ids": sorted(str(m) for m in unknown)},
            )

        skipped: list[str] = []
        invoices: list[Invoice] = []
        for item in items:
            number = item.invoice_number.strip()
            if number in existing:
                skipped.append(number)
                continue
            existing.add(number)
            invoices.append(self._build_invoice(item))

        db.add_all(invoices)
        await db.commit()

        logger.info("Importate %d fatture, %d duplicati saltati", len(invoices), len(skipped))
        return InvoiceBulkResult(created=len(invoices), skipped_duplicates=skipped)

    async def list_invoices(
        self,
        db: AsyncSession,
        payment_method_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Invoice]:
        """Fatture filtrate per metodo e data ordine di vendita."""
        stmt = select(Invoice).order_by(Invoice.sale_order_date.desc(), Invoice.invoice_number)
        if payment_method_id is not None:
            stmt = stmt.where(Invoice.payment_method_id == payment_method_id)
        if start_date is not None:
            stmt = stmt.where(Invoice.sale_order_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Invoice.sale_order_date <= end_date)
        result = await db.execute(stmt.offset(offset).limit(limit))
        return list(result.scalars().all())

    # ------------------------------------------------------------
    # Note di credito
    # ------------------------------------------------------------
    async def create_credit_note(self, db: AsyncSession, data: CreditNoteCreate) -> CreditNote:
        """
        Registra una nota di credito abbinata alla fattura originale.

        Raises:
            NotFoundError: fattura originale inesistente
            DuplicateError: numero nota già presente
        """
        invoice = await db.get(Invoice, data.original_invoice_id)
        if invoice is None:
            raise NotFoundError(f"Fattura originale {data.original_invoice_id} non trovata")

        credit_note = CreditNote(
            credit_note_number=data.credit_note_number.strip(),
            original_invoice_id=invoice.id,
            payment_method_id=invoice.payment_method_id,
            credit_date=data.credit_date,
            sale_order_date=invoice.sale_order_date,
            amount_total=data.amount_total,
            state=data.state.value,
            reason=data.reason,
        )
        db.add(credit_note)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore IntegrityError creazione nota di credito: %s", e.orig)
            raise DuplicateError(f"Nota di credito {data.credit_note_number} già importata")
        await db.refresh(credit_note)
        logger.info(
            "Registrata nota di credito %s su fattura %s (%s)",
            credit_note.credit_note_number, invoice.invoice_number, credit_note.amount_total,
        )
        return credit_note

    async def list_credit_notes(
        self,
        db: AsyncSession,
        original_invoice_id: Optional[uuid.UUID] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[CreditNote]:
        stmt = select(CreditNote).order_by(CreditNote.credit_date.desc(), CreditNote.credit_note_number)
        if original_invoice_id is not None:
            stmt = stmt.where(CreditNote.original_invoice_id == original_invoice_id)
        result = await db.execute(stmt.offset(offset).limit(limit))
        return list(result.scalars().all())
