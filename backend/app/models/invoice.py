"""
Modelli SQLAlchemy per le Vendite
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Contiene:
- Invoice: Fattura di vendita importata dal gestionale
- CreditNote: Nota di credito che storna una fattura

Entrambi sono record immutabili forniti dall'importazione vendite:
solo quelli in stato "posted" partecipano alla riconciliazione.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, List

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.payment_method import PaymentMethod


class Invoice(Base, UUIDMixin, TimestampMixin):
    """
    Fattura di vendita.

    Attributes:
        invoice_number: Numero fattura del gestionale di origine (univoco)
        payment_method_id: Metodo di pagamento con cui è stata incassata la vendita
        invoice_date: Data emissione fattura
        sale_order_date: Data dell'ordine di vendita, data di riferimento
            per tutti i calcoli di periodo
        amount_total: Totale fattura
        state: draft | posted
        partner_name: Cliente (informativo)

    Relationships:
        payment_method: Metodo di pagamento
        credit_notes: Note di credito che stornano questa fattura
    """

    __tablename__ = "invoices"

    # ------------------------------------------------------------
    # Colonne Identificazione
    # ------------------------------------------------------------
    invoice_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        doc="Numero fattura del gestionale di origine",
    )

    payment_method_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payment_methods.id", ondelete="RESTRICT"),
        nullable=False,
        doc="UUID del metodo di pagamento",
    )

    partner_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Nome cliente (informativo)",
    )

    # ------------------------------------------------------------
    # Colonne Date
    # ------------------------------------------------------------
    invoice_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Data emissione fattura",
    )

    sale_order_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Data ordine di vendita (data primaria per i calcoli)",
    )

    # ------------------------------------------------------------
    # Colonne Importi e Stato
    # ------------------------------------------------------------
    amount_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Totale fattura",
    )

    state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="posted",
        doc="Stato fattura: draft | posted",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    payment_method: Mapped["PaymentMethod"] = relationship(
        "PaymentMethod",
        lazy="selectin",
        doc="Metodo di pagamento",
    )

    credit_notes: Mapped[List["CreditNote"]] = relationship(
        "CreditNote",
        back_populates="original_invoice",
        doc="Note di credito che stornano questa fattura",
    )

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        # Indice composto per le aggregazioni per metodo e periodo
        Index("ix_invoices_method_sale_date", "payment_method_id", "sale_order_date"),
        Index("ix_invoices_state", "state"),
        CheckConstraint("state IN ('draft', 'posted')", name="ck_invoices_state"),
    )

    def __repr__(self) -> str:
        return f"<Invoice(number={self.invoice_number}, total={self.amount_total}, state={self.state})>"


class CreditNote(Base, UUIDMixin, TimestampMixin):
    """
    Nota di credito: storno di una fattura.

    Ogni nota di credito deve riferirsi a una fattura originale;
    ai fini della riconciliazione viene datata con la data ordine
    della fattura originale, non con la propria data di emissione,
    per non spostare lo storno in un periodo diverso dalla vendita.
    """

    __tablename__ = "credit_notes"

    credit_note_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True
    )

    original_invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        doc="Fattura stornata",
    )

    payment_method_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payment_methods.id", ondelete="RESTRICT"),
        nullable=False,
    )

    credit_date: Mapped[date] = mapped_column(Date, nullable=False)

    sale_order_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Data ordine ereditata dalla fattura originale",
    )

    # Importo come importato (spesso negativo): il motore usa il valore assoluto
    amount_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    state: Mapped[str] = mapped_column(String(20), nullable=False, default="posted")

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relazioni
    original_invoice: Mapped["Invoice"] = relationship(
        "Invoice", back_populates="credit_notes"
    )

    __table_args__ = (
        Index("ix_credit_notes_original_invoice", "original_invoice_id"),
        Index("ix_credit_notes_method", "payment_method_id"),
        CheckConstraint("state IN ('draft', 'posted')", name="ck_credit_notes_state"),
    )

    def __repr__(self) -> str:
        return f"<CreditNote(number={self.credit_note_number}, total={self.amount_total})>"
