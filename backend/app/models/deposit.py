"""
Modelli SQLAlchemy per i Versamenti
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Contiene:
- Deposit: Versamento di contanti/incassi dichiarato per un periodo
- DepositAllocation: Riga del ledger allocazioni (fondi di un versamento
  assegnati a un metodo di pagamento per un periodo)

Ciclo di vita:
    pending → approved  (il primo commit delle allocazioni avviene all'approvazione)
    pending → rejected  (rejection_reason obbligatorio)

Le righe di allocazione esistono solo per versamenti approvati e vengono
scritte esclusivamente dal servizio di commit.
"""

from __future__ import annotations

import datetime
import uuid
from datetime import date
from decimal import Decimal
from typing import List

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
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


class Deposit(Base, UUIDMixin, TimestampMixin):
    """
    Versamento sottoposto per approvazione.

    Attributes:
        start_date / end_date: Intervallo coperto (estremi inclusi)
        total_amount: Totale dichiarato
        tax_amount: Rettifica fiscale calcolata a monte
        net_amount: Fondi disponibili per coprire il gap (>= 0)
        payment_method_id: Metodo principale (primo elemento del gruppo)
        method_group: Lista ordinata di {"payment_method_id": ...};
            vuota = solo il metodo principale
        status: pending | approved | rejected
        rejection_reason: Valorizzato solo se rejected
        reviewed_at / reviewed_by: Revisione
        gap_covered / gap_uncovered / remaining_amount: Riepilogo
            dell'ultimo commit delle allocazioni
        allocations_refreshed_at: Timestamp dell'ultimo commit;
            None su un versamento approvato = elaborazione incompleta
    """

    __tablename__ = "deposits"

    # ------------------------------------------------------------
    # Colonne Periodo
    # ------------------------------------------------------------
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    # ------------------------------------------------------------
    # Colonne Importi
    # ------------------------------------------------------------
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )
    net_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, doc="Fondi disponibili per la copertura"
    )

    # ------------------------------------------------------------
    # Colonne Metodi di Pagamento
    # ------------------------------------------------------------
    payment_method_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payment_methods.id", ondelete="RESTRICT"),
        nullable=False,
        doc="Metodo principale del versamento",
    )

    method_group: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Lista ordinata per priorità dei metodi coperti dal versamento",
    )

    # ------------------------------------------------------------
    # Colonne Stato e Revisione
    # ------------------------------------------------------------
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", doc="pending, approved, rejected"
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reviewed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # ------------------------------------------------------------
    # Riepilogo ultimo commit
    # ------------------------------------------------------------
    gap_covered: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    gap_uncovered: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    remaining_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    allocations_refreshed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    allocations: Mapped[List["DepositAllocation"]] = relationship(
        "DepositAllocation",
        back_populates="deposit",
        cascade="all, delete-orphan",
        passive_deletes=True,
        doc="Righe del ledger allocazioni di questo versamento",
    )

    # ------------------------------------------------------------
    # Properties Calcolate
    # ------------------------------------------------------------
    @property
    def method_ids(self) -> list[uuid.UUID]:
        """Metodi del gruppo nell'ordine salvato, senza il fallback implicito."""
        return [uuid.UUID(str(entry["payment_method_id"])) for entry in (self.method_group or [])]

    @property
    def is_fully_processed(self) -> bool:
        """True se approvato e le allocazioni sono state scritte."""
        return self.status == "approved" and self.allocations_refreshed_at is not None

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        Index("ix_deposits_status", "status"),
        Index("ix_deposits_method_period", "payment_method_id", "start_date", "end_date"),
        CheckConstraint("end_date >= start_date", name="ck_deposits_date_range"),
        CheckConstraint("net_amount >= 0", name="ck_deposits_net_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_deposits_status",
        ),
        CheckConstraint(
            "(status = 'rejected') = (rejection_reason IS NOT NULL)",
            name="ck_deposits_rejection_reason",
        ),
    )

    def __repr__(self) -> str:
        return f"<Deposit(id={self.id}, net={self.net_amount}, status={self.status})>"


class DepositAllocation(Base, UUIDMixin, TimestampMixin):
    """
    Riga del ledger allocazioni.

    Una riga per ogni (metodo, giorno) a cui il versamento ha assegnato
    fondi (importo > 0). allocation_date è il giorno di vendita coperto e la
    data di bucket di tutte le aggregazioni; period_start/period_end
    riportano l'intervallo del versamento che ha generato la riga.
    """

    __tablename__ = "deposit_allocations"

    deposit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("deposits.id", ondelete="CASCADE"),
        nullable=False,
    )
    payment_method_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payment_methods.id", ondelete="RESTRICT"),
        nullable=False,
    )

    allocation_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        doc="Importo del versamento assegnato al metodo nel periodo",
    )

    # Relazioni
    deposit: Mapped["Deposit"] = relationship("Deposit", back_populates="allocations")

    __table_args__ = (
        # Una riga per metodo per giorno per versamento
        Index(
            "ux_deposit_allocations_deposit_method_day",
            "deposit_id", "payment_method_id", "allocation_date",
            unique=True,
        ),
        Index("ix_deposit_allocations_method_date", "payment_method_id", "allocation_date"),
        CheckConstraint("allocated_amount > 0", name="ck_deposit_allocations_amount_positive"),
        CheckConstraint("period_end >= period_start", name="ck_deposit_allocations_period"),
    )

    def __repr__(self) -> str:
        return (
            f"<DepositAllocation(deposit={self.deposit_id}, method={self.payment_method_id}, "
            f"amount={self.allocated_amount})>"
        )
