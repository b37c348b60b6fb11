"""
Service Layer per l'aggregazione di periodo
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Calcola, per un bucket (metodo di pagamento, intervallo date):
- vendite nette = fatture posted - note di credito posted
- allocazioni già approvate sul bucket

Le note di credito sono datate con la data ordine della fattura originale.

Le righe di allocazione sono giornaliere (allocation_date = giorno coperto),
quindi qualunque intervallo somma esattamente i giorni che contiene.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.money import ZERO, signed_amount, to_amount
from app.models import CreditNote, Deposit, DepositAllocation, Invoice
from app.schemas.deposit import DepositStatus
from app.schemas.invoice import DocumentState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodTotals:
    """Totali di un bucket (metodo, periodo)."""

    invoices_total: Decimal
    credits_total: Decimal
    approved_alloc: Decimal

    @property
    def net_invoices(self) -> Decimal:
        return self.invoices_total - self.credits_total


class PeriodAggregator:
    """
    Aggregatore delle vendite nette e delle allocazioni approvate.

    Nessun errore quando non ci sono righe: i totali valgono zero.
    L'intervallo date è già validato a monte (vincolo del versamento).
    """

    async def aggregate(
        self,
        db: AsyncSession,
        payment_method_id: Optional[uuid.UUID],
        start_date: date,
        end_date: date,
        exclude_deposit_id: Optional[uuid.UUID] = None,
    ) -> PeriodTotals:
        """
        Aggrega un bucket.

        Args:
            db: Sessione database
            payment_method_id: Metodo di pagamento (None = tutti i metodi)
            start_date / end_date: Intervallo incluso
            exclude_deposit_id: Versamento le cui righe di allocazione
                non vanno conteggiate (di norma quello in ricalcolo)

        Returns:
            PeriodTotals: fatture, note di credito e allocazioni approvate
        """
        invoices_total = signed_amount(
            (await db.execute(self._invoices_stmt(payment_method_id, start_date, end_date))).scalar_one()
        )
        credits_total = to_amount(
            (await db.execute(self._credits_stmt(payment_method_id, start_date, end_date))).scalar_one()
        )
        approved_alloc = to_amount(
            (
                await db.execute(
                    self._approved_stmt(payment_method_id, start_date, end_date, exclude_deposit_id)
                )
            ).scalar_one()
        )

        totals = PeriodTotals(
            invoices_total=invoices_total,
            credits_total=credits_total,
            approved_alloc=approved_alloc,
        )
        logger.debug(
            "Aggregato metodo=%s %s..%s: netto=%s approvato=%s (escluso=%s)",
            payment_method_id, start_date, end_date,
            totals.net_invoices, totals.approved_alloc, exclude_deposit_id,
        )
        return totals

    async def pending_total(
        self,
        db: AsyncSession,
        payment_method_id: Optional[uuid.UUID],
        start_date: date,
        end_date: date,
    ) -> Decimal:
        """Somma degli importi netti dei versamenti in attesa che iniziano nel periodo."""
        stmt = select(func.coalesce(func.sum(Deposit.net_amount), 0)).where(
            Deposit.status == DepositStatus.PENDING.value,
            Deposit.start_date.between(start_date, end_date),
        )
        if payment_method_id is not None:
            stmt = stmt.where(Deposit.payment_method_id == payment_method_id)
        return to_amount((await db.execute(stmt)).scalar_one())

    # ------------------------------------------------------------
    # Letture giornaliere
    # ------------------------------------------------------------
    async def daily_net_sales(
        self,
        db: AsyncSession,
        payment_method_id: Optional[uuid.UUID],
        start_date: date,
        end_date: date,
    ) -> dict[date, Decimal]:
        """Vendite nette per giorno; solo i giorni con almeno un documento."""
        invoices_stmt = (
            select(Invoice.sale_order_date, func.sum(Invoice.amount_total))
            .where(
                Invoice.state == DocumentState.POSTED.value,
                Invoice.sale_order_date.between(start_date, end_date),
            )
            .group_by(Invoice.sale_order_date)
        )
        credits_stmt = (
            select(Invoice.sale_order_date, func.sum(func.abs(CreditNote.amount_total)))
            .join(Invoice, CreditNote.original_invoice_id == Invoice.id)
            .where(
                CreditNote.state == DocumentState.POSTED.value,
                Invoice.state == DocumentState.POSTED.value,
                Invoice.sale_order_date.between(start_date, end_date),
            )
            .group_by(Invoice.sale_order_date)
        )
        if payment_method_id is not None:
            invoices_stmt = invoices_stmt.where(Invoice.payment_method_id == payment_method_id)
            credits_stmt = credits_stmt.where(CreditNote.payment_method_id == payment_method_id)

        daily: dict[date, Decimal] = defaultdict(lambda: ZERO)
        for day, total in (await db.execute(invoices_stmt)).all():
            daily[day] += signed_amount(total)
        for day, total in (await db.execute(credits_stmt)).all():
            daily[day] -= to_amount(total)
        return dict(daily)

    async def daily_approved(
        self,
        db: AsyncSession,
        payment_method_id: Optional[uuid.UUID],
        start_date: date,
        end_date: date,
        exclude_deposit_id: Optional[uuid.UUID] = None,
    ) -> dict[date, Decimal]:
        """Allocazioni approvate per giorno (allocation_date)."""
        stmt = (
            select(DepositAllocation.allocation_date, func.sum(DepositAllocation.allocated_amount))
            .join(Deposit, DepositAllocation.deposit_id == Deposit.id)
            .where(
                Deposit.status == DepositStatus.APPROVED.value,
                DepositAllocation.allocation_date.between(start_date, end_date),
            )
            .group_by(DepositAllocation.allocation_date)
        )
        if payment_method_id is not None:
            stmt = stmt.where(DepositAllocation.payment_method_id == payment_method_id)
        if exclude_deposit_id is not None:
            stmt = stmt.where(DepositAllocation.deposit_id != exclude_deposit_id)
        return {day: to_amount(total) for day, total in (await db.execute(stmt)).all()}

    async def daily_gaps(
        self,
        db: AsyncSession,
        payment_method_id: uuid.UUID,
        start_date: date,
        end_date: date,
        exclude_deposit_id: Optional[uuid.UUID] = None,
    ) -> dict[date, Decimal]:
        """
        Gap residuo per giorno: vendite nette - approvato, solo se positivo.

        È il tetto che il commit rispetta giorno per giorno, così nessun
        intervallo può ricevere più allocazioni delle sue vendite nette.
        """
        sales = await self.daily_net_sales(db, payment_method_id, start_date, end_date)
        approved = await self.daily_approved(db, payment_method_id, start_date, end_date, exclude_deposit_id)
        gaps = {}
        for day in sorted(sales):
            gap = sales[day] - approved.get(day, ZERO)
            if gap > ZERO:
                gaps[day] = gap
        return gaps

    # ------------------------------------------------------------
    # Query
    # ------------------------------------------------------------
    @staticmethod
    def _invoices_stmt(payment_method_id, start_date, end_date):
        stmt = select(func.coalesce(func.sum(Invoice.amount_total), 0)).where(
            Invoice.state == DocumentState.POSTED.value,
            Invoice.sale_order_date.between(start_date, end_date),
        )
        if payment_method_id is not None:
            stmt = stmt.where(Invoice.payment_method_id == payment_method_id)
        return stmt

    @staticmethod
    def _credits_stmt(payment_method_id, start_date, end_date):
        # Datate con la data ordine della fattura originale
        stmt = (
            select(func.coalesce(func.sum(func.abs(CreditNote.amount_total)), 0))
            .join(Invoice, CreditNote.original_invoice_id == Invoice.id)
            .where(
                CreditNote.state == DocumentState.POSTED.value,
                Invoice.state == DocumentState.POSTED.value,
                Invoice.sale_order_date.between(start_date, end_date),
            )
        )
        if payment_method_id is not None:
            stmt = stmt.where(CreditNote.payment_method_id == payment_method_id)
        return stmt

    @staticmethod
    def _approved_stmt(payment_method_id, start_date, end_date, exclude_deposit_id):
        stmt = (
            select(func.coalesce(func.sum(DepositAllocation.allocated_amount), 0))
            .join(Deposit, DepositAllocation.deposit_id == Deposit.id)
            .where(
                Deposit.status == DepositStatus.APPROVED.value,
                DepositAllocation.allocation_date.between(start_date, end_date),
            )
        )
        if payment_method_id is not None:
            stmt = stmt.where(DepositAllocation.payment_method_id == payment_method_id)
        if exclude_deposit_id is not None:
            stmt = stmt.where(DepositAllocation.deposit_id != exclude_deposit_id)
        return stmt
