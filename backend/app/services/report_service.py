"""
Service Layer per i Report di riconciliazione
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Letture aggregate usate dalle dashboard:
- period_gap: vendite nette, approvato, in attesa e gap di un periodo
- method_summaries: riepilogo per metodo, ordinato per vendite nette
- period_breakdown: vista giornaliera/mensile

Nella vista per periodo le righe di allocazione, già giornaliere, sono
sommate nel bucket che contiene la loro allocation_date.
"""

import calendar
import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BusinessValidationError
from app.core.money import ZERO, clamp_non_negative
from app.models import PaymentMethod
from app.schemas.report import Granularity, MethodSummary, PeriodBucket, PeriodGap
from app.services.aggregation_service import PeriodAggregator

logger = logging.getLogger(__name__)


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise BusinessValidationError(
            "La data di fine precede la data di inizio",
            extra={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def bucket_bounds(day: date, granularity: Granularity) -> tuple[date, date]:
    """Estremi del bucket che contiene il giorno."""
    if granularity == Granularity.DAILY:
        return day, day
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


class ReportService:
    """Service per le letture aggregate di riconciliazione."""

    def __init__(self, aggregator: Optional[PeriodAggregator] = None) -> None:
        self.aggregator = aggregator or PeriodAggregator()

    async def period_gap(
        self,
        db: AsyncSession,
        payment_method_id: Optional[uuid.UUID],
        start_date: date,
        end_date: date,
    ) -> PeriodGap:
        _check_range(start_date, end_date)
        totals = await self.aggregator.aggregate(db, payment_method_id, start_date, end_date)
        pending = await self.aggregator.pending_total(db, payment_method_id, start_date, end_date)
        return PeriodGap(
            payment_method_id=payment_method_id,
            start_date=start_date,
            end_date=end_date,
            net_sales=totals.net_invoices,
            approved=totals.approved_alloc,
            pending=pending,
            gap=clamp_non_negative(totals.net_invoices - totals.approved_alloc),
        )

    async def method_summaries(
        self,
        db: AsyncSession,
        start_date: date,
        end_date: date,
        payment_method_id: Optional[uuid.UUID] = None,
    ) -> list[MethodSummary]:
        """Riepilogo per metodo di pagamento, vendite nette decrescenti."""
        _check_range(start_date, end_date)
        stmt = select(PaymentMethod).order_by(PaymentMethod.name)
        if payment_method_id is not None:
            stmt = stmt.where(PaymentMethod.id == payment_method_id)
        else:
            stmt = stmt.where(PaymentMethod.is_active == True)
        methods = list((await db.execute(stmt)).scalars().all())

        summaries = []
        for method in methods:
            totals = await self.aggregator.aggregate(db, method.id, start_date, end_date)
            pending = await self.aggregator.pending_total(db, method.id, start_date, end_date)
            summaries.append(
                MethodSummary(
                    payment_method_id=method.id,
                    name=method.name,
                    net_invoices=totals.net_invoices,
                    approved_alloc=totals.approved_alloc,
                    pending_amount=pending,
                    gap=clamp_non_negative(totals.net_invoices - totals.approved_alloc),
                )
            )

        summaries.sort(key=lambda s: s.net_invoices, reverse=True)
        return summaries

    async def period_breakdown(
        self,
        db: AsyncSession,
        start_date: date,
        end_date: date,
        granularity: Granularity = Granularity.DAILY,
        payment_method_id: Optional[uuid.UUID] = None,
    ) -> list[PeriodBucket]:
        """
        Vendite, approvato e gap per giorno o per mese.

        I bucket mensili sono ritagliati sull'intervallo richiesto.
        Sono restituiti solo i bucket con almeno un movimento.
        """
        _check_range(start_date, end_date)

        sales_by_day = await self.aggregator.daily_net_sales(db, payment_method_id, start_date, end_date)
        approved_by_day = await self.aggregator.daily_approved(db, payment_method_id, start_date, end_date)

        sales: dict[date, Decimal] = defaultdict(lambda: ZERO)
        approved: dict[date, Decimal] = defaultdict(lambda: ZERO)
        for day, amount in sales_by_day.items():
            sales[bucket_bounds(day, granularity)[0]] += amount
        for day, amount in approved_by_day.items():
            approved[bucket_bounds(day, granularity)[0]] += amount

        buckets = []
        for key in sorted(set(sales) | set(approved)):
            first, last = bucket_bounds(key, granularity)
            bucket_sales = sales[key]
            bucket_approved = approved[key]
            buckets.append(
                PeriodBucket(
                    period_start=max(first, start_date),
                    period_end=min(last, end_date),
                    sales=bucket_sales,
                    approved=bucket_approved,
                    gap=clamp_non_negative(bucket_sales - bucket_approved),
                )
            )

        logger.debug(
            "Vista %s %s..%s (metodo=%s): %d bucket",
            granularity.value, start_date, end_date, payment_method_id, len(buckets),
        )
        return buckets
