"""
Service Layer per il commit delle Allocazioni
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Gestisce il ledger allocazioni:
- commit: riscrittura atomica delle righe di un versamento approvato
- clear: cancellazione amministrativa per periodo/metodo
- refresh_all: ricalcolo completo di tutti i versamenti approvati
- audit: verifica del vincolo di non doppio finanziamento

Ogni metodo coperto riceve una riga per giorno (allocation_date), mai oltre
il gap di quel giorno: le letture su qualunque intervallo restano esatte.

Concorrenza:
I commit che toccano lo stesso metodo di pagamento sono serializzati con
pg_advisory_xact_lock (chiave derivata dall'UUID del metodo, acquisite in
ordine crescente per evitare deadlock). Su database diversi da PostgreSQL
i lock non vengono presi.
"""

import logging
import time
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AllocationStateError, AppException, LedgerStoreError, NotFoundError
from app.core.money import ZERO, clamp_non_negative
from app.models import Deposit, DepositAllocation
from app.schemas.allocation import (
    AllocationPlan,
    AuditReport,
    ConsistencyViolation,
    RefreshAllResult,
)
from app.schemas.deposit import DepositStatus
from app.services.aggregation_service import PeriodAggregator
from app.services.waterfall_service import WaterfallAllocator, normalize_method_group

logger = logging.getLogger(__name__)


def advisory_lock_key(payment_method_id: uuid.UUID) -> int:
    """Chiave bigint con segno per pg_advisory_xact_lock."""
    return int.from_bytes(payment_method_id.bytes[:8], "big", signed=True)


def spread_over_days(amount: Decimal, day_gaps: dict[date, Decimal], last_day: date) -> dict[date, Decimal]:
    """
    Distribuisce l'importo coperto di un metodo sui giorni del periodo.

    Riempie i gap giornalieri in ordine cronologico (prima le vendite più
    vecchie). Un eventuale residuo oltre la somma dei gap finisce su
    last_day.
    """
    shares: dict[date, Decimal] = {}
    left = amount
    for day in sorted(day_gaps):
        if left <= ZERO:
            break
        share = min(left, day_gaps[day])
        if share > ZERO:
            shares[day] = share
            left -= share
    if left > ZERO:
        shares[last_day] = shares.get(last_day, ZERO) + left
    return shares


class AllocationService:
    """
    Service per la scrittura del ledger allocazioni.

    Unico punto del sistema che inserisce o cancella DepositAllocation.
    """

    def __init__(
        self,
        allocator: Optional[WaterfallAllocator] = None,
        aggregator: Optional[PeriodAggregator] = None,
    ) -> None:
        self.allocator = allocator or WaterfallAllocator()
        self.aggregator = aggregator or PeriodAggregator()

    # ------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------
    async def _lock_methods(self, db: AsyncSession, method_ids: Iterable[uuid.UUID]) -> None:
        """Acquisisce i lock transazionali per metodo (solo PostgreSQL)."""
        if not settings.allocation_advisory_locks:
            return
        bind = db.get_bind()
        if bind.dialect.name != "postgresql":
            return
        for method_id in sorted(set(method_ids)):
            await db.execute(
                text("SELECT pg_advisory_xact_lock(:lock_key)"),
                {"lock_key": advisory_lock_key(method_id)},
            )

    # ------------------------------------------------------------
    # Riscrittura righe (senza commit)
    # ------------------------------------------------------------
    async def _rewrite(self, db: AsyncSession, deposit: Deposit) -> tuple[AllocationPlan, list[DepositAllocation]]:
        """
        Ricalcola il piano e sostituisce le righe del versamento.

        Deve girare dentro una transazione aperta dal chiamante.
        """
        plan = await self.allocator.allocate(db, deposit)

        rows = []
        for method_id, amount in plan.covered_by_method().items():
            if amount <= ZERO:
                continue
            day_gaps = await self.aggregator.daily_gaps(
                db, method_id, deposit.start_date, deposit.end_date, exclude_deposit_id=deposit.id
            )
            available = sum(day_gaps.values(), ZERO)
            if amount > available:
                logger.warning(
                    "Versamento %s metodo %s: coperto %s oltre il gap giornaliero %s, eccedenza sull'ultimo giorno",
                    deposit.id, method_id, amount, available,
                )
            rows.extend(
                DepositAllocation(
                    deposit_id=deposit.id,
                    payment_method_id=method_id,
                    allocation_date=day,
                    period_start=deposit.start_date,
                    period_end=deposit.end_date,
                    allocated_amount=share,
                )
                for day, share in spread_over_days(amount, day_gaps, deposit.end_date).items()
            )

        await db.execute(delete(DepositAllocation).where(DepositAllocation.deposit_id == deposit.id))
        db.add_all(rows)

        deposit.gap_covered = plan.total_gap_covered
        deposit.gap_uncovered = plan.total_gap_uncovered
        deposit.remaining_amount = plan.total_remaining
        deposit.allocations_refreshed_at = datetime.now(timezone.utc)
        await db.flush()
        return plan, rows

    async def apply(self, db: AsyncSession, deposit: Deposit) -> list[DepositAllocation]:
        """
        Scrive le allocazioni di un versamento già approvato senza fare commit.

        Usato dall'approvazione, che conclude la transazione da sé.
        """
        if deposit.status != DepositStatus.APPROVED.value:
            raise AllocationStateError(
                f"Commit delle allocazioni non consentito: versamento in stato '{deposit.status}'",
                extra={"deposit_id": str(deposit.id), "status": deposit.status},
            )
        methods = normalize_method_group(deposit.payment_method_id, deposit.method_group)
        await self._lock_methods(db, methods)
        _, rows = await self._rewrite(db, deposit)
        return rows

    # ------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------
    async def commit(self, db: AsyncSession, deposit_id: uuid.UUID) -> list[DepositAllocation]:
        """
        Riscrive atomicamente le righe di allocazione di un versamento.

        Idempotente: due commit consecutivi su un ledger invariato
        producono le stesse righe.

        Raises:
            NotFoundError: versamento inesistente
            AllocationStateError: versamento non approvato (nessuna scrittura)
            LedgerStoreError: errore del database (rollback completo)
        """
        try:
            deposit = await db.get(Deposit, deposit_id, with_for_update=True)
            if deposit is None:
                raise NotFoundError(f"Versamento {deposit_id} non trovato")

            rows = await self.apply(db, deposit)
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Errore commit allocazioni versamento %s: %s - %s", deposit_id, e.__class__.__name__, e)
            await db.rollback()
            raise LedgerStoreError(
                "Commit delle allocazioni non riuscito, ripetere l'operazione",
                extra={"deposit_id": str(deposit_id)},
            ) from e
        except AppException:
            await db.rollback()
            raise

        logger.info(
            "Allocazioni versamento %s scritte: %d righe, coperto=%s residuo=%s",
            deposit_id, len(rows), deposit.gap_covered, deposit.remaining_amount,
        )
        return rows

    # ------------------------------------------------------------
    # Operazioni amministrative
    # ------------------------------------------------------------
    async def list_for_deposit(self, db: AsyncSession, deposit_id: uuid.UUID) -> list[DepositAllocation]:
        stmt = (
            select(DepositAllocation)
            .where(DepositAllocation.deposit_id == deposit_id)
            .order_by(DepositAllocation.created_at, DepositAllocation.payment_method_id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def clear_for_deposit(self, db: AsyncSession, deposit_id: uuid.UUID) -> int:
        """Cancella le righe di un versamento senza fare commit."""
        result = await db.execute(delete(DepositAllocation).where(DepositAllocation.deposit_id == deposit_id))
        return result.rowcount or 0

    async def clear(
        self,
        db: AsyncSession,
        payment_method_id: Optional[uuid.UUID],
        start_date: date,
        end_date: date,
    ) -> int:
        """
        Cancella le righe di allocazione con allocation_date nel periodo.

        Args:
            payment_method_id: None = tutti i metodi

        Returns:
            int: Numero di righe cancellate
        """
        stmt = delete(DepositAllocation).where(
            DepositAllocation.allocation_date.between(start_date, end_date)
        )
        if payment_method_id is not None:
            stmt = stmt.where(DepositAllocation.payment_method_id == payment_method_id)

        try:
            result = await db.execute(stmt)
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Errore cancellazione allocazioni: %s - %s", e.__class__.__name__, e)
            await db.rollback()
            raise LedgerStoreError("Cancellazione delle allocazioni non riuscita") from e

        deleted = result.rowcount or 0
        logger.info(
            "Cancellate %d righe di allocazione (metodo=%s, %s..%s)",
            deleted, payment_method_id or "tutti", start_date, end_date,
        )
        return deleted

    async def refresh_all(self, db: AsyncSession) -> RefreshAllResult:
        """
        Ricalcola da zero le allocazioni di tutti i versamenti approvati.

        Cancella ogni riga e riprocessa i versamenti in ordine di
        approvazione, in un'unica transazione. Al termine esegue l'audit.
        """
        started = time.monotonic()
        total_rows = 0
        total_covered = ZERO
        total_uncovered = ZERO
        total_remaining = ZERO

        try:
            stmt = (
                select(Deposit)
                .where(Deposit.status == DepositStatus.APPROVED.value)
                .order_by(Deposit.reviewed_at.asc().nulls_last(), Deposit.created_at.asc())
            )
            deposits = list((await db.execute(stmt)).scalars().all())

            method_ids: set[uuid.UUID] = set()
            for deposit in deposits:
                method_ids.update(normalize_method_group(deposit.payment_method_id, deposit.method_group))
            await self._lock_methods(db, method_ids)

            await db.execute(delete(DepositAllocation))

            for deposit in deposits:
                plan, rows = await self._rewrite(db, deposit)
                total_rows += len(rows)
                total_covered += plan.total_gap_covered
                total_uncovered += plan.total_gap_uncovered
                total_remaining += plan.total_remaining

            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Errore ricalcolo completo allocazioni: %s - %s", e.__class__.__name__, e)
            await db.rollback()
            raise LedgerStoreError("Ricalcolo completo delle allocazioni non riuscito") from e
        except AppException:
            await db.rollback()
            raise

        elapsed = round(time.monotonic() - started, 3)
        logger.info(
            "Ricalcolo completo: %d versamenti, %d righe, coperto=%s in %ss",
            len(deposits), total_rows, total_covered, elapsed,
        )

        report = await self.audit(db)
        return RefreshAllResult(
            total_deposits_processed=len(deposits),
            total_rows_written=total_rows,
            total_gap_covered=total_covered,
            total_gap_uncovered=total_uncovered,
            total_remaining=total_remaining,
            processing_time_seconds=elapsed,
            audit=report,
        )

    async def audit(self, db: AsyncSession) -> AuditReport:
        """
        Verifica che per ogni (metodo, periodo) le allocazioni approvate
        non superino le vendite nette.

        Le violazioni sono registrate a livello WARNING e restituite,
        non corrette.
        """
        stmt = (
            select(
                DepositAllocation.payment_method_id,
                DepositAllocation.period_start,
                DepositAllocation.period_end,
            )
            .join(Deposit, DepositAllocation.deposit_id == Deposit.id)
            .where(Deposit.status == DepositStatus.APPROVED.value)
            .group_by(
                DepositAllocation.payment_method_id,
                DepositAllocation.period_start,
                DepositAllocation.period_end,
            )
            .order_by(DepositAllocation.period_start, DepositAllocation.payment_method_id)
        )
        try:
            buckets = (await db.execute(stmt)).all()

            violations: list[ConsistencyViolation] = []
            for method_id, period_start, period_end in buckets:
                totals = await self.aggregator.aggregate(db, method_id, period_start, period_end)
                excess = clamp_non_negative(totals.approved_alloc - totals.net_invoices)
                if excess > ZERO:
                    violations.append(
                        ConsistencyViolation(
                            payment_method_id=method_id,
                            period_start=period_start,
                            period_end=period_end,
                            net_sales=totals.net_invoices,
                            approved_allocations=totals.approved_alloc,
                            excess=excess,
                        )
                    )
        except SQLAlchemyError as e:
            logger.error("Errore audit allocazioni: %s - %s", e.__class__.__name__, e)
            raise LedgerStoreError("Audit delle allocazioni non riuscito") from e

        for violation in violations:
            logger.warning(
                "Doppio finanziamento metodo=%s %s..%s: vendite nette=%s allocato=%s eccedenza=%s",
                violation.payment_method_id, violation.period_start, violation.period_end,
                violation.net_sales, violation.approved_allocations, violation.excess,
            )
        return AuditReport(checked_buckets=len(buckets), violations=violations)
