"""
Service Layer per l'allocazione a cascata (waterfall)
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Distribuisce l'importo netto di un versamento sui metodi del suo gruppo,
nell'ordine di priorità salvato: ogni metodo consuma i fondi fino al
proprio gap, il residuo passa al metodo successivo.

Struttura:
- normalize_method_group: gruppo vuoto → solo il metodo principale
- run_waterfall: passo puro e deterministico (nessun accesso al DB)
- WaterfallAllocator: legge i gap dal ledger ed esegue run_waterfall
"""

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BusinessValidationError
from app.core.money import ZERO, clamp_non_negative, to_amount
from app.schemas.allocation import AllocationPlan, MethodAllocation
from app.services.gap_service import GapCalculator

logger = logging.getLogger(__name__)


def _as_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, dict):
        value = value.get("payment_method_id")
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise BusinessValidationError(
            f"Metodo di pagamento non valido nel gruppo: {value!r}",
            extra={"value": str(value)},
        )


def normalize_method_group(
    primary_method_id: Optional[uuid.UUID],
    method_group: Optional[Iterable[Any]],
) -> list[uuid.UUID]:
    """
    Normalizza il target di allocazione in una lista ordinata non vuota.

    Accetta voci {"payment_method_id": ...}, UUID o stringhe.
    Le voci ripetute NON vengono deduplicate.

    Raises:
        BusinessValidationError: se non c'è né gruppo né metodo principale
    """
    methods = [_as_uuid(entry) for entry in (method_group or [])]
    if not methods and primary_method_id is not None:
        methods = [_as_uuid(primary_method_id)]
    if not methods:
        raise BusinessValidationError("Il versamento non ha alcun metodo di pagamento")
    return methods


def run_waterfall(
    net_amount: Any,
    gaps: Sequence[tuple[uuid.UUID, Any]],
    deposit_id: Optional[uuid.UUID] = None,
) -> AllocationPlan:
    """
    Esegue la cascata su gap già letti.

    Args:
        net_amount: Fondi del versamento (NaN/None/negativi → 0)
        gaps: Coppie (metodo, gap) nell'ordine di priorità. Un metodo
            ripetuto vede il gap lasciato dalle occorrenze precedenti
            dello stesso piano.
        deposit_id: Riportato sul piano

    Returns:
        AllocationPlan: totale coperto + residuo == net_amount
    """
    net = to_amount(net_amount)
    remaining = net
    consumed: dict[uuid.UUID, Decimal] = {}
    base_gap: dict[uuid.UUID, Decimal] = {}
    steps: list[MethodAllocation] = []

    for method_id, raw_gap in gaps:
        base_gap.setdefault(method_id, to_amount(raw_gap))
        gap_available = clamp_non_negative(base_gap[method_id] - consumed.get(method_id, ZERO))

        if remaining <= ZERO:
            covered = ZERO
        else:
            covered = min(remaining, gap_available)
            remaining -= covered

        consumed[method_id] = consumed.get(method_id, ZERO) + covered
        steps.append(
            MethodAllocation(
                payment_method_id=method_id,
                gap_available=gap_available,
                gap_covered=covered,
                gap_uncovered=clamp_non_negative(gap_available - covered),
                remaining_after=remaining,
            )
        )

    total_covered = sum((step.gap_covered for step in steps), ZERO)
    # Per metodo distinto, così le occorrenze ripetute non contano due volte
    total_uncovered = sum(
        (clamp_non_negative(gap - consumed[method_id]) for method_id, gap in base_gap.items()),
        ZERO,
    )

    return AllocationPlan(
        deposit_id=deposit_id,
        net_amount=net,
        per_method=steps,
        total_gap_covered=total_covered,
        total_gap_uncovered=total_uncovered,
        total_remaining=clamp_non_negative(net - total_covered),
    )


class WaterfallAllocator:
    """
    Allocatore a cascata su dati del ledger.

    Sola lettura: non scrive mai righe di allocazione.
    """

    def __init__(self, gap_calculator: Optional[GapCalculator] = None) -> None:
        self.gap_calculator = gap_calculator or GapCalculator()

    # ------------------------------------------------------------
    # Validazione
    # ------------------------------------------------------------
    @staticmethod
    def validate(deposit) -> list[uuid.UUID]:
        """
        Valida il versamento prima di qualsiasi lettura dal ledger.

        Returns:
            list[UUID]: metodi normalizzati in ordine di priorità
        """
        if deposit.start_date is None or deposit.end_date is None:
            raise BusinessValidationError("Periodo del versamento incompleto")
        if deposit.end_date < deposit.start_date:
            raise BusinessValidationError(
                "La data di fine precede la data di inizio",
                extra={
                    "start_date": deposit.start_date.isoformat(),
                    "end_date": deposit.end_date.isoformat(),
                },
            )

        net = deposit.net_amount
        if net is not None:
            try:
                net_value = Decimal(str(net))
            except (InvalidOperation, ValueError):
                net_value = None
            if net_value is not None and net_value.is_finite() and net_value < 0:
                raise BusinessValidationError(
                    "L'importo netto del versamento non può essere negativo",
                    extra={"net_amount": str(net)},
                )

        return normalize_method_group(deposit.payment_method_id, deposit.method_group)

    # ------------------------------------------------------------
    # Allocazione
    # ------------------------------------------------------------
    async def allocate(
        self,
        db: AsyncSession,
        deposit,
        include_own_allocations: bool = False,
    ) -> AllocationPlan:
        """
        Calcola il piano di allocazione di un versamento.

        I gap sono letti in sequenza, un metodo distinto alla volta,
        escludendo le righe già scritte per questo stesso versamento
        (a meno di include_own_allocations).

        Raises:
            BusinessValidationError: versamento non valido
            SQLAlchemyError: errore del ledger, gestito dal chiamante
        """
        methods = self.validate(deposit)
        exclude_id = None if include_own_allocations else deposit.id

        gaps: dict[uuid.UUID, Decimal] = {}
        for method_id in methods:
            if method_id in gaps:
                continue
            gaps[method_id] = await self.gap_calculator.gap(
                db, method_id, deposit.start_date, deposit.end_date, exclude_id
            )

        plan = run_waterfall(
            deposit.net_amount,
            [(method_id, gaps[method_id]) for method_id in methods],
            deposit_id=deposit.id,
        )
        logger.debug(
            "Piano versamento %s: coperto=%s scoperto=%s residuo=%s",
            deposit.id, plan.total_gap_covered, plan.total_gap_uncovered, plan.total_remaining,
        )
        return plan
