"""
Router FastAPI per le operazioni amministrative sulle Allocazioni
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

- clear: cancella le righe di un periodo prima di un ricalcolo
- refresh-all: ricalcola tutte le allocazioni dei versamenti approvati
- audit: verifica il vincolo di non doppio finanziamento
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_allocation_service
from app.schemas.allocation import (
    AllocationClearRequest,
    AllocationClearResult,
    AuditReport,
    RefreshAllResult,
)
from app.services.allocation_service import AllocationService

# Logger per questo modulo
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/allocations",
    tags=["Allocazioni"],
)


@router.post(
    "/clear",
    name="allocazioni_cancella",
    summary="Cancella allocazioni di un periodo",
    response_model=AllocationClearResult,
)
async def clear_allocations(
    clear_data: AllocationClearRequest,
    db: AsyncSession = Depends(get_db),
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationClearResult:
    deleted = await service.clear(
        db=db,
        payment_method_id=clear_data.payment_method_id,
        start_date=clear_data.start_date,
        end_date=clear_data.end_date,
    )
    return AllocationClearResult(deleted_count=deleted)


@router.post(
    "/refresh-all",
    name="allocazioni_ricalcola",
    summary="Ricalcolo completo",
    description=(
        "Cancella tutte le righe di allocazione e le ricostruisce dai versamenti "
        "approvati in ordine di approvazione. Restituisce statistiche ed esito dell'audit."
    ),
    response_model=RefreshAllResult,
)
async def refresh_all_allocations(
    db: AsyncSession = Depends(get_db),
    service: AllocationService = Depends(get_allocation_service),
) -> RefreshAllResult:
    return await service.refresh_all(db=db)


@router.get(
    "/audit",
    name="allocazioni_audit",
    summary="Audit consistenza",
    response_model=AuditReport,
)
async def audit_allocations(
    db: AsyncSession = Depends(get_db),
    service: AllocationService = Depends(get_allocation_service),
) -> AuditReport:
    return await service.audit(db=db)
