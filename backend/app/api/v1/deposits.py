"""
Router FastAPI per i Versamenti
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Definisce gli endpoint per il ciclo di vita dei versamenti,
le anteprime di allocazione e il commit manuale.
"""

import logging
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_allocation_service, get_deposit_service, get_preview_service
from app.schemas.allocation import AllocationRead, PreviewResult
from app.schemas.deposit import (
    DepositApprove,
    DepositCreate,
    DepositList,
    DepositRead,
    DepositReject,
    DepositStatus,
    DepositUpdate,
)
from app.services.allocation_service import AllocationService
from app.services.deposit_service import DepositService
from app.services.preview_service import PreviewService

# Logger per questo modulo
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/deposits",
    tags=["Versamenti"],
)


# -------------------------------------------------------------------
# Anteprime
# -------------------------------------------------------------------
# Registrato prima di /{deposit_id} per non essere catturato dal path param

@router.post(
    "/previews/warm",
    name="versamenti_anteprime_riscalda",
    summary="Calcola le anteprime dei versamenti in attesa",
    status_code=status.HTTP_200_OK,
)
async def warm_previews(
    db: AsyncSession = Depends(get_db),
    preview_service: PreviewService = Depends(get_preview_service),
) -> dict:
    warmed = await preview_service.warm_pending(db)
    return {"warmed": warmed}


# -------------------------------------------------------------------
# CRUD
# -------------------------------------------------------------------

@router.get(
    "/",
    name="versamenti_lista",
    summary="Lista versamenti",
    response_model=DepositList,
    status_code=status.HTTP_200_OK,
)
async def list_deposits(
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: int = Query(20, ge=1, le=100, description="Elementi per pagina"),
    deposit_status: Optional[DepositStatus] = Query(None, alias="status", description="Filtro stato"),
    payment_method_id: Optional[uuid.UUID] = Query(None, description="Filtro metodo principale"),
    start_date: Optional[date] = Query(None, description="Periodi che terminano da questa data"),
    end_date: Optional[date] = Query(None, description="Periodi che iniziano entro questa data"),
    db: AsyncSession = Depends(get_db),
    service: DepositService = Depends(get_deposit_service),
) -> DepositList:
    """
    Recupera la lista paginata dei versamenti.

    Returns:
        DepositList: Lista paginata con metadati
    """
    deposits, total = await service.get_all(
        db=db,
        page=page,
        per_page=per_page,
        status=deposit_status,
        payment_method_id=payment_method_id,
        start_date=start_date,
        end_date=end_date,
    )
    return DepositList(
        items=[DepositRead.model_validate(d) for d in deposits],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post(
    "/",
    name="versamento_crea",
    summary="Registra versamento",
    response_model=DepositRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_deposit(
    deposit_data: DepositCreate,
    db: AsyncSession = Depends(get_db),
    service: DepositService = Depends(get_deposit_service),
) -> DepositRead:
    """
    Registra un versamento in attesa di approvazione.

    Raises:
        BusinessValidationError: metodi di pagamento non validi
    """
    deposit = await service.create(db=db, data=deposit_data)
    return DepositRead.model_validate(deposit)


@router.get(
    "/{deposit_id}",
    name="versamento_dettaglio",
    summary="Dettaglio versamento",
    response_model=DepositRead,
)
async def get_deposit(
    deposit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: DepositService = Depends(get_deposit_service),
) -> DepositRead:
    deposit = await service.get_by_id(db=db, deposit_id=deposit_id)
    return DepositRead.model_validate(deposit)


@router.patch(
    "/{deposit_id}",
    name="versamento_aggiorna",
    summary="Modifica versamento in attesa",
    response_model=DepositRead,
)
async def update_deposit(
    deposit_id: uuid.UUID,
    deposit_data: DepositUpdate,
    db: AsyncSession = Depends(get_db),
    service: DepositService = Depends(get_deposit_service),
) -> DepositRead:
    """
    Modifica un versamento ancora in attesa.

    Raises:
        AllocationStateError: versamento già approvato o rifiutato
    """
    deposit = await service.update(db=db, deposit_id=deposit_id, data=deposit_data)
    return DepositRead.model_validate(deposit)


@router.delete(
    "/{deposit_id}",
    name="versamento_elimina",
    summary="Elimina versamento",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_deposit(
    deposit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: DepositService = Depends(get_deposit_service),
) -> None:
    """Elimina il versamento e le sue righe di allocazione."""
    await service.delete(db=db, deposit_id=deposit_id)


# -------------------------------------------------------------------
# Revisione
# -------------------------------------------------------------------

@router.post(
    "/{deposit_id}/approve",
    name="versamento_approva",
    summary="Approva versamento",
    description="Approva il versamento e scrive le allocazioni nella stessa transazione.",
    response_model=DepositRead,
)
async def approve_deposit(
    deposit_id: uuid.UUID,
    approve_data: DepositApprove,
    db: AsyncSession = Depends(get_db),
    service: DepositService = Depends(get_deposit_service),
) -> DepositRead:
    deposit = await service.approve(db=db, deposit_id=deposit_id, data=approve_data)
    return DepositRead.model_validate(deposit)


@router.post(
    "/{deposit_id}/reject",
    name="versamento_rifiuta",
    summary="Rifiuta versamento",
    response_model=DepositRead,
)
async def reject_deposit(
    deposit_id: uuid.UUID,
    reject_data: DepositReject,
    db: AsyncSession = Depends(get_db),
    service: DepositService = Depends(get_deposit_service),
) -> DepositRead:
    deposit = await service.reject(db=db, deposit_id=deposit_id, data=reject_data)
    return DepositRead.model_validate(deposit)


# -------------------------------------------------------------------
# Allocazioni
# -------------------------------------------------------------------

@router.get(
    "/{deposit_id}/preview",
    name="versamento_anteprima",
    summary="Anteprima allocazione",
    description=(
        "Calcola (o legge dalla cache) il piano di allocazione a cascata. "
        "Non scrive mai il ledger."
    ),
    response_model=PreviewResult,
)
async def preview_deposit(
    deposit_id: uuid.UUID,
    force: bool = Query(False, description="Ignora cache e cooldown"),
    db: AsyncSession = Depends(get_db),
    preview_service: PreviewService = Depends(get_preview_service),
) -> PreviewResult:
    return await preview_service.preview(db=db, deposit_id=deposit_id, force=force)


@router.post(
    "/{deposit_id}/commit",
    name="versamento_commit",
    summary="Riscrive le allocazioni",
    description="Ricalcola e sostituisce le righe di allocazione di un versamento approvato.",
    response_model=list[AllocationRead],
)
async def commit_deposit(
    deposit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    allocation_service: AllocationService = Depends(get_allocation_service),
    preview_service: PreviewService = Depends(get_preview_service),
) -> list[AllocationRead]:
    """
    Raises:
        AllocationStateError: versamento non approvato
        LedgerStoreError: commit non riuscito (nessuna riga parziale)
    """
    rows = await allocation_service.commit(db=db, deposit_id=deposit_id)
    await preview_service.invalidate(deposit_id)
    return [AllocationRead.model_validate(r) for r in rows]


@router.get(
    "/{deposit_id}/allocations",
    name="versamento_allocazioni",
    summary="Righe di allocazione del versamento",
    response_model=list[AllocationRead],
)
async def get_deposit_allocations(
    deposit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: DepositService = Depends(get_deposit_service),
    allocation_service: AllocationService = Depends(get_allocation_service),
) -> list[AllocationRead]:
    await service.get_by_id(db=db, deposit_id=deposit_id)
    rows = await allocation_service.list_for_deposit(db=db, deposit_id=deposit_id)
    return [AllocationRead.model_validate(r) for r in rows]
