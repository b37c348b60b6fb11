"""
Router FastAPI per i Metodi di Pagamento
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)
"""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_ledger_service
from app.schemas.payment_method import PaymentMethodCreate, PaymentMethodRead
from app.services.ledger_service import LedgerService

router = APIRouter(
    prefix="/payment-methods",
    tags=["Metodi di Pagamento"],
)


@router.get(
    "/",
    name="metodi_pagamento_lista",
    summary="Lista metodi di pagamento",
    response_model=list[PaymentMethodRead],
)
async def list_payment_methods(
    include_inactive: bool = Query(False, description="Includi metodi disattivati"),
    db: AsyncSession = Depends(get_db),
    service: LedgerService = Depends(get_ledger_service),
) -> list[PaymentMethodRead]:
    methods = await service.list_payment_methods(db=db, include_inactive=include_inactive)
    return [PaymentMethodRead.model_validate(m) for m in methods]


@router.post(
    "/",
    name="metodo_pagamento_crea",
    summary="Crea metodo di pagamento",
    response_model=PaymentMethodRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_method(
    method_data: PaymentMethodCreate,
    db: AsyncSession = Depends(get_db),
    service: LedgerService = Depends(get_ledger_service),
) -> PaymentMethodRead:
    method = await service.create_payment_method(db=db, data=method_data)
    return PaymentMethodRead.model_validate(method)


@router.patch(
    "/{payment_method_id}/deactivate",
    name="metodo_pagamento_disattiva",
    summary="Disattiva metodo di pagamento",
    description="I metodi non vengono mai eliminati: restano referenziati dal ledger.",
    response_model=PaymentMethodRead,
)
async def deactivate_payment_method(
    payment_method_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: LedgerService = Depends(get_ledger_service),
) -> PaymentMethodRead:
    method = await service.deactivate_payment_method(db=db, payment_method_id=payment_method_id)
    return PaymentMethodRead.model_validate(method)
