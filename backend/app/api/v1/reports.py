"""
Router FastAPI per i Report di riconciliazione
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_report_service
from app.schemas.report import Granularity, MethodSummary, PeriodBucket, PeriodGap
from app.services.report_service import ReportService

router = APIRouter(
    prefix="/reports",
    tags=["Report"],
)


@router.get(
    "/period-gap",
    name="report_gap_periodo",
    summary="Gap di un periodo",
    description="Vendite nette, approvato, in attesa e gap. Senza metodo: tutti i metodi.",
    response_model=PeriodGap,
)
async def get_period_gap(
    start_date: date = Query(..., description="Inizio periodo"),
    end_date: date = Query(..., description="Fine periodo"),
    payment_method_id: Optional[uuid.UUID] = Query(None, description="Metodo di pagamento"),
    db: AsyncSession = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> PeriodGap:
    return await service.period_gap(
        db=db, payment_method_id=payment_method_id, start_date=start_date, end_date=end_date
    )


@router.get(
    "/method-summaries",
    name="report_riepilogo_metodi",
    summary="Riepilogo per metodo",
    response_model=list[MethodSummary],
)
async def get_method_summaries(
    start_date: date = Query(..., description="Inizio periodo"),
    end_date: date = Query(..., description="Fine periodo"),
    payment_method_id: Optional[uuid.UUID] = Query(None, description="Limita a un metodo"),
    db: AsyncSession = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> list[MethodSummary]:
    return await service.method_summaries(
        db=db, start_date=start_date, end_date=end_date, payment_method_id=payment_method_id
    )


@router.get(
    "/periods",
    name="report_periodi",
    summary="Vista giornaliera o mensile",
    response_model=list[PeriodBucket],
)
async def get_period_breakdown(
    start_date: date = Query(..., description="Inizio periodo"),
    end_date: date = Query(..., description="Fine periodo"),
    granularity: Granularity = Query(Granularity.DAILY, description="daily | monthly"),
    payment_method_id: Optional[uuid.UUID] = Query(None, description="Metodo di pagamento"),
    db: AsyncSession = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> list[PeriodBucket]:
    return await service.period_breakdown(
        db=db,
        start_date=start_date,
        end_date=end_date,
        granularity=granularity,
        payment_method_id=payment_method_id,
    )
