"""
Dependency Injection per i service
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Cache anteprime e scheduler dei commit sono condivisi dall'intero
processo (una sola istanza, creata al primo uso). Gli altri service
sono senza stato e vengono istanziati per richiesta.
"""

from functools import lru_cache

from fastapi import Depends

from app.core.cache import PreviewCache, build_preview_cache
from app.core.config import settings
from app.services.allocation_service import AllocationService
from app.services.deposit_service import DepositService
from app.services.ledger_service import LedgerService
from app.services.preview_service import PreviewService, RefreshScheduler
from app.services.report_service import ReportService


@lru_cache
def get_preview_cache() -> PreviewCache:
    return build_preview_cache(settings)


@lru_cache
def get_refresh_scheduler() -> RefreshScheduler:
    return RefreshScheduler(cooldown_seconds=settings.allocation_refresh_cooldown_seconds)


@lru_cache
def get_preview_service() -> PreviewService:
    return PreviewService(cache=get_preview_cache(), scheduler=get_refresh_scheduler())


def get_allocation_service() -> AllocationService:
    return AllocationService()


def get_deposit_service(
    preview_service: PreviewService = Depends(get_preview_service),
) -> DepositService:
    """DepositService collegato alla cache anteprime condivisa."""
    return DepositService(preview_service=preview_service)


def get_ledger_service() -> LedgerService:
    return LedgerService()


def get_report_service() -> ReportService:
    return ReportService()
