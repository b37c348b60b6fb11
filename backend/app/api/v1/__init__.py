"""
API v1 Routes
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from app.api.v1 import allocations, deposits, invoices, payment_methods, reports

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(payment_methods.router)
api_v1_router.include_router(invoices.router)
api_v1_router.include_router(invoices.credit_notes_router)
api_v1_router.include_router(deposits.router)
api_v1_router.include_router(allocations.router)
api_v1_router.include_router(reports.router)

# Esportazione
__all__ = ["api_v1_router"]
