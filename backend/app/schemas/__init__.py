"""
Schemas Pydantic per il progetto Riconciliazione Versamenti

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle richieste e risposte API.
"""

from app.schemas.payment_method import PaymentMethodCreate, PaymentMethodRead
from app.schemas.invoice import (
    CreditNoteCreate,
    CreditNoteRead,
    DocumentState,
    InvoiceBulkResult,
    InvoiceCreate,
    InvoiceRead,
)
from app.schemas.deposit import (
    DepositApprove,
    DepositCreate,
    DepositList,
    DepositRead,
    DepositReject,
    DepositStatus,
    DepositUpdate,
    MethodGroupEntry,
)
from app.schemas.allocation import (
    AllocationClearRequest,
    AllocationClearResult,
    AllocationPlan,
    AllocationRead,
    AuditReport,
    ConsistencyViolation,
    MethodAllocation,
    PreviewResult,
    RefreshAllResult,
)
from app.schemas.report import Granularity, MethodSummary, PeriodBucket, PeriodGap

__all__ = [
    "PaymentMethodCreate",
    "PaymentMethodRead",
    "DocumentState",
    "InvoiceCreate",
    "InvoiceRead",
    "InvoiceBulkResult",
    "CreditNoteCreate",
    "CreditNoteRead",
    "DepositStatus",
    "MethodGroupEntry",
    "DepositCreate",
    "DepositList",
    "DepositUpdate",
    "DepositApprove",
    "DepositReject",
    "DepositRead",
    "MethodAllocation",
    "AllocationPlan",
    "PreviewResult",
    "AllocationRead",
    "AllocationClearRequest",
    "AllocationClearResult",
    "ConsistencyViolation",
    "AuditReport",
    "RefreshAllResult",
    "Granularity",
    "PeriodGap",
    "MethodSummary",
    "PeriodBucket",
]
