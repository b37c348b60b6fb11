"""
Pytest configuration and fixtures per il motore di allocazione.

I test usano una AsyncSession mockata: nessun database reale.
"""

import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import InMemoryPreviewCache
from app.services.aggregation_service import PeriodAggregator


# ============================================================
# Fixtures per AsyncSession Mock
# ============================================================


@pytest.fixture
def mock_db():
    """Crea un mock di AsyncSession."""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()
    db.get = AsyncMock()
    db.add = MagicMock()
    db.add_all = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.delete = AsyncMock()
    return db


def make_result(scalar=None, rows=None, scalars=None, rowcount=None):
    """Risultato di db.execute() con le forme di lettura usate dai service."""
    result = MagicMock()
    result.scalar_one.return_value = scalar
    result.scalar.return_value = scalar
    result.all.return_value = rows or []
    result.scalars.return_value.all.return_value = scalars or []
    result.rowcount = rowcount
    return result


# ============================================================
# Fixtures per Deposit Mock (senza sessione)
# ============================================================


class MockDeposit:
    """Mock del modello Deposit."""
    def __init__(self, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.start_date = kwargs.get('start_date', date(2024, 3, 1))
        self.end_date = kwargs.get('end_date', date(2024, 3, 7))
        self.total_amount = kwargs.get('total_amount', Decimal("1000.00"))
        self.tax_amount = kwargs.get('tax_amount', Decimal("0.00"))
        self.net_amount = kwargs.get('net_amount', Decimal("1000.00"))
        self.payment_method_id = kwargs.get('payment_method_id', uuid.uuid4())
        self.method_group = kwargs.get('method_group', [])
        self.status = kwargs.get('status', 'pending')
        self.rejection_reason = kwargs.get('rejection_reason', None)
        self.reviewed_at = kwargs.get('reviewed_at', None)
        self.reviewed_by = kwargs.get('reviewed_by', None)
        self.gap_covered = None
        self.gap_uncovered = None
        self.remaining_amount = None
        self.allocations_refreshed_at = None


def group_of(*method_ids):
    """method_group come salvato nel modello."""
    return [{"payment_method_id": str(m)} for m in method_ids]


@pytest.fixture
def method_x():
    return uuid.UUID("00000000-0000-0000-0000-0000000000aa")


@pytest.fixture
def method_y():
    return uuid.UUID("00000000-0000-0000-0000-0000000000bb")


@pytest.fixture
def pending_deposit(method_x, method_y):
    """Versamento in attesa su due metodi (X poi Y)."""
    return MockDeposit(
        payment_method_id=method_x,
        method_group=group_of(method_x, method_y),
        status="pending",
    )


@pytest.fixture
def approved_deposit(method_x, method_y):
    """Versamento approvato su due metodi (X poi Y)."""
    return MockDeposit(
        payment_method_id=method_x,
        method_group=group_of(method_x, method_y),
        status="approved",
    )


# ============================================================
# Fixtures per la cache anteprime
# ============================================================


@pytest.fixture
def preview_cache():
    return InMemoryPreviewCache(ttl_seconds=300)


class FakeGapCalculator:
    """GapCalculator con gap fissi per metodo; registra le chiamate."""
    def __init__(self, gaps):
        self.gaps = gaps
        self.calls = []

    async def gap(self, db, payment_method_id, start_date, end_date, exclude_deposit_id=None):
        self.calls.append((payment_method_id, start_date, end_date, exclude_deposit_id))
        return self.gaps.get(payment_method_id, Decimal("0.00"))


class FakeDailyAggregator(PeriodAggregator):
    """
    PeriodAggregator con gap giornalieri fissi per metodo.

    Per i metodi non configurati tutto il gap sta sul primo giorno.
    """
    def __init__(self, day_gaps=None):
        self.day_gaps = day_gaps or {}
        self.calls = []

    async def daily_gaps(self, db, payment_method_id, start_date, end_date, exclude_deposit_id=None):
        self.calls.append((payment_method_id, start_date, end_date, exclude_deposit_id))
        return self.day_gaps.get(payment_method_id, {start_date: Decimal("1000000.00")})
