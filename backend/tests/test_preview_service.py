"""
Unit tests per la cache anteprime, PreviewService e RefreshScheduler.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.core.cache import InMemoryPreviewCache, RedisPreviewCache
from app.core.exceptions import AllocationStateError, LedgerStoreError, NotFoundError
from app.schemas.allocation import PreviewResult
from app.services.preview_service import PreviewService, RefreshScheduler
from app.services.waterfall_service import WaterfallAllocator, run_waterfall
from conftest import FakeGapCalculator, make_result


D = Decimal


def _entry(deposit_id, method_id, computed_at, net="100"):
    return PreviewResult(
        deposit_id=deposit_id,
        plan=run_waterfall(D(net), [(method_id, D("1000"))], deposit_id=deposit_id),
        computed_at=computed_at,
    )


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ============================================================
# InMemoryPreviewCache
# ============================================================


class TestInMemoryPreviewCache:

    async def test_put_and_get(self, preview_cache, method_x):
        deposit_id = uuid.uuid4()
        entry = _entry(deposit_id, method_x, datetime.now(timezone.utc))

        assert await preview_cache.put(entry) is True
        assert await preview_cache.get(deposit_id) == entry
        assert await preview_cache.has(deposit_id)

    async def test_older_entry_never_overwrites_newer(self, preview_cache, method_x):
        """Test last-write-wins per computed_at."""
        deposit_id = uuid.uuid4()
        now = datetime.now(timezone.utc)
        newer = _entry(deposit_id, method_x, now, net="200")
        older = _entry(deposit_id, method_x, now - timedelta(seconds=5), net="100")

        await preview_cache.put(newer)
        assert await preview_cache.put(older) is False

        cached = await preview_cache.get(deposit_id)
        assert cached.plan.net_amount == D("200.00")

    async def test_expired_entry_is_dropped(self, method_x):
        cache = InMemoryPreviewCache(ttl_seconds=0)
        deposit_id = uuid.uuid4()
        await cache.put(_entry(deposit_id, method_x, datetime.now(timezone.utc)))

        assert await cache.get(deposit_id) is None

    async def test_invalidate(self, preview_cache, method_x):
        deposit_id = uuid.uuid4()
        await preview_cache.put(_entry(deposit_id, method_x, datetime.now(timezone.utc)))

        await preview_cache.invalidate(deposit_id)

        assert await preview_cache.get(deposit_id) is None

    async def test_concurrent_writes_keep_latest(self, preview_cache, method_x):
        deposit_id = uuid.uuid4()
        base = datetime.now(timezone.utc)
        entries = [_entry(deposit_id, method_x, base + timedelta(seconds=i), net=str(i)) for i in range(10)]

        await asyncio.gather(*(preview_cache.put(e) for e in reversed(entries)))

        cached = await preview_cache.get(deposit_id)
        assert cached.computed_at == entries[-1].computed_at


# ============================================================
# PreviewService
# ============================================================


@pytest.fixture
def scheduler():
    return MagicMock(spec=RefreshScheduler)


def _preview_service(cache, scheduler, gaps):
    return PreviewService(
        cache=cache,
        scheduler=scheduler,
        allocator=WaterfallAllocator(gap_calculator=FakeGapCalculator(gaps)),
    )


class TestPreviewService:

    async def test_computes_and_caches(self, mock_db, preview_cache, scheduler, pending_deposit, method_x, method_y):
        mock_db.get.return_value = pending_deposit
        service = _preview_service(preview_cache, scheduler, {method_x: D("600"), method_y: D("800")})

        result = await service.preview(mock_db, pending_deposit.id)

        assert result.cached is False
        assert result.plan.total_gap_covered == D("1000.00")
        assert await preview_cache.has(pending_deposit.id)
        scheduler.schedule_commit.assert_not_called()
        mock_db.add_all.assert_not_called()
        mock_db.commit.assert_not_awaited()

    async def test_cache_hit_skips_recomputation(self, mock_db, preview_cache, scheduler, pending_deposit, method_x):
        await preview_cache.put(_entry(pending_deposit.id, method_x, datetime.now(timezone.utc)))
        service = _preview_service(preview_cache, scheduler, {})

        result = await service.preview(mock_db, pending_deposit.id)

        assert result.cached is True
        mock_db.get.assert_not_awaited()

    async def test_force_bypasses_cache(self, mock_db, preview_cache, scheduler, pending_deposit, method_x, method_y):
        await preview_cache.put(_entry(pending_deposit.id, method_x, datetime.now(timezone.utc) - timedelta(seconds=1)))
        mock_db.get.return_value = pending_deposit
        service = _preview_service(preview_cache, scheduler, {method_x: D("600"), method_y: D("800")})

        result = await service.preview(mock_db, pending_deposit.id, force=True)

        assert result.cached is False
        assert result.plan.net_amount == D("1000.00")
        mock_db.get.assert_awaited_once()

    async def test_approved_deposit_schedules_commit(self, mock_db, preview_cache, scheduler, approved_deposit, method_x, method_y):
        mock_db.get.return_value = approved_deposit
        service = _preview_service(preview_cache, scheduler, {method_x: D("600"), method_y: D("800")})

        await service.preview(mock_db, approved_deposit.id, force=True)

        scheduler.schedule_commit.assert_called_once_with(approved_deposit.id, force=True)

    async def test_store_failure_serves_stale_entry(self, mock_db, preview_cache, scheduler, pending_deposit, method_x):
        """Test ledger non raggiungibile: si serve la voce precedente marcata stale."""
        previous = _entry(pending_deposit.id, method_x, datetime.now(timezone.utc))
        await preview_cache.put(previous)
        mock_db.get.side_effect = OperationalError("SELECT", {}, Exception("down"))
        service = _preview_service(preview_cache, scheduler, {})

        result = await service.preview(mock_db, pending_deposit.id, force=True)

        assert result.stale is True
        assert result.plan == previous.plan
        assert await preview_cache.get(pending_deposit.id) == previous

    async def test_store_failure_without_cache(self, mock_db, preview_cache, scheduler):
        mock_db.get.side_effect = OperationalError("SELECT", {}, Exception("down"))
        service = _preview_service(preview_cache, scheduler, {})

        with pytest.raises(LedgerStoreError):
            await service.preview(mock_db, uuid.uuid4())

    async def test_missing_deposit(self, mock_db, preview_cache, scheduler):
        mock_db.get.return_value = None
        service = _preview_service(preview_cache, scheduler, {})

        with pytest.raises(NotFoundError):
            await service.preview(mock_db, uuid.uuid4())

    async def test_warm_pending_fills_missing_previews(self, mock_db, preview_cache, scheduler, pending_deposit, method_x, method_y):
        cached_id = uuid.uuid4()
        await preview_cache.put(_entry(cached_id, method_x, datetime.now(timezone.utc)))
        mock_db.execute.return_value = make_result(scalars=[cached_id, pending_deposit.id])
        mock_db.get.return_value = pending_deposit
        service = _preview_service(preview_cache, scheduler, {method_x: D("600"), method_y: D("800")})

        warmed = await service.warm_pending(mock_db)

        assert warmed == 1
        assert await preview_cache.has(pending_deposit.id)
        mock_db.get.assert_awaited_once()

    async def test_discard_resets_cache_and_cooldown(self, preview_cache, scheduler, method_x):
        deposit_id = uuid.uuid4()
        await preview_cache.put(_entry(deposit_id, method_x, datetime.now(timezone.utc)))
        service = _preview_service(preview_cache, scheduler, {})

        await service.discard(deposit_id)

        assert await preview_cache.get(deposit_id) is None
        scheduler.forget.assert_called_once_with(deposit_id)


# ============================================================
# RefreshScheduler
# ============================================================


def _session_factory(db):
    @asynccontextmanager
    async def factory():
        yield db
    return factory


class TestRefreshScheduler:

    async def test_commit_runs_in_background(self, mock_db):
        allocation_service = MagicMock()
        allocation_service.commit = AsyncMock(return_value=[])
        scheduler = RefreshScheduler(allocation_service, _session_factory(mock_db), cooldown_seconds=300)
        deposit_id = uuid.uuid4()

        assert scheduler.schedule_commit(deposit_id) is True
        await scheduler.drain()

        allocation_service.commit.assert_awaited_once_with(mock_db, deposit_id)

    async def test_cooldown_throttles_and_force_bypasses(self, mock_db):
        allocation_service = MagicMock()
        allocation_service.commit = AsyncMock(return_value=[])
        clock = FakeClock()
        scheduler = RefreshScheduler(allocation_service, _session_factory(mock_db), cooldown_seconds=300, clock=clock)
        deposit_id = uuid.uuid4()

        assert scheduler.schedule_commit(deposit_id) is True
        clock.now += 299
        assert scheduler.schedule_commit(deposit_id) is False
        assert scheduler.schedule_commit(deposit_id, force=True) is True
        clock.now += 300
        assert scheduler.schedule_commit(deposit_id) is True
        await scheduler.drain()

        assert allocation_service.commit.await_count == 3

    async def test_cooldown_is_per_deposit(self, mock_db):
        allocation_service = MagicMock()
        allocation_service.commit = AsyncMock(return_value=[])
        scheduler = RefreshScheduler(allocation_service, _session_factory(mock_db), clock=FakeClock())

        assert scheduler.schedule_commit(uuid.uuid4()) is True
        assert scheduler.schedule_commit(uuid.uuid4()) is True
        await scheduler.drain()

    async def test_failure_is_logged_not_raised(self, mock_db, caplog):
        allocation_service = MagicMock()
        allocation_service.commit = AsyncMock(side_effect=AllocationStateError("versamento non approvato"))
        scheduler = RefreshScheduler(allocation_service, _session_factory(mock_db))

        scheduler.schedule_commit(uuid.uuid4())
        await scheduler.drain()

        assert "Commit in background" in caplog.text
        assert allocation_service.commit.await_count == 1

    async def test_expired_cooldowns_are_pruned(self, mock_db):
        allocation_service = MagicMock()
        allocation_service.commit = AsyncMock(return_value=[])
        clock = FakeClock()
        scheduler = RefreshScheduler(allocation_service, _session_factory(mock_db), cooldown_seconds=300, clock=clock)
        old_ids = [uuid.uuid4() for _ in range(3)]

        for deposit_id in old_ids:
            scheduler.schedule_commit(deposit_id)
        clock.now += 300
        recent = uuid.uuid4()
        scheduler.schedule_commit(recent)
        await scheduler.drain()

        assert set(scheduler._last_run) == {recent}


# ============================================================
# RedisPreviewCache
# ============================================================


def _redis_cache(pipe=None, stored=None):
    """RedisPreviewCache con client finto: nessuna connessione reale."""
    cache = RedisPreviewCache("redis://localhost:6379/0", ttl_seconds=300)
    cache._client = MagicMock()
    cache._client.get = AsyncMock(return_value=stored)
    if pipe is not None:
        pipeline = MagicMock()
        pipeline.__aenter__ = AsyncMock(return_value=pipe)
        pipeline.__aexit__ = AsyncMock(return_value=False)
        cache._client.pipeline.return_value = pipeline
    return cache


def _pipe(stored):
    pipe = MagicMock()
    pipe.watch = AsyncMock()
    pipe.get = AsyncMock(return_value=stored)
    pipe.unwatch = AsyncMock()
    pipe.execute = AsyncMock(return_value=[True])
    return pipe


class TestRedisPreviewCache:

    async def test_get_decodes_stored_entry(self, method_x):
        deposit_id = uuid.uuid4()
        entry = _entry(deposit_id, method_x, datetime.now(timezone.utc))
        cache = _redis_cache(stored=entry.model_dump_json())

        cached = await cache.get(deposit_id)
        assert cached.deposit_id == deposit_id
        assert cached.computed_at == entry.computed_at
        cache._client.get.assert_awaited_once_with(f"deposit_preview:{deposit_id}")

    async def test_corrupt_entry_is_a_miss(self, caplog):
        """Test voce non decodificabile: None e warning, nessun errore al chiamante."""
        cache = _redis_cache(stored='{"deposit_id": "non-un-uuid"')

        assert await cache.get(uuid.uuid4()) is None
        assert "illeggibile" in caplog.text

    async def test_put_overwrites_corrupt_entry(self, method_x):
        entry = _entry(uuid.uuid4(), method_x, datetime.now(timezone.utc))
        pipe = _pipe("corrotto")
        cache = _redis_cache(pipe=pipe)

        assert await cache.put(entry) is True
        pipe.set.assert_called_once_with(f"deposit_preview:{entry.deposit_id}", entry.model_dump_json(), ex=300)

    async def test_put_keeps_newer_entry(self, method_x):
        deposit_id = uuid.uuid4()
        now = datetime.now(timezone.utc)
        newer = _entry(deposit_id, method_x, now)
        pipe = _pipe(newer.model_dump_json())
        cache = _redis_cache(pipe=pipe)

        assert await cache.put(_entry(deposit_id, method_x, now - timedelta(seconds=5))) is False
        pipe.set.assert_not_called()
        pipe.unwatch.assert_awaited_once()
