"""
Cache delle anteprime di allocazione
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Una voce per versamento: {plan, computed_at}, con scadenza (TTL).
Le scritture sono last-write-wins per computed_at: una voce calcolata
prima non sovrascrive mai una voce più recente.

Backend:
1. InMemoryPreviewCache (sviluppo, test, singolo worker)
2. RedisPreviewCache (produzione, condivisa tra i worker)
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError, WatchError

from app.schemas.allocation import PreviewResult

logger = logging.getLogger(__name__)


class PreviewCache(ABC):
    """Interfaccia del backend di cache delle anteprime."""

    def __init__(self, ttl_seconds: int = 300) -> None:
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def get(self, deposit_id: uuid.UUID) -> Optional[PreviewResult]:
        """Voce in cache, None se assente o scaduta."""

    @abstractmethod
    async def put(self, entry: PreviewResult) -> bool:
        """Salva la voce; False se in cache c'è già una voce più recente."""

    @abstractmethod
    async def invalidate(self, deposit_id: uuid.UUID) -> None:
        """Rimuove la voce del versamento."""

    async def has(self, deposit_id: uuid.UUID) -> bool:
        return await self.get(deposit_id) is not None

    async def close(self) -> None:
        return None


class InMemoryPreviewCache(PreviewCache):
    """
    Cache in memoria di processo.

    Non condivisa tra più worker: in produzione usare Redis.
    """

    def __init__(self, ttl_seconds: int = 300) -> None:
        super().__init__(ttl_seconds)
        self._entries: Dict[uuid.UUID, tuple[PreviewResult, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, deposit_id: uuid.UUID) -> Optional[PreviewResult]:
        async with self._lock:
            item = self._entries.get(deposit_id)
            if item is None:
                return None
            entry, expires_at = item
            if expires_at <= datetime.now(timezone.utc):
                del self._entries[deposit_id]
                return None
            return entry

    async def put(self, entry: PreviewResult) -> bool:
        async with self._lock:
            current = self._entries.get(entry.deposit_id)
            if current is not None and current[0].computed_at > entry.computed_at:
                logger.debug("Anteprima %s più vecchia di quella in cache, scartata", entry.deposit_id)
                return False
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
            self._entries[entry.deposit_id] = (entry, expires_at)
            return True

    async def invalidate(self, deposit_id: uuid.UUID) -> None:
        async with self._lock:
            self._entries.pop(deposit_id, None)


class RedisPreviewCache(PreviewCache):
    """
    Cache Redis condivisa.

    La scrittura condizionale usa WATCH/MULTI: se un'altra scrittura
    modifica la chiave nel frattempo, il confronto su computed_at
    viene ripetuto.
    """

    KEY_PREFIX = "deposit_preview:"
    MAX_WATCH_RETRIES = 5

    def __init__(self, redis_url: str, ttl_seconds: int = 300) -> None:
        super().__init__(ttl_seconds)
        self._client = redis.from_url(redis_url, decode_responses=True)

    def _key(self, deposit_id: uuid.UUID) -> str:
        return f"{self.KEY_PREFIX}{deposit_id}"

    @staticmethod
    def _decode(deposit_id: uuid.UUID, raw: str) -> Optional[PreviewResult]:
        """Voce illeggibile (formato vecchio o corrotto) = cache miss."""
        try:
            return PreviewResult.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Voce cache anteprima %s illeggibile, ignorata: %s", deposit_id, e.error_count())
            return None

    async def get(self, deposit_id: uuid.UUID) -> Optional[PreviewResult]:
        try:
            raw = await self._client.get(self._key(deposit_id))
        except RedisError as e:
            logger.warning("Lettura cache anteprima %s fallita: %s", deposit_id, e)
            return None
        if not raw:
            return None
        return self._decode(deposit_id, raw)

    async def put(self, entry: PreviewResult) -> bool:
        key = self._key(entry.deposit_id)
        payload = entry.model_dump_json()
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for _ in range(self.MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        current = self._decode(entry.deposit_id, raw) if raw else None
                        if current is not None and current.computed_at > entry.computed_at:
                                await pipe.unwatch()
                                return False
                        pipe.multi()
                        pipe.set(key, payload, ex=self.ttl_seconds)
                        await pipe.execute()
                        return True
                    except WatchError:
                        continue
        except RedisError as e:
            logger.warning("Scrittura cache anteprima %s fallita: %s", entry.deposit_id, e)
            return False

        logger.warning("Scrittura cache anteprima %s abbandonata dopo %d conflitti", entry.deposit_id, self.MAX_WATCH_RETRIES)
        return False

    async def invalidate(self, deposit_id: uuid.UUID) -> None:
        try:
            await self._client.delete(self._key(deposit_id))
        except RedisError as e:
            logger.warning("Invalidazione cache anteprima %s fallita: %s", deposit_id, e)

    async def close(self) -> None:
        await self._client.aclose()


def build_preview_cache(settings) -> PreviewCache:
    """Crea il backend configurato (preview_cache_backend)."""
    if settings.preview_cache_backend == "redis":
        logger.info("Cache anteprime: Redis (%s)", settings.redis_url)
        return RedisPreviewCache(settings.redis_url, settings.preview_cache_ttl_seconds)
    logger.info("Cache anteprime: memoria di processo")
    return InMemoryPreviewCache(settings.preview_cache_ttl_seconds)
