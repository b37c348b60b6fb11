"""
Service Layer per le Anteprime di allocazione
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Contiene:
- RefreshScheduler: commit delle allocazioni in background (fire-and-forget),
  al massimo una volta per versamento nella finestra di cooldown
- PreviewService: anteprima in sola lettura con cache per versamento

L'anteprima non scrive mai il ledger: chiama l'allocatore, non il commit.
Per i versamenti approvati, dopo l'anteprima viene pianificato un commit
in background con una sessione propria.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import PreviewCache
from app.core.database import session_scope
from app.core.exceptions import AppException, LedgerStoreError, NotFoundError
from app.models import Deposit
from app.schemas.allocation import PreviewResult
from app.schemas.deposit import DepositStatus
from app.services.allocation_service import AllocationService
from app.services.waterfall_service import WaterfallAllocator

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """
    Pianificatore dei commit in background.

    Nessun retry immediato: un commit fallito viene ritentato solo al
    prossimo trigger utile dopo la finestra di cooldown.
    """

    def __init__(
        self,
        allocation_service: Optional[AllocationService] = None,
        session_factory: Callable = session_scope,
        cooldown_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.allocation_service = allocation_service or AllocationService()
        self.session_factory = session_factory
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_run: dict[uuid.UUID, float] = {}
        self._tasks: set[asyncio.Task] = set()

    def schedule_commit(self, deposit_id: uuid.UUID, force: bool = False) -> bool:
        """
        Avvia il commit in background se il cooldown lo consente.

        Returns:
            bool: True se il task è stato avviato
        """
        now = self._clock()
        self._prune(now)
        last = self._last_run.get(deposit_id)
        if not force and last is not None and now - last < self.cooldown_seconds:
            logger.debug("Commit versamento %s saltato (cooldown)", deposit_id)
            return False

        self._last_run[deposit_id] = now
        task = asyncio.create_task(self._run(deposit_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, deposit_id: uuid.UUID) -> None:
        try:
            async with self.session_factory() as db:
                await self.allocation_service.commit(db, deposit_id)
        except AppException as e:
            logger.warning("Commit in background versamento %s fallito: %s (%s)", deposit_id, e.detail, e.error_code)
        except Exception:
            logger.exception("Errore inatteso nel commit in background del versamento %s", deposit_id)

    def _prune(self, now: float) -> None:
        """Rimuove i versamenti il cui cooldown è già scaduto."""
        expired = [d for d, last in self._last_run.items() if now - last >= self.cooldown_seconds]
        for deposit_id in expired:
            del self._last_run[deposit_id]

    def forget(self, deposit_id: uuid.UUID) -> None:
        self._last_run.pop(deposit_id, None)

    async def drain(self) -> None:
        """Attende i task in corso (shutdown)."""
        if self._tasks:
            logger.info("Attesa di %d commit in background", len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class PreviewService:
    """
    Service per le anteprime di allocazione.

    Degrado: se il ricalcolo fallisce si restituisce la voce in cache
    marcata stale; senza voce in cache l'errore arriva al chiamante.
    """

    def __init__(
        self,
        cache: PreviewCache,
        scheduler: RefreshScheduler,
        allocator: Optional[WaterfallAllocator] = None,
    ) -> None:
        self.cache = cache
        self.scheduler = scheduler
        self.allocator = allocator or WaterfallAllocator()

    async def preview(self, db: AsyncSession, deposit_id: uuid.UUID, force: bool = False) -> PreviewResult:
        """
        Anteprima del piano di allocazione di un versamento.

        Args:
            db: Sessione database
            deposit_id: ID versamento
            force: Ignora la cache e il cooldown del commit in background

        Raises:
            NotFoundError: versamento inesistente
            BusinessValidationError: versamento non valido
            LedgerStoreError: ledger non raggiungibile e nessuna anteprima in cache
        """
        if not force:
            cached = await self.cache.get(deposit_id)
            if cached is not None:
                logger.debug("Anteprima versamento %s servita dalla cache", deposit_id)
                return cached.model_copy(update={"cached": True, "stale": False})

        try:
            deposit = await db.get(Deposit, deposit_id)
            if deposit is None:
                raise NotFoundError(f"Versamento {deposit_id} non trovato")
            plan = await self.allocator.allocate(db, deposit)
        except SQLAlchemyError as e:
            logger.warning("Ricalcolo anteprima versamento %s fallito: %s", deposit_id, e)
            previous = await self.cache.get(deposit_id)
            if previous is not None:
                return previous.model_copy(update={"cached": True, "stale": True})
            raise LedgerStoreError(
                "Nessuna anteprima disponibile, riprovare più tardi",
                extra={"deposit_id": str(deposit_id)},
            ) from e

        result = PreviewResult(
            deposit_id=deposit_id,
            plan=plan,
            computed_at=datetime.now(timezone.utc),
        )
        await self.cache.put(result)

        if deposit.status == DepositStatus.APPROVED.value:
            self.scheduler.schedule_commit(deposit_id, force=force)
        return result

    async def warm_pending(self, db: AsyncSession) -> int:
        """
        Calcola le anteprime mancanti di tutti i versamenti in attesa.

        Returns:
            int: Numero di anteprime calcolate
        """
        try:
            stmt = (
                select(Deposit.id)
                .where(Deposit.status == DepositStatus.PENDING.value)
                .order_by(Deposit.created_at)
            )
            deposit_ids = list((await db.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            raise LedgerStoreError("Elenco versamenti in attesa non disponibile") from e

        warmed = 0
        for deposit_id in deposit_ids:
            if await self.cache.has(deposit_id):
                continue
            try:
                await self.preview(db, deposit_id)
            except AppException as e:
                logger.warning("Anteprima versamento %s non calcolata: %s", deposit_id, e.detail)
                continue
            warmed += 1

        if warmed:
            logger.info("Calcolate %d anteprime di versamenti in attesa", warmed)
        return warmed

    async def invalidate(self, deposit_id: uuid.UUID) -> None:
        await self.cache.invalidate(deposit_id)

    async def discard(self, deposit_id: uuid.UUID) -> None:
        """Versamento cancellato: rimuove cache e stato del cooldown."""
        await self.cache.invalidate(deposit_id)
        self.scheduler.forget(deposit_id)
