"""
Service Layer per i Versamenti
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Flusso di approvazione:
- create / update: solo versamenti in attesa; le anteprime dei versamenti
  in attesa vengono ricalcolate subito dopo
- approve: pending → approved e primo commit delle allocazioni nella
  stessa transazione (se il commit fallisce il versamento resta pending)
- reject: pending → rejected con motivo obbligatorio
- delete: cancella il versamento e le sue righe di allocazione
"""

import datetime
import logging
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AllocationStateError,
    AppException,
    BusinessValidationError,
    LedgerStoreError,
    NotFoundError,
)
from app.models import Deposit, PaymentMethod
from app.schemas.deposit import (
    DepositApprove,
    DepositCreate,
    DepositReject,
    DepositStatus,
    DepositUpdate,
)
from app.services.allocation_service import AllocationService
from app.services.preview_service import PreviewService

# Logger per questo modulo
logger = logging.getLogger(__name__)


class DepositService:
    """
    Service per il ciclo di vita dei versamenti.

    Il PreviewService è opzionale: senza, non vengono gestite
    né l'invalidazione né il riscaldamento della cache anteprime.
    """

    def __init__(
        self,
        allocation_service: Optional[AllocationService] = None,
        preview_service: Optional[PreviewService] = None,
    ) -> None:
        self.allocation_service = allocation_service or AllocationService()
        self.preview_service = preview_service

    # ------------------------------------------------------------
    # Lettura
    # ------------------------------------------------------------
    async def get_all(
        self,
        db: AsyncSession,
        page: int = 1,
        per_page: int = 20,
        status: Optional[DepositStatus] = None,
        payment_method_id: Optional[uuid.UUID] = None,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
    ) -> tuple[list[Deposit], int]:
        """
        Lista paginata dei versamenti.

        Il filtro date seleziona i versamenti il cui periodo si
        sovrappone all'intervallo indicato.

        Returns:
            Tuple di (lista versamenti, totale count)
        """
        conditions = []
        if status is not None:
            conditions.append(Deposit.status == status.value)
        if payment_method_id is not None:
            conditions.append(Deposit.payment_method_id == payment_method_id)
        if start_date is not None:
            conditions.append(Deposit.end_date >= start_date)
        if end_date is not None:
            conditions.append(Deposit.start_date <= end_date)

        query = select(Deposit).order_by(Deposit.start_date.desc(), Deposit.created_at.desc())
        count_query = select(func.count()).select_from(Deposit)
        if conditions:
            query = query.where(*conditions)
            count_query = count_query.where(*conditions)

        result = await db.execute(query.offset((page - 1) * per_page).limit(per_page))
        deposits = list(result.scalars().all())
        total = (await db.execute(count_query)).scalar() or 0

        logger.info("Recuperati %s versamenti su %s totali (pagina %s)", len(deposits), total, page)
        return deposits, total

    async def get_by_id(self, db: AsyncSession, deposit_id: uuid.UUID, for_update: bool = False) -> Deposit:
        deposit = await db.get(Deposit, deposit_id, with_for_update=for_update)
        if deposit is None:
            raise NotFoundError(f"Versamento {deposit_id} non trovato")
        return deposit

    # ------------------------------------------------------------
    # Creazione / Modifica
    # ------------------------------------------------------------
    async def _check_methods(self, db: AsyncSession, method_ids: list[uuid.UUID]) -> None:
        """Tutti i metodi indicati devono esistere ed essere attivi."""
        wanted = set(method_ids)
        result = await db.execute(
            select(PaymentMethod.id).where(PaymentMethod.id.in_(wanted), PaymentMethod.is_active == True)
        )
        found = set(result.scalars().all())
        missing = wanted - found
        if missing:
            raise BusinessValidationError(
                "Metodi di pagamento inesistenti o disattivati",
                extra={"payment_method_ids": sorted(str(m) for m in missing)},
            )

    async def create(self, db: AsyncSession, data: DepositCreate) -> Deposit:
        """
        Registra un nuovo versamento in attesa.

        Raises:
            BusinessValidationError: metodi di pagamento non validi
        """
        primary = data.primary_method_id
        group = [entry.payment_method_id for entry in data.method_group]
        await self._check_methods(db, group or [primary])

        deposit = Deposit(
            start_date=data.start_date,
            end_date=data.end_date,
            total_amount=data.total_amount,
            tax_amount=data.tax_amount,
            net_amount=data.net_amount,
            payment_method_id=primary,
            method_group=[{"payment_method_id": str(m)} for m in group],
            notes=data.notes,
            status=DepositStatus.PENDING.value,
        )
        db.add(deposit)
        await db.commit()
        await db.refresh(deposit)

        logger.info(
            "Creato versamento %s: %s..%s netto=%s metodi=%s",
            deposit.id, deposit.start_date, deposit.end_date, deposit.net_amount, len(group) or 1,
        )
        await self._warm_previews(db)
        return deposit

    async def update(self, db: AsyncSession, deposit_id: uuid.UUID, data: DepositUpdate) -> Deposit:
        """
        Modifica un versamento in attesa.

        Se cambiano totale o imposta senza un netto esplicito,
        il netto viene ricalcolato come totale + imposta.

        Raises:
            AllocationStateError: versamento già revisionato
            BusinessValidationError: periodo o importi non validi
        """
        deposit = await self.get_by_id(db, deposit_id)
        if deposit.status != DepositStatus.PENDING.value:
            raise AllocationStateError(
                "Solo un versamento in attesa può essere modificato",
                extra={"deposit_id": str(deposit_id), "status": deposit.status},
            )

        update_data = data.model_dump(exclude_unset=True)
        method_group = update_data.pop("method_group", None)

        for field, value in update_data.items():
            setattr(deposit, field, value)

        if "net_amount" not in update_data and ({"total_amount", "tax_amount"} & update_data.keys()):
            deposit.net_amount = deposit.total_amount + deposit.tax_amount

        if method_group is not None:
            group = [uuid.UUID(str(entry["payment_method_id"])) for entry in method_group]
            if not group:
                group = [deposit.payment_method_id]
            await self._check_methods(db, group)
            deposit.payment_method_id = group[0]
            deposit.method_group = [{"payment_method_id": str(m)} for m in group]

        if deposit.end_date < deposit.start_date:
            raise BusinessValidationError("La data di fine non può precedere la data di inizio")
        if deposit.net_amount < 0:
            raise BusinessValidationError("L'importo netto del versamento non può essere negativo")

        await db.commit()
        await db.refresh(deposit)
        logger.info("Aggiornato versamento %s", deposit_id)

        if self.preview_service is not None:
            await self.preview_service.invalidate(deposit_id)
        await self._warm_previews(db)
        return deposit

    # ------------------------------------------------------------
    # Revisione
    # ------------------------------------------------------------
    async def approve(self, db: AsyncSession, deposit_id: uuid.UUID, data: DepositApprove) -> Deposit:
        """
        Approva un versamento e scrive le sue allocazioni.

        Cambio di stato e commit delle allocazioni sono atomici:
        in caso di errore il versamento resta in attesa e l'operazione
        può essere ripetuta.

        Raises:
            AllocationStateError: versamento non in attesa
            LedgerStoreError: errore del database (nessun effetto)
        """
        try:
            deposit = await self.get_by_id(db, deposit_id, for_update=True)
            if deposit.status != DepositStatus.PENDING.value:
                raise AllocationStateError(
                    f"Versamento in stato '{deposit.status}': approvazione non consentita",
                    extra={"deposit_id": str(deposit_id), "status": deposit.status},
                )

            deposit.status = DepositStatus.APPROVED.value
            deposit.reviewed_at = datetime.datetime.now(datetime.timezone.utc)
            deposit.reviewed_by = data.reviewed_by
            rows = await self.allocation_service.apply(db, deposit)
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Errore approvazione versamento %s: %s - %s", deposit_id, e.__class__.__name__, e)
            await db.rollback()
            raise LedgerStoreError(
                "Approvazione non completata, il versamento resta in attesa",
                extra={"deposit_id": str(deposit_id)},
            ) from e
        except AppException:
            await db.rollback()
            raise

        await db.refresh(deposit)
        logger.info(
            "Approvato versamento %s: %d righe di allocazione, residuo=%s",
            deposit_id, len(rows), deposit.remaining_amount,
        )
        if self.preview_service is not None:
            await self.preview_service.invalidate(deposit_id)
        return deposit

    async def reject(self, db: AsyncSession, deposit_id: uuid.UUID, data: DepositReject) -> Deposit:
        """
        Rifiuta un versamento in attesa.

        Raises:
            AllocationStateError: versamento non in attesa
        """
        deposit = await self.get_by_id(db, deposit_id, for_update=True)
        if deposit.status != DepositStatus.PENDING.value:
            raise AllocationStateError(
                f"Versamento in stato '{deposit.status}': rifiuto non consentito",
                extra={"deposit_id": str(deposit_id), "status": deposit.status},
            )

        deposit.status = DepositStatus.REJECTED.value
        deposit.rejection_reason = data.reason
        deposit.reviewed_at = datetime.datetime.now(datetime.timezone.utc)
        deposit.reviewed_by = data.reviewed_by
        await db.commit()
        await db.refresh(deposit)

        logger.info("Rifiutato versamento %s: %s", deposit_id, data.reason)
        if self.preview_service is not None:
            await self.preview_service.invalidate(deposit_id)
        return deposit

    async def delete(self, db: AsyncSession, deposit_id: uuid.UUID) -> None:
        """Cancella il versamento e, nella stessa transazione, le sue allocazioni."""
        deposit = await self.get_by_id(db, deposit_id)
        try:
            cleared = await self.allocation_service.clear_for_deposit(db, deposit_id)
            await db.delete(deposit)
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Errore cancellazione versamento %s: %s - %s", deposit_id, e.__class__.__name__, e)
            await db.rollback()
            raise LedgerStoreError("Cancellazione del versamento non riuscita") from e

        logger.info("Cancellato versamento %s (%d righe di allocazione rimosse)", deposit_id, cleared)
        if self.preview_service is not None:
            await self.preview_service.discard(deposit_id)

    # ------------------------------------------------------------
    # Anteprime
    # ------------------------------------------------------------
    async def _warm_previews(self, db: AsyncSession) -> None:
        if self.preview_service is None:
            return
        try:
            await self.preview_service.warm_pending(db)
        except LedgerStoreError as e:
            logger.warning("Riscaldamento anteprime non riuscito: %s", e.detail)
