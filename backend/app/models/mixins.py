"""
Mixin SQLAlchemy per i modelli del ledger
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

I timestamp sono valorizzati lato applicazione (default Python) così
che restino leggibili dopo il commit senza un refresh: nelle sessioni
async un attributo scaduto richiederebbe un lazy load non ammesso.
Il server_default copre le righe inserite fuori dall'ORM (import SQL).
"""

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, Uuid
from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column, Session
from sqlalchemy.sql import func


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class UUIDMixin:
    """Chiave primaria UUID generata lato applicazione."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


class TimestampMixin:
    """
    created_at / updated_at.

    updated_at è l'unico storico conservato: il ledger non versiona
    le modifiche (last-write-wins).
    """

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class SoftDeleteMixin:
    """
    Disattivazione logica.

    I metodi di pagamento sono referenziati da fatture, note di credito
    e versamenti: non vengono mai cancellati, solo disattivati.
    """

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ------------------------------------------------------------
# Event Listeners
# ------------------------------------------------------------
@event.listens_for(Session, "before_flush")
def touch_updated_at(session: Session, flush_context, instances) -> None:
    """Aggiorna updated_at sugli oggetti con modifiche di colonna."""
    now = utcnow()
    for obj in session.dirty:
        if isinstance(obj, TimestampMixin) and session.is_modified(obj, include_collections=False):
            obj.updated_at = now
