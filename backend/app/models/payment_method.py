"""
Modello SQLAlchemy per i Metodi di Pagamento
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)
"""

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import SoftDeleteMixin, TimestampMixin, UUIDMixin


class PaymentMethod(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """
    Metodo di pagamento (es. gateway carte, contrassegno, bonifico).

    Immutabile dopo la creazione: può essere solo disattivato.

    Attributes:
        code: Codice univoco del metodo (es. "paymob", "cod")
        name: Nome visualizzato
        is_active: Flag di disattivazione logica
    """

    __tablename__ = "payment_methods"

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        doc="Codice univoco del metodo di pagamento",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Nome visualizzato",
    )

    __table_args__ = (
        Index("ix_payment_methods_is_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<PaymentMethod(code={self.code}, active={self.is_active})>"
