"""
Modelli Database SQLAlchemy
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Import centralizzato di tutti i modelli del ledger:
- PaymentMethod: Metodi di pagamento
- Invoice: Fatture di vendita
- CreditNote: Note di credito
- Deposit: Versamenti
- DepositAllocation: Ledger allocazioni versamento → metodo
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from app.models.payment_method import PaymentMethod
from app.models.invoice import Invoice, CreditNote
from app.models.deposit import Deposit, DepositAllocation

__all__ = [
    "Base",
    "PaymentMethod",
    "Invoice",
    "CreditNote",
    "Deposit",
    "DepositAllocation",
]
