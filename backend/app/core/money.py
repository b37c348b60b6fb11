"""
Utility per importi monetari
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Tutti gli importi del motore di allocazione passano da qui:
Decimal a due cifre con arrotondamento ROUND_HALF_UP, mai float binari.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_amount(value: Any) -> Decimal:
    """
    Converte un valore in importo Decimal finito e non negativo.

    None, NaN, infiniti, stringhe non numeriche e valori negativi
    diventano 0.00.
    """
    if value is None:
        return ZERO
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    if not amount.is_finite() or amount < 0:
        return ZERO
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def signed_amount(value: Any) -> Decimal:
    """Come to_amount ma conserva il segno (usato per i totali importati)."""
    if value is None:
        return ZERO
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    if not amount.is_finite():
        return ZERO
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_non_negative(value: Decimal) -> Decimal:
    """max(0, value) mantenendo la quantizzazione."""
    return value if value > ZERO else ZERO
