"""
Amount Handling Module

Normalises monetary inputs to Decimal with a fixed precision.
NEVER uses float for monetary values.
"""

from decimal import Decimal, Inexact, InvalidOperation, ROUND_HALF_UP, Rounded, localcontext
from typing import Union


AmountLike = Union[Decimal, int, str, float]

ZERO = Decimal('0')


def quantum(precision: int) -> Decimal:
    """Smallest representable unit for the given number of decimal places"""
    return Decimal('0.1') ** precision


def to_amount(value: AmountLike, precision: int = 2) -> Decimal:
    """
    Convert a value to a Decimal rounded to the ledger precision.
    
    Floats go through str() so 0.1 becomes Decimal('0.10') rather than
    its binary expansion.
    
    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError("Amount must be a number, not a boolean")
    
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid amount: {value!r}")
    
    if not value.is_finite():
        raise ValueError(f"Amount must be finite: {value}")
    
    try:
        return value.quantize(quantum(precision), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value}")


def exact_add(balance: Decimal, delta: Decimal) -> Decimal:
    """
    Add two amounts without any rounding.
    
    Raises:
        ArithmeticError: If the sum needs more digits than the decimal
            context can hold
    """
    with localcontext() as ctx:
        ctx.traps[Inexact] = True
        ctx.traps[Rounded] = True
        return balance + delta
