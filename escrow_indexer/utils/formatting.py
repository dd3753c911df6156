"""Exact decimal helpers for token amounts.

Amounts leave the chain as raw integers in a token's smallest unit and are
persisted as plain decimal strings ("500", "0.5", "-200"). All arithmetic runs
under a wide local context so uint256 values never lose digits.
"""

from decimal import Decimal, localcontext
from typing import Iterable, Optional

# uint256 has 78 decimal digits; leave room for the fractional part
PRECISION = 120


def format_units(value: int, decimals: int) -> str:
    """Convert a raw integer amount to a decimal string.

    Args:
        value: Amount in the token's smallest unit
        decimals: Token decimal precision

    Returns:
        Decimal string without exponent or trailing zeros
    """
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return decimal_to_str(Decimal(int(value)).scaleb(-int(decimals)))


def to_decimal(value: Optional[str]) -> Decimal:
    """Parse a stored decimal string, treating None/empty as zero."""
    if value is None or value == "":
        return Decimal(0)
    return Decimal(value)


def decimal_to_str(value: Decimal) -> str:
    """Render a Decimal in plain notation ("1E+2" -> "100", "0.50" -> "0.5")."""
    if value == 0:
        return "0"
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return format(value.normalize(), "f")


def sum_decimal_strings(values: Iterable[str]) -> Decimal:
    """Sum decimal strings exactly."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        total = Decimal(0)
        for value in values:
            total += to_decimal(value)
        return total


def subtract(minuend: Decimal, subtrahend: Decimal) -> str:
    """Exact difference rendered as a decimal string."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return decimal_to_str(minuend - subtrahend)
