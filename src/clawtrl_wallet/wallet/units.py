"""Exact conversions between token base units and decimal strings."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext

# Enough significant digits for any uint256 value.
_PRECISION = 80


def format_units(value: int, decimals: int, places: int) -> str:
    """Render *value* base units as a decimal string with *places* digits.

    Digits beyond *places* are truncated, never rounded. Only integer
    arithmetic is used, so arbitrarily large balances render exactly.

    >>> format_units(1500000000000000000, 18, 8)
    '1.50000000'
    >>> format_units(2500000, 6, 2)
    '2.50'
    """
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10**decimals)
    if places <= 0:
        return f"{sign}{whole}"
    frac_digits = str(frac).rjust(decimals, "0")[:places].ljust(places, "0")
    return f"{sign}{whole}.{frac_digits}"


def parse_units(amount: str | int | float, decimals: int) -> int:
    """Convert a human amount (e.g. ``"0.001"``) to integer base units.

    The amount is scaled by ``10**decimals`` and truncated toward zero.
    Raises ``ValueError`` for anything that is not a finite number.
    """
    text = str(amount).strip()
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {text!r}") from None
    if not parsed.is_finite():
        raise ValueError(f"Invalid amount: {text!r}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int(parsed.scaleb(decimals))
