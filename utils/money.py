# boutique/utils/money.py

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")


def round2(n: Decimal) -> Decimal:
    """
    Round to 2 decimal places, halves away from zero.
    Example: Decimal("2.675") -> Decimal("2.68")
    """
    return Decimal(n).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(val: Any, default: Decimal = Decimal("0")) -> Decimal:
    """
    Coerce a form / database value into a Decimal.
    None, empty strings, booleans and anything unparsable become `default`.
    """
    if val is None or isinstance(val, bool):
        return default
    if isinstance(val, Decimal):
        return val if val.is_finite() else default
    if isinstance(val, str):
        val = val.strip().replace(",", "")
        if not val:
            return default
    try:
        # go through str() so floats keep their shortest repr: 0.1 -> "0.1"
        d = Decimal(str(val))
    except (InvalidOperation, ValueError, TypeError):
        return default
    return d if d.is_finite() else default


def to_optional_decimal(val: Any) -> Optional[Decimal]:
    if val is None or (isinstance(val, str) and not val.strip()):
        return None
    return to_decimal(val, default=None)


def to_int(val: Any, default: int = 0) -> int:
    d = to_decimal(val, default=None)
    if d is None:
        return default
    return int(d)


def to_money(n: Any) -> float:
    """Rounded float for JSON payloads going to Supabase."""
    return float(round2(to_decimal(n)))
