# boutique/utils/formatting.py

from decimal import Decimal
from typing import Any, Iterable, List

from domain.models import (
    BUY_X_GET_Y,
    CONDITIONAL,
    FIXED_PRICE,
    FLAT,
    PERCENTAGE,
    DiscountDefinition,
)
from utils.money import to_decimal


def format_inr(n: Any) -> str:
    """
    Format an amount as rupees with 2 decimals.
    Example: 1234.5 -> "₹1,234.50"
    """
    return f"₹{to_decimal(n):,.2f}"


def _plain(n: Decimal) -> str:
    # 10 -> "10", 12.5 -> "12.5"
    text = f"{n:f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def percent_options(choices: Iterable[Any], current: Iterable[Any]) -> List[float]:
    """
    Selectbox options for a percent column: the usual choices plus any
    value already on the bill, so 12.5 stays 12.5 instead of being cut to 12.
    """
    values = {float(to_decimal(c)) for c in choices}
    values.update(float(to_decimal(c)) for c in current)
    return sorted(values)


def describe_discount(d: DiscountDefinition) -> str:
    rules = d.rules

    if d.kind == FLAT:
        text = f"Flat {format_inr(d.value)} off"
        if d.min_total:
            text += f" on min {format_inr(d.min_total)}"
        return text

    if d.kind == PERCENTAGE:
        text = f"{_plain(d.value)}% off"
        if d.max_discount:
            text += f" (max {format_inr(d.max_discount)})"
        return text

    if d.kind == BUY_X_GET_Y:
        text = f"Buy {rules.get('buy_qty') or 2} Get {rules.get('get_qty') or 1}"
        if rules.get("category"):
            text += f" on {rules['category']}"
        return text

    if d.kind == FIXED_PRICE:
        text = f"Fixed total {format_inr(rules.get('fixed_total'))}"
        if rules.get("category"):
            text += f" for {rules['category']}"
        return text

    if d.kind == CONDITIONAL:
        min_total = rules.get("min_total") or d.min_total
        value = rules.get("value") or d.value
        if min_total:
            return f"{format_inr(value)} off on min {format_inr(min_total)}"
        return f"{format_inr(value)} off"

    return d.kind
