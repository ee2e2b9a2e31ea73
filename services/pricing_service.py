# services/pricing_service.py
"""
Bill pricing engine.

Three pure steps, always run in this order:
  1. price_item()        per line: base, item discount, charges, GST
  2. resolve_discount()  cart wide discount from the selected codes
  3. aggregate()         bill totals, GST re-spread after the overall discount

Every intermediate amount is rounded to 2 decimals where the ledger rounds it,
so the numbers shown on screen match what ends up in `bills` / `bill_items`.
Inputs are expected to come through utils.records, i.e. fully defaulted.
"""
import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from domain.models import (
    BUY_X_GET_Y,
    CONDITIONAL,
    FIXED_PRICE,
    FLAT,
    PERCENTAGE,
    ZERO,
    BillTotals,
    DiscountDefinition,
    ItemPriceResult,
    LineItem,
)
from utils.money import round2, to_decimal, to_int, to_optional_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

DEFAULT_BUY_QTY = 2
DEFAULT_GET_QTY = 1


# ---------------------------------------------------------------------------
# Item pricer
# ---------------------------------------------------------------------------

def price_item(item: LineItem) -> ItemPriceResult:
    base = item.unit_price * item.quantity
    item_discount = round2(base * item.discount_percent / HUNDRED)
    after_discount = base - item_discount
    # stitching / alteration are added after the discount and are taxed
    with_charges = after_discount + item.surcharge
    tax_amount = round2(with_charges * item.tax_rate / HUNDRED)
    total = round2(with_charges + tax_amount)

    return ItemPriceResult(
        base=base,
        item_discount=item_discount,
        after_discount=after_discount,
        charges_added=item.surcharge,
        tax_amount=tax_amount,
        subtotal=with_charges,
        total=total,
    )


# ---------------------------------------------------------------------------
# Discount resolver
# ---------------------------------------------------------------------------

def _clamp_max(amount: Decimal, max_discount: Optional[Decimal]) -> Decimal:
    if max_discount is None:
        return amount
    return min(amount, max_discount)


def _in_category(item: LineItem, category: Optional[str]) -> bool:
    return not category or item.category == category


def _cart_total(items: Iterable[LineItem], category: Optional[str] = None) -> Decimal:
    return sum(
        (price_item(it).subtotal for it in items if _in_category(it, category)),
        ZERO,
    )


def _buy_x_get_y(definition: DiscountDefinition, items: Sequence[LineItem]) -> Decimal:
    rules = definition.rules
    category = rules.get("category") or None
    buy = to_int(rules.get("buy_qty"), DEFAULT_BUY_QTY)
    get = to_int(rules.get("get_qty"), DEFAULT_GET_QTY)

    block = buy + get
    if block <= 0 or get <= 0:
        return ZERO

    unit_prices: List[Decimal] = []
    for it in items:
        if it.quantity <= 0 or not _in_category(it, category):
            continue
        per_unit = price_item(it).subtotal / it.quantity
        unit_prices.extend([per_unit] * it.quantity)

    if len(unit_prices) < block:
        return ZERO

    unit_prices.sort()
    free_count = (len(unit_prices) // block) * get
    discount = sum(unit_prices[:free_count], ZERO)
    return _clamp_max(round2(discount), definition.max_discount)


def _fixed_price(definition: DiscountDefinition, items: Sequence[LineItem]) -> Decimal:
    rules = definition.rules
    category = rules.get("category") or None
    fixed_total = to_optional_decimal(rules.get("fixed_total"))
    if fixed_total is None:
        return ZERO

    category_sum = _cart_total(items, category)
    discount = max(ZERO, category_sum - fixed_total)
    return _clamp_max(round2(discount), definition.max_discount)


def _conditional(definition: DiscountDefinition, cart_total: Decimal) -> Decimal:
    rules = definition.rules

    if rules.get("min_total") is not None:
        min_total = to_decimal(rules["min_total"])
    elif definition.min_total is not None:
        min_total = definition.min_total
    else:
        min_total = ZERO

    if rules.get("value") is not None:
        amount = to_decimal(rules["value"])
    else:
        amount = definition.value

    if cart_total < min_total:
        return ZERO
    return _clamp_max(amount, definition.max_discount)


def value_of_discount(definition: DiscountDefinition, items: Sequence[LineItem]) -> Decimal:
    """
    Amount a single discount code is worth on this cart, after its own
    `max_discount` cap. Unknown kinds are worth nothing.
    """
    kind = definition.kind

    if kind == FLAT:
        amount = _clamp_max(definition.value, definition.max_discount)
    elif kind == PERCENTAGE:
        amount = round2(_cart_total(items) * definition.value / HUNDRED)
        amount = _clamp_max(amount, definition.max_discount)
    elif kind == BUY_X_GET_Y:
        amount = _buy_x_get_y(definition, items)
    elif kind == FIXED_PRICE:
        amount = _fixed_price(definition, items)
    elif kind == CONDITIONAL:
        amount = _conditional(definition, _cart_total(items))
    else:
        logger.debug("Unknown discount kind %r on code %s", kind, definition.code)
        amount = ZERO

    return max(ZERO, amount)


def resolve_discount(
        items: Sequence[LineItem],
        selected_codes: Iterable[str],
        definitions: Iterable[DiscountDefinition],
) -> Decimal:
    """
    Cart wide discount for the selected codes.

    If any selected code is exclusive only the best exclusive one counts and
    every non-exclusive selection is dropped. Otherwise the codes stack.
    The result never exceeds the cart total.
    """
    codes = set(selected_codes or ())
    if not codes:
        return ZERO

    chosen = [d for d in definitions if d.code in codes and d.active]
    if not chosen:
        return ZERO

    exclusive = [d for d in chosen if d.exclusive]
    if exclusive:
        amount = max(value_of_discount(d, items) for d in exclusive)
    else:
        amount = sum((value_of_discount(d, items) for d in chosen), ZERO)

    return min(amount, _cart_total(items))


def merge_auto_apply_codes(
        user_selected: Iterable[str],
        definitions: Iterable[DiscountDefinition],
) -> List[str]:
    """
    User selection first, then every active auto-apply code not already there.
    """
    merged: List[str] = []
    for code in user_selected or ():
        if code not in merged:
            merged.append(code)
    for d in definitions:
        if d.auto_apply and d.active and d.code and d.code not in merged:
            merged.append(d.code)
    return merged


# ---------------------------------------------------------------------------
# Bill aggregator
# ---------------------------------------------------------------------------

def aggregate(items: Sequence[LineItem], overall_discount: Decimal) -> BillTotals:
    priced = [price_item(it) for it in items]

    items_subtotal = round2(sum((p.base for p in priced), ZERO))
    item_level_discount_total = round2(sum((p.item_discount for p in priced), ZERO))
    pre_overall_taxable = round2(sum((p.subtotal for p in priced), ZERO))

    overall_discount = round2(overall_discount)
    taxable_total = max(ZERO, round2(pre_overall_taxable - overall_discount))

    # GST is spread back over the items by their share of the taxable amount,
    # each item keeps its own rate
    tax_sum = ZERO
    for it, p in zip(items, priced):
        if pre_overall_taxable == ZERO:
            share = ZERO
        else:
            share = p.subtotal / pre_overall_taxable
        reduced_taxable = taxable_total * share
        tax_sum += round2(reduced_taxable * it.tax_rate / HUNDRED)
    tax_total = round2(tax_sum)

    grand_total = round2(taxable_total + tax_total)

    return BillTotals(
        items_subtotal=items_subtotal,
        item_level_discount_total=item_level_discount_total,
        pre_overall_taxable=pre_overall_taxable,
        overall_discount_amount=overall_discount,
        taxable_total=taxable_total,
        tax_total=tax_total,
        grand_total=grand_total,
    )


def compute_bill_totals(
        items: Sequence[LineItem],
        selected_codes: Iterable[str],
        definitions: Iterable[DiscountDefinition],
) -> BillTotals:
    overall = round2(resolve_discount(items, selected_codes, list(definitions)))
    return aggregate(items, overall)
