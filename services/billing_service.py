# services/billing_service.py

import datetime
import logging
from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import data_integrator
from domain.models import (
    ZERO,
    Bill,
    BillStatus,
    BillTotals,
    DiscountDefinition,
    LineItem,
)
from services.pricing_service import compute_bill_totals, merge_auto_apply_codes, price_item
from utils.money import to_decimal, to_money
from utils.records import line_item_from_row

logger = logging.getLogger(__name__)

RETRY_HINT = "Please try saving again."

EDITABLE_FIELDS = (
    "quantity",
    "unit_price",
    "discount_percent",
    "stitching_charge",
    "alteration_charge",
    "tax_rate",
    "category",
    "product_name",
    "product_code",
)


class BillFinalizedError(ValueError):
    """Raised when a finalized bill is edited."""

    def __init__(self, bill_id: Optional[int]):
        super().__init__(f"Bill #{bill_id} is finalized and can no longer be changed")
        self.bill_id = bill_id


def _ensure_draft(bill: Bill) -> None:
    if bill.is_finalized:
        raise BillFinalizedError(bill.bill_id)


def validate_line_item(item: LineItem) -> Tuple[bool, str]:
    if item.quantity < 1:
        return False, "Quantity must be at least 1"
    if item.unit_price < ZERO:
        return False, "Price cannot be negative"
    if not (ZERO <= item.discount_percent <= 100):
        return False, "Discount must be between 0 and 100 percent"
    if item.stitching_charge < ZERO or item.alteration_charge < ZERO:
        return False, "Stitching / alteration charges cannot be negative"
    if item.tax_rate < ZERO:
        return False, "GST rate cannot be negative"
    return True, ""


def filter_live_discounts(
        definitions: Iterable[DiscountDefinition],
        on_date: Optional[datetime.date] = None,
) -> List[DiscountDefinition]:
    """
    Keep discounts whose start/end dates (both inclusive, both optional)
    cover `on_date`.
    """
    today = on_date or datetime.date.today()
    live = []
    for d in definitions:
        if d.start_date and today < d.start_date:
            continue
        if d.end_date and today > d.end_date:
            continue
        live.append(d)
    return live


# ---------------------------------------------------------------------------
# Draft editing
# ---------------------------------------------------------------------------

def add_item(bill: Bill, item: LineItem) -> None:
    _ensure_draft(bill)
    ok, msg = validate_line_item(item)
    if not ok:
        raise ValueError(msg)
    bill.items.append(item)


def update_item(bill: Bill, index: int, **changes: Any) -> LineItem:
    _ensure_draft(bill)
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")

    updated = line_item_from_row({**asdict(bill.items[index]), **changes})

    ok, msg = validate_line_item(updated)
    if not ok:
        raise ValueError(msg)

    bill.items[index] = updated
    return updated


def remove_item(bill: Bill, index: int) -> LineItem:
    _ensure_draft(bill)
    return bill.items.pop(index)


def recompute(bill: Bill, definitions: Sequence[DiscountDefinition]) -> BillTotals:
    """
    Totals for exactly the codes in `bill.selected_codes`. Auto-apply codes
    are ticked once by start_bill(); a code the cashier unticked stays off.
    """
    _ensure_draft(bill)
    bill.totals = compute_bill_totals(bill.items, bill.selected_codes, definitions)
    return bill.totals


# ---------------------------------------------------------------------------
# Persisted shapes
# ---------------------------------------------------------------------------

def item_row(bill_id: int, item: LineItem) -> Dict[str, Any]:
    """One bill_items row: the raw inputs plus the priced result."""
    priced = price_item(item)
    return {
        "billid": bill_id,
        "productid": item.product_id,
        "variantid": item.variant_id,
        "product_name": item.product_name,
        "product_code": item.product_code,
        "category": item.category,
        "source": item.source,
        "quantity": item.quantity,
        "mrp": to_money(item.unit_price),
        "discount_pct": to_money(item.discount_percent),
        "stitching_charge": to_money(item.stitching_charge),
        "alteration_charge": to_money(item.alteration_charge),
        "discount_total": to_money(priced.item_discount),
        "subtotal": to_money(priced.subtotal),
        "gst_rate": to_money(item.tax_rate),
        "gst_amount": to_money(priced.tax_amount),
        "total": to_money(priced.total),
    }


def bill_header(bill: Bill, totals: BillTotals, finalized: bool) -> Dict[str, Any]:
    return {
        "customerid": bill.customer_id,
        "notes": bill.notes or None,
        "finalized": finalized,
        "applied_codes": list(bill.selected_codes),
        "items_subtotal": to_money(totals.items_subtotal),
        "item_discount_total": to_money(totals.item_level_discount_total),
        "overall_discount": to_money(totals.overall_discount_amount),
        "discount_total": to_money(
            totals.overall_discount_amount + totals.item_level_discount_total
        ),
        "taxable_total": to_money(totals.taxable_total),
        "gst_total": to_money(totals.tax_total),
        "totalamount": to_money(totals.grand_total),
    }


# ---------------------------------------------------------------------------
# Store round trips
# ---------------------------------------------------------------------------

def start_bill(
        definitions: Sequence[DiscountDefinition] = (),
) -> Tuple[bool, str, Optional[Bill]]:
    """New draft with every active auto-apply code pre-selected."""
    ok, msg, bill_id = data_integrator.create_draft_bill()
    if not ok:
        return False, msg, None
    return True, msg, Bill(bill_id=bill_id, selected_codes=merge_auto_apply_codes([], definitions))


def load_bill(bill_id: int) -> Tuple[bool, str, Optional[Bill]]:
    ok, msg, header = data_integrator.fetch_bill(bill_id)
    if not ok:
        return False, msg, None

    ok, msg, rows = data_integrator.fetch_bill_items(bill_id)
    if not ok:
        return False, msg, None

    bill = Bill(
        bill_id=bill_id,
        customer_id=header.get("customerid"),
        notes=header.get("notes") or "",
        items=[line_item_from_row(r) for r in rows],
        selected_codes=list(header.get("applied_codes") or []),
        status=BillStatus.FINALIZED if header.get("finalized") else BillStatus.DRAFT,
    )
    if bill.is_finalized:
        bill.totals = _stored_totals(header, bill.items)
    return True, "Loaded", bill


def _stored_totals(header: Dict[str, Any], items: Sequence[LineItem]) -> BillTotals:
    # a finalized bill shows what was stored, not a recomputation;
    # pre_overall_taxable is not a header column and is rebuilt from the lines
    pre_overall_taxable = compute_bill_totals(items, [], []).pre_overall_taxable
    return BillTotals(
        items_subtotal=to_decimal(header.get("items_subtotal")),
        item_level_discount_total=to_decimal(header.get("item_discount_total")),
        pre_overall_taxable=pre_overall_taxable,
        overall_discount_amount=to_decimal(header.get("overall_discount")),
        taxable_total=to_decimal(header.get("taxable_total")),
        tax_total=to_decimal(header.get("gst_total")),
        grand_total=to_decimal(header.get("totalamount")),
    )


def _persist(bill: Bill, totals: BillTotals, finalized: bool) -> Tuple[bool, str]:
    rows = [item_row(bill.bill_id, it) for it in bill.items]

    ok, msg = data_integrator.replace_bill_items(bill.bill_id, rows)
    if not ok:
        logger.error("Saving items of bill %s failed: %s", bill.bill_id, msg)
        return False, f"Save failed: {msg}. {RETRY_HINT}"

    ok, msg = data_integrator.update_bill_header(bill.bill_id, bill_header(bill, totals, finalized))
    if not ok:
        # items are already replaced at this point; a retry rewrites both
        logger.error("Items of bill %s saved but header update failed: %s", bill.bill_id, msg)
        return False, f"Save failed: {msg}. {RETRY_HINT}"

    return True, "Saved"


def save_draft(bill: Bill, definitions: Sequence[DiscountDefinition]) -> Tuple[bool, str]:
    if bill.bill_id is None:
        return False, "No bill id yet. Please wait a moment and try again."
    _ensure_draft(bill)

    totals = recompute(bill, definitions)
    ok, msg = _persist(bill, totals, finalized=False)
    if ok:
        logger.info("Saved draft bill %s (%d items)", bill.bill_id, len(bill.items))
        return True, f"Draft bill #{bill.bill_id} saved"
    return False, msg


def finalize_bill(
        bill: Bill,
        definitions: Sequence[DiscountDefinition],
) -> Tuple[bool, str, Optional[BillTotals]]:
    """
    Write the bill for good. The bill only becomes FINALIZED once both the
    item rows and the header are stored; on any failure it stays a draft.
    """
    if bill.bill_id is None:
        return False, "No bill id yet. Please wait a moment and try again.", None
    if bill.is_finalized:
        return False, f"Bill #{bill.bill_id} is already finalized", bill.totals
    if not bill.items:
        return False, "A bill requires one or more items.", None

    totals = recompute(bill, definitions)
    ok, msg = _persist(bill, totals, finalized=True)
    if not ok:
        return False, msg, None

    bill.status = BillStatus.FINALIZED
    logger.info("Finalized bill %s, grand total %s", bill.bill_id, totals.grand_total)
    return True, f"Bill #{bill.bill_id} saved", totals
