# boutique/utils/records.py

import datetime
import json
import logging
from typing import Any, Dict, Optional

from domain.models import (
    DEFAULT_TAX_RATE,
    CatalogProduct,
    Customer,
    DiscountDefinition,
    LineItem,
    ProductVariant,
)
from utils.money import to_decimal, to_int, to_optional_decimal

logger = logging.getLogger(__name__)


def _first_present(row: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def _to_bool(val: Any) -> bool:
    if isinstance(val, str):
        return val.strip().lower() in ("1", "true", "t", "yes", "y")
    return bool(val)


def _to_date(val: Any) -> Optional[datetime.date]:
    if val is None or val == "":
        return None
    if isinstance(val, datetime.datetime):
        return val.date()
    if isinstance(val, datetime.date):
        return val
    try:
        return datetime.date.fromisoformat(str(val)[:10])
    except ValueError:
        logger.warning("Ignoring unparsable date %r", val)
        return None


def line_item_from_row(row: Dict[str, Any]) -> LineItem:
    """
    Build a fully defaulted LineItem from a loose dict.

    Accepts both the form state keys (mrp, quickDiscountPct, gstRate,
    stitching_charge, ...) and the bill_items column names. Missing numbers
    become 0, except quantity (1) and tax rate (DEFAULT_TAX_RATE).
    Nothing downstream has to check whether a field was present.
    """
    quantity = row.get("quantity")
    tax_rate = _first_present(row, "tax_rate", "gstRate", "gst_rate")

    return LineItem(
        quantity=1 if quantity is None else to_int(quantity),
        unit_price=to_decimal(_first_present(row, "unit_price", "mrp")),
        discount_percent=to_decimal(
            _first_present(row, "discount_percent", "quickDiscountPct", "discount_pct")
        ),
        stitching_charge=to_decimal(row.get("stitching_charge")),
        alteration_charge=to_decimal(row.get("alteration_charge")),
        tax_rate=DEFAULT_TAX_RATE if tax_rate is None else to_decimal(tax_rate),
        category=_first_present(row, "category", "manual_category"),
        source=row.get("source") or ("inventory" if row.get("variantid") else "manual"),
        product_id=_first_present(row, "product_id", "productid"),
        variant_id=_first_present(row, "variant_id", "variantid"),
        product_name=_first_present(row, "product_name", "manual_name"),
        product_code=_first_present(row, "product_code", "manual_code"),
    )


def _parse_rules(raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Discount rules are not valid JSON: %r", raw)
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def discount_from_row(row: Dict[str, Any]) -> DiscountDefinition:
    """
    Build a DiscountDefinition from a `discounts` table row.

    Older rows keep the category on the discount itself instead of in
    `rules`; it is folded into the rules so the engine only looks there.
    """
    rules = dict(_parse_rules(row.get("rules")))
    if row.get("category") and "category" not in rules:
        rules["category"] = row["category"]

    return DiscountDefinition(
        id=row.get("id"),
        code=str(row.get("code") or ""),
        kind=str(_first_present(row, "type", "kind") or ""),
        value=to_decimal(row.get("value")),
        max_discount=to_optional_decimal(row.get("max_discount")),
        rules=rules,
        exclusive=_to_bool(row.get("exclusive")),
        auto_apply=_to_bool(row.get("auto_apply")),
        active=_to_bool(row.get("active", True)),
        min_total=to_optional_decimal(row.get("min_total")),
        once_per_customer=_to_bool(row.get("once_per_customer")),
        start_date=_to_date(row.get("start_date")),
        end_date=_to_date(row.get("end_date")),
    )


def customer_from_row(row: Dict[str, Any]) -> Customer:
    return Customer(
        customer_id=row.get("customerid"),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        phone=row.get("phone"),
        email=row.get("email"),
        customer_ulid=row.get("customer_ulid"),
        address=row.get("address"),
        loyalty_tier=row.get("loyalty_tier") or "bronze",
        customer_notes=row.get("customer_notes"),
    )


def product_from_row(row: Dict[str, Any]) -> CatalogProduct:
    return CatalogProduct(
        product_id=row["productid"],
        description=row.get("description") or "",
        category=row.get("category"),
        code=row.get("code"),
        mrp=to_decimal(row.get("mrp")),
    )


def variant_from_row(row: Dict[str, Any]) -> ProductVariant:
    return ProductVariant(
        variant_id=row["variantid"],
        color=row.get("color"),
        size=row.get("size"),
        quantity=to_int(row.get("quantity")),
    )


def line_item_from_product(
        product: CatalogProduct,
        variant: Optional[ProductVariant],
        quantity: int,
) -> LineItem:
    return LineItem(
        quantity=quantity,
        unit_price=product.mrp,
        category=product.category,
        source="inventory",
        product_id=product.product_id,
        variant_id=variant.variant_id if variant else None,
        product_name=product.description,
        product_code=product.code,
    )
