import logging
import os
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from supabase import create_client, Client

from domain.models import CatalogProduct, Customer, DiscountDefinition, ProductVariant
from utils.records import (
    customer_from_row,
    discount_from_row,
    product_from_row,
    variant_from_row,
)

load_dotenv()
url: str = os.getenv("SUPABASE_URL")
key: str = os.getenv("SUPABASE_KEY")
schema: str = os.getenv("SCHEMA", "public")

logger = logging.getLogger(__name__)

_supabase: Optional[Client] = None

DISCOUNT_COLUMNS = (
    "id, code, type, value, max_discount, rules, auto_apply, once_per_customer, "
    "exclusive, min_total, category, active, start_date, end_date"
)
CUSTOMER_COLUMNS = (
    "customerid, customer_ulid, first_name, last_name, phone, email, "
    "address, loyalty_tier, customer_notes"
)
BILL_COLUMNS = (
    "billid, customerid, notes, finalized, created_at, items_subtotal, "
    "item_discount_total, overall_discount, discount_total, taxable_total, "
    "gst_total, totalamount"
)


def _client() -> Client:
    global _supabase
    if _supabase is None:
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set in the environment")
        _supabase = create_client(url, key)
    return _supabase


def _table(table_name: str):
    return _client().schema(schema).table(table_name)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def search_products(query: str) -> Tuple[bool, str, List[CatalogProduct]]:
    """
    Search products by product id, code or description.
    Returns (ok, message, products)
    """
    # , ( ) are syntax inside a PostgREST or=(...) filter
    q = " ".join(re.sub(r"[,()]", " ", query or "").split())
    if not q:
        return True, "Empty query", []

    filters = [f"code.ilike.%{q}%", f"description.ilike.%{q}%"]
    if q.isdigit():
        filters.insert(0, f"productid.eq.{q}")

    try:
        resp = (
            _table("products")
            .select("productid, category, description, code, mrp")
            .or_(",".join(filters))
            .limit(20)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Product search failed: {resp.error}", []

        return True, "Fetched", [product_from_row(r) for r in (resp.data or [])]

    except Exception as e:
        return False, str(e), []


def get_product_variants(product_id: int) -> Tuple[bool, str, List[ProductVariant]]:
    try:
        resp = (
            _table("productsizecolors")
            .select("variantid, color, size, quantity")
            .eq("productid", product_id)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Variant lookup failed: {resp.error}", []

        return True, "Fetched", [variant_from_row(r) for r in (resp.data or [])]

    except Exception as e:
        return False, str(e), []


# ---------------------------------------------------------------------------
# Discounts
# ---------------------------------------------------------------------------

def fetch_active_discounts() -> Tuple[bool, str, List[DiscountDefinition]]:
    """
    Active discount codes for a billing session.
    Returns (ok, message, definitions)
    """
    try:
        resp = (
            _table("discounts")
            .select(DISCOUNT_COLUMNS)
            .eq("active", True)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch discounts failed: {resp.error}", []

        definitions = [discount_from_row(r) for r in (resp.data or [])]
        logger.info("Loaded %d active discounts", len(definitions))
        return True, "Fetched", definitions

    except Exception as e:
        logger.error("Fetch discounts failed: %s", e)
        return False, str(e), []


def fetch_discounts() -> Tuple[bool, str, List[DiscountDefinition]]:
    try:
        resp = (
            _table("discounts")
            .select(DISCOUNT_COLUMNS)
            .order("code")
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch discounts failed: {resp.error}", []

        return True, "Fetched", [discount_from_row(r) for r in (resp.data or [])]

    except Exception as e:
        return False, str(e), []


def is_discount_code_taken(code: str) -> bool:
    resp = (
        _table("discounts")
        .select("id")
        .ilike("code", code)
        .execute()
    )
    return len(resp.data) != 0


def insert_discount(row: Dict[str, Any]) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
    """
    Insert a single discount row.
    Returns (ok, message, inserted_row)
    """
    try:
        resp = _table("discounts").insert(row).execute()

        if getattr(resp, "error", None):
            return False, f"Insert failed: {resp.error}", None

        inserted = resp.data[0] if resp.data else None
        logger.info("Created discount %s", row.get("code"))
        return True, "Inserted", inserted

    except Exception as e:
        return False, str(e), None


def set_discount_active(discount_id: int, active: bool) -> Tuple[bool, str]:
    try:
        resp = (
            _table("discounts")
            .update({"active": active})
            .eq("id", discount_id)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Update failed: {resp.error}"

        return True, "Updated"

    except Exception as e:
        return False, str(e)


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

def find_customers_by_phone(query: str) -> Tuple[bool, str, List[Customer]]:
    q = (query or "").strip()
    if not q:
        return True, "Empty query", []

    try:
        resp = (
            _table("customers")
            .select(CUSTOMER_COLUMNS)
            .ilike("phone", f"%{q}%")
            .limit(15)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Customer search failed: {resp.error}", []

        return True, "Fetched", [customer_from_row(r) for r in (resp.data or [])]

    except Exception as e:
        return False, str(e), []


def new_customer_ulid() -> str:
    """26 character opaque id for the customers.customer_ulid column."""
    return uuid.uuid4().hex[:26]


def create_customer(
        first_name: str,
        last_name: str = "",
        phone: Optional[str] = None,
        email: Optional[str] = None,
) -> Tuple[bool, str, Optional[Customer]]:
    payload = {
        "first_name": (first_name or "").strip() or "Customer",
        "last_name": (last_name or "").strip(),
        "phone": (phone or "").strip() or None,
        "email": (email or "").strip() or None,
        "customer_ulid": new_customer_ulid(),
    }

    try:
        resp = _table("customers").insert(payload).execute()

        if getattr(resp, "error", None):
            return False, f"Create customer failed: {resp.error}", None

        if not resp.data:
            return False, "Create customer failed: no data returned", None

        return True, "Customer created", customer_from_row(resp.data[0])

    except Exception as e:
        return False, str(e), None


def fetch_customers() -> Tuple[bool, str, List[Customer]]:
    try:
        resp = (
            _table("customers")
            .select(CUSTOMER_COLUMNS)
            .order("first_name")
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch customers failed: {resp.error}", []

        return True, "Fetched", [customer_from_row(r) for r in (resp.data or [])]

    except Exception as e:
        return False, str(e), []


def is_phone_taken(phone: str) -> bool:
    resp = (
        _table("customers")
        .select("customerid")
        .eq("phone", phone)
        .execute()
    )
    return len(resp.data) != 0


def upsert_customer(customer: Customer) -> Tuple[bool, str, Optional[Customer]]:
    """
    Add or edit a customer, keyed on customer_ulid.
    A customer without a ulid is new: it gets one, and its phone must not
    be on file already.
    Returns (ok, message, stored_customer)
    """
    is_new = not customer.customer_ulid
    phone = re.sub(r"\s", "", customer.phone or "") or None

    payload = {
        "customer_ulid": customer.customer_ulid or new_customer_ulid(),
        "first_name": (customer.first_name or "").strip(),
        "last_name": (customer.last_name or "").strip(),
        "phone": phone,
        "email": (customer.email or "").strip() or None,
        "address": (customer.address or "").strip() or None,
        "loyalty_tier": customer.loyalty_tier or "bronze",
        "customer_notes": (customer.customer_notes or "").strip() or None,
    }

    try:
        if is_new and phone and is_phone_taken(phone):
            return False, "Phone number already exists", None

        resp = (
            _table("customers")
            .upsert(payload, on_conflict="customer_ulid")
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Save customer failed: {resp.error}", None

        if not resp.data:
            return False, "Save customer failed: no data returned", None

        logger.info("%s customer %s", "Added" if is_new else "Updated", payload["customer_ulid"])
        return True, "Customer added" if is_new else "Customer updated", customer_from_row(resp.data[0])

    except Exception as e:
        return False, str(e), None


def delete_customer(customer_ulid: str) -> Tuple[bool, str]:
    try:
        resp = (
            _table("customers")
            .delete()
            .eq("customer_ulid", customer_ulid)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Delete customer failed: {resp.error}"

        if not resp.data:
            return False, "Customer not found"

        logger.info("Deleted customer %s", customer_ulid)
        return True, "Customer deleted"

    except Exception as e:
        return False, str(e)


# ---------------------------------------------------------------------------
# Bills
# ---------------------------------------------------------------------------

def create_draft_bill() -> Tuple[bool, str, Optional[int]]:
    """
    Insert an empty draft header so the bill gets its id straight away.
    Returns (ok, message, bill_id)
    """
    try:
        resp = _table("bills").insert({"finalized": False}).execute()

        if getattr(resp, "error", None):
            return False, f"Create bill failed: {resp.error}", None

        if not resp.data:
            return False, "Create bill failed: no data returned", None

        bill_id = resp.data[0]["billid"]
        logger.info("Created draft bill %s", bill_id)
        return True, "Created", bill_id

    except Exception as e:
        return False, str(e), None


def replace_bill_items(bill_id: int, rows: List[Dict[str, Any]]) -> Tuple[bool, str]:
    """
    Replace every bill_items row of a bill: delete, then insert `rows`.
    Not transactional; a failed insert leaves the bill without items.
    """
    try:
        del_resp = (
            _table("bill_items")
            .delete()
            .eq("billid", bill_id)
            .execute()
        )

        if getattr(del_resp, "error", None):
            return False, f"Delete bill items failed: {del_resp.error}"

        if not rows:
            return True, "No items"

        ins_resp = _table("bill_items").insert(rows).execute()

        if getattr(ins_resp, "error", None):
            return False, f"Insert bill items failed: {ins_resp.error}"

        return True, f"Saved {len(rows)} items"

    except Exception as e:
        return False, str(e)


def update_bill_header(bill_id: int, header: Dict[str, Any]) -> Tuple[bool, str]:
    try:
        resp = (
            _table("bills")
            .update(header)
            .eq("billid", bill_id)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Update bill failed: {resp.error}"

        return True, "Updated"

    except Exception as e:
        return False, str(e)


def fetch_bill(bill_id: int) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
    try:
        resp = (
            _table("bills")
            .select(BILL_COLUMNS + ", applied_codes")
            .eq("billid", bill_id)
            .limit(1)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch bill failed: {resp.error}", None

        if not resp.data:
            return False, f"Bill #{bill_id} not found", None

        return True, "Fetched", resp.data[0]

    except Exception as e:
        return False, str(e), None


def fetch_bill_items(bill_id: int) -> Tuple[bool, str, List[Dict[str, Any]]]:
    try:
        resp = (
            _table("bill_items")
            .select("*")
            .eq("billid", bill_id)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch bill items failed: {resp.error}", []

        return True, "Fetched", resp.data or []

    except Exception as e:
        return False, str(e), []


def fetch_bills(limit: int = 100) -> Tuple[bool, str, List[Dict[str, Any]]]:
    """
    Most recent bills first, with the customer's name and phone joined in.
    """
    try:
        resp = (
            _table("bills")
            .select(BILL_COLUMNS + ", customer:customerid ( first_name, last_name, phone )")
            .order("billid", desc=True)
            .limit(limit)
            .execute()
        )

        if getattr(resp, "error", None):
            return False, f"Fetch bills failed: {resp.error}", []

        return True, "Fetched", resp.data or []

    except Exception as e:
        return False, str(e), []
