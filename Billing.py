import logging
import os

import pandas as pd
import streamlit as st

from data_integrator import (
    create_customer,
    fetch_active_discounts,
    find_customers_by_phone,
    get_product_variants,
    search_products,
)
from domain.models import QUICK_DISCOUNT_CHOICES, TAX_RATE_CHOICES, Bill
from element_component import confirmation_dialog_finalize
from services.billing_service import (
    add_item,
    filter_live_discounts,
    item_row,
    load_bill,
    recompute,
    remove_item,
    save_draft,
    start_bill,
    update_item,
)
from services.pricing_service import price_item
from utils.formatting import describe_discount, format_inr, percent_options
from utils.records import line_item_from_product, line_item_from_row

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

st.set_page_config(page_title="Billing", page_icon="🧾")
st.sidebar.header("🧾 Billing")

# -----------------------------------------------------------------------------
# Session state
# -----------------------------------------------------------------------------
if "discounts" not in st.session_state:
    ok, msg, definitions = fetch_active_discounts()
    if not ok:
        st.error(f"Could not load discounts: {msg}")
    st.session_state["discounts"] = filter_live_discounts(definitions)

if "finalize_state" not in st.session_state:
    st.session_state["finalize_state"] = False

definitions = st.session_state["discounts"]


def _open_bill(bill: Bill) -> None:
    st.session_state["bill"] = bill
    st.session_state["finalize_state"] = False
    st.session_state.pop("customer", None)


col_new, col_open, col_open_btn = st.sidebar.columns([1.2, 1, 0.8])
with col_new:
    if st.button("➕ New Bill"):
        ok, msg, bill = start_bill(definitions)
        if ok:
            _open_bill(bill)
        else:
            st.error(f"Could not create bill: {msg}")
with col_open:
    open_id = st.number_input("Bill #", min_value=1, step=1, value=None, label_visibility="collapsed")
with col_open_btn:
    if st.button("Open") and open_id:
        ok, msg, bill = load_bill(int(open_id))
        if ok:
            _open_bill(bill)
        else:
            st.error(msg)

if "bill" not in st.session_state:
    ok, msg, bill = start_bill(definitions)
    if not ok:
        st.error(f"Could not create bill: {msg}")
        st.stop()
    _open_bill(bill)

bill: Bill = st.session_state["bill"]
locked = bill.is_finalized

st.title(f"🧾 Bill #{bill.bill_id}")
if locked:
    st.info("This bill is finalized and read-only.")

# -----------------------------------------------------------------------------
# 1) Customer
# -----------------------------------------------------------------------------
st.subheader("Customer")

phone_query = st.text_input("Search by phone", disabled=locked)
ok, msg, customers = find_customers_by_phone(phone_query)
if not ok:
    st.error(msg)

customer_by_label = {f"{c.display_name} ({c.phone or '-'})": c for c in customers}
chosen_label = st.selectbox(
    "Customer",
    options=list(customer_by_label.keys()),
    index=None,
    placeholder="Pick a customer",
    disabled=locked,
)
if chosen_label:
    bill.customer_id = customer_by_label[chosen_label].customer_id
    st.session_state["customer"] = customer_by_label[chosen_label]

if bill.customer_id:
    current = st.session_state.get("customer")
    st.caption(f"Selected: **{current.display_name if current else bill.customer_id}**")

with st.expander("Create new customer", expanded=False):
    with st.form("customer_form", enter_to_submit=False):
        first = st.text_input("First name")
        last = st.text_input("Last name")
        phone = st.text_input("Phone", placeholder="+91XXXXXXXXXX or local")
        email = st.text_input("Email")
        if st.form_submit_button("Create", disabled=locked):
            ok, msg, customer = create_customer(first, last, phone, email)
            if ok:
                bill.customer_id = customer.customer_id
                st.session_state["customer"] = customer
                st.success(f"Customer {customer.display_name} created")
            else:
                st.error(f"Failed to create customer: {msg}")

st.divider()

# -----------------------------------------------------------------------------
# 2) Add items
# -----------------------------------------------------------------------------
if not locked:
    st.subheader("Add Item")
    tab_inventory, tab_manual = st.tabs(["From Inventory", "Manual"])

    with tab_inventory:
        product_query = st.text_input(
            "Search by Product ID / Code / Description",
            placeholder="e.g. 1024 or KRT-Blue or Anarkali",
        )
        ok, msg, products = search_products(product_query)
        if not ok:
            st.error(msg)

        product_by_label = {
            f"[{p.product_id}] {p.description} • {p.category or '-'} • {format_inr(p.mrp)}": p
            for p in products
        }
        product_label = st.selectbox(
            "Product",
            options=list(product_by_label.keys()),
            index=None,
            placeholder="No matches" if product_query and not products else "Pick a product",
        )

        if product_label:
            product = product_by_label[product_label]
            ok, msg, variants = get_product_variants(product.product_id)
            if not ok:
                st.error(msg)
            variant_by_label = {
                f"{v.color or '-'} / {v.size or '-'} (stock: {v.quantity})": v for v in variants
            }
            variant_label = st.selectbox("Variant (color / size)", options=list(variant_by_label.keys()), index=None)
            qty = st.number_input("Quantity", min_value=1, step=1, value=1, key="inventory_qty")

            if st.button("Add", key="add_inventory"):
                variant = variant_by_label.get(variant_label) if variant_label else None
                try:
                    add_item(bill, line_item_from_product(product, variant, int(qty)))
                    st.rerun()
                except ValueError as e:
                    st.error(str(e))

    with tab_manual:
        with st.form("manual_item_form", enter_to_submit=False):
            col_a, col_b = st.columns(2)
            with col_a:
                category = st.text_input("Category", placeholder="Kurti / Saree / Suit / ...")
                code = st.text_input("Code (cost)")
            with col_b:
                name = st.text_input("Product name", placeholder="Describe the item")
                mrp = st.number_input("MRP", min_value=0.0, step=1.0)
            qty = st.number_input("Quantity", min_value=1, step=1, value=1)

            if st.form_submit_button("Add"):
                try:
                    add_item(bill, line_item_from_row({
                        "source": "manual",
                        "category": category or None,
                        "product_name": name or None,
                        "product_code": code or None,
                        "mrp": mrp,
                        "quantity": qty,
                    }))
                    st.rerun()
                except ValueError as e:
                    st.error(str(e))

    st.divider()

# -----------------------------------------------------------------------------
# 3) Items
# -----------------------------------------------------------------------------
st.subheader("Items")

if not bill.items:
    st.info("No items yet.")
else:
    rows = []
    for it in bill.items:
        priced = price_item(it)
        rows.append(
            {
                "Item": it.product_name or "-",
                "Category": it.category or "-",
                "Qty": it.quantity,
                "MRP": float(it.unit_price),
                "Disc %": float(it.discount_percent),
                "Stitching": float(it.stitching_charge),
                "Alteration": float(it.alteration_charge),
                "GST %": float(it.tax_rate),
                "GST": float(priced.tax_amount),
                "Total": float(priced.total),
                "Remove": False,
            }
        )
    df_items = pd.DataFrame(rows)

    edited = st.data_editor(
        df_items,
        hide_index=True,
        width="stretch",
        disabled=locked or ["Item", "Category", "MRP", "GST", "Total"],
        column_config={
            "Qty": st.column_config.NumberColumn(min_value=1, step=1),
            "Disc %": st.column_config.SelectboxColumn(
                options=percent_options(QUICK_DISCOUNT_CHOICES, [it.discount_percent for it in bill.items])
            ),
            "Stitching": st.column_config.NumberColumn(min_value=0.0, format="%.2f"),
            "Alteration": st.column_config.NumberColumn(min_value=0.0, format="%.2f"),
            "GST %": st.column_config.SelectboxColumn(
                options=percent_options(TAX_RATE_CHOICES, [it.tax_rate for it in bill.items])
            ),
            "GST": st.column_config.NumberColumn(format="%.2f"),
            "Total": st.column_config.NumberColumn(format="%.2f"),
        },
        key=f"items_editor_{bill.bill_id}_{len(bill.items)}",
    )

    if not locked:
        editable = {
            "Qty": "quantity",
            "Disc %": "discount_percent",
            "Stitching": "stitching_charge",
            "Alteration": "alteration_charge",
            "GST %": "tax_rate",
        }
        changed = False
        for idx in range(len(df_items)):
            changes = {
                field: edited.at[idx, col]
                for col, field in editable.items()
                if edited.at[idx, col] != df_items.at[idx, col]
            }
            if changes:
                try:
                    update_item(bill, idx, **changes)
                    changed = True
                except ValueError as e:
                    st.error(f"Row {idx + 1}: {e}")

        to_remove = [idx for idx in range(len(edited)) if edited.at[idx, "Remove"]]
        for idx in reversed(to_remove):
            remove_item(bill, idx)
            changed = True

        if changed:
            st.rerun()

st.divider()

# -----------------------------------------------------------------------------
# 4) Overall discounts
# -----------------------------------------------------------------------------
st.subheader("Overall Discounts")

if not definitions:
    st.caption("No active discounts configured.")
else:
    by_code = {d.code: d for d in definitions}
    bill.selected_codes = st.multiselect(
        "Discount codes",
        options=list(by_code.keys()),
        default=[c for c in bill.selected_codes if c in by_code],
        format_func=lambda c: f"{c}: {describe_discount(by_code[c])}",
        disabled=locked,
        key=f"codes_{bill.bill_id}",
    )
    if any(by_code[c].exclusive for c in bill.selected_codes):
        st.caption("An exclusive code is selected: only the best exclusive code applies.")

bill.notes = st.text_area("Notes", value=bill.notes, disabled=locked, key=f"notes_{bill.bill_id}")

# -----------------------------------------------------------------------------
# 5) Summary
# -----------------------------------------------------------------------------
totals = bill.totals if locked else recompute(bill, definitions)

summary = pd.DataFrame(
    [
        ("Items subtotal", format_inr(totals.items_subtotal)),
        ("Item-level discounts", f"- {format_inr(totals.item_level_discount_total)}"),
        ("Overall discounts", f"- {format_inr(totals.overall_discount_amount)}"),
        ("Taxable total", format_inr(totals.taxable_total)),
        ("GST", format_inr(totals.tax_total)),
    ],
    columns=["", "Amount"],
)
st.subheader("Summary")
st.dataframe(summary, hide_index=True, width="stretch")
st.metric("Grand Total", format_inr(totals.grand_total))

# -----------------------------------------------------------------------------
# 6) Actions
# -----------------------------------------------------------------------------
col_draft, col_final, col_csv = st.columns(3)

with col_draft:
    if st.button("Save Draft", disabled=locked):
        ok, msg = save_draft(bill, definitions)
        if ok:
            st.success(msg)
        else:
            st.error(msg)

with col_final:
    if st.button("Finalize", type="primary", disabled=locked):
        if not bill.items:
            st.warning("Add at least one item. A bill requires one or more items.")
        else:
            confirmation_dialog_finalize(bill, definitions, "finalize_state")

with col_csv:
    if bill.items:
        df_export = pd.DataFrame([item_row(bill.bill_id, it) for it in bill.items])
        st.download_button(
            "Download as CSV",
            data=df_export.to_csv(index=False).encode("utf-8"),
            file_name=f"bill_{bill.bill_id}.csv",
            mime="text/csv",
        )

if st.session_state["finalize_state"] and locked:
    st.success(f"Bill #{bill.bill_id} saved")
