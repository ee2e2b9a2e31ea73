import json
import re

import streamlit as st
import pandas as pd

from data_integrator import (
    fetch_discounts,
    insert_discount,
    is_discount_code_taken,
    set_discount_active,
)
from domain.models import BUY_X_GET_Y, CONDITIONAL, DISCOUNT_KINDS, FIXED_PRICE
from utils.formatting import describe_discount, format_inr

st.set_page_config(page_title="Discounts", page_icon="🏷️")
st.sidebar.header("🏷️ Discounts")
st.title("🏷️ Discount Codes")

if "discount_input_state" not in st.session_state:
    st.session_state["discount_input_state"] = False


def validate_code(val):
    if not val:
        return False, "Code cannot be empty"
    if not re.match(r"^[A-Za-z0-9_-]{2,30}$", val):
        return False, "Code may only contain letters, digits, '-' or '_' (2-30 characters)."
    if is_discount_code_taken(val):
        return False, f"Code '{val}' already exists"
    return True, ""


def build_rules(kind, category, buy_qty, get_qty, fixed_total, rule_min_total):
    rules = {}
    if category:
        rules["category"] = category
    if kind == BUY_X_GET_Y:
        rules["buy_qty"] = int(buy_qty)
        rules["get_qty"] = int(get_qty)
    elif kind == FIXED_PRICE:
        rules["fixed_total"] = fixed_total
    elif kind == CONDITIONAL and rule_min_total:
        rules["min_total"] = rule_min_total
    return rules


# -----------------------------------------------------------------------------
# Existing discounts
# -----------------------------------------------------------------------------
ok, msg, discounts = fetch_discounts()
if not ok:
    st.error(f"Could not load discounts: {msg}")
    discounts = []

if discounts:
    df = pd.DataFrame(
        [
            {
                "Code": d.code,
                "Type": d.kind,
                "Description": describe_discount(d),
                "Max": format_inr(d.max_discount) if d.max_discount is not None else "-",
                "Exclusive": d.exclusive,
                "Auto apply": d.auto_apply,
                "Active": d.active,
                "From": d.start_date,
                "Until": d.end_date,
            }
            for d in discounts
        ]
    )
    st.dataframe(df, width="stretch", hide_index=True)

    by_code = {d.code: d for d in discounts}
    col_pick, col_btn = st.columns([3, 1])
    with col_pick:
        code_to_toggle = st.selectbox("Discount", options=list(by_code.keys()), index=None)
    with col_btn:
        if code_to_toggle:
            target = by_code[code_to_toggle]
            label = "Deactivate" if target.active else "Activate"
            if st.button(label):
                ok, msg = set_discount_active(target.id, not target.active)
                if ok:
                    st.rerun()
                else:
                    st.error(msg)
else:
    st.info("No discounts configured.")

st.divider()

# -----------------------------------------------------------------------------
# New discount
# -----------------------------------------------------------------------------
with st.form("discount_input_form", enter_to_submit=False):
    st.subheader("New Discount")
    code = st.text_input("Code", placeholder="e.g. B2G1, KURTI1000")
    kind = st.selectbox("Type", DISCOUNT_KINDS)
    value = st.number_input("Value (amount or %)", min_value=0.0, step=1.0)
    max_discount = st.number_input("Max discount (0 = no cap)", min_value=0.0, step=1.0)
    min_total = st.number_input("Minimum bill total", min_value=0.0, step=1.0)

    st.caption("Rules")
    category = st.text_input("Category", placeholder="Kurti / Saree / Suit / ...")
    col_buy, col_get, col_fixed = st.columns(3)
    with col_buy:
        buy_qty = st.number_input("Buy qty", min_value=1, step=1, value=2)
    with col_get:
        get_qty = st.number_input("Get qty", min_value=1, step=1, value=1)
    with col_fixed:
        fixed_total = st.number_input("Fixed total", min_value=0.0, step=1.0)

    col_start, col_end = st.columns(2)
    with col_start:
        start_date = st.date_input("Start date", value=None)
    with col_end:
        end_date = st.date_input("End date", value=None)

    exclusive = st.checkbox("Exclusive (cannot combine with other codes)")
    auto_apply = st.checkbox("Auto apply")
    once_per_customer = st.checkbox("Once per customer")

    submitted = st.form_submit_button("Save")

    if submitted:
        st.session_state["discount_input_state"] = False
        is_valid, message = validate_code(code.strip())
        if not is_valid:
            st.error(message)
        elif start_date and end_date and end_date < start_date:
            st.error("End date must be on or after the start date")
        else:
            rules = build_rules(kind, category.strip(), buy_qty, get_qty, fixed_total, min_total)
            payload = {
                "code": code.strip().upper(),
                "type": kind,
                "value": value,
                "max_discount": max_discount or None,
                "min_total": min_total or None,
                "rules": rules,
                "exclusive": exclusive,
                "auto_apply": auto_apply,
                "once_per_customer": once_per_customer,
                "active": True,
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
            }
            status, message, _ = insert_discount(payload)
            st.session_state["discount_input_state"] = status
            if not status:
                st.error(message)
            else:
                st.caption(f"Rules: `{json.dumps(rules)}`")

    if st.session_state["discount_input_state"]:
        st.success("Discount saved")
