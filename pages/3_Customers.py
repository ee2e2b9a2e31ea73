import re

import streamlit as st
import pandas as pd

from data_integrator import fetch_customers, upsert_customer
from domain.models import LOYALTY_TIERS, Customer
from element_component import confirmation_dialog_delete_customer

st.set_page_config(page_title="Customers", page_icon="👥")
st.sidebar.header("👥 Customers")
st.title("👥 Customers")

if "customer_delete_state" not in st.session_state:
    st.session_state["customer_delete_state"] = False


def validate_customer(first_name, phone):
    if not first_name.strip():
        return False, "First name cannot be empty"
    if phone.strip() and not re.match(r"^\+\d[\d\s]{9,20}$", phone.strip()):
        return False, "Phone must start with the country code, e.g. +91 98100 12345"
    return True, ""


# -----------------------------------------------------------------------------
# Existing customers
# -----------------------------------------------------------------------------
ok, msg, customers = fetch_customers()
if not ok:
    st.error(f"Could not load customers: {msg}")
    customers = []

phone_filter = st.text_input("Filter by phone or name")
if phone_filter:
    needle = phone_filter.strip().lower()
    customers = [
        c for c in customers
        if needle in (c.phone or "") or needle in c.display_name.lower()
    ]

if customers:
    df = pd.DataFrame(
        [
            {
                "Name": c.display_name,
                "Phone": c.phone or "-",
                "Email": c.email or "-",
                "Tier": c.loyalty_tier.title(),
                "Address": c.address or "-",
                "Notes": c.customer_notes or "",
            }
            for c in customers
        ]
    )
    st.dataframe(df, width="stretch", hide_index=True)
else:
    st.info("No customers found.")

if st.session_state["customer_delete_state"]:
    st.success("Customer deleted")
    st.session_state["customer_delete_state"] = False

st.divider()

# -----------------------------------------------------------------------------
# Add / edit
# -----------------------------------------------------------------------------
by_label = {f"{c.display_name} ({c.phone or '-'})": c for c in customers}
picked = st.selectbox(
    "Edit an existing customer",
    options=list(by_label.keys()),
    index=None,
    placeholder="Leave empty to add a new customer",
)
current = by_label[picked] if picked else Customer(customer_id=None, first_name="")

if picked and st.button("🗑️ Delete customer"):
    confirmation_dialog_delete_customer(current, "customer_delete_state")

with st.form(f"customer_input_form_{current.customer_ulid or 'new'}", enter_to_submit=False):
    st.subheader("Edit Customer" if picked else "Add Customer")

    col_first, col_last = st.columns(2)
    with col_first:
        first_name = st.text_input("First name", value=current.first_name)
    with col_last:
        last_name = st.text_input("Last name", value=current.last_name)

    col_phone, col_email = st.columns(2)
    with col_phone:
        phone = st.text_input("Phone", value=current.phone or "", placeholder="+91 98100 12345")
    with col_email:
        email = st.text_input("Email", value=current.email or "")

    address = st.text_input("Address", value=current.address or "")
    loyalty_tier = st.selectbox(
        "Loyalty tier",
        LOYALTY_TIERS,
        index=LOYALTY_TIERS.index(current.loyalty_tier) if current.loyalty_tier in LOYALTY_TIERS else 0,
        format_func=str.title,
    )
    notes = st.text_area("Notes", value=current.customer_notes or "")

    submitted = st.form_submit_button("Save")

    if submitted:
        is_valid, message = validate_customer(first_name, phone)
        if not is_valid:
            st.error(message)
        else:
            status, message, saved = upsert_customer(
                Customer(
                    customer_id=current.customer_id,
                    customer_ulid=current.customer_ulid,
                    first_name=first_name,
                    last_name=last_name,
                    phone=phone,
                    email=email,
                    address=address,
                    loyalty_tier=loyalty_tier,
                    customer_notes=notes,
                )
            )
            if not status:
                st.error(message)
            else:
                st.success(f"{message}: {saved.display_name}")
