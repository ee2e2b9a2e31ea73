import streamlit as st
import pandas as pd

from data_integrator import fetch_bills
from utils.formatting import format_inr

st.set_page_config(page_title="Bills", page_icon="📚")
st.sidebar.header("📚 Bills")
st.title("📚 Bills")

ok, msg, bills = fetch_bills(limit=200)
if not ok:
    st.error(f"Could not load bills: {msg}")
    st.stop()

if not bills:
    st.info("No bills yet.")
    st.stop()

rows = []
for b in bills:
    customer = b.get("customer") or {}
    name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()
    rows.append(
        {
            "Bill #": b["billid"],
            "Date": (b.get("created_at") or "")[:10],
            "Customer": name or "-",
            "Phone": customer.get("phone") or "-",
            "Status": "Finalized" if b.get("finalized") else "Draft",
            "Taxable": b.get("taxable_total") or 0,
            "Discount": b.get("discount_total") or 0,
            "GST": b.get("gst_total") or 0,
            "Grand Total": b.get("totalamount") or 0,
        }
    )

df_bills = pd.DataFrame(rows)

status = st.segmented_control("Status", ["All", "Draft", "Finalized"], default="All")
if status and status != "All":
    df_bills = df_bills[df_bills["Status"] == status]

phone_filter = st.text_input("Filter by phone")
if phone_filter:
    df_bills = df_bills[df_bills["Phone"].str.contains(phone_filter.strip(), regex=False)]

finalized = df_bills[df_bills["Status"] == "Finalized"]
col_count, col_sum = st.columns(2)
col_count.metric("Finalized bills", len(finalized))
col_sum.metric("Finalized revenue", format_inr(finalized["Grand Total"].sum()))

df_display = df_bills.copy()
for col in ("Taxable", "Discount", "GST", "Grand Total"):
    df_display[col] = df_display[col].apply(format_inr)

st.dataframe(df_display, width="stretch", hide_index=True)
st.caption("Open a bill on the Billing page with its Bill #.")
