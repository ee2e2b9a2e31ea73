import streamlit as st
import pandas as pd

from data_integrator import delete_customer
from domain.models import Bill, Customer, DiscountDefinition
from services.billing_service import finalize_bill
from utils.formatting import format_inr


@st.dialog("Confirm")
def confirmation_dialog_finalize(bill: Bill, definitions: list[DiscountDefinition], state_name: str):
    totals = bill.totals
    summary = {
        "Bill": f"#{bill.bill_id}",
        "Items": str(len(bill.items)),
        "Discount codes": ", ".join(bill.selected_codes) or "-",
        "Grand Total": format_inr(totals.grand_total) if totals else "-",
    }
    df = pd.DataFrame(summary.items(), columns=["Key", "Value"])
    st.dataframe(df, hide_index=True)
    st.caption("A finalized bill can no longer be edited.")

    col_yes, col_no = st.columns(2)

    with col_yes:
        if st.button("Finalize", type="primary", key="confirm_yes"):
            status, msg, _ = finalize_bill(bill, definitions)
            st.session_state[state_name] = status

            if not status:
                st.error(msg)
            else:
                st.rerun()
    with col_no:
        if st.button("Cancel"):
            st.rerun()


@st.dialog("Delete customer")
def confirmation_dialog_delete_customer(customer: Customer, state_name: str):
    st.write(f"Delete **{customer.display_name}** ({customer.phone or '-'})?")
    st.caption("This cannot be undone.")

    col_yes, col_no = st.columns(2)

    with col_yes:
        if st.button("Delete", type="primary", key="confirm_delete"):
            status, msg = delete_customer(customer.customer_ulid)
            st.session_state[state_name] = status

            if not status:
                st.error(msg)
            else:
                st.rerun()
    with col_no:
        if st.button("Cancel", key="cancel_delete"):
            st.rerun()
