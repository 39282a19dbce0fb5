"""
app/pages/patrimony_stock.py

Consumables: stock items with their current level and value. Opening an
item leads to its ledger.
"""

from __future__ import annotations

import streamlit as st

from app.ui import go, inject_theme, page_context, show_error, view_state
from pipelines.errors import WorkflowError
from pipelines.patrimony import LOW_STOCK_THRESHOLD
from pipelines.schemas import StockItem
from pipelines.views import view_stock_item


def render() -> None:
    inject_theme()
    db, user, _ = page_context()
    st.title("Stock")

    items = db.stock_items.all()
    for item in items:
        c1, c2, c3, c4 = st.columns([3, 1, 1, 1])
        with c1:
            st.markdown(f"**{item.designation}**  \n{item.budget_line or '—'}")
        with c2:
            level = f"{item.current_stock:g} {item.unit}"
            st.markdown(f":red[{level}]" if item.current_stock <= LOW_STOCK_THRESHOLD else level)
        with c3:
            st.markdown(f"{item.current_stock * item.unit_price:,.2f}")
        with c4:
            if st.button("Ledger", key=f"open_{item.id}"):
                go(view_stock_item(view_state(), item.id))

    with st.expander("➕ New stock item"):
        with st.form("new_item", clear_on_submit=True):
            designation = st.text_input("Designation")
            c1, c2 = st.columns(2)
            with c1:
                unit = st.text_input("Unit", value="pièce")
            with c2:
                budget_line = st.text_input("Budget line")
            submitted = st.form_submit_button("Create", type="primary")
        if submitted:
            try:
                db.save_stock_item(StockItem(designation=designation, unit=unit, budget_line=budget_line), actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.rerun()
