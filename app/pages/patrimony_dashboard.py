"""
app/pages/patrimony_dashboard.py

Equipment and consumables at a glance: asset and stock values, functional
status, family breakdown and low-stock items.
"""

from __future__ import annotations

import streamlit as st

from app.ui import go, inject_theme, metric_card, page_context, view_state
from pipelines.patrimony import LOW_STOCK_THRESHOLD, patrimony_summary
from pipelines.views import view_stock_item


def render() -> None:
    inject_theme()
    db, _, _ = page_context()
    summary = patrimony_summary(db.assets.all(), db.stock_items.all())

    st.title("Patrimony")

    c1, c2, c3, c4 = st.columns(4)
    with c1:
        metric_card("Asset value", f"{summary.total_asset_value:,.2f}", f"{summary.asset_count} assets")
    with c2:
        metric_card("Stock value", f"{summary.total_stock_value:,.2f}", f"{summary.stock_item_count} items")
    with c3:
        metric_card("Functional", summary.functional_assets)
    with c4:
        metric_card("Out of service", summary.non_functional_assets)

    left, right = st.columns(2)
    with left:
        st.subheader("Assets by family")
        if summary.assets_by_family:
            st.bar_chart(summary.assets_by_family)
        else:
            st.caption("No asset recorded.")
    with right:
        st.subheader(f"Low stock (≤ {LOW_STOCK_THRESHOLD})")
        if not summary.low_stock_items:
            st.success("Every item is above the threshold.")
        for item in summary.low_stock_items:
            c1, c2 = st.columns([3, 1])
            with c1:
                st.warning(f"{item.designation}: {item.current_stock:g} {item.unit}")
            with c2:
                if st.button("Ledger", key=f"ledger_{item.id}"):
                    go(view_stock_item(view_state(), item.id))
