"""
app/pages/patrimony_stock_detail.py

Ledger of one stock item: running stock and value, entry / exit /
inventory forms, PDF export and deletion of unused items.
"""

from __future__ import annotations

import streamlit as st

from app.renderers import fmt_dt
from app.ui import go, inject_theme, metric_card, page_context, show_error, view_state
from pipelines.errors import WorkflowError
from pipelines.patrimony import stock_ledger
from pipelines.schemas import MovementType
from pipelines.views import ActiveView, navigate_to_view
from storage.export import export_stock_ledger_pdf


def render(item_id: str) -> None:
    inject_theme()
    db, user, _ = page_context()
    back = navigate_to_view(view_state(), ActiveView.PATRIMONY_STOCK)

    item = db.stock_items.find(item_id)
    if item is None:
        st.warning("This stock item no longer exists.")
        if st.button("Back to stock"):
            go(back)
        return

    if st.button("← Stock"):
        go(back)
    st.title(item.designation)
    st.caption(f"{item.unit} · {item.budget_line or 'no budget line'}")

    c1, c2, c3 = st.columns(3)
    with c1:
        metric_card("Stock", f"{item.current_stock:g}", item.unit)
    with c2:
        metric_card("Unit price", f"{item.unit_price:,.2f}")
    with c3:
        metric_card("Value", f"{item.current_stock * item.unit_price:,.2f}")

    st.dataframe(
        [
            {
                "Date": fmt_dt(r.movement.date),
                "Type": r.movement.type.value,
                "Qty": r.movement.quantity,
                "Unit price": r.movement.unit_price,
                "Ref": r.movement.document_ref,
                "Source / destination": r.movement.destination_or_source,
                "Ordonnateur": r.movement.ordonnateur,
                "Stock": r.stock_after,
                "Value": round(r.value_after, 2),
            }
            for r in stock_ledger(item)
        ],
        use_container_width=True,
        hide_index=True,
    )

    tab_in, tab_out, tab_count = st.tabs(["Entry", "Exit", "Inventory"])
    with tab_in:
        with st.form("entry_form", clear_on_submit=True):
            qty = st.number_input("Quantity", min_value=0.0, step=1.0)
            price = st.number_input("Unit price", min_value=0.0, step=1.0, value=float(item.unit_price))
            source = st.text_input("Supplier / source")
            ref = st.text_input("Document reference (blank: generated)")
            ordonnateur = st.text_input("Ordonnateur", value=user.name if user else "")
            submitted = st.form_submit_button("Record entry", type="primary")
        if submitted:
            _apply(lambda: db.stock_entry(item.id, qty, price, actor=user, source=source,
                                          document_ref=ref, ordonnateur=ordonnateur))

    with tab_out:
        with st.form("exit_form", clear_on_submit=True):
            qty = st.number_input("Quantity", min_value=0.0, step=1.0)
            kind = st.selectbox("Type", [MovementType.EXIT, MovementType.CONSUMPTION], format_func=lambda k: k.value)
            destination = st.text_input("Destination")
            ref = st.text_input("Document reference (blank: generated)")
            ordonnateur = st.text_input("Ordonnateur", value=user.name if user else "")
            submitted = st.form_submit_button("Record exit", type="primary")
        if submitted:
            _apply(lambda: db.stock_exit(item.id, qty, kind=kind, actor=user, destination=destination,
                                         document_ref=ref, ordonnateur=ordonnateur))

    with tab_count:
        with st.form("count_form", clear_on_submit=True):
            counted = st.number_input("Counted stock", min_value=0.0, step=1.0, value=float(item.current_stock))
            submitted = st.form_submit_button("Record count", type="primary")
        if submitted:
            _apply(lambda: db.stock_inventory(item.id, counted, actor=user, ordonnateur=user.name if user else ""))

    st.divider()
    c1, c2 = st.columns(2)
    with c1:
        if st.button("Build PDF ledger"):
            st.session_state[f"ledger_pdf_{item.id}"] = export_stock_ledger_pdf(item, db=db, actor=user)
        pdf = st.session_state.get(f"ledger_pdf_{item.id}")
        if pdf:
            st.download_button("Download PDF", data=pdf, file_name=f"fiche_stock_{item.id}.pdf",
                               mime="application/pdf")
    with c2:
        if st.button("Delete item"):
            try:
                db.delete_stock_item(item.id, actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                go(back)


def _apply(action) -> None:
    try:
        action()
    except WorkflowError as exc:
        show_error(exc)
    else:
        st.rerun()
