"""
app/pages/patrimony_inventory.py

Equipment register: list, create, edit and delete assets.
"""

from __future__ import annotations

from datetime import date

import streamlit as st

from app.ui import inject_theme, page_context, show_error
from pipelines.errors import WorkflowError
from pipelines.schemas import Asset

ACTIONS = ["En service", "En réparation", "Réformé"]


def render() -> None:
    inject_theme()
    db, user, _ = page_context()
    st.title("Asset inventory")

    assets = db.assets.all()
    families = sorted({a.family for a in assets})
    family = st.selectbox("Family", ["All"] + families)
    shown = [a for a in assets if family == "All" or a.family == family]
    st.dataframe(
        [
            {
                "ID": a.id,
                "Family": a.family,
                "Designation": a.designation,
                "Brand / model": f"{a.brand} {a.model}".strip(),
                "Serial": a.serial_number,
                "Qty": a.quantity,
                "Year": a.acquisition_year,
                "Cost": a.acquisition_cost,
                "Functional": a.is_functional,
                "Status": a.current_action,
            }
            for a in shown
        ],
        use_container_width=True,
        hide_index=True,
    )

    choice = st.selectbox("Edit asset", [None] + assets,
                          format_func=lambda a: "➕ New asset" if a is None else f"{a.id} · {a.designation}")
    with st.form(f"asset_{choice.id if choice else 'new'}"):
        c1, c2 = st.columns(2)
        with c1:
            fam = st.text_input("Family", value=choice.family if choice else "")
            designation = st.text_input("Designation", value=choice.designation if choice else "")
            brand = st.text_input("Brand", value=choice.brand if choice else "")
            model = st.text_input("Model", value=choice.model if choice else "")
            serial = st.text_input("Serial number", value=choice.serial_number if choice else "")
            supplier = st.text_input("Supplier", value=choice.supplier if choice else "")
        with c2:
            quantity = st.number_input("Quantity", min_value=1, step=1, value=choice.quantity if choice else 1)
            year = st.number_input("Acquisition year", min_value=1950, max_value=date.today().year,
                                   value=choice.acquisition_year if choice and choice.acquisition_year
                                   else date.today().year)
            cost = st.number_input("Acquisition cost", min_value=0.0, step=100.0,
                                   value=float(choice.acquisition_cost) if choice else 0.0)
            functional = st.checkbox("Functional", value=choice.is_functional if choice else True)
            action = st.selectbox("Status", ACTIONS,
                                  index=ACTIONS.index(choice.current_action) if choice else 0)
            funding = st.text_input("Funding source", value=choice.funding_source if choice else "")
        c1, c2 = st.columns(2)
        with c1:
            saved = st.form_submit_button("Save", type="primary")
        with c2:
            deleted = st.form_submit_button("Delete", disabled=choice is None)

    if saved:
        fields = {
            "family": fam,
            "designation": designation,
            "brand": brand,
            "model": model,
            "serial_number": serial,
            "quantity": int(quantity),
            "acquisition_year": int(year),
            "acquisition_cost": cost,
            "is_functional": functional,
            "current_action": action,
            "funding_source": funding,
            "supplier": supplier,
        }
        asset = choice.model_copy(update=fields) if choice else Asset(**fields)
        try:
            db.save_asset(asset, actor=user)
        except WorkflowError as exc:
            show_error(exc)
        else:
            st.rerun()
    if deleted and choice is not None:
        db.delete_asset(choice.id, actor=user)
        st.rerun()
