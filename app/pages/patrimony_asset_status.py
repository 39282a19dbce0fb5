"""
app/pages/patrimony_asset_status.py

Asset life sheets: the printable movement history of a lot of identical
items or of a single unit, with running balances and PDF export.
"""

from __future__ import annotations

from datetime import date
from typing import Union

import streamlit as st

from app.ui import inject_theme, page_context, show_error
from pipelines.errors import WorkflowError
from pipelines.patrimony import life_sheet_lot_rows, life_sheet_unit_rows
from pipelines.schemas import LifeSheetLot, LifeSheetLotMovement, LifeSheetUnit, LifeSheetUnitMovement
from storage.export import export_life_sheet_pdf

ENTRY_STATES = [None, "Bon", "Moyen", "Mauvais"]
EXIT_STATES = [None, "Vendu", "Réformé", "Transféré"]


def _new_sheet(db, user) -> None:
    assets = [a for a in db.assets.all() if a.id not in db.life_sheet_lots and a.id not in db.life_sheet_units]
    with st.expander("➕ New life sheet"):
        if not assets:
            st.caption("Every asset already has a life sheet.")
            return
        with st.form("new_sheet", clear_on_submit=True):
            asset = st.selectbox("Asset", assets, format_func=lambda a: f"{a.id} · {a.designation}")
            kind = st.radio("Kind", ["lot", "unit"], horizontal=True,
                            format_func=lambda k: "Lot" if k == "lot" else "Single unit")
            code = st.text_input("Identification code")
            lot_value = st.number_input("Lot value", min_value=0.0, step=100.0)
            unit_value = st.number_input("Unit value", min_value=0.0, step=100.0)
            submitted = st.form_submit_button("Create", type="primary")
        if submitted:
            try:
                if kind == "lot":
                    db.save_life_sheet_lot(
                        LifeSheetLot(id=asset.id, designation=asset.designation, identification_code=code,
                                     lot_value=lot_value, unit_value=unit_value),
                        actor=user,
                    )
                else:
                    db.save_life_sheet_unit(
                        LifeSheetUnit(id=asset.id, designation=asset.designation, identification_code=code),
                        actor=user,
                    )
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.rerun()


def _lot_movement_form(db, user, sheet: LifeSheetLot) -> None:
    with st.form(f"mvt_{sheet.id}", clear_on_submit=True):
        c1, c2 = st.columns(2)
        with c1:
            day = st.date_input("Date", value=date.today())
            entry_units = st.number_input("Units in", min_value=0.0, step=1.0)
            entry_amount = st.number_input("Amount in", min_value=0.0, step=100.0)
            entry_dest = st.text_input("Received from")
        with c2:
            nature = st.text_input("Nature")
            exit_units = st.number_input("Units out", min_value=0.0, step=1.0)
            exit_amount = st.number_input("Amount out", min_value=0.0, step=100.0)
            exit_dest = st.text_input("Sent to")
        submitted = st.form_submit_button("Add movement", type="primary")
    if submitted:
        movement = LifeSheetLotMovement(
            movement_date=day, nature=nature, entry_units=entry_units, entry_amount=entry_amount,
            entry_destination=entry_dest, exit_units=exit_units, exit_amount=exit_amount,
            exit_destination=exit_dest,
        )
        try:
            db.add_life_sheet_lot_movement(sheet.id, movement, actor=user)
        except WorkflowError as exc:
            show_error(exc)
        else:
            st.rerun()


def _unit_movement_form(db, user, sheet: LifeSheetUnit) -> None:
    with st.form(f"mvt_{sheet.id}", clear_on_submit=True):
        c1, c2 = st.columns(2)
        with c1:
            day = st.date_input("Date", value=date.today())
            entry_amount = st.number_input("Amount in", min_value=0.0, step=100.0)
            entry_state = st.selectbox("State on entry", ENTRY_STATES, format_func=lambda s: s or "—")
            entry_dest = st.text_input("Received from")
        with c2:
            nature = st.text_input("Nature")
            exit_amount = st.number_input("Amount out", min_value=0.0, step=100.0)
            exit_state = st.selectbox("Exit", EXIT_STATES, format_func=lambda s: s or "—")
            exit_dest = st.text_input("Sent to")
        submitted = st.form_submit_button("Add movement", type="primary")
    if submitted:
        movement = LifeSheetUnitMovement(
            movement_date=day, nature=nature, entry_amount=entry_amount, entry_state=entry_state,
            entry_destination=entry_dest, exit_amount=exit_amount, exit_state=exit_state,
            exit_destination=exit_dest,
        )
        try:
            db.add_life_sheet_unit_movement(sheet.id, movement, actor=user)
        except WorkflowError as exc:
            show_error(exc)
        else:
            st.rerun()


def render() -> None:
    inject_theme()
    db, user, _ = page_context()
    st.title("Life sheets")

    _new_sheet(db, user)

    sheets: list[Union[LifeSheetLot, LifeSheetUnit]] = [*db.life_sheet_lots.all(), *db.life_sheet_units.all()]
    if not sheets:
        st.info("No life sheet yet.")
        return

    sheet = st.selectbox(
        "Sheet",
        sheets,
        format_func=lambda s: f"{s.designation} ({'lot' if isinstance(s, LifeSheetLot) else 'unit'})",
    )
    is_lot = isinstance(sheet, LifeSheetLot)
    st.caption(f"Code: {sheet.identification_code or '—'}")

    rows = life_sheet_lot_rows(sheet) if is_lot else life_sheet_unit_rows(sheet)
    st.dataframe(
        [
            {"Date": r.movement_date, "Nature": r.nature, "In": r.entry, "Out": r.exit,
             "Units" if is_lot else "Present": r.units_balance, "Value": round(r.value_balance, 2)}
            for r in rows
        ],
        use_container_width=True,
        hide_index=True,
    )

    if is_lot:
        _lot_movement_form(db, user, sheet)
    else:
        _unit_movement_form(db, user, sheet)

    c1, c2 = st.columns(2)
    with c1:
        if st.button("Build PDF"):
            st.session_state[f"sheet_pdf_{sheet.id}"] = export_life_sheet_pdf(sheet, db=db, actor=user)
        pdf = st.session_state.get(f"sheet_pdf_{sheet.id}")
        if pdf:
            st.download_button("Download PDF", data=pdf, file_name=f"fiche_vie_{sheet.id}.pdf",
                               mime="application/pdf")
    with c2:
        if st.button("Delete sheet"):
            db.delete_life_sheet(sheet.id, actor=user)
            st.rerun()
