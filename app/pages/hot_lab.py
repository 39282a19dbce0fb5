"""
app/pages/hot_lab.py

Hot lab (radiopharmacy):
- overview: daily numbers and safety alerts
- lots: received tracer lots with decay-corrected activity
- preparations: doses drawn from a lot, optionally for a patient
- isotopes: half-lives, activity calculator, weight-based dose, unit conversion
"""

from __future__ import annotations

from datetime import date, datetime, time

import streamlit as st

from app.renderers import fmt_dt
from app.ui import inject_theme, metric_card, page_context, require, show_error
from pipelines.errors import WorkflowError
from pipelines.hot_lab import (
    HALF_LIVES_HOURS,
    RADIOPHARMACEUTICAL_PRODUCTS,
    available_lots,
    calculate_current_activity,
    convert_activity,
    dose_by_weight,
    find_product,
    hot_lab_stats,
    is_lot_expired,
    lot_current_activity,
    percent_remaining,
    safety_alerts,
)
from pipelines.schemas import Permission, PreparationLog, TracerLot, utcnow

TABS = {"overview": "Overview", "lots": "Tracer lots", "preparations": "Preparations", "isotopes": "Isotopes"}
UNITS = ["MBq", "mCi", "GBq", "Ci"]


def _product_name(product_id: str) -> str:
    product = find_product(product_id)
    return product.name if product else product_id


def _overview(db) -> None:
    lots, preps = db.lots.all(), db.preparations.all()
    stats = hot_lab_stats(lots, preps)
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        metric_card("Lots", stats.total_lots, f"{stats.available_lots} available")
    with c2:
        metric_card("Expired lots", stats.expired_lots)
    with c3:
        metric_card("Preparations today", stats.todays_preparations, f"{stats.total_preparations} in total")
    with c4:
        metric_card("Activity today", f"{stats.todays_total_activity:g}")

    st.subheader("Safety alerts")
    alerts = safety_alerts(lots, preps)
    if not alerts:
        st.success("No alert.")
    for alert in alerts:
        {"warning": st.warning, "danger": st.error, "info": st.info}[alert.type](alert.message)


def _lots(db, user, perms) -> None:
    rows = []
    for lot in db.lots.all():
        product = find_product(lot.product_id)
        pct = percent_remaining(lot, product)
        rows.append({
            "Lot": lot.lot_number,
            "Product": _product_name(lot.product_id),
            "Expires": lot.expiry_date.isoformat(),
            "Expired": is_lot_expired(lot),
            "Calibrated": fmt_dt(lot.calibration_date_time),
            "Initial": f"{lot.initial_activity:g} {lot.unit}" if lot.initial_activity else "—",
            "Current": f"{lot_current_activity(lot, product):.1f} {lot.unit}" if pct is not None else "—",
            "Remaining %": round(pct, 1) if pct is not None else None,
        })
    st.dataframe(rows, use_container_width=True, hide_index=True)

    if Permission.EDIT_HOT_LAB not in perms:
        return

    with st.expander("➕ Receive a lot"):
        with st.form("lot_form", clear_on_submit=True):
            product = st.selectbox("Product", RADIOPHARMACEUTICAL_PRODUCTS, format_func=lambda p: p.name)
            number = st.text_input("Lot number")
            c1, c2 = st.columns(2)
            with c1:
                expiry = st.date_input("Expiry date", value=date.today())
                cal_day = st.date_input("Calibration date", value=date.today())
                activity = st.number_input("Initial activity", min_value=0.0, step=10.0)
            with c2:
                quantity = st.number_input("Quantity received", min_value=1.0, step=1.0)
                cal_time = st.time_input("Calibration time", value=time(8, 0))
                unit = st.selectbox("Unit", UNITS, index=UNITS.index(product.unit) if product else 0)
            notes = st.text_input("Notes")
            submitted = st.form_submit_button("Save lot", type="primary")
        if submitted:
            lot = TracerLot(
                product_id=product.id,
                lot_number=number,
                expiry_date=expiry,
                calibration_date_time=datetime.combine(cal_day, cal_time).astimezone() if activity else None,
                initial_activity=activity or None,
                unit=unit,
                quantity_received=quantity,
                notes=notes,
            )
            try:
                db.add_lot(lot, actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.rerun()

    lots = db.lots.all()
    if lots:
        target = st.selectbox("Delete lot", lots, format_func=lambda lot: lot.lot_number, key="del_lot")
        if st.button("Delete", key="del_lot_btn"):
            try:
                db.delete_lot(target.id, actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.rerun()


def _preparations(db, user, perms) -> None:
    lots_by_id = {lot.id: lot for lot in db.lots.all()}
    rows = [
        {
            "When": fmt_dt(p.preparation_date_time),
            "Lot": lots_by_id[p.tracer_lot_id].lot_number if p.tracer_lot_id in lots_by_id else p.tracer_lot_id,
            "Activity": f"{p.activity_prepared:g} {p.unit}",
            "Patient": p.patient_id or "",
            "Exam": p.exam_type or "",
            "By": p.prepared_by,
        }
        for p in sorted(db.preparations.all(), key=lambda p: p.preparation_date_time, reverse=True)
    ]
    st.dataframe(rows, use_container_width=True, hide_index=True)

    if Permission.EDIT_HOT_LAB not in perms:
        return

    usable = available_lots(db.lots.all())
    if not usable:
        st.info("No usable lot. Receive a lot first.")
        return

    with st.expander("➕ Log a preparation"):
        patients = db.patients.all()
        with st.form("prep_form", clear_on_submit=True):
            lot = st.selectbox("Lot", usable, format_func=lambda lot: f"{lot.lot_number} · {_product_name(lot.product_id)}")
            c1, c2 = st.columns(2)
            with c1:
                activity = st.number_input("Activity prepared", min_value=0.0, step=10.0)
                patient = st.selectbox("Patient", [None] + patients,
                                       format_func=lambda p: "—" if p is None else f"{p.id} · {p.name}")
            with c2:
                unit = st.selectbox("Unit", UNITS)
                prepared_by = st.text_input("Prepared by", value=user.name if user else "")
            notes = st.text_input("Notes")
            submitted = st.form_submit_button("Save preparation", type="primary")
        if submitted:
            prep = PreparationLog(
                tracer_lot_id=lot.id,
                activity_prepared=activity,
                unit=unit,
                preparation_date_time=utcnow(),
                prepared_by=prepared_by,
                patient_id=patient.id if patient else None,
                exam_type=patient.requested_exam if patient else None,
                notes=notes,
            )
            try:
                db.add_preparation(prep, actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.rerun()


def _isotopes() -> None:
    st.dataframe(
        [{"Isotope": iso, "Half-life (h)": hl} for iso, hl in HALF_LIVES_HOURS.items()],
        use_container_width=True,
        hide_index=True,
    )

    st.subheader("Decay calculator")
    c1, c2, c3 = st.columns(3)
    with c1:
        isotope = st.selectbox("Isotope", list(HALF_LIVES_HOURS))
        initial = st.number_input("Activity at calibration", min_value=0.0, value=1000.0)
    with c2:
        cal_day = st.date_input("Calibration date", value=date.today(), key="iso_day")
        cal_time = st.time_input("Calibration time", value=time(8, 0), key="iso_time")
    with c3:
        current = calculate_current_activity(initial, datetime.combine(cal_day, cal_time), isotope, datetime.now())
        metric_card("Current activity", f"{current:.1f}")

    st.subheader("Dose by weight")
    c1, c2, c3 = st.columns(3)
    with c1:
        base = st.number_input("Reference dose (70 kg)", min_value=0.0, value=740.0)
    with c2:
        weight = st.number_input("Patient weight (kg)", min_value=1.0, value=70.0)
    with c3:
        metric_card("Dose", f"{dose_by_weight(base, weight):.1f}")

    st.subheader("Unit conversion")
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        value = st.number_input("Value", min_value=0.0, value=1.0)
    with c2:
        src = st.selectbox("From", UNITS, index=1)
    with c3:
        dst = st.selectbox("To", UNITS, index=0)
    with c4:
        metric_card("Result", f"{convert_activity(value, src, dst):g} {dst}")


def render(tab: str = "overview") -> None:
    inject_theme()
    db, user, perms = page_context()
    st.title("Hot lab")
    if not require(perms, Permission.VIEW_HOT_LAB):
        return

    keys = list(TABS)
    choice = st.radio("Section", keys, index=keys.index(tab) if tab in keys else 0,
                      format_func=TABS.get, horizontal=True, label_visibility="collapsed")
    if choice == "overview":
        _overview(db)
    elif choice == "lots":
        _lots(db, user, perms)
    elif choice == "preparations":
        _preparations(db, user, perms)
    else:
        _isotopes()
