"""
app/pages/rooms_overview.py

One card per workflow room with its waiting / seen counts, plus the
department's headline numbers for the selected period.
"""

from __future__ import annotations

import streamlit as st

from app.ui import card_close, card_open, current_period, go, metric_card, page_context, view_state
from pipelines.periods import PERIOD_LABELS
from pipelines.reporting import compute_statistics, patients_in_room
from pipelines.rooms import visible_rooms
from pipelines.schemas import PatientStatus
from pipelines.views import navigate_to_room
from storage.accounts import role_of


def render() -> None:
    db, user, _ = page_context()
    period = current_period()
    st.title("Rooms overview")
    st.caption(f"Department activity · {PERIOD_LABELS[period]}")

    patients = db.patients.all()
    stats = compute_statistics(patients, period)

    c1, c2, c3, c4 = st.columns(4)
    with c1:
        metric_card("Patients", stats.total_patients, "with activity in period")
    with c2:
        metric_card("Exams requested", stats.total_exams)
    with c3:
        journey = f"{stats.average_journey_hours:g} h" if stats.average_journey_hours is not None else "—"
        metric_card("Average journey", journey)
    with c4:
        metric_card("In department", sum(1 for p in patients if p.status_in_room == PatientStatus.WAITING))

    rooms = visible_rooms(user, role_of(db, user))
    cols = st.columns(4)
    for i, room in enumerate(rooms):
        in_room = patients_in_room(patients, room.id)
        waiting = sum(1 for p in in_room if p.status_in_room == PatientStatus.WAITING)
        with cols[i % 4]:
            card_open(room.name, room.description)
            st.markdown(f"**{waiting}** waiting · **{len(in_room) - waiting}** seen")
            card_close()
            if st.button("Open", key=f"open_{room.id.value}", use_container_width=True):
                go(navigate_to_room(view_state(), room.id))
