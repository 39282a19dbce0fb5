# app/renderers.py
from __future__ import annotations

from typing import Iterable

import streamlit as st

from app.ui import _esc, card_close, card_open, pill, status_pill
from pipelines.periods import to_local_naive
from pipelines.rooms import find_room
from pipelines.schemas import Patient


def fmt_dt(value) -> str:
    if value is None:
        return "—"
    return to_local_naive(value).strftime("%d/%m/%Y %H:%M")


def room_label(room_id) -> str:
    room = find_room(room_id)
    return room.name if room else str(getattr(room_id, "value", room_id))


def render_timeline(patient: Patient) -> None:
    """History as a vertical timeline, newest entry first."""
    items = []
    for e in reversed(patient.history):
        state = pill("open", "warn") if e.exit_date is None else ""
        items.append(
            f"""
<div class="mc-tl-item">
  <div class="mc-tl-room">{_esc(room_label(e.room_id))} {state}</div>
  <div class="mc-tl-when">{_esc(fmt_dt(e.entry_date))} → {_esc(fmt_dt(e.exit_date))}</div>
  <div>{_esc(e.status_message)}</div>
</div>"""
        )
    card_open("Journey", f"{len(patient.history)} history entries")
    if items:
        st.markdown(f'<div class="mc-tl">{"".join(items)}</div>', unsafe_allow_html=True)
    else:
        st.caption("No history recorded.")
    card_close()


def render_patient_card(patient: Patient) -> None:
    age = f"{patient.age} ans" if patient.age is not None else "—"
    card_open(patient.name, f"{patient.id} · {age} · {patient.requested_exam or 'no exam requested'}")
    st.markdown(
        f"""
<div style="display:flex; gap:8px; flex-wrap:wrap; margin-top:6px;">
  {pill(room_label(patient.current_room_id), "muted")}
  {status_pill(patient.status_in_room)}
</div>
        """,
        unsafe_allow_html=True,
    )
    card_close()


def patient_rows(patients: Iterable[Patient]) -> list[dict]:
    """Rows for st.dataframe listings."""
    return [
        {
            "ID": p.id,
            "Name": p.name,
            "Age": p.age,
            "Exam": p.requested_exam or "",
            "Room": room_label(p.current_room_id),
            "Status": p.status_in_room.value,
            "Created": fmt_dt(p.creation_date),
        }
        for p in patients
    ]
