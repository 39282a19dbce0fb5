"""
app/pages/daily_worklist.py

Hour-by-hour plan for a day: appointments, injections and the estimated
exam slot one hour after each injection.
"""

from __future__ import annotations

from datetime import date

import streamlit as st

from app.ui import _esc, card_close, card_open, inject_theme, page_context, pill
from pipelines.reporting import daily_worklist

KIND_TONES = {"appointment": "muted", "injection": "warn", "exam": "ok"}


def render() -> None:
    inject_theme()
    db, _, _ = page_context()

    st.title("Daily worklist")
    day = st.date_input("Day", value=date.today())
    grouped = daily_worklist(db.patients.all(), day)

    total = sum(len(v) for v in grouped.values())
    st.caption(f"{total} event(s)")

    for hour, events in grouped.items():
        card_open(f"{hour:02d}:00")
        if not events:
            st.caption("—")
        for ev in events:
            st.markdown(
                f"{pill(ev.at.strftime('%H:%M'), KIND_TONES[ev.kind])} "
                f"<b>{_esc(ev.patient_name)}</b> · {_esc(ev.label)} · {_esc(ev.exam)}",
                unsafe_allow_html=True,
            )
        card_close()
