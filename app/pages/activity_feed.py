"""
app/pages/activity_feed.py

Every room entry recorded in the selected period, newest first.
"""

from __future__ import annotations

import streamlit as st

from app.renderers import fmt_dt, room_label
from app.ui import current_period, inject_theme, page_context
from pipelines.periods import PERIOD_LABELS
from pipelines.reporting import activity_feed


def render() -> None:
    inject_theme()
    db, _, _ = page_context()
    period = current_period()

    st.title("Activity feed")
    items = activity_feed(db.patients.all(), period)
    st.caption(f"{len(items)} event(s) · {PERIOD_LABELS[period]}")

    if not items:
        st.info("No activity in this period.")
        return

    st.dataframe(
        [
            {
                "When": fmt_dt(i.entry_date),
                "Patient": f"{i.patient_name} ({i.patient_id})",
                "Room": room_label(i.room_id),
                "Status": i.status_message,
                "Left": fmt_dt(i.exit_date),
            }
            for i in items
        ],
        use_container_width=True,
        hide_index=True,
    )
