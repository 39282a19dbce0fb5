"""
storage/export.py

Export helpers: a JSON string or PDF bytes for a patient dossier, and
printable PDFs for a stock ledger or an asset life sheet.

Each exporter appends an audit entry when a ``Database`` is passed.

Dependencies
------------
- reportlab  (PDF generation)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from io import BytesIO
from typing import TYPE_CHECKING, Any, Optional, Union
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from pipelines.patrimony import life_sheet_lot_rows, life_sheet_unit_rows, stock_ledger
from pipelines.periods import to_local_naive
from pipelines.rooms import ROOM_ORDER, find_room
from pipelines.schemas import LifeSheetLot, LifeSheetUnit, Patient, StockItem, User

if TYPE_CHECKING:
    from pipelines.storage import Database

logger = logging.getLogger(__name__)

HEADER_COLOR = colors.HexColor("#1a3a5c")
ROW_ALT_COLOR = colors.HexColor("#f0f4f8")
GRID_COLOR = colors.HexColor("#cccccc")

DISCLAIMER = (
    "Document généré par l'application de suivi du service de médecine nucléaire. "
    "Usage interne uniquement."
)


def _generated_at() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _audit(db: Optional["Database"], action: str, target: str, actor: Union[User, str, None]) -> None:
    if db is not None:
        db.audit(action, target=target, actor=actor)


def _fmt_dt(value: Optional[datetime]) -> str:
    if value is None:
        return "—"
    return to_local_naive(value).strftime("%d/%m/%Y %H:%M")


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

_BLOCK_END_RE = re.compile(r"</(p|li|div|h\d)>|<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def html_to_text(html: str) -> str:
    """Rich-text editor HTML to plain text, one line per block."""
    text = _BLOCK_END_RE.sub("\n", html or "")
    text = _TAG_RE.sub("", text)
    lines = [ln.strip() for ln in text.replace("&nbsp;", " ").splitlines()]
    return "\n".join(ln for ln in lines if ln)


def _para(text: Any, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(str(text if text is not None else "")).replace("\n", "<br/>"), style)


def _styles() -> dict[str, ParagraphStyle]:
    styles = getSampleStyleSheet()
    normal = styles["Normal"]
    return {
        "title": ParagraphStyle(
            "CustomTitle", parent=styles["Title"], fontSize=18, textColor=HEADER_COLOR, spaceAfter=6
        ),
        "heading": ParagraphStyle(
            "CustomHeading",
            parent=styles["Heading2"],
            fontSize=12,
            textColor=HEADER_COLOR,
            spaceBefore=12,
            spaceAfter=4,
        ),
        "normal": normal,
        "cell": ParagraphStyle("Cell", parent=normal, fontSize=8, leading=10),
        "small": ParagraphStyle("Small", parent=normal, fontSize=8, textColor=colors.grey),
    }


def _table(rows: list[list[Any]], col_widths: list[float], cell: ParagraphStyle) -> Table:
    body = [rows[0]] + [[_para(c, cell) if isinstance(c, str) else c for c in r] for r in rows[1:]]
    table = Table(body, colWidths=col_widths, repeatRows=1)
    table.setStyle(
        TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), HEADER_COLOR),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, ROW_ALT_COLOR]),
            ("GRID", (0, 0), (-1, -1), 0.5, GRID_COLOR),
            ("LEFTPADDING", (0, 0), (-1, -1), 6),
            ("RIGHTPADDING", (0, 0), (-1, -1), 6),
            ("TOPPADDING", (0, 0), (-1, -1), 4),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ])
    )
    return table


def _build(story: list, pagesize=A4) -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=pagesize,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
    )
    doc.build(story)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Patient dossier
# ---------------------------------------------------------------------------


def _room_name(room_id) -> str:
    room = find_room(room_id)
    return room.name if room is not None else str(getattr(room_id, "value", room_id))


def _form_rows(form) -> list[list[str]]:
    """Field/value pairs of a saved room form; custom fields are flattened."""
    data = form.model_dump(mode="json", exclude={"room"})
    custom = data.pop("custom_fields", {}) or {}
    rows = []
    for key, value in list(data.items()) + [(f"custom.{k}", v) for k, v in custom.items()]:
        if value in (None, "", [], {}):
            continue
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        if isinstance(value, str) and "<" in value:
            value = html_to_text(value)
        rows.append([key, str(value)])
    return rows


def patient_bundle(patient: Patient) -> dict[str, Any]:
    return {
        "export_generated_at": _generated_at(),
        "patient": patient.model_dump(mode="json", exclude={"documents"}),
        "documents": [{"id": d.id, "name": d.name, "file_type": d.file_type} for d in patient.documents],
    }


def export_patient_json(
    patient: Patient, db: Optional["Database"] = None, actor: Union[User, str, None] = None
) -> str:
    """Pretty-printed JSON dossier (documents listed without their content)."""
    _audit(db, "export_patient_json", patient.id, actor)
    return json.dumps(patient_bundle(patient), indent=2, ensure_ascii=False, default=str)


def export_patient_pdf(
    patient: Patient, db: Optional["Database"] = None, actor: Union[User, str, None] = None
) -> bytes:
    """Identity, room history and the data recorded in each room."""
    s = _styles()
    story: list = [
        Paragraph("Dossier patient - Médecine nucléaire", s["title"]),
        _para(f"Généré le : {_generated_at()}", s["small"]),
        Spacer(1, 0.15 * inch),
        Paragraph("Identité", s["heading"]),
    ]

    ref = patient.referring_entity
    identity = [
        ["Champ", "Valeur"],
        ["ID", patient.id],
        ["Nom", patient.name],
        ["Date de naissance", patient.date_of_birth.strftime("%d/%m/%Y")],
        ["Âge", str(patient.age) if patient.age is not None else "—"],
        ["Adresse", patient.address or "—"],
        ["Téléphone", patient.phone or "—"],
        ["Email", patient.email or "—"],
        ["Référent", f"{ref.name} ({ref.type})" if ref and ref.name else "—"],
        ["Examen demandé", patient.requested_exam or "—"],
        ["Salle actuelle", f"{_room_name(patient.current_room_id)} ({patient.status_in_room.value})"],
    ]
    story.append(_table(identity, [2 * inch, 4.5 * inch], s["cell"]))

    story.append(Paragraph("Historique", s["heading"]))
    history = [["Salle", "Entrée", "Sortie", "Statut"]] + [
        [_room_name(e.room_id), _fmt_dt(e.entry_date), _fmt_dt(e.exit_date), e.status_message]
        for e in patient.history
    ]
    story.append(_table(history, [1.3 * inch, 1.2 * inch, 1.2 * inch, 2.8 * inch], s["cell"]))

    for room_id in sorted(patient.room_specific_data, key=lambda r: ROOM_ORDER.get(r, 99)):
        rows = _form_rows(patient.room_specific_data[room_id])
        if not rows:
            continue
        story.append(Paragraph(f"Données : {_room_name(room_id)}", s["heading"]))
        story.append(_table([["Champ", "Valeur"]] + rows, [2 * inch, 4.5 * inch], s["cell"]))

    if patient.documents:
        story.append(Paragraph("Documents", s["heading"]))
        docs = [["Nom", "Type", "Ajouté le"]] + [
            [d.name, d.file_type, _fmt_dt(d.upload_date)] for d in patient.documents
        ]
        story.append(_table(docs, [3 * inch, 1.7 * inch, 1.8 * inch], s["cell"]))

    story.append(Spacer(1, 0.3 * inch))
    story.append(_para(DISCLAIMER, s["small"]))

    pdf = _build(story)
    _audit(db, "export_patient_pdf", patient.id, actor)
    logger.info("Exported dossier PDF for %s (%d bytes)", patient.id, len(pdf))
    return pdf


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------


def export_stock_ledger_pdf(
    item: StockItem, db: Optional["Database"] = None, actor: Union[User, str, None] = None
) -> bytes:
    s = _styles()
    story: list = [
        Paragraph(f"Fiche de stock - {escape(item.designation)}", s["title"]),
        _para(
            f"Unité : {item.unit}    Ligne budgétaire : {item.budget_line or '—'}    "
            f"Stock actuel : {item.current_stock:g}    Prix unitaire : {item.unit_price:,.2f}",
            s["normal"],
        ),
        Spacer(1, 0.15 * inch),
    ]
    rows: list[list[Any]] = [["Date", "Type", "Qté", "P.U.", "Réf.", "Dest./Source", "Stock", "Valeur"]]
    for r in stock_ledger(item):
        m = r.movement
        rows.append([
            _fmt_dt(m.date),
            m.type.value,
            f"{m.quantity:g}",
            f"{m.unit_price:,.2f}",
            m.document_ref,
            m.destination_or_source or m.ordonnateur,
            f"{r.stock_after:g}",
            f"{r.value_after:,.2f}",
        ])
    widths = [1.3, 1.0, 0.6, 0.8, 1.2, 2.4, 0.7, 1.0]
    story.append(_table(rows, [w * inch for w in widths], s["cell"]))

    pdf = _build(story, landscape(A4))
    _audit(db, "export_stock_ledger_pdf", item.id, actor)
    return pdf


# ---------------------------------------------------------------------------
# Life sheets
# ---------------------------------------------------------------------------


def export_life_sheet_pdf(
    sheet: Union[LifeSheetLot, LifeSheetUnit],
    db: Optional["Database"] = None,
    actor: Union[User, str, None] = None,
) -> bytes:
    s = _styles()
    is_lot = isinstance(sheet, LifeSheetLot)
    title = "Fiche de vie (lot)" if is_lot else "Fiche de vie (unité)"
    story: list = [
        Paragraph(f"{title} - {escape(sheet.designation)}", s["title"]),
        _para(f"Code d'identification : {sheet.identification_code or '—'}", s["normal"]),
    ]
    if is_lot:
        story.append(
            _para(f"Valeur du lot : {sheet.lot_value:,.2f}    Valeur unitaire : {sheet.unit_value:,.2f}", s["normal"])
        )
    story.append(Spacer(1, 0.15 * inch))

    sheet_rows = life_sheet_lot_rows(sheet) if is_lot else life_sheet_unit_rows(sheet)
    header = ["Date", "Nature", "Entrée", "Sortie", "Unités" if is_lot else "Présent", "Valeur"]
    rows: list[list[Any]] = [header] + [
        [r.movement_date, r.nature, r.entry, r.exit, f"{r.units_balance:g}", f"{r.value_balance:,.2f}"]
        for r in sheet_rows
    ]
    story.append(_table(rows, [w * inch for w in (1.0, 1.8, 2.6, 2.6, 0.8, 1.2)], s["cell"]))

    pdf = _build(story, landscape(A4))
    _audit(db, "export_life_sheet_pdf", sheet.id, actor)
    return pdf
