"""
pipelines/seed.py

First-run content for an empty data directory: roles and the admin
account, the exam catalogue, report templates, and a demo department
(patients spread across every room, hot-lab lots, inventory).

Demo patients are generated through the real intake / advance functions,
relative to the current time, so the dashboards show activity whenever
the app is started.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from pipelines.patrimony import recompute_stock
from pipelines.periods import to_local_naive
from pipelines.schemas import (
    Asset,
    ConfigurableField,
    ExamConfiguration,
    ExamFields,
    LifeSheetLot,
    LifeSheetLotMovement,
    LifeSheetUnit,
    LifeSheetUnitMovement,
    MovementType,
    Patient,
    PreparationLog,
    ReportTemplate,
    Role,
    RoomId,
    StockItem,
    StockMovement,
    TracerLot,
    User,
    utcnow,
)
from pipelines.workflow import advance, create_patient, next_patient_id
from storage.accounts import INITIAL_ROLES, default_admin

logger = logging.getLogger(__name__)

OSSEUSE = "Scintigraphie Osseuse"
PARATHYROID = "Scintigraphie Parathyroïdienne"
DMSA = "Scintigraphie Rénale DMSA"
DTPA = "Scintigraphie Rénale DTPA/MAG3"
THYROID = "Scintigraphie Thyroïdienne"

SCINTIGRAPHY_EXAMS: tuple[str, ...] = (OSSEUSE, PARATHYROID, DMSA, DTPA, THYROID)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def initial_roles() -> list[Role]:
    return [r.model_copy(deep=True) for r in INITIAL_ROLES]


def initial_users() -> list[User]:
    return [default_admin()]


# ---------------------------------------------------------------------------
# Exam catalogue
# ---------------------------------------------------------------------------


def _f(id: str, label: str, type: str = "text", options: Optional[list[str]] = None) -> ConfigurableField:
    return ConfigurableField(id=id, label=label, type=type, options=options or [])


def initial_exam_configs() -> list[ExamConfiguration]:
    return [
        ExamConfiguration(
            id="exam_scinti_osseuse",
            name=OSSEUSE,
            form_fields=ExamFields(
                request=[
                    _f("f_indic", "Indications", "checkbox",
                       ["Bilan d'extension initial", "Bilan de récidive", "Bilan comparatif", "Évaluation"]),
                    _f("f_indic_autres", "Autres indications", "textarea"),
                    _f("f_atcd", "Antécédents médicaux", "textarea"),
                    _f("f_hist_maladie", "Histoire de la maladie", "textarea"),
                ],
                consultation=[
                    _f("f_cons_poids", "Poids (kg)"),
                    _f("f_cons_taille", "Taille (cm)"),
                    _f("f_cons_atcd_msk", "Antécédents MSK pertinents", "textarea"),
                ],
                report=[
                    _f("f_cr_technique", "Technique et Activité"),
                    _f("f_cr_motif", "Motif de l'examen", "textarea"),
                ],
            ),
        ),
        ExamConfiguration(
            id="exam_scinti_parathyroid",
            name=PARATHYROID,
            form_fields=ExamFields(
                request=[
                    _f("f_indic_para", "Indications", "checkbox",
                       ["Hyperparathyroïdie primaire", "Persistance / Récidive post-op"]),
                    _f("f_atcd_para", "Antécédents chirurgicaux (cervicale)", "textarea"),
                ],
                consultation=[_f("f_cons_pth", "Taux de PTH"), _f("f_cons_calcemie", "Calcémie")],
            ),
        ),
        ExamConfiguration(
            id="exam_scinti_renale_dmsa",
            name=DMSA,
            form_fields=ExamFields(
                request=[
                    _f("f_indic_dmsa", "Indications", "checkbox",
                       ["Recherche de cicatrice post PNA", "Évaluation fonction relative", "Anomalie morphologique"]),
                    _f("f_atcd_dmsa", "Antécédents urologiques", "textarea"),
                ],
            ),
        ),
        ExamConfiguration(
            id="exam_scinti_renale_dtpa",
            name=DTPA,
            form_fields=ExamFields(
                request=[
                    _f("f_indic_dtpa", "Indications", "checkbox",
                       ["Recherche de syndrome obstructif", "Évaluation fonction relative", "Test au captopril"]),
                    _f("f_atcd_dtpa", "Antécédents urologiques", "textarea"),
                ],
            ),
        ),
        ExamConfiguration(
            id="exam_scinti_thyroid",
            name=THYROID,
            form_fields=ExamFields(
                request=[
                    _f("f_indic_thyro", "Indications", "checkbox",
                       ["Caractérisation de nodule", "Bilan d'hyperthyroïdie", "Recherche d'ectopie"]),
                    _f("f_traitement_thyro", "Traitements en cours (ATS, hormones...)", "textarea"),
                ],
                consultation=[
                    _f("f_cons_tsh", "TSH"),
                    _f("f_cons_t4l", "T4L"),
                    _f("f_cons_palpation", "Palpation cervicale", "textarea"),
                ],
            ),
        ),
    ]


_BONE_TECHNIQUE = (
    "<p><b>Technique :</b></p>"
    "<p>Injection intraveineuse de 740 MBq de 99mTc-HMDP. Acquisition d'images corps entier "
    "et de clichés statiques 3 heures après l'injection.</p>"
)


def initial_report_templates() -> list[ReportTemplate]:
    return [
        ReportTemplate(
            id="template_so_normal_1",
            exam_name=OSSEUSE,
            name="Scintigraphie Osseuse - Normale",
            report_content=_BONE_TECHNIQUE
            + "<p><b>Résultats :</b></p>"
            "<p>L'examen met en évidence une distribution homogène du traceur sur l'ensemble du squelette, "
            "sans foyer d'hyperfixation pathologique suspect.</p>"
            "<ul><li>Fixation symétrique des ceintures scapulaire et pelvienne.</li>"
            "<li>Rachis sans anomalie de fixation.</li>"
            "<li>Articulations périphériques présentant une fixation modérée et symétrique, "
            "en rapport avec des remaniements dégénératifs d'arthrose.</li></ul>"
            "<p>Visualisation normale des reins et de la vessie (élimination urinaire).</p>",
            conclusion_content="<p>Absence d'anomalie de fixation osseuse scintigraphique suspecte "
            "d'une localisation secondaire.</p>",
        ),
        ReportTemplate(
            id="template_so_meta_1",
            exam_name=OSSEUSE,
            name="Scintigraphie Osseuse - Métastases Multiples",
            report_content=_BONE_TECHNIQUE
            + "<p><b>Résultats :</b></p>"
            "<p>L'examen met en évidence de multiples foyers d'hyperfixation pathologique intense, "
            "de topographie non systématisée, disséminés sur l'ensemble du squelette, notamment au niveau :</p>"
            "<ul><li>Du rachis dorsal et lombaire.</li><li>Du bassin (ilium droit, sacrum).</li>"
            "<li>Des côtes (arcs postérieurs droits).</li><li>Du fémur proximal gauche.</li></ul>"
            "<p>Ces lésions sont très suspectes de localisations secondaires osseuses.</p>",
            conclusion_content="<p>Multiples foyers d'hyperfixation pathologique disséminés sur le squelette, "
            "fortement évocateurs de localisations secondaires multiples.</p>",
        ),
        ReportTemplate(
            id="template_st_normal_1",
            exam_name=THYROID,
            name="Scintigraphie Thyroïdienne - Normale",
            report_content="<p><b>Technique :</b></p>"
            "<p>Injection intraveineuse de 185 MBq de 99mTc-Pertechnétate. Acquisition d'images "
            "statiques 20 minutes après l'injection.</p>"
            "<p><b>Résultats :</b></p>"
            "<p>La thyroïde est en position normale. La fixation du traceur est homogène sur l'ensemble "
            "des deux lobes, sans nodule hypo ou hyperfixant individualisable.</p>"
            "<p>Les contours sont réguliers, la taille de la glande est estimée normale.</p>",
            conclusion_content="<p>Scintigraphie thyroïdienne d'aspect normal.</p>",
        ),
    ]


# ---------------------------------------------------------------------------
# Demo patients
# ---------------------------------------------------------------------------

# name, date of birth, requested exam, last room completed (None: intake only)
_DEMO_PATIENTS: tuple[tuple[str, str, Optional[str], Optional[RoomId]], ...] = (
    ("Jean Dupont", "1965-08-15", OSSEUSE, RoomId.CONSULTATION),
    ("Marie Curie", "1980-03-22", THYROID, RoomId.INJECTION),
    ("Pierre Bernard", "1955-11-10", None, None),
    ("Luc Martin", "1978-05-20", None, None),
    ("Sophie Bernard", "1992-02-14", OSSEUSE, None),
    ("Thomas David", "1981-04-11", PARATHYROID, RoomId.APPOINTMENT),
    ("Chloé Bertrand", "1994-10-02", DMSA, RoomId.APPOINTMENT),
    ("Valentin Richard", "1976-10-10", OSSEUSE, RoomId.EXAMINATION),
    ("Inès Lemoine", "1960-01-01", DTPA, RoomId.REPORT),
    ("Louise Garnier", "1955-04-12", OSSEUSE, RoomId.RETRAIT_CR_SORTIE),
    ("Adam Marchand", "1986-07-20", THYROID, RoomId.ARCHIVE),
)

_WALK = (
    RoomId.APPOINTMENT,
    RoomId.CONSULTATION,
    RoomId.INJECTION,
    RoomId.EXAMINATION,
    RoomId.REPORT,
    RoomId.RETRAIT_CR_SORTIE,
    RoomId.ARCHIVE,
)

_PRODUCT_FOR_EXAM = {
    OSSEUSE: ("99mTc-MDP", 740.0),
    THYROID: ("99mTc-Pertechnetate", 185.0),
    PARATHYROID: ("99mTc-MIBI", 740.0),
    DMSA: ("99mTc-DMSA", 111.0),
    DTPA: ("99mTc-MAG3", 100.0),
}


def _demo_form(room_id: RoomId, exam: str, slot: time, today: date) -> dict[str, Any]:
    product, activity = _PRODUCT_FOR_EXAM.get(exam, ("99mTc", 370.0))
    if room_id == RoomId.APPOINTMENT:
        return {"date_rdv": today, "heure_rdv": slot, "consignes_specifiques": "Venir à jeun."}
    if room_id == RoomId.CONSULTATION:
        return {"notes": "Patient apte pour l'examen."}
    if room_id == RoomId.INJECTION:
        injected_at = (datetime.combine(today, slot) + timedelta(minutes=15)).time()
        return {
            "produit_injecte": product,
            "heure_injection": injected_at,
            "injected_activity": activity,
            "activity_unit": "MBq",
            "technician": "Tech Principal",
            "injection_point": "Pli du coude gauche",
        }
    if room_id == RoomId.EXAMINATION:
        return {"qualite_images": "Bonne", "parametres_examen": "Corps entier, 15 cm/min"}
    if room_id == RoomId.REPORT:
        return {"texte_compte_rendu": "<p>Examen sans particularité.</p>", "conclusion_cr": "<p>Normal.</p>"}
    if room_id == RoomId.RETRAIT_CR_SORTIE:
        return {"date_retrait": today, "heure_retrait": time(16, 0), "retire_par": "Le patient"}
    return {}


def demo_patients(now: Optional[datetime] = None) -> list[Patient]:
    """
    Build the demo patient list. Each patient is created some hours/days
    before *now* and walked forward with 20 minutes between rooms; the
    total time span never reaches past *now*.
    """
    now = now or utcnow()
    today = to_local_naive(now).date()
    step = timedelta(minutes=20)
    patients: list[Patient] = []

    for i, (name, dob, exam, last_room) in enumerate(_DEMO_PATIENTS):
        walked = _WALK[: _WALK.index(last_room) + 1] if last_room is not None else ()
        created = now - step * (len(walked) + 1) - timedelta(hours=len(_DEMO_PATIENTS) - i)
        data = {"name": name, "date_of_birth": dob}
        if i % 3 == 0:
            data["referring_entity"] = {"type": "doctor", "name": "Dr. Benali", "contact_number": "0550 12 34 56"}

        patient = create_patient(
            data,
            {"requested_exam": exam} if exam else None,
            patient_id=next_patient_id(p.id for p in patients),
            now=created,
        )
        slot = time(8 + i % 10, 30 if i % 2 else 0)
        at = created
        for room_id in walked:
            at += step
            advance(patient, room_id, _demo_form(room_id, exam or "", slot, today), now=at)
        patients.append(patient)

    logger.info("Generated %d demo patients", len(patients))
    return patients


# ---------------------------------------------------------------------------
# Hot lab
# ---------------------------------------------------------------------------


def initial_lots(now: Optional[datetime] = None) -> list[TracerLot]:
    now = now or utcnow()
    today = to_local_naive(now).date()
    return [
        TracerLot(
            id="lot_fdg_1",
            product_id="prod_f18_fdg",
            lot_number="FDG-202407A",
            expiry_date=today + timedelta(days=1),
            calibration_date_time=now - timedelta(hours=2),
            initial_activity=5000,
            unit="MBq",
            received_date=today,
            quantity_received=1,
        ),
        TracerLot(
            id="lot_mdp_1",
            product_id="prod_tc99m_mdp",
            lot_number="MDP-202407B",
            expiry_date=today + timedelta(days=30),
            unit="MBq",
            received_date=today - timedelta(days=2),
            quantity_received=5,
        ),
        TracerLot(
            id="lot_tc_1",
            product_id="prod_tc99m_pertech",
            lot_number="TC-ELU-0412",
            expiry_date=today + timedelta(days=6),
            calibration_date_time=now - timedelta(hours=30),
            initial_activity=20,
            unit="GBq",
            received_date=today - timedelta(days=1),
            quantity_received=1,
        ),
    ]


def initial_preparations(now: Optional[datetime] = None) -> list[PreparationLog]:
    now = now or utcnow()
    return [
        PreparationLog(
            id="prep_1",
            tracer_lot_id="lot_fdg_1",
            patient_id="PAT001",
            exam_type=OSSEUSE,
            activity_prepared=370,
            unit="MBq",
            preparation_date_time=now - timedelta(hours=1),
            prepared_by="Tech Principal",
        ),
        PreparationLog(
            id="prep_2",
            tracer_lot_id="lot_tc_1",
            patient_id="PAT002",
            exam_type=THYROID,
            activity_prepared=185,
            unit="MBq",
            preparation_date_time=now - timedelta(minutes=40),
            prepared_by="Tech Principal",
        ),
    ]


# ---------------------------------------------------------------------------
# Patrimony
# ---------------------------------------------------------------------------


def initial_assets() -> list[Asset]:
    return [
        Asset(id="ASSET001", family="Informatique", designation="Switch SCISCO SG350-28P",
              serial_number="DNI241806TQ", quantity=1, acquisition_year=2022, acquisition_cost=500),
        Asset(id="ASSET002", family="Mobilier", designation="Fauteuil de bureau", quantity=5,
              acquisition_year=2015, acquisition_cost=150),
        Asset(id="ASSET003", family="Climatisation", designation="Climatiseur 3CV NASCO", quantity=1,
              acquisition_year=2015, is_functional=False, current_action="En réparation"),
        Asset(id="ASSET004", family="Groupe électrogène", designation="Groupe électrogène CUMMINS 44KVA",
              serial_number="C44D5C141204362", quantity=1, acquisition_year=2015),
    ]


def _mvt(id: str, when: str, type: MovementType, qty: float, price: float, ref: str, **kw: str) -> StockMovement:
    return StockMovement(id=id, date=datetime.fromisoformat(when), type=type, quantity=qty,
                         unit_price=price, document_ref=ref, **kw)


def initial_stock_items() -> list[StockItem]:
    items = [
        StockItem(
            id="STOCK01", designation="Ramette Papier A4", unit="ramette", unit_price=5,
            movements=[
                _mvt("MVT01", "2024-07-01T10:00:00+00:00", MovementType.ENTRY, 100, 5, "BE-2024-001",
                     ordonnateur="Admin Initial"),
                _mvt("MVT02", "2024-07-15T14:00:00+00:00", MovementType.EXIT, 50, 5, "BC-2024-015",
                     destination_or_source="Service Radiologie"),
            ],
        ),
        StockItem(
            id="STOCK02", designation="Cartouche encre Noire HP 953XL", unit="pièce", unit_price=45,
            movements=[
                _mvt("MVT03", "2024-06-20T09:00:00+00:00", MovementType.ENTRY, 20, 45, "BE-2024-001",
                     ordonnateur="Admin Initial"),
                _mvt("MVT04", "2024-07-20T11:00:00+00:00", MovementType.EXIT, 10, 45, "BC-2024-018",
                     destination_or_source="Secrétariat"),
            ],
        ),
        StockItem(
            id="STOCK03", designation="Seringue 5ml", unit="boîte", unit_price=15,
            movements=[
                _mvt("MVT05", "2024-07-10T09:00:00+00:00", MovementType.ENTRY, 20, 15, "BE-2024-002",
                     ordonnateur="Admin Initial"),
            ],
        ),
    ]
    for item in items:
        recompute_stock(item)
    return items


def initial_life_sheet_lots() -> list[LifeSheetLot]:
    return [
        LifeSheetLot(
            id="ASSET002",
            designation="Fauteuil de bureau",
            identification_code="MOB-2015-002",
            lot_value=750,
            unit_value=150,
            movements=[
                LifeSheetLotMovement(movement_date=date(2015, 3, 2), nature="Acquisition",
                                     entry_units=5, entry_amount=750, entry_destination="Secrétariat"),
            ],
        )
    ]


def initial_life_sheet_units() -> list[LifeSheetUnit]:
    return [
        LifeSheetUnit(
            id="ASSET001",
            designation="Switch SCISCO SG350-28P",
            identification_code="DNI241806TQ",
            movements=[
                LifeSheetUnitMovement(movement_date=date(2022, 5, 10), nature="Acquisition",
                                      entry_amount=500, entry_state="Bon", entry_destination="Salle serveur"),
            ],
        )
    ]
