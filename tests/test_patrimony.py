from datetime import date, datetime, timedelta, timezone

import pytest

from pipelines.errors import InsufficientStockError, NotFoundError, ReferentialIntegrityError, ValidationError
from pipelines.patrimony import (
    add_lot_movement,
    compute_stock,
    life_sheet_lot_rows,
    life_sheet_unit_rows,
    patrimony_summary,
    record_entry,
    record_exit,
    record_inventory,
    stock_drift,
    stock_ledger,
)
from pipelines.schemas import (
    Asset,
    LifeSheetLot,
    LifeSheetLotMovement,
    LifeSheetUnit,
    LifeSheetUnitMovement,
    MovementType,
    StockItem,
)

T0 = datetime(2024, 7, 1, 10, tzinfo=timezone.utc)


@pytest.fixture
def item() -> StockItem:
    return StockItem(id="S1", designation="Gants nitrile", unit="boîte")


def test_stock_is_derived_from_ledger(item):
    record_entry(item, 10, 4.5, when=T0)
    record_exit(item, 3, when=T0 + timedelta(days=1))
    record_exit(item, 2, kind=MovementType.CONSUMPTION, when=T0 + timedelta(days=2))
    assert item.current_stock == 5
    assert compute_stock(item.movements) == 5
    assert stock_drift(item) == 0
    assert item.unit_price == 4.5


def test_inventory_sets_an_absolute_count(item):
    record_entry(item, 10, 1, when=T0)
    record_inventory(item, 7, when=T0 + timedelta(days=1))
    record_entry(item, 2, 1, when=T0 + timedelta(days=2))
    assert item.current_stock == 9
    assert item.movements[1].document_ref.startswith("INV-")


def test_ledger_is_sorted_by_date(item):
    record_entry(item, 10, 2, when=T0 + timedelta(days=5))
    record_entry(item, 4, 3, when=T0)
    rows = stock_ledger(item)
    assert [r.stock_after for r in rows] == [4, 14]
    assert rows[-1].unit_price == 2
    assert rows[-1].value_after == 28


def test_exit_beyond_stock_is_refused(item):
    record_entry(item, 2, 1, when=T0)
    with pytest.raises(InsufficientStockError):
        record_exit(item, 3)
    assert len(item.movements) == 1
    assert item.current_stock == 2


def test_movement_validation(item):
    with pytest.raises(ValidationError):
        record_entry(item, 0, 1)
    with pytest.raises(ValidationError):
        record_entry(item, 1, -1)
    with pytest.raises(ValidationError):
        record_inventory(item, -1)
    with pytest.raises(ValueError):
        record_exit(item, 1, kind=MovementType.ENTRY)


def test_generated_document_refs(item):
    entry = record_entry(item, 1, 1, when=T0)
    out = record_exit(item, 1, when=T0)
    assert entry.document_ref.startswith("BE-")
    assert out.document_ref.startswith("BS-")
    assert record_entry(item, 1, 1, document_ref="BE-42").document_ref == "BE-42"


def test_drift_reports_a_stale_stored_stock(item):
    record_entry(item, 5, 1, when=T0)
    item.current_stock = 8
    assert stock_drift(item) == 3


def test_demo_summary(demo_db):
    summary = patrimony_summary(demo_db.assets.all(), demo_db.stock_items.all())
    assert summary.asset_count == 4
    assert summary.non_functional_assets == 1
    assert summary.total_asset_value == 1250
    assert summary.total_stock_value == 1000
    assert [i.id for i in summary.low_stock_items] == ["STOCK02"]
    assert summary.assets_by_family["Mobilier"] == 1


def test_database_stock_operations(demo_db, admin):
    demo_db.stock_entry("STOCK03", 5, 16, actor=admin, source="Pharmacie")
    demo_db.stock_exit("STOCK03", 10, kind=MovementType.CONSUMPTION, actor=admin, destination="Injection")
    item = demo_db.stock_items.get("STOCK03")
    assert item.current_stock == 15
    assert item.unit_price == 16
    assert demo_db.audit_log(1)[0].action == "stock_exit"

    with pytest.raises(InsufficientStockError):
        demo_db.stock_exit("STOCK03", 100)
    assert demo_db.stock_items.get("STOCK03").current_stock == 15

    demo_db.stock_inventory("STOCK03", 12)
    assert demo_db.stock_items.get("STOCK03").current_stock == 12


def test_editing_an_item_keeps_its_ledger(demo_db):
    stored = demo_db.stock_items.get("STOCK01")
    demo_db.save_stock_item(stored.model_copy(update={"designation": "Papier A4", "movements": []}))
    item = demo_db.stock_items.get("STOCK01")
    assert item.designation == "Papier A4"
    assert len(item.movements) == 2
    assert item.current_stock == 50


def test_item_with_movements_cannot_be_deleted(demo_db):
    with pytest.raises(ReferentialIntegrityError):
        demo_db.delete_stock_item("STOCK01")
    fresh = demo_db.save_stock_item(StockItem(designation="Compresses"))
    demo_db.delete_stock_item(fresh.id)
    with pytest.raises(NotFoundError):
        demo_db.stock_items.get(fresh.id)


def test_asset_validation(db):
    with pytest.raises(ValidationError) as exc:
        db.save_asset(Asset(family="", designation="", quantity=0, acquisition_cost=-1))
    assert len(exc.value.messages) == 4
    saved = db.save_asset(Asset(family="Imagerie", designation="Gamma caméra"))
    assert db.assets.get(saved.id).designation == "Gamma caméra"


def test_lot_life_sheet_balances():
    sheet = LifeSheetLot(id="A", designation="Chaises", movements=[
        LifeSheetLotMovement(movement_date=date(2020, 1, 1), nature="Acquisition", entry_units=6, entry_amount=600),
    ])
    add_lot_movement(sheet, LifeSheetLotMovement(movement_date=date(2021, 1, 1), nature="Réforme",
                                                 exit_units=2, exit_amount=200))
    rows = life_sheet_lot_rows(sheet)
    assert [(r.units_balance, r.value_balance) for r in rows] == [(6, 600), (4, 400)]
    assert rows[0].entry == "6 u / 600.00"

    with pytest.raises(ValidationError):
        add_lot_movement(sheet, LifeSheetLotMovement(movement_date=date(2022, 1, 1), nature="Sortie", exit_units=5))


def test_unit_life_sheet_presence():
    sheet = LifeSheetUnit(id="B", designation="Switch", movements=[
        LifeSheetUnitMovement(movement_date=date(2022, 5, 10), nature="Acquisition", entry_amount=500,
                              entry_state="Bon"),
        LifeSheetUnitMovement(movement_date=date(2024, 1, 3), nature="Vente", exit_amount=500, exit_state="Vendu"),
    ])
    rows = life_sheet_unit_rows(sheet)
    assert [r.units_balance for r in rows] == [1, 0]
    assert rows[0].entry == "500.00 / Bon"


def test_database_life_sheets(demo_db):
    sheet = demo_db.add_life_sheet_lot_movement(
        "ASSET002",
        LifeSheetLotMovement(movement_date=date(2020, 1, 1), nature="Transfert", exit_units=1, exit_amount=150),
    )
    assert life_sheet_lot_rows(sheet)[-1].units_balance == 4
    demo_db.delete_life_sheet("ASSET002")
    demo_db.delete_life_sheet("ASSET001")
    assert len(demo_db.life_sheet_lots) == 0
    assert len(demo_db.life_sheet_units) == 0
