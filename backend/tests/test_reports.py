from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from backend.app.db.models.core_types import MovementKind
from backend.app.db.models.models_v1 import Material
from backend.services.errors import ValidationError
from backend.services.receipts import CommitMetadata, commit_receipt, commit_transfer
from backend.services.reports import dashboard_summary, list_movements, reconcile, stock_report

D1 = date(2026, 3, 1)
D2 = date(2026, 3, 2)
D3 = date(2026, 3, 3)
D4 = date(2026, 3, 4)


def _receipt(db, clock, kind, material_id, qty, day, workshop="OG"):
    return commit_receipt(
        db,
        kind,
        workshop,
        [{"material_id": material_id, "quantity": qty}],
        CommitMetadata(business_date=day),
        clock=clock,
    )


def _row(rows, material_id):
    return next(r for r in rows if r.material_id == material_id)


def test_period_report_walks_back_from_current_stock(db_session, make_material, clock):
    """
    GIVEN
    - opening stock 10, IN 5 on D1, OUT 3 on D2, IN 2 on D4 (current 14)
    THEN
    - for [D2, D3]: opening 15, in 0, out 3, closing 12
    """
    mid = make_material(quantity="10")
    _receipt(db_session, clock, MovementKind.IN, mid, 5, D1)
    _receipt(db_session, clock, MovementKind.OUT, mid, 3, D2)
    _receipt(db_session, clock, MovementKind.IN, mid, 2, D4)

    row = _row(stock_report(db_session, D2, D3), mid)

    assert row.quantity == Decimal("14.00")
    assert row.opening_stock == Decimal("15.00")
    assert row.period_in == Decimal("0.00")
    assert row.period_out == Decimal("3.00")
    assert row.closing_stock == Decimal("12.00")
    assert row.opening_stock + row.period_in - row.period_out == row.closing_stock


def test_period_report_counts_transfer_legs_on_both_materials(db_session, make_material, clock):
    src = make_material(quantity="10")
    commit_transfer(db_session, "OG", "XD", [{"material_id": src, "quantity": 4}], CommitMetadata(business_date=D2), clock=clock)

    rows = stock_report(db_session, D1, D3)
    out_row = _row(rows, src)
    in_row = _row(rows, "VT/XD/00001")

    assert (out_row.opening_stock, out_row.period_out, out_row.closing_stock) == (Decimal("10.00"), Decimal("4.00"), Decimal("6.00"))
    assert (in_row.opening_stock, in_row.period_in, in_row.closing_stock) == (Decimal("0.00"), Decimal("4.00"), Decimal("4.00"))

    assert [r.material_id for r in stock_report(db_session, D1, D3, workshop="XD")] == ["VT/XD/00001"]


def test_period_report_rejects_inverted_range(db_session):
    with pytest.raises(ValidationError):
        stock_report(db_session, D3, D1)


def test_history_is_newest_first_and_filterable(db_session, make_material, clock):
    mid = make_material(quantity="10")
    first = _receipt(db_session, clock, MovementKind.IN, mid, 1, D1)
    second = _receipt(db_session, clock, MovementKind.OUT, mid, 1, D3)
    third = _receipt(db_session, clock, MovementKind.IN, mid, 1, D3)

    rows = list_movements(db_session, material_id=mid)
    assert [r.receipt_id for r in rows] == [third.receipt_id, second.receipt_id, first.receipt_id]

    assert [r.receipt_id for r in list_movements(db_session, receipt_id=second.receipt_id)] == [second.receipt_id]
    assert len(list_movements(db_session, limit=2)) == 2


def test_reconcile_is_clean_after_ledger_operations(db_session, make_material, clock):
    mid = make_material(quantity="10")
    _receipt(db_session, clock, MovementKind.IN, mid, "2.25", D1)
    _receipt(db_session, clock, MovementKind.OUT, mid, "1.1", D2)
    commit_transfer(db_session, "OG", "XD", [{"material_id": mid, "quantity": 3}], clock=clock)

    assert reconcile(db_session) == []


def test_reconcile_reports_drift(db_session, make_material, clock):
    mid = make_material(quantity="10")
    other = make_material(name="Nut M8", quantity="1")
    _receipt(db_session, clock, MovementKind.IN, mid, 5, D1)

    # quantity edited behind the ledger's back
    db_session.execute(update(Material).where(Material.id == mid).values(quantity=Decimal("13")))
    db_session.commit()

    drifts = reconcile(db_session)

    assert len(drifts) == 1
    assert drifts[0].material_id == mid
    assert drifts[0].cached_quantity == Decimal("13.00")
    assert drifts[0].ledger_quantity == Decimal("15.00")
    assert drifts[0].difference == Decimal("-2.00")
    assert reconcile(db_session, other) == []


def test_dashboard_summary(db_session, make_material, clock):
    low = make_material(name="Bolt M8", quantity="2", min_threshold=Decimal("5"))
    make_material(name="Steel pipe", quantity="50", min_threshold=Decimal("5"))
    make_material(name="Cable", workshop="XD", quantity="5", min_threshold=Decimal("5"))
    today = clock.today()
    _receipt(db_session, clock, MovementKind.IN, low, 3, today)
    _receipt(db_session, clock, MovementKind.OUT, low, 1, today)
    _receipt(db_session, clock, MovementKind.IN, low, 7, today - timedelta(days=2))

    summary = dashboard_summary(db_session, today)

    assert summary["total_items"] == 3
    # Bolt M8 is back above its threshold: only Cable (5 <= 5) is low
    assert summary["low_stock_count"] == 1
    assert [m.name for m in summary["low_stock_items"]] == ["Cable"]
    assert summary["today_in"] == Decimal("3.00")
    assert summary["today_out"] == Decimal("1.00")
    assert summary["workshops"] == [
        {"workshop": "OG", "total": 2, "quantity": Decimal("61.00")},
        {"workshop": "XD", "total": 1, "quantity": Decimal("5.00")},
    ]
    assert len(summary["activity"]) == 7
    assert summary["activity"][-1] == {"date": today, "in": Decimal("3.00"), "out": Decimal("1.00")}
    assert summary["activity"][-3] == {"date": today - timedelta(days=2), "in": Decimal("7.00"), "out": Decimal("0.00")}
