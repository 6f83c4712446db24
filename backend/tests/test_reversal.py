from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from backend.app.db.models.core_types import MovementKind
from backend.app.db.models.models_v1 import Material, Movement
from backend.services.errors import ConflictError, InvariantViolationError, NotFoundError
from backend.services.inventory import current_quantity
from backend.services.receipts import CommitMetadata, commit_receipt, commit_transfer
from backend.services.reports import reconcile
from backend.services.reversal import reverse_movement

DAY_1 = date(2026, 3, 1)
DAY_2 = date(2026, 3, 2)


def _receipt(db, clock, kind, material_id, qty, *, workshop="OG", day=None):
    result = commit_receipt(
        db,
        kind,
        workshop,
        [{"material_id": material_id, "quantity": qty}],
        CommitMetadata(business_date=day),
        clock=clock,
    )
    return result.movement_ids[0]


@pytest.mark.parametrize("kind, after_commit", [(MovementKind.IN, "13.00"), (MovementKind.OUT, "7.00")])
def test_reversal_restores_stock_and_deletes_the_row(db_session, make_material, clock, notifier, events, kind, after_commit):
    mid = make_material(quantity="10")
    movement_id = _receipt(db_session, clock, kind, mid, 3)
    assert current_quantity(db_session, mid) == Decimal(after_commit)

    assert reverse_movement(db_session, movement_id, clock=clock, notifier=notifier) is True

    assert current_quantity(db_session, mid) == Decimal("10.00")
    assert db_session.get(Movement, movement_id) is None
    assert [e.action for e in events] == ["movement.reversed"]

    with pytest.raises(NotFoundError):
        reverse_movement(db_session, movement_id, clock=clock, notifier=notifier)


def test_transfer_reversal_restores_both_ends(db_session, make_material, clock):
    src = make_material(quantity="10")
    result = commit_transfer(db_session, "OG", "XD", [{"material_id": src, "quantity": 4}], clock=clock)

    reverse_movement(db_session, result.movement_ids[0], clock=clock)

    assert current_quantity(db_session, src) == Decimal("10.00")
    assert current_quantity(db_session, "VT/XD/00001") == Decimal("0.00")


def test_newer_movement_blocks_reversal(db_session, make_material, clock):
    """
    GIVEN
    - an IN on day 1 and an OUT on day 2 for the same material
    THEN
    - the IN cannot be reverted, the OUT (latest) can
    """
    mid = make_material(quantity="0")
    in_id = _receipt(db_session, clock, MovementKind.IN, mid, 5, day=DAY_1)
    out_id = _receipt(db_session, clock, MovementKind.OUT, mid, 2, day=DAY_2)

    with pytest.raises(ConflictError) as exc:
        reverse_movement(db_session, in_id, clock=clock)
    assert exc.value.details["newer_count"] == 1
    assert current_quantity(db_session, mid) == Decimal("3.00")

    reverse_movement(db_session, out_id, clock=clock)
    reverse_movement(db_session, in_id, clock=clock)
    assert current_quantity(db_session, mid) == Decimal("0.00")


def test_later_same_day_movement_blocks_reversal(db_session, make_material, clock):
    mid = make_material(quantity="0")
    in_id = _receipt(db_session, clock, MovementKind.IN, mid, 5, day=DAY_2)
    _receipt(db_session, clock, MovementKind.OUT, mid, 5, day=DAY_2)

    with pytest.raises(ConflictError):
        reverse_movement(db_session, in_id, clock=clock)

    assert current_quantity(db_session, mid) == Decimal("0.00")


def test_earlier_dated_movement_recorded_later_does_not_block(db_session, make_material, clock):
    mid = make_material(quantity="0")
    in_id = _receipt(db_session, clock, MovementKind.IN, mid, 5, day=DAY_2)
    _receipt(db_session, clock, MovementKind.IN, mid, 1, day=DAY_1)

    reverse_movement(db_session, in_id, clock=clock)

    assert current_quantity(db_session, mid) == Decimal("1.00")


def test_transfer_arrival_counts_as_newer_movement(db_session, make_material, clock):
    src = make_material(quantity="10")
    dest = make_material(workshop="XD", quantity="0")
    in_id = _receipt(db_session, clock, MovementKind.IN, dest, 1, workshop="XD", day=DAY_1)
    commit_transfer(db_session, "OG", "XD", [{"material_id": src, "quantity": 2}], CommitMetadata(business_date=DAY_2), clock=clock)

    with pytest.raises(ConflictError):
        reverse_movement(db_session, in_id, clock=clock)


def test_reversal_that_would_go_negative_is_refused(db_session, make_material, clock):
    """
    GIVEN
    - a transfer OG -> XD of 3
    - the 3 units then issued at XD
    THEN
    - reverting the transfer would take 3 from an empty XD material: refused, nothing changed
    """
    src = make_material(quantity="10")
    transfer = commit_transfer(db_session, "OG", "XD", [{"material_id": src, "quantity": 3}], CommitMetadata(business_date=DAY_1), clock=clock)
    dest = db_session.get(Movement, transfer.movement_ids[0]).target_material_id

    # only the destination moves after the transfer
    _receipt(db_session, clock, MovementKind.OUT, dest, 3, workshop="XD", day=DAY_2)

    with pytest.raises(InvariantViolationError):
        reverse_movement(db_session, transfer.movement_ids[0], clock=clock)

    assert current_quantity(db_session, src) == Decimal("7.00")
    assert current_quantity(db_session, dest) == Decimal("0.00")
    assert db_session.get(Movement, transfer.movement_ids[0]) is not None


def test_missing_material_makes_reversal_fail(db_session, make_material, clock):
    mid = make_material(quantity="0")
    movement_id = _receipt(db_session, clock, MovementKind.IN, mid, 2)
    db_session.execute(update(Movement).values(material_id="VT/OG/GONE", material_name="gone"))
    db_session.commit()

    with pytest.raises(NotFoundError):
        reverse_movement(db_session, movement_id, clock=clock)

    assert db_session.get(Material, mid).quantity == Decimal("2.00")


def test_same_movement_reverted_from_two_sessions_only_once(session_factory, make_material, clock):
    """
    GIVEN
    - an IN of 5 on a material that started at 10
    - two sessions that both loaded the movement before either reverted it
    THEN
    - the first reversal brings stock back to 10
    - the second one finds the movement gone: NotFound, stock stays at 10
    """
    mid = make_material(quantity="10")

    # ---------- ARRANGE ----------
    first = session_factory()
    second = session_factory()
    try:
        movement_id = _receipt(first, clock, MovementKind.IN, mid, 5)
        assert first.get(Movement, movement_id) is not None
        assert second.get(Movement, movement_id) is not None

        # ---------- ACT ----------
        reverse_movement(first, movement_id, clock=clock)

        with pytest.raises(NotFoundError):
            reverse_movement(second, movement_id, clock=clock)

        # ---------- ASSERT ----------
        assert current_quantity(second, mid) == Decimal("10.00")
        assert reconcile(second) == []
    finally:
        first.close()
        second.close()
