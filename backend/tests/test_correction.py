from decimal import Decimal

import pytest

from backend.app.db.models.core_types import MovementKind
from backend.app.db.models.models_v1 import Movement
from backend.services.correction import correct_movement_quantity
from backend.services.errors import InvariantViolationError, NotFoundError, ValidationError
from backend.services.inventory import current_quantity
from backend.services.receipts import commit_receipt, commit_transfer
from backend.services.reports import reconcile
from backend.services.reversal import reverse_movement


def _receipt(db, clock, kind, material_id, qty):
    return commit_receipt(db, kind, "OG", [{"material_id": material_id, "quantity": qty}], clock=clock).movement_ids[0]


def test_in_correction_pushes_the_delta(db_session, make_material, clock, notifier, events):
    mid = make_material(quantity="2")
    movement_id = _receipt(db_session, clock, MovementKind.IN, mid, 5)

    result = correct_movement_quantity(db_session, movement_id, "8", clock=clock, notifier=notifier)

    assert result.changed
    assert result.old_quantity == Decimal("5.00")
    assert result.new_quantity == Decimal("8.00")
    assert current_quantity(db_session, mid) == Decimal("10.00")
    assert db_session.get(Movement, movement_id).quantity == Decimal("8.00")
    assert [e.action for e in events] == ["movement.corrected"]


def test_out_correction_moves_stock_the_other_way(db_session, make_material, clock):
    mid = make_material(quantity="10")
    movement_id = _receipt(db_session, clock, MovementKind.OUT, mid, 4)

    correct_movement_quantity(db_session, movement_id, "1.5", clock=clock)

    assert current_quantity(db_session, mid) == Decimal("8.50")


def test_transfer_correction_adjusts_both_ends(db_session, make_material, clock):
    src = make_material(quantity="10")
    movement_id = commit_transfer(db_session, "OG", "XD", [{"material_id": src, "quantity": 4}], clock=clock).movement_ids[0]

    correct_movement_quantity(db_session, movement_id, 6, clock=clock)

    assert current_quantity(db_session, src) == Decimal("4.00")
    assert current_quantity(db_session, "VT/XD/00001") == Decimal("6.00")


def test_correction_that_would_go_negative_changes_nothing(db_session, make_material, clock, notifier, events):
    mid = make_material(quantity="5")
    movement_id = _receipt(db_session, clock, MovementKind.OUT, mid, 4)

    with pytest.raises(InvariantViolationError):
        correct_movement_quantity(db_session, movement_id, 6, clock=clock, notifier=notifier)

    assert current_quantity(db_session, mid) == Decimal("1.00")
    assert db_session.get(Movement, movement_id).quantity == Decimal("4.00")
    assert events == []


def test_same_quantity_is_a_successful_no_op(db_session, make_material, clock, notifier, events):
    mid = make_material(quantity="5")
    movement_id = _receipt(db_session, clock, MovementKind.IN, mid, 3)

    result = correct_movement_quantity(db_session, movement_id, "3.001", clock=clock, notifier=notifier)

    assert not result.changed
    assert current_quantity(db_session, mid) == Decimal("8.00")
    assert events == []


@pytest.mark.parametrize("bad", [0, "-1", "0.004", None, "abc"])
def test_new_quantity_must_be_positive(db_session, make_material, clock, bad):
    mid = make_material(quantity="5")
    movement_id = _receipt(db_session, clock, MovementKind.IN, mid, 3)

    with pytest.raises(ValidationError):
        correct_movement_quantity(db_session, movement_id, bad, clock=clock)


def test_unknown_movement(db_session, clock):
    with pytest.raises(NotFoundError):
        correct_movement_quantity(db_session, 404, 1, clock=clock)


def test_correction_from_a_stale_session_uses_the_current_quantity(session_factory, make_material, clock):
    """
    GIVEN
    - an IN of 5 loaded by two sessions
    - the first session corrects it to 2
    THEN
    - the second session's correction to 8 starts from 2, not from its stale 5
    - stock ends at 8 and still reconciles with the ledger
    """
    mid = make_material(quantity="0")

    # ---------- ARRANGE ----------
    first = session_factory()
    second = session_factory()
    try:
        movement_id = _receipt(first, clock, MovementKind.IN, mid, 5)
        assert first.get(Movement, movement_id).quantity == Decimal("5.00")
        assert second.get(Movement, movement_id).quantity == Decimal("5.00")

        # ---------- ACT ----------
        correct_movement_quantity(first, movement_id, 2, clock=clock)
        result = correct_movement_quantity(second, movement_id, 8, clock=clock)

        # ---------- ASSERT ----------
        assert result.old_quantity == Decimal("2.00")
        assert current_quantity(second, mid) == Decimal("8.00")
        assert second.get(Movement, movement_id).quantity == Decimal("8.00")
        assert reconcile(second) == []
    finally:
        first.close()
        second.close()


def test_correction_of_a_reverted_movement_is_not_found(session_factory, make_material, clock):
    mid = make_material(quantity="0")
    first = session_factory()
    second = session_factory()
    try:
        movement_id = _receipt(first, clock, MovementKind.IN, mid, 5)
        assert second.get(Movement, movement_id) is not None

        reverse_movement(first, movement_id, clock=clock)

        with pytest.raises(NotFoundError):
            correct_movement_quantity(second, movement_id, 8, clock=clock)
        assert current_quantity(second, mid) == Decimal("0.00")
    finally:
        first.close()
        second.close()
