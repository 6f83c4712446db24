from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, require_permission
from backend.app.db.models.core_types import Permission
from backend.app.schemas.movement import CommitRead, CorrectionRequest, MovementRead, ReceiptCreate, TransferCreate
from backend.services.correction import correct_movement_quantity
from backend.services.permissions import Actor
from backend.services.receipts import CommitMetadata, commit_receipt, commit_transfer
from backend.services.reports import list_movements
from backend.services.reversal import reverse_movement

router = APIRouter(prefix="/stock-movements")


@router.get("", response_model=list[MovementRead])
def history(
    material_id: str | None = None,
    workshop: str | None = None,
    receipt_id: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
):
    return list_movements(db, material_id=material_id, workshop=workshop, receipt_id=receipt_id, limit=limit)


@router.post("/receipts", response_model=CommitRead)
def create_receipt(
    payload: ReceiptCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.create_receipt)),
):
    """
    IN or OUT receipt, all lines or none.
    """
    result = commit_receipt(
        db,
        payload.kind,
        payload.workshop,
        [item.model_dump() for item in payload.items],
        CommitMetadata(
            receipt_id=payload.receipt_id,
            business_date=payload.business_date,
            actor=actor.name,
            order_code=payload.order_code,
            supplier=payload.supplier,
        ),
    )
    return CommitRead(affected_count=result.affected_count, receipt_id=result.receipt_id, movement_ids=result.movement_ids)


@router.post("/transfers", response_model=CommitRead)
def create_transfer(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.transfer_materials)),
):
    result = commit_transfer(
        db,
        payload.from_workshop,
        payload.to_workshop,
        [item.model_dump() for item in payload.items],
        CommitMetadata(
            receipt_id=payload.receipt_id,
            business_date=payload.business_date,
            actor=actor.name,
            order_code=payload.order_code,
        ),
    )
    return CommitRead(affected_count=result.affected_count, receipt_id=result.receipt_id, movement_ids=result.movement_ids)


@router.post("/{movement_id}/reverse")
def reverse(
    movement_id: int,
    db: Session = Depends(get_db),
    _actor=Depends(require_permission(Permission.delete_transaction)),
):
    reverse_movement(db, movement_id)
    return {"success": True, "id": movement_id}


@router.patch("/{movement_id}")
def correct(
    movement_id: int,
    payload: CorrectionRequest,
    db: Session = Depends(get_db),
    _actor=Depends(require_permission(Permission.manage_materials)),
):
    result = correct_movement_quantity(db, movement_id, payload.quantity)
    return {
        "success": True,
        "id": movement_id,
        "old_quantity": result.old_quantity,
        "new_quantity": result.new_quantity,
        "changed": result.changed,
    }
