from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, require_permission, require_role
from backend.app.db.models.core_types import Permission, Role
from backend.app.db.models.models_v1 import Material
from backend.app.schemas.material import (
    MaterialCreate,
    MaterialIdRequest,
    MaterialRead,
    MaterialUpdate,
    MergeRequest,
    StockReportRead,
)
from backend.services.catalog import MaterialChanges, MaterialDefinition, create_material, delete_material, update_material
from backend.services.errors import ValidationError
from backend.services.identifiers import allocate_material_id
from backend.services.merge import MergeTarget, merge_materials
from backend.services.reports import stock_report

router = APIRouter(prefix="/materials")


@router.get("")
def list_materials(
    workshop: str | None = None,
    start: date | None = None,
    end: date | None = None,
    db: Session = Depends(get_db),
):
    """
    Materials, or the period stock report when start/end are given.
    """
    if start is not None or end is not None:
        if start is None or end is None:
            raise ValidationError("Both start and end are required for a stock report", field="start")
        return [StockReportRead.model_validate(row) for row in stock_report(db, start, end, workshop)]

    stmt = select(Material).order_by(Material.workshop, Material.name, Material.id)
    if workshop is not None:
        stmt = stmt.where(Material.workshop == workshop)
    return [MaterialRead.model_validate(m) for m in db.execute(stmt).scalars().all()]


@router.post("")
def create(
    payload: MaterialCreate,
    db: Session = Depends(get_db),
    _actor=Depends(require_permission(Permission.manage_materials)),
):
    material_id = create_material(db, MaterialDefinition(**payload.model_dump()))
    return {"success": True, "id": material_id}


@router.post("/ids")
def allocate_id(
    payload: MaterialIdRequest,
    db: Session = Depends(get_db),
    _actor=Depends(require_permission(Permission.manage_materials)),
):
    return {"success": True, "id": allocate_material_id(db, payload.workshop)}


@router.post("/merge")
def merge(
    payload: MergeRequest,
    db: Session = Depends(get_db),
    _actor=Depends(require_permission(Permission.manage_materials)),
    _admin=Depends(require_role(Role.admin)),
):
    result = merge_materials(
        db,
        payload.material_ids,
        MergeTarget(**payload.model_dump(exclude={"material_ids"})),
    )
    return {"success": True, "new_material_id": result.new_material_id, "merged_count": result.merged_count}


# ids contain slashes (VT/OG/00012)
@router.put("/{material_id:path}")
def update(
    material_id: str,
    payload: MaterialUpdate,
    db: Session = Depends(get_db),
    _actor=Depends(require_permission(Permission.manage_materials)),
):
    update_material(db, material_id, MaterialChanges(**payload.model_dump()))
    return {"success": True, "id": material_id}


@router.delete("/{material_id:path}")
def delete(
    material_id: str,
    db: Session = Depends(get_db),
    _actor=Depends(require_permission(Permission.manage_materials)),
):
    delete_material(db, material_id)
    return {"success": True}
