from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.schemas.material import MaterialRead
from backend.services.clock import system_clock
from backend.services.reports import dashboard_summary, reconcile

router = APIRouter(prefix="/stock")


@router.get("/summary")
def summary(db: Session = Depends(get_db)):
    """
    Dashboard figures (READ ONLY)
    """
    data = dashboard_summary(db, system_clock.today())
    data["low_stock_items"] = [MaterialRead.model_validate(m) for m in data["low_stock_items"]]
    return data


@router.get("/reconcile")
def check_ledger(material_id: str | None = None, db: Session = Depends(get_db)):
    drifts = reconcile(db, material_id)
    return {
        "consistent": not drifts,
        "drifts": [
            {
                "material_id": d.material_id,
                "cached_quantity": d.cached_quantity,
                "ledger_quantity": d.ledger_quantity,
                "difference": d.difference,
            }
            for d in drifts
        ],
    }
