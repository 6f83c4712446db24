from fastapi import APIRouter

from backend.app.core.config import settings

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok", "version": settings.APP_VERSION}
