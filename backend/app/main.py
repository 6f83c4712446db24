import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError

from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import settings
from backend.app.core.logging import setup_logging
from backend.services.errors import ConflictError, StockLedgerError

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
app.include_router(v1_router, prefix="/v1")


def _error_response(status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.exception_handler(StockLedgerError)
async def stock_ledger_error_handler(request: Request, exc: StockLedgerError):
    return _error_response(exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")} for e in exc.errors()]
    return _error_response(
        422,
        {"code": "VALIDATION_ERROR", "message": "Request body or parameters are invalid", "details": {"errors": errors}},
    )


# serialization failure, deadlock
RETRYABLE_SQLSTATES = {"40001", "40P01"}


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if isinstance(exc, IntegrityError) or sqlstate in RETRYABLE_SQLSTATES:
        logger.warning("concurrent write conflict on %s %s: %s", request.method, request.url.path, exc.orig)
        error = ConflictError("The data changed while the request was running, try again", sqlstate=sqlstate)
        return _error_response(error.status_code, error.to_dict())

    logger.error("database error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(500, {"code": "DATABASE_ERROR", "message": "Database error", "details": {}})
