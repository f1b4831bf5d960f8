# routes/errors.py
import logging

from fastapi.responses import JSONResponse

from crud.order_syncs import StaleSyncStateError
from services.couriers import CarrierError
from services.shopify_service import OrderSourceError
from services.sync_service import OrderNotSyncedError


def error_response(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


def exception_response(e: Exception) -> JSONResponse:
    """Maps engine and client exceptions to the JSON error body of single-order endpoints."""
    if isinstance(e, OrderNotSyncedError):
        return error_response(404, str(e))
    if isinstance(e, OrderSourceError):
        return error_response(404 if e.status_code == 404 else 502, str(e))
    if isinstance(e, CarrierError):
        return error_response(502, str(e))
    if isinstance(e, (StaleSyncStateError, ValueError)):
        return error_response(409, str(e))
    logging.error(f"Unexpected error: {e}", exc_info=True)
    return error_response(500, str(e))
