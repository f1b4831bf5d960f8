import logging

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError

from dependencies import get_carrier, get_settings
from routes.errors import error_response, exception_response
from schemas import SettingsUpdate
from settings import Settings
from services.couriers import BaseCourierService

router = APIRouter()


@router.get("")
async def read_settings(settings: Settings = Depends(get_settings)):
    return {"success": True, "settings": settings.public_view()}


@router.put("")
async def update_settings(body: SettingsUpdate, settings: Settings = Depends(get_settings)):
    """Applies the changes to the live settings object; nothing is written to disk."""
    changes = body.changes()
    try:
        settings.update(**changes)
    except ValidationError as e:
        return error_response(422, "Invalid settings", details=e.errors(include_url=False))
    except ValueError as e:
        return error_response(422, str(e))
    logging.info(f"Settings updated: {', '.join(sorted(changes)) or 'nothing'}")
    return {"success": True, "settings": settings.public_view()}


@router.post("/test-connection")
async def test_connection(carrier: BaseCourierService = Depends(get_carrier)):
    connected = await carrier.verify_connection()
    return {"success": connected, "message": "Connected to Shipsy" if connected else "Could not reach Shipsy"}


@router.get("/service-types")
async def service_types(carrier: BaseCourierService = Depends(get_carrier)):
    try:
        return {"success": True, "service_types": await carrier.get_service_types()}
    except Exception as e:
        return exception_response(e)


@router.get("/pickup-points")
async def pickup_points(pincode: str = Query(..., min_length=1), carrier: BaseCourierService = Depends(get_carrier)):
    try:
        return {"success": True, "pickup_points": await carrier.get_pickup_points(pincode)}
    except Exception as e:
        return exception_response(e)
