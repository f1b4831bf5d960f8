# services/couriers/__init__.py

import logging
from typing import Dict, Optional, Type

import httpx

from settings import Settings
from .common import BaseCourierService, CarrierError, CreatedConsignment, TrackingStatus
from .shipsy import ShipsyCourierService, build_consignment_payload

COURIER_CLASSES: Dict[str, Type[BaseCourierService]] = {
    "shipsy": ShipsyCourierService,
}


def get_courier_service(
    courier_type: str,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[BaseCourierService]:
    """
    Factory: builds the carrier service for a courier type.
    """
    service_class = COURIER_CLASSES.get((courier_type or "").lower())
    if not service_class:
        logging.warning(f"Courier type '{courier_type}' is not implemented.")
        return None
    return service_class(settings, transport=transport)


__all__ = [
    "BaseCourierService",
    "CarrierError",
    "CreatedConsignment",
    "TrackingStatus",
    "ShipsyCourierService",
    "build_consignment_payload",
    "get_courier_service",
]
