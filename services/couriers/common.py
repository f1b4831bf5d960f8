# services/couriers/common.py

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from pydantic import BaseModel

from settings import Settings


class CarrierError(Exception):
    """Raised when the carrier API fails or answers with something unusable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CreatedConsignment(BaseModel):
    """
    Standard answer of a consignment creation call.
    """
    consignment_id: str
    raw: Dict[str, Any] = {}


class TrackingStatus(BaseModel):
    """
    Standard answer of a status query.
    """
    consignment_id: str
    current_status: Optional[str] = None
    raw: Dict[str, Any] = {}


class BaseCourierService(ABC):
    """
    Abstract base class for every carrier service.
    Defines what the sync engine needs from a carrier.
    """
    def __init__(self, settings: Settings):
        self.settings = settings

    @abstractmethod
    async def create_consignment(self, order) -> CreatedConsignment:
        """Creates a consignment for an order. Not idempotent at the carrier."""

    @abstractmethod
    async def get_consignment_status(self, consignment_id: str) -> TrackingStatus:
        """Returns the current status of a consignment."""

    @abstractmethod
    async def download_label(self, consignment_id: str) -> bytes:
        """Returns the shipping label as PDF bytes."""

    @abstractmethod
    async def cancel_consignment(self, consignment_id: str) -> Dict[str, Any]:
        """Cancels a consignment."""
