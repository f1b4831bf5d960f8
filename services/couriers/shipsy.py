# services/couriers/shipsy.py

import httpx
import logging
from typing import Any, Dict, List, Optional

from settings import Settings
from schemas import Order
from .common import BaseCourierService, CarrierError, CreatedConsignment, TrackingStatus

CONSIGNMENT_UPLOAD_PATH = "/api/customer/integration/consignment/upload/softdata/v2"
CONSIGNMENT_STATUS_PATH = "/api/customer/integration/consignment/status/{consignment_id}"
CONSIGNMENT_LABEL_PATH = "/api/customer/integration/consignment/label/{consignment_id}"
CONSIGNMENT_CANCEL_PATH = "/api/customer/integration/consignment/{consignment_id}/cancel"
SERVICE_TYPES_PATH = "/api/customer/integration/serviceType"
PICKUP_POINTS_PATH = "/api/customer/integration/pickup/points"
PING_PATH = "/api/customer/ping"

LOAD_TYPE_DOCUMENT = "DOCUMENT"
LOAD_TYPE_NON_DOCUMENT = "NON-DOCUMENT"


def build_consignment_payload(order: Order, settings: Settings) -> Dict[str, Any]:
    """Translates a Shopify order into Shipsy's softdata upload schema."""
    shipping = order.shipping_address

    return {
        "load_type": LOAD_TYPE_NON_DOCUMENT,
        "service_type_id": settings.SHIPSY_SERVICE_TYPE,
        "weight": str(order.total_weight),
        "weight_unit": "kg",
        "declared_value": round(order.totals.total),
        "customer_reference_number": str(order.order_number or order.id),
        "hub_code": settings.SHIPSY_HUB_CODE,
        "origin_details": {
            "name": settings.STORE_NAME,
            "phone": settings.STORE_PHONE,
            "address_line_1": settings.STORE_ADDRESS_1,
            "address_line_2": settings.STORE_ADDRESS_2,
            "pincode": settings.STORE_PINCODE,
        },
        "destination_details": {
            "name": shipping.full_name,
            "phone": shipping.phone or order.customer.phone,
            "address_line_1": shipping.address1,
            "address_line_2": shipping.address2,
            "pincode": shipping.zip,
            "city": shipping.city,
            "state": shipping.province,
            "country": shipping.country,
        },
        "items": [
            {
                "sku": item.sku or item.id,
                "name": item.title,
                "quantity": item.quantity,
                "unit_value": item.price,
            }
            for item in order.line_items
        ],
    }


class ShipsyCourierService(BaseCourierService):
    """Shipsy consignment API client."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(settings)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        # Read on every call so runtime settings updates take effect
        return httpx.AsyncClient(
            base_url=self.settings.SHIPSY_BASE_URL,
            headers={"Content-Type": "application/json", "api-key": self.settings.SHIPSY_API_KEY},
            timeout=self.settings.HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        async with self._client() as client:
            try:
                r = await client.request(method, path, **kwargs)
                r.raise_for_status()
                return r
            except httpx.HTTPStatusError as e:
                raise CarrierError(
                    f"Shipsy API error {e.response.status_code} on {path}: {e.response.text}",
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise CarrierError(f"Shipsy API unreachable on {path}: {e}") from e

    async def verify_connection(self) -> bool:
        try:
            r = await self._request("GET", PING_PATH)
            logging.info("Shipsy API connection verified.")
            return r.status_code == 200
        except CarrierError as e:
            logging.error(f"Shipsy API connection failed: {e}")
            return False

    async def create_consignment(self, order: Order) -> CreatedConsignment:
        payload = build_consignment_payload(order, self.settings)
        logging.info(f"Creating Shipsy consignment for order {order.id}.")
        try:
            r = await self._request("POST", CONSIGNMENT_UPLOAD_PATH, json=payload)
            data = r.json() or {}
        except CarrierError as e:
            logging.error(f"Failed to create consignment for order {order.id}: {e}")
            raise
        except ValueError as e:
            raise CarrierError(f"Shipsy returned a non-JSON body for order {order.id}") from e

        consignment_id = data.get("consignment_id") if isinstance(data, dict) else None
        if not consignment_id:
            logging.error(f"Shipsy response for order {order.id} has no consignment id: {data}")
            raise CarrierError("No consignment ID in response")

        logging.info(f"Consignment {consignment_id} created for order {order.id}.")
        return CreatedConsignment(consignment_id=str(consignment_id), raw=data)

    async def get_consignment_status(self, consignment_id: str) -> TrackingStatus:
        path = CONSIGNMENT_STATUS_PATH.format(consignment_id=consignment_id)
        try:
            r = await self._request("GET", path)
            data = r.json() or {}
        except CarrierError as e:
            logging.error(f"Failed to get status for consignment {consignment_id}: {e}")
            raise
        except ValueError as e:
            raise CarrierError(f"Shipsy returned a non-JSON status for {consignment_id}") from e
        return TrackingStatus(
            consignment_id=str(consignment_id),
            current_status=data.get("current_status"),
            raw=data,
        )

    async def download_label(self, consignment_id: str) -> bytes:
        path = CONSIGNMENT_LABEL_PATH.format(consignment_id=consignment_id)
        try:
            r = await self._request("GET", path)
        except CarrierError as e:
            logging.error(f"Failed to download label for consignment {consignment_id}: {e}")
            raise
        return r.content

    async def cancel_consignment(self, consignment_id: str) -> Dict[str, Any]:
        path = CONSIGNMENT_CANCEL_PATH.format(consignment_id=consignment_id)
        try:
            r = await self._request("POST", path)
        except CarrierError as e:
            logging.error(f"Failed to cancel consignment {consignment_id}: {e}")
            raise
        logging.info(f"Consignment {consignment_id} cancelled.")
        return r.json() if r.content else {}

    async def get_service_types(self) -> List[Dict[str, Any]]:
        r = await self._request("GET", SERVICE_TYPES_PATH)
        return r.json()

    async def get_pickup_points(self, pincode: str) -> List[Dict[str, Any]]:
        r = await self._request("GET", PICKUP_POINTS_PATH, params={"pincode": pincode})
        return r.json()
