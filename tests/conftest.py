import asyncio
import copy
import itertools
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from database import create_session_factory, init_models
from schemas import Order
from settings import Settings
from services.couriers import BaseCourierService, CarrierError, CreatedConsignment, TrackingStatus
from services.locks import OrderLocks
from services.shopify_service import OrderSourceError, split_tags
from services.sync_service import SyncService

TEST_SECRET = "test-secret"


def make_settings(**overrides) -> Settings:
    values = dict(
        DATABASE_URL="sqlite+aiosqlite://",
        SHOPIFY_STORE="test-shop.myshopify.com",
        SHOPIFY_ACCESS_TOKEN="shpat_test",
        SHOPIFY_API_SECRET=TEST_SECRET,
        SHIPSY_API_KEY="shipsy-key",
        STORE_NAME="Test Store",
        STORE_PHONE="0500000000",
        STORE_ADDRESS_1="1 Warehouse Rd",
        STORE_PINCODE="11564",
        RETRY_DELAY_SECONDS=0,
        SHIPMENT_STATUS_MAP={},
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def order_payload(order_id: int = 1001, **fields) -> Dict[str, Any]:
    """A Shopify REST order that passes shipping validation."""
    payload = {
        "id": order_id,
        "order_number": order_id,
        "name": f"#{order_id}",
        "email": "buyer@example.com",
        "financial_status": "paid",
        "fulfillment_status": None,
        "customer": {"first_name": "Sara", "last_name": "Ali", "phone": "0551234567"},
        "shipping_address": {
            "first_name": "Sara",
            "last_name": "Ali",
            "address1": "12 King Fahd Rd",
            "city": "Riyadh",
            "province": "Riyadh",
            "zip": "12211",
            "country": "SA",
            "phone": "0551234567",
        },
        "line_items": [
            {"id": 1, "product_id": 501, "sku": "MUG-1", "title": "Mug", "quantity": 2, "price": "40.00", "grams": 500},
            {"id": 2, "product_id": 502, "sku": "", "title": "Spoon", "quantity": 1, "price": "19.90", "grams": 250},
        ],
        "total_price": "99.90",
        "subtotal_price": "99.90",
        "currency": "SAR",
        "created_at": "2026-10-01T10:00:00+03:00",
        "note": "",
        "tags": "",
    }
    payload.update(fields)
    return payload


class FakeShopify:
    """In-memory stand-in for ShopifyService."""

    def __init__(self, payloads: List[Dict[str, Any]] = ()):
        self.orders: Dict[str, Order] = {}
        for payload in payloads:
            self.add(payload)
        self.status_updates: List[tuple] = []
        self.messages: List[tuple] = []
        self.note_updates: List[tuple] = []
        self.fail_note_updates = False
        self.fail_listing = False

    def add(self, payload: Dict[str, Any]) -> Order:
        order = Order.from_shopify(payload)
        self.orders[order.id] = order
        return order

    async def get_all_orders(self, status="any", limit=50, created_after=None) -> List[Order]:
        if self.fail_listing:
            raise OrderSourceError("Shopify API unreachable on /orders.json")
        return [copy.deepcopy(o) for o in list(self.orders.values())[:limit]]

    async def get_order(self, order_id: str) -> Order:
        order = self.orders.get(str(order_id))
        if order is None:
            raise OrderSourceError(f"Shopify API error 404 on /orders/{order_id}.json", status_code=404)
        return copy.deepcopy(order)

    async def update_order_note(self, order_id: str, note: str) -> Dict[str, Any]:
        if self.fail_note_updates:
            raise OrderSourceError("Shopify API error 503", status_code=503)
        self.orders[str(order_id)].note = note
        self.note_updates.append((str(order_id), note))
        return {}

    async def add_order_tag(self, order_id: str, tag: str) -> Dict[str, Any]:
        order = self.orders[str(order_id)]
        if tag not in order.tags:
            order.tags.append(tag)
        return {}

    async def remove_order_tag(self, order_id: str, tag: str) -> Dict[str, Any]:
        order = self.orders[str(order_id)]
        order.tags = [t for t in split_tags(order.tags) if t != tag]
        return {}

    async def update_order_status(self, order_id: str, status: str) -> Dict[str, Any]:
        self.status_updates.append((str(order_id), status))
        return {}

    async def send_order_message(self, order_id: str, message: str) -> Dict[str, Any]:
        self.messages.append((str(order_id), message))
        return {}


class FakeCarrier(BaseCourierService):
    """In-memory stand-in for ShipsyCourierService."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self._ids = itertools.count(7000001)
        self.created: List[str] = []
        self.fail_for: set = set()
        self.statuses: Dict[str, Optional[str]] = {}
        self.status_calls = 0
        self.cancelled: List[str] = []
        self.labels: Dict[str, bytes] = {}
        self.connected = True

    async def create_consignment(self, order) -> CreatedConsignment:
        if order.id in self.fail_for:
            raise CarrierError("Shipsy API error 500 on upload", status_code=500)
        consignment_id = str(next(self._ids))
        self.created.append(order.id)
        return CreatedConsignment(consignment_id=consignment_id, raw={"consignment_id": consignment_id})

    async def get_consignment_status(self, consignment_id: str) -> TrackingStatus:
        self.status_calls += 1
        status = self.statuses.get(consignment_id)
        return TrackingStatus(consignment_id=consignment_id, current_status=status,
                              raw={"current_status": status, "awb_number": f"AWB{consignment_id}"})

    async def download_label(self, consignment_id: str) -> bytes:
        if consignment_id not in self.labels:
            raise CarrierError("Shipsy API error 404 on label", status_code=404)
        return self.labels[consignment_id]

    async def cancel_consignment(self, consignment_id: str) -> Dict[str, Any]:
        self.cancelled.append(consignment_id)
        return {"status": "cancelled"}

    async def verify_connection(self) -> bool:
        return self.connected

    async def get_service_types(self):
        return [{"code": "express", "name": "Express"}]

    async def get_pickup_points(self, pincode: str):
        return [{"code": "RUH-1", "pincode": pincode}]


def memory_engine():
    # One shared connection so every session sees the same in-memory database
    return create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)


def run_with_service(body, payloads=(), **settings_overrides):
    """
    Runs `await body(env)` against a fresh in-memory store. `env` carries the
    service, its session and both fakes.
    """
    async def main():
        settings = make_settings(**settings_overrides)
        engine = memory_engine()
        await init_models(engine)
        try:
            async with create_session_factory(engine)() as session:
                shopify = FakeShopify(payloads)
                carrier = FakeCarrier(settings)
                service = SyncService(session, shopify, carrier, settings, OrderLocks())
                env = SimpleNamespace(
                    service=service, db=session, shopify=shopify, carrier=carrier, settings=settings,
                )
                return await body(env)
        finally:
            await engine.dispose()

    return asyncio.run(main())


@pytest.fixture
def run_sync():
    return run_with_service
