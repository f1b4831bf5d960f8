from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.status_map import describe_status
from services.utils import calculate_weight


def _float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class Address(BaseModel):
    first_name: str = ""
    last_name: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    province: str = ""
    zip: str = ""
    country: str = ""
    phone: str = ""

    @classmethod
    def from_shopify(cls, data: Optional[Dict[str, Any]]) -> "Address":
        data = data or {}
        return cls(**{field: data.get(field) or "" for field in cls.model_fields})

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Customer(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""


class LineItem(BaseModel):
    id: Optional[str] = None
    sku: str = ""
    title: str = ""
    quantity: int = 0
    price: float = 0.0
    grams: int = 0
    vendor: str = ""

    @classmethod
    def from_shopify(cls, data: Dict[str, Any]) -> "LineItem":
        product_id = data.get("product_id")
        return cls(
            id=str(data["id"]) if data.get("id") is not None else None,
            sku=data.get("sku") or (str(product_id) if product_id is not None else ""),
            title=data.get("title") or "",
            quantity=int(data.get("quantity") or 0),
            price=_float(data.get("price")),
            grams=int(data.get("grams") or 0),
            vendor=data.get("vendor") or "",
        )


class Totals(BaseModel):
    subtotal: float = 0.0
    tax: float = 0.0
    shipping_price: float = 0.0
    total: float = 0.0
    currency: Optional[str] = None


class OrderDates(BaseModel):
    created: Optional[str] = None
    updated: Optional[str] = None
    processed: Optional[str] = None


class Order(BaseModel):
    """A Shopify order, flattened to what the sync needs."""
    id: str
    order_number: Optional[str] = None
    name: Optional[str] = None
    email: str = ""
    phone: str = ""
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    customer: Customer = Field(default_factory=Customer)
    shipping_address: Address = Field(default_factory=Address)
    billing_address: Address = Field(default_factory=Address)
    line_items: List[LineItem] = []
    totals: Totals = Field(default_factory=Totals)
    dates: OrderDates = Field(default_factory=OrderDates)
    note: str = ""
    tags: List[str] = []

    @classmethod
    def from_shopify(cls, payload: Dict[str, Any]) -> "Order":
        customer = payload.get("customer") or {}
        billing = payload.get("billing_address") or {}
        raw_tags = payload.get("tags") or ""
        tags = raw_tags if isinstance(raw_tags, list) else [t.strip() for t in raw_tags.split(",") if t.strip()]
        shipping_set = (payload.get("total_shipping_price_set") or {}).get("shop_money") or {}
        order_number = payload.get("order_number")

        return cls(
            id=str(payload["id"]),
            order_number=str(order_number) if order_number is not None else None,
            name=payload.get("name"),
            email=payload.get("email") or "",
            phone=customer.get("phone") or "",
            financial_status=payload.get("financial_status"),
            fulfillment_status=payload.get("fulfillment_status"),
            customer=Customer(
                first_name=customer.get("first_name") or billing.get("first_name") or "",
                last_name=customer.get("last_name") or billing.get("last_name") or "",
                email=payload.get("email") or "",
                phone=customer.get("phone") or billing.get("phone") or "",
            ),
            shipping_address=Address.from_shopify(payload.get("shipping_address")),
            billing_address=Address.from_shopify(billing),
            line_items=[LineItem.from_shopify(li) for li in payload.get("line_items") or []],
            totals=Totals(
                subtotal=_float(payload.get("subtotal_price")),
                tax=_float(payload.get("total_tax")),
                shipping_price=_float(shipping_set.get("amount")),
                total=_float(payload.get("total_price")),
                currency=payload.get("currency"),
            ),
            dates=OrderDates(
                created=payload.get("created_at"),
                updated=payload.get("updated_at"),
                processed=payload.get("processed_at"),
            ),
            note=payload.get("note") or "",
            tags=tags,
        )

    @property
    def total_weight(self) -> float:
        """Total weight in kilograms."""
        return calculate_weight(self.line_items)

    def validate_for_shipping(self) -> List[str]:
        """Returns the reasons this order cannot be shipped; empty when it can."""
        errors = []
        address = self.shipping_address
        if not address.first_name or not address.last_name:
            errors.append("Recipient name is required")
        if not address.address1:
            errors.append("Shipping address is required")
        if not address.city:
            errors.append("City is required")
        if not address.zip:
            errors.append("Postal code is required")
        if not address.phone:
            errors.append("Phone number is required")
        if not self.line_items:
            errors.append("Order must contain at least one item")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["total_weight"] = self.total_weight
        return data


class Consignment(BaseModel):
    """A Shipsy consignment as reported by the status endpoint."""
    consignment_id: Optional[str] = None
    awb_number: str = ""
    current_status: str = "pending"
    last_updated: Optional[str] = None
    last_location: str = ""
    destination: Dict[str, Any] = {}
    origin: Dict[str, Any] = {}
    weight: float = 0.0
    declared_value: float = 0.0
    cod_amount: float = 0.0
    status_history: List[Dict[str, Any]] = []

    @classmethod
    def from_shipsy(cls, data: Dict[str, Any]) -> "Consignment":
        consignment_id = data.get("consignment_id") or data.get("id")
        return cls(
            consignment_id=str(consignment_id) if consignment_id is not None else None,
            awb_number=data.get("awb_number") or "",
            current_status=data.get("current_status") or "pending",
            last_updated=data.get("last_updated") or datetime.now(timezone.utc).isoformat(),
            last_location=data.get("last_location") or "",
            destination={
                "name": data.get("consignee_name") or "",
                "phone": data.get("consignee_phone") or "",
                "address": data.get("consignee_address") or "",
                "city": data.get("consignee_city") or "",
                "state": data.get("consignee_state") or "",
                "pincode": data.get("consignee_pincode") or "",
            },
            origin={
                "name": data.get("shipper_name") or "",
                "phone": data.get("shipper_phone") or "",
                "address": data.get("shipper_address") or "",
            },
            weight=_float(data.get("weight")),
            declared_value=_float(data.get("declared_value")),
            cod_amount=_float(data.get("cod_amount")),
            status_history=data.get("status_history") or [],
        )

    @property
    def status_description(self) -> str:
        return describe_status(self.current_status)

    @property
    def tracking_url(self) -> str:
        return f"https://shipsy.io/tracking/{self.awb_number}" if self.awb_number else ""

    @property
    def is_delivered(self) -> bool:
        return self.current_status == "delivered"

    @property
    def is_cancelled(self) -> bool:
        return self.current_status == "cancelled"

    @property
    def is_pending(self) -> bool:
        return self.current_status in ("pending", "pickup_scheduled")

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data.update(
            status_description=self.status_description,
            tracking_url=self.tracking_url,
        )
        return data


# --- Results returned by the sync engine ---

class SyncResult(BaseModel):
    success: bool
    order_id: str
    consignment_id: Optional[str] = None
    reason: Optional[str] = None


class BatchResult(BaseModel):
    synced: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0


class StatusUpdateResult(BaseModel):
    updated: int = 0
    failed: int = 0
    skipped: int = 0


# --- API bodies ---

class SyncAllRequest(BaseModel):
    limit: int = Field(50, ge=1, le=250)
    created_after: Optional[datetime] = None


class ClearLogsRequest(BaseModel):
    days_old: int = Field(30, ge=0)


class LabelsRequest(BaseModel):
    order_ids: List[str]


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    SHIPSY_BASE_URL: Optional[str] = None
    SHIPSY_ORGANISATION: Optional[str] = None
    SHIPSY_SERVICE_TYPE: Optional[str] = None
    SHIPSY_HUB_CODE: Optional[str] = None
    ENABLE_AUTO_SYNC: Optional[bool] = None
    SYNC_INTERVAL_MINUTES: Optional[int] = Field(None, ge=1)
    STATUS_UPDATE_INTERVAL_MINUTES: Optional[int] = Field(None, ge=1)
    SYNC_BATCH_LIMIT: Optional[int] = Field(None, ge=1, le=250)
    STATUS_BATCH_LIMIT: Optional[int] = Field(None, ge=1, le=250)
    STORE_NAME: Optional[str] = None
    STORE_PHONE: Optional[str] = None
    STORE_ADDRESS_1: Optional[str] = None
    STORE_ADDRESS_2: Optional[str] = None
    STORE_PINCODE: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
