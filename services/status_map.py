# services/status_map.py
import logging
from typing import Dict, Mapping, NamedTuple, Optional


class StatusMapping(NamedTuple):
    name: str
    shopify_status: str
    notify: bool


# Every status value Shipsy can report for a consignment.
SUPPORTED_SHIPMENT_STATUSES = (
    "pickup_scheduled",
    "out_for_pickup",
    "reached_at_hub",
    "in_transit",
    "outfordelivery",
    "attempted",
    "delivered",
    "cancelled",
    "pending",
)

TERMINAL_SHIPMENT_STATUSES = frozenset({"delivered", "cancelled"})

# Shopify-side order statuses the table maps to
SHOPIFY_ORDER_STATUSES = ("pending", "processing", "completed", "cancelled", "failed")

SHIPMENT_STATUS_MAP: Dict[str, StatusMapping] = {
    "pickup_scheduled": StatusMapping("Pickup scheduled", "pending", True),
    "out_for_pickup": StatusMapping("Out for pickup", "processing", True),
    "reached_at_hub": StatusMapping("Reached hub", "processing", False),
    "in_transit": StatusMapping("In transit", "processing", False),
    "outfordelivery": StatusMapping("Out for delivery", "processing", True),
    "attempted": StatusMapping("Delivery attempted", "processing", True),
    "delivered": StatusMapping("Delivered", "completed", True),
    "cancelled": StatusMapping("Cancelled", "cancelled", True),
    "pending": StatusMapping("Pending", "pending", False),
}


def build_status_map(overrides: Optional[Mapping[str, object]] = None) -> Dict[str, StatusMapping]:
    """
    Returns the static table with entries from config/shipment_status_map.json
    applied on top. Overrides may be StatusMappingOverride models or plain dicts.
    """
    table = dict(SHIPMENT_STATUS_MAP)
    for status, override in (overrides or {}).items():
        data = override.model_dump() if hasattr(override, "model_dump") else dict(override)
        table[status] = StatusMapping(data["name"], data["shopify_status"], bool(data.get("notify", False)))
    return table


def get_status_mapping(status: Optional[str], table: Optional[Mapping[str, StatusMapping]] = None) -> Optional[StatusMapping]:
    """Looks up a carrier status. Unknown values are logged and return None."""
    if not status:
        return None
    mapping = (table if table is not None else SHIPMENT_STATUS_MAP).get(status)
    if mapping is None:
        logging.warning(f"Unknown shipment status '{status}', no mapping configured.")
    return mapping


def describe_status(status: Optional[str]) -> str:
    """Display name for a status, or the raw value when it is not mapped."""
    mapping = SHIPMENT_STATUS_MAP.get(status or "")
    return mapping.name if mapping else (status or "")
