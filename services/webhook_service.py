import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

from schemas import Order
from services.sync_service import SyncService


def verify_webhook_signature(raw_body: bytes, hmac_header: Optional[str], secret: str) -> bool:
    """
    Checks X-Shopify-Hmac-SHA256: base64 HMAC-SHA256 of the raw body,
    keyed with the app's API secret.
    """
    if not hmac_header:
        logging.warning("Webhook received without an HMAC header.")
        return False
    if not secret:
        logging.error("Webhook rejected: SHOPIFY_API_SECRET is not configured.")
        return False

    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    if not hmac.compare_digest(expected, hmac_header.strip()):
        logging.warning("Webhook rejected: invalid HMAC signature.")
        return False
    return True


async def on_order_created(service: SyncService, order: Order) -> Dict[str, Any]:
    if not service.settings.ENABLE_AUTO_SYNC:
        logging.info(f"Webhook: auto sync disabled, order {order.id} left for a manual run.")
        return {"success": True, "action": "ignored", "order_id": order.id}
    try:
        result = await service.sync_order(order)
    except Exception as e:
        logging.error(f"Webhook: sync of new order {order.id} failed: {e}")
        return {"success": False, "order_id": order.id, "error": str(e)}
    return {**result.model_dump(), "success": True, "action": "synced" if result.success else "skipped"}


async def on_order_updated(service: SyncService, order: Order) -> Dict[str, Any]:
    """Syncs an order once it becomes paid and has no consignment yet."""
    if not service.settings.ENABLE_AUTO_SYNC:
        return {"success": True, "action": "ignored", "order_id": order.id}
    if order.financial_status != "paid":
        return {"success": True, "action": "ignored", "order_id": order.id}
    resolved = await service.get_sync_state(order)
    if resolved.consignment_id:
        return {"success": True, "action": "skipped", "order_id": order.id}
    try:
        result = await service.sync_order(order)
    except Exception as e:
        logging.error(f"Webhook: sync of updated order {order.id} failed: {e}")
        return {"success": False, "order_id": order.id, "error": str(e)}
    return {**result.model_dump(), "success": True, "action": "synced" if result.success else "skipped"}


async def on_app_uninstalled(shop: Optional[str]) -> Dict[str, Any]:
    logging.warning(f"Webhook: app uninstalled from shop '{shop or 'unknown'}'.")
    return {"success": True, "action": "uninstalled", "shop": shop}


WEBHOOK_TOPICS = {
    "orders/create": on_order_created,
    "orders/updated": on_order_updated,
}
