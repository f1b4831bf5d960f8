import httpx
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional

from settings import Settings
from schemas import Order


class OrderSourceError(Exception):
    """Raised when the Shopify Admin API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def split_tags(tags: Any) -> List[str]:
    if isinstance(tags, list):
        return [t.strip() for t in tags if t and t.strip()]
    return [t.strip() for t in (tags or "").split(",") if t.strip()]


class ShopifyService:
    """Shopify Admin REST client for the orders the sync works on."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        base_url = f"https://{self.settings.SHOPIFY_STORE}/admin/api/{self.settings.SHOPIFY_API_VERSION}"
        headers = {'X-Shopify-Access-Token': self.settings.SHOPIFY_ACCESS_TOKEN, 'Content-Type': 'application/json'}
        return httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=self.settings.HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        async with self._client() as client:
            try:
                r = await client.request(method, path, **kwargs)
                r.raise_for_status()
                return r.json() if r.content else {}
            except httpx.HTTPStatusError as e:
                raise OrderSourceError(
                    f"Shopify API error {e.response.status_code} on {path}: {e.response.text}",
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise OrderSourceError(f"Shopify API unreachable on {path}: {e}") from e

    async def get_all_orders(
        self,
        status: str = "any",
        limit: int = 50,
        created_after: Optional[datetime] = None,
    ) -> List[Order]:
        """One page of orders, oldest first; callers drive pagination."""
        params: Dict[str, Any] = {"status": status, "limit": limit, "order": "created_at asc"}
        if created_after:
            params["created_at_min"] = created_after.isoformat()
        try:
            data = await self._request("GET", "/orders.json", params=params)
        except OrderSourceError as e:
            logging.error(f"Failed to get orders: {e}")
            raise
        return [Order.from_shopify(o) for o in data.get("orders", [])]

    async def get_order(self, order_id: str) -> Order:
        try:
            data = await self._request("GET", f"/orders/{order_id}.json")
        except OrderSourceError as e:
            logging.error(f"Failed to get order {order_id}: {e}")
            raise
        return Order.from_shopify(data["order"])

    async def _update_order(self, order_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        body = {"order": {"id": order_id, **fields}}
        data = await self._request("PUT", f"/orders/{order_id}.json", json=body)
        return data.get("order", {})

    async def update_order_note(self, order_id: str, note: str) -> Dict[str, Any]:
        try:
            return await self._update_order(order_id, {"note": note})
        except OrderSourceError as e:
            logging.error(f"Failed to update note of order {order_id}: {e}")
            raise

    async def add_order_tag(self, order_id: str, tag: str) -> Dict[str, Any]:
        """Adds a tag unless the order already has it."""
        try:
            data = await self._request("GET", f"/orders/{order_id}.json")
            tags = split_tags(data.get("order", {}).get("tags"))
            if tag in tags:
                return data.get("order", {})
            tags.append(tag)
            return await self._update_order(order_id, {"tags": ", ".join(tags)})
        except OrderSourceError as e:
            logging.error(f"Failed to add tag '{tag}' to order {order_id}: {e}")
            raise

    async def remove_order_tag(self, order_id: str, tag: str) -> Dict[str, Any]:
        try:
            data = await self._request("GET", f"/orders/{order_id}.json")
            tags = split_tags(data.get("order", {}).get("tags"))
            if tag not in tags:
                return data.get("order", {})
            return await self._update_order(order_id, {"tags": ", ".join(t for t in tags if t != tag)})
        except OrderSourceError as e:
            logging.error(f"Failed to remove tag '{tag}' from order {order_id}: {e}")
            raise

    async def update_order_status(self, order_id: str, status: str) -> Dict[str, Any]:
        try:
            return await self._update_order(order_id, {"financial_status": status})
        except OrderSourceError as e:
            logging.error(f"Failed to set status '{status}' on order {order_id}: {e}")
            raise

    async def send_order_message(self, order_id: str, message: str) -> Dict[str, Any]:
        body = {"fulfillment_orders": {"id": order_id, "note": message}}
        try:
            data = await self._request("POST", f"/orders/{order_id}/fulfillment_orders.json", json=body)
        except OrderSourceError as e:
            logging.error(f"Failed to send message for order {order_id}: {e}")
            raise
        logging.info(f"Message sent for order {order_id}.")
        return data

    async def get_shop_info(self) -> Dict[str, Any]:
        data = await self._request("GET", "/shop.json")
        return data.get("shop", {})
