# routes/webhooks.py
import json
import logging

from fastapi import APIRouter, Depends, Request

from dependencies import get_sync_service
from routes.errors import error_response
from schemas import Order
from services import webhook_service
from services.sync_service import SyncService

router = APIRouter()


async def _verified_payload(request: Request):
    """Parsed body when the HMAC matches, otherwise an error response."""
    raw_body = await request.body()
    secret = request.app.state.settings.SHOPIFY_API_SECRET
    if not webhook_service.verify_webhook_signature(raw_body, request.headers.get("X-Shopify-Hmac-SHA256"), secret):
        return None, error_response(401, "Invalid webhook signature")
    try:
        return json.loads(raw_body), None
    except ValueError:
        return None, error_response(400, "Webhook body is not valid JSON")


async def _handle_order(request: Request, service: SyncService, topic: str):
    payload, error = await _verified_payload(request)
    if error is not None:
        return error
    try:
        order = Order.from_shopify(payload)
    except (KeyError, TypeError, ValueError) as e:
        logging.warning(f"Webhook '{topic}' with an unreadable order: {e}")
        return error_response(400, "Webhook body is not a Shopify order")
    logging.info(f"Webhook '{topic}' received for order {order.id}.")
    return await webhook_service.WEBHOOK_TOPICS[topic](service, order)


@router.post("/orders")
async def order_created(request: Request, service: SyncService = Depends(get_sync_service)):
    return await _handle_order(request, service, "orders/create")


@router.post("/orders/updated")
async def order_updated(request: Request, service: SyncService = Depends(get_sync_service)):
    return await _handle_order(request, service, "orders/updated")


@router.post("/app-uninstalled")
async def app_uninstalled(request: Request):
    payload, error = await _verified_payload(request)
    if error is not None:
        return error
    shop = (payload.get("domain") or payload.get("myshopify_domain")) if isinstance(payload, dict) else None
    return await webhook_service.on_app_uninstalled(shop)
