# routes/orders.py
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response, StreamingResponse

from dependencies import get_sync_service
from routes.errors import error_response, exception_response
from schemas import Order, SyncAllRequest, LabelsRequest
from services import label_service
from services.sync_service import SyncService

router = APIRouter()


async def _order_view(service: SyncService, order: Order) -> dict:
    resolved = await service.get_sync_state(order)
    return {
        **order.to_dict(),
        "consignment_id": resolved.consignment_id,
        "sync_state": resolved.state.value,
    }


@router.get("")
async def list_orders(
    limit: int = Query(50, ge=1, le=250),
    status: str = "any",
    service: SyncService = Depends(get_sync_service),
):
    try:
        orders = await service.shopify.get_all_orders(status=status, limit=limit)
    except Exception as e:
        return exception_response(e)
    return {"success": True, "orders": [await _order_view(service, o) for o in orders]}


@router.get("/stats")
async def sync_stats(limit: int = Query(100, ge=1, le=250), service: SyncService = Depends(get_sync_service)):
    try:
        return {"success": True, "stats": await service.get_sync_stats(limit=limit)}
    except Exception as e:
        return exception_response(e)


@router.post("/sync-all")
async def sync_all_orders(body: SyncAllRequest, service: SyncService = Depends(get_sync_service)):
    """Batch sync; always answers 200 with the counts."""
    try:
        result = await service.sync_pending_orders(limit=body.limit, created_after=body.created_after)
    except Exception as e:
        logging.error(f"Batch sync failed: {e}")
        return {"success": False, "error": str(e), "synced": 0, "failed": 0, "skipped": 0, "total": 0}
    return {"success": True, **result.model_dump()}


@router.post("/labels")
async def merge_labels(body: LabelsRequest, service: SyncService = Depends(get_sync_service)):
    if not body.order_ids:
        return error_response(400, "No orders selected")

    buffer, failed = await label_service.generate_labels_pdf(service, body.order_ids)
    if len(failed) == len(body.order_ids):
        return error_response(502, "No label could be generated", failed=failed)

    headers = {"Content-Disposition": 'attachment; filename="labels.pdf"'}
    if failed:
        headers["X-Failed-Orders"] = ",".join(failed)
    return StreamingResponse(buffer, media_type="application/pdf", headers=headers)


@router.get("/{order_id}")
async def get_order(order_id: str, service: SyncService = Depends(get_sync_service)):
    try:
        order = await service.shopify.get_order(order_id)
        return {"success": True, "order": await _order_view(service, order)}
    except Exception as e:
        return exception_response(e)


@router.post("/{order_id}/sync")
async def sync_order(order_id: str, service: SyncService = Depends(get_sync_service)):
    try:
        order = await service.shopify.get_order(order_id)
    except Exception as e:
        return exception_response(e)

    errors = order.validate_for_shipping()
    if errors:
        return error_response(422, "Order validation failed", details=errors)

    try:
        result = await service.sync_order(order)
    except Exception as e:
        return exception_response(e)
    return result.model_dump()


@router.get("/{order_id}/label")
async def download_label(order_id: str, service: SyncService = Depends(get_sync_service)):
    try:
        consignment_id, content = await label_service.get_order_label(service, order_id)
    except Exception as e:
        return exception_response(e)
    headers = {"Content-Disposition": f'attachment; filename="label-{consignment_id}.pdf"'}
    return Response(content=content, media_type="application/pdf", headers=headers)


@router.get("/{order_id}/status")
async def get_order_status(order_id: str, service: SyncService = Depends(get_sync_service)):
    try:
        return {"success": True, **await service.get_order_shipment(order_id)}
    except Exception as e:
        return exception_response(e)


@router.post("/{order_id}/cancel")
async def cancel_order_shipment(order_id: str, service: SyncService = Depends(get_sync_service)):
    try:
        return {"success": True, **await service.cancel_order_shipment(order_id)}
    except Exception as e:
        return exception_response(e)


@router.post("/{order_id}/unlink")
async def unlink_order(order_id: str, service: SyncService = Depends(get_sync_service)):
    try:
        return {"success": True, **await service.clear_order_sync(order_id)}
    except Exception as e:
        return exception_response(e)
