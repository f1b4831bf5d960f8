import base64
import hashlib
import hmac
import io
import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfReader, PdfWriter

from conftest import TEST_SECRET, FakeCarrier, FakeShopify, make_settings, order_payload
from main import create_app


def blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=288, height=432)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def signed(payload: dict, secret: str = TEST_SECRET):
    body = json.dumps(payload).encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return body, {"X-Shopify-Hmac-SHA256": base64.b64encode(digest).decode(), "Content-Type": "application/json"}


@pytest.fixture
def api(tmp_path):
    settings = make_settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
    invalid = order_payload(1005, line_items=[])
    invalid["shipping_address"] = {}
    shopify = FakeShopify([order_payload(1001), order_payload(1002), invalid])
    carrier = FakeCarrier(settings)
    app = create_app(settings=settings, shopify=shopify, carrier=carrier, run_background_tasks=False)
    with TestClient(app) as client:
        yield SimpleNamespace(client=client, app=app, shopify=shopify, carrier=carrier, settings=settings)


def test_health(api):
    response = api.client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "auto_sync": True}


def test_sync_single_order_twice(api):
    first = api.client.post("/api/orders/1001/sync")
    second = api.client.post("/api/orders/1001/sync")

    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["consignment_id"] == "7000001"
    assert second.json()["success"] is False
    assert second.json()["reason"] == "already_synced"
    assert api.carrier.created == ["1001"]


def test_sync_rejects_invalid_order(api):
    response = api.client.post("/api/orders/1005/sync")

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert "City is required" in body["details"]
    assert api.carrier.created == []


def test_unknown_order_is_404(api):
    response = api.client.get("/api/orders/424242")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_carrier_error_is_502(api):
    api.carrier.fail_for.add("1001")
    response = api.client.post("/api/orders/1001/sync")
    assert response.status_code == 502


def test_list_orders_shows_sync_state(api):
    api.client.post("/api/orders/1001/sync")

    orders = {o["id"]: o for o in api.client.get("/api/orders").json()["orders"]}

    assert orders["1001"]["sync_state"] == "synced"
    assert orders["1001"]["consignment_id"] == "7000001"
    assert orders["1002"]["sync_state"] == "unsynced"
    assert orders["1001"]["total_weight"] == 1.25


def test_sync_all_returns_counts(api):
    api.carrier.fail_for.add("1005")
    response = api.client.post("/api/orders/sync-all", json={"limit": 10})

    assert response.status_code == 200
    assert response.json() == {"success": True, "synced": 2, "failed": 1, "skipped": 0, "total": 3}


def test_sync_all_reports_listing_failure_with_200(api):
    api.shopify.fail_listing = True
    response = api.client.post("/api/orders/sync-all", json={})

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["synced"] == 0


def test_order_stats(api):
    api.client.post("/api/orders/1001/sync")
    stats = api.client.get("/api/orders/stats").json()["stats"]
    assert (stats["total"], stats["synced"], stats["not_synced"]) == (3, 1, 2)


def test_single_and_merged_labels(api):
    api.client.post("/api/orders/1001/sync")
    api.client.post("/api/orders/1002/sync")
    api.carrier.labels = {"7000001": blank_pdf(), "7000002": blank_pdf()}

    single = api.client.get("/api/orders/1001/label")
    assert single.status_code == 200
    assert single.headers["content-type"] == "application/pdf"
    assert "label-7000001.pdf" in single.headers["content-disposition"]

    merged = api.client.post("/api/orders/labels", json={"order_ids": ["1001", "1002", "1005"]})
    assert merged.status_code == 200
    assert len(PdfReader(io.BytesIO(merged.content)).pages) == 2
    assert merged.headers["x-failed-orders"] == "1005"


def test_label_of_unsynced_order_is_404(api):
    response = api.client.get("/api/orders/1002/label")
    assert response.status_code == 404
    assert api.client.post("/api/orders/labels", json={"order_ids": ["1002"]}).status_code == 502


def test_status_cancel_and_unlink(api):
    api.client.post("/api/orders/1001/sync")
    api.carrier.statuses["7000001"] = "in_transit"

    status = api.client.get("/api/orders/1001/status").json()
    assert status["status"]["current_status"] == "in_transit"
    assert status["status"]["status_description"] == "In transit"

    cancelled = api.client.post("/api/orders/1001/cancel").json()
    assert cancelled["state"] == "cancelled"
    assert api.carrier.cancelled == ["7000001"]

    unlinked = api.client.post("/api/orders/1001/unlink").json()
    assert unlinked["cleared_consignment_id"] == "7000001"
    assert api.client.get("/api/orders/1001").json()["order"]["sync_state"] == "unsynced"


def test_status_of_unsynced_order(api):
    assert api.client.get("/api/orders/1002/status").status_code == 404


def test_settings_hide_secrets_and_update_in_place(api):
    response = api.client.get("/api/settings")
    assert response.status_code == 200
    assert "shipsy-key" not in response.text
    assert "shpat_test" not in response.text

    updated = api.client.put("/api/settings", json={"SYNC_INTERVAL_MINUTES": 5, "STORE_NAME": "New Name"})
    assert updated.status_code == 200
    assert updated.json()["settings"]["sync"]["sync_interval_minutes"] == 5
    # Shared by reference with every component
    assert api.settings.SYNC_INTERVAL_MINUTES == 5
    assert api.carrier.settings.STORE_NAME == "New Name"


def test_settings_update_is_validated(api):
    assert api.client.put("/api/settings", json={"SYNC_INTERVAL_MINUTES": 0}).status_code == 422
    assert api.client.put("/api/settings", json={"SHIPSY_API_KEY": "leak"}).status_code == 422
    assert api.settings.SYNC_INTERVAL_MINUTES == 15


def test_carrier_lookups(api):
    assert api.client.post("/api/settings/test-connection").json()["success"] is True
    assert api.client.get("/api/settings/service-types").json()["service_types"][0]["code"] == "express"
    points = api.client.get("/api/settings/pickup-points", params={"pincode": "12211"}).json()
    assert points["pickup_points"] == [{"code": "RUH-1", "pincode": "12211"}]
    assert api.client.get("/api/settings/pickup-points").status_code == 422


def test_logs_endpoints(api):
    api.client.post("/api/orders/1001/sync")
    api.client.post("/api/orders/1001/sync")

    logs = api.client.get("/api/logs", params={"type": "sync"}).json()["logs"]
    assert [entry["status"] for entry in logs] == ["success", "skipped"]

    stats = api.client.get("/api/logs/stats").json()["stats"]
    assert (stats["total"], stats["successful"], stats["skipped"]) == (2, 1, 1)

    assert api.client.post("/api/logs/clear-old", json={"days_old": 30}).json()["removed"] == 0
    cleared = api.client.post("/api/logs/clear-all").json()
    assert (cleared["removed"], cleared["remaining"]) == (2, 0)


def test_manual_sync_runs_in_background(api):
    response = api.client.post("/sync/orders")

    assert response.status_code == 200
    assert sorted(api.carrier.created) == ["1001", "1002", "1005"]
    assert api.app.state.is_syncing is False


def test_manual_run_conflict(api):
    api.app.state.is_syncing = True
    for path in ("/sync/orders", "/sync/statuses", "/sync/repair"):
        assert api.client.post(path).status_code == 409
    assert api.carrier.created == []


def test_order_created_webhook(api):
    body, headers = signed(order_payload(1002))
    response = api.client.post("/webhooks/orders", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["action"] == "synced"
    assert api.carrier.created == ["1002"]


def test_webhook_with_bad_signature_is_rejected(api):
    body, headers = signed(order_payload(1002), secret="wrong")
    response = api.client.post("/webhooks/orders", content=body, headers=headers)

    assert response.status_code == 401
    assert api.carrier.created == []


def test_order_updated_webhook_waits_for_payment(api):
    body, headers = signed(order_payload(1002, financial_status="pending"))
    assert api.client.post("/webhooks/orders/updated", content=body, headers=headers).json()["action"] == "ignored"

    body, headers = signed(order_payload(1002, financial_status="paid"))
    assert api.client.post("/webhooks/orders/updated", content=body, headers=headers).json()["action"] == "synced"
    assert api.carrier.created == ["1002"]


def test_app_uninstalled_webhook(api):
    body, headers = signed({"domain": "test-shop.myshopify.com"})
    response = api.client.post("/webhooks/app-uninstalled", content=body, headers=headers)
    assert response.json() == {"success": True, "action": "uninstalled", "shop": "test-shop.myshopify.com"}
