import asyncio
import json
import logging
from types import SimpleNamespace

from conftest import FakeCarrier, FakeShopify, make_settings, memory_engine, order_payload
from background import run_scheduled_status_update, run_scheduled_sync
from database import create_session_factory, init_models
from logging_config import JsonFormatter
from services.locks import OrderLocks


def run_app(body, payloads=(), **settings_overrides):
    """Runs `await body(app)` with a minimal app.state, like main.create_app builds."""
    async def main():
        settings = make_settings(**settings_overrides)
        engine = memory_engine()
        await init_models(engine)
        state = SimpleNamespace(
            settings=settings,
            session_factory=create_session_factory(engine),
            shopify=FakeShopify(payloads),
            carrier=FakeCarrier(settings),
            locks=OrderLocks(),
        )
        try:
            return await body(SimpleNamespace(state=state))
        finally:
            await engine.dispose()

    return asyncio.run(main())


def test_scheduled_sync_then_status_update():
    async def body(app):
        synced = await run_scheduled_sync(app)
        assert synced["success"] is True
        assert synced["synced"] == 2

        app.state.carrier.statuses["7000001"] = "delivered"
        updated = await run_scheduled_status_update(app)
        assert updated["success"] is True
        assert updated["updated"] == 1
        assert app.state.shopify.status_updates == [("1001", "completed")]

    run_app(body, payloads=[order_payload(1001), order_payload(1002)])


def test_scheduled_jobs_idle_when_auto_sync_is_off():
    async def body(app):
        assert await run_scheduled_sync(app) == {"success": True, "skipped": True}
        assert await run_scheduled_status_update(app) == {"success": True, "skipped": True}
        assert app.state.carrier.created == []

    run_app(body, payloads=[order_payload(1001)], ENABLE_AUTO_SYNC=False)


def test_scheduled_sync_swallows_errors():
    async def body(app):
        app.state.shopify.fail_listing = True
        result = await run_scheduled_sync(app)
        assert result["success"] is False
        assert "unreachable" in result["error"]

    run_app(body)


def test_json_log_format():
    record = logging.LogRecord("sync", logging.INFO, __file__, 1, "Order %s synced", ("1001",), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "INFO"
    assert payload["message"] == "Order 1001 synced"
