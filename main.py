# main.py
import logging
from typing import Optional

from fastapi import FastAPI

from background import start_background_tasks, stop_background_tasks
from database import create_engine_from_settings, create_session_factory, init_models
from logging_config import setup_logging
from routes import logs, orders, settings as settings_routes, sync, webhooks
from settings import Settings
from services.couriers import BaseCourierService, get_courier_service
from services.locks import OrderLocks
from services.shopify_service import ShopifyService


def create_app(
    settings: Optional[Settings] = None,
    shopify: Optional[ShopifyService] = None,
    carrier: Optional[BaseCourierService] = None,
    run_background_tasks: bool = True,
) -> FastAPI:
    """
    Builds the application. Every component shares the same Settings object,
    so runtime updates through the settings API are seen everywhere.
    """
    settings = settings or Settings()
    setup_logging(settings)

    app = FastAPI(title="Shopify Shipsy Sync")
    engine = create_engine_from_settings(settings)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.shopify = shopify or ShopifyService(settings)
    app.state.carrier = carrier or get_courier_service("shipsy", settings)
    app.state.locks = OrderLocks()
    app.state.is_syncing = False

    # Include all the different routes from other files
    app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
    app.include_router(settings_routes.router, prefix="/api/settings", tags=["settings"])
    app.include_router(logs.router, prefix="/api/logs", tags=["logs"])
    app.include_router(sync.router, prefix="/sync", tags=["sync"])
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok", "auto_sync": app.state.settings.ENABLE_AUTO_SYNC}

    @app.on_event("startup")
    async def startup_event():
        """
        Create the tables and start the periodic jobs.
        """
        await init_models(engine)
        if run_background_tasks:
            start_background_tasks(app)
        logging.info("Shipsy sync service started.")

    @app.on_event("shutdown")
    async def shutdown_event():
        await stop_background_tasks(app)
        await engine.dispose()

    return app


app = create_app()
