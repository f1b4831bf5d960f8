# background.py
import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI

from crud import sync_logs
from services.sync_service import SyncService


def build_sync_service(app: FastAPI, session) -> SyncService:
    state = app.state
    return SyncService(session, state.shopify, state.carrier, state.settings, state.locks)


async def run_scheduled_sync(app: FastAPI, limit: Optional[int] = None) -> Dict[str, Any]:
    """One tick of the order sync job. Never raises."""
    if not app.state.settings.ENABLE_AUTO_SYNC:
        return {"success": True, "skipped": True}
    try:
        async with app.state.session_factory() as session:
            result = await build_sync_service(app, session).sync_pending_orders(limit=limit)
        return {"success": True, **result.model_dump()}
    except Exception as e:
        logging.error(f"Scheduled order sync failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


async def run_scheduled_status_update(app: FastAPI) -> Dict[str, Any]:
    """One tick of the status job. Never raises."""
    if not app.state.settings.ENABLE_AUTO_SYNC:
        return {"success": True, "skipped": True}
    try:
        async with app.state.session_factory() as session:
            service = build_sync_service(app, session)
            result = await service.update_consignment_statuses()
            repair = await service.repair_unwritten_notes()
        return {"success": True, **result.model_dump(), "notes_repaired": repair["repaired"]}
    except Exception as e:
        logging.error(f"Scheduled status update failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


async def run_log_retention(app: FastAPI) -> Dict[str, Any]:
    try:
        async with app.state.session_factory() as session:
            return await sync_logs.clear_old_logs(session, days_old=app.state.settings.LOG_RETENTION_DAYS)
    except Exception as e:
        logging.error(f"Sync log retention failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


async def run_periodic_task(app: FastAPI, interval_setting: str, task_function, task_name: str):
    """Runs `task_function(app)` forever, sleeping the interval named by `interval_setting` between runs."""
    logging.info(f"Periodic task '{task_name}' started.")
    while True:
        await task_function(app)
        # Re-read each round so interval changes apply without a restart
        interval_minutes = getattr(app.state.settings, interval_setting)
        await asyncio.sleep(interval_minutes * 60)


def start_background_tasks(app: FastAPI) -> List[asyncio.Task]:
    """
    Creates and starts the periodic jobs. The ENABLE_AUTO_SYNC flag is checked
    on every tick, so the jobs always run and idle while it is off.
    """
    logging.info("Starting background tasks...")
    tasks = [
        asyncio.create_task(run_periodic_task(
            app, "SYNC_INTERVAL_MINUTES", run_scheduled_sync, "Order sync",
        )),
        asyncio.create_task(run_periodic_task(
            app, "STATUS_UPDATE_INTERVAL_MINUTES", run_scheduled_status_update, "Consignment status update",
        )),
        asyncio.create_task(run_periodic_task(
            app, "LOG_RETENTION_INTERVAL_MINUTES", run_log_retention, "Sync log retention",
        )),
    ]
    app.state.background_tasks = tasks
    return tasks


async def stop_background_tasks(app: FastAPI) -> None:
    tasks = getattr(app.state, "background_tasks", [])
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    app.state.background_tasks = []
