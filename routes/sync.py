# routes/sync.py
import logging

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from background import build_sync_service

router = APIRouter()


async def _sync_orders(service):
    return await service.sync_pending_orders()


async def _update_statuses(service):
    return await service.update_consignment_statuses()


async def _repair_notes(service):
    return await service.repair_unwritten_notes()


async def run_sync_task(app, task_name: str, job):
    """Runs a manual job in its own session; the auto-sync flag does not apply."""
    try:
        async with app.state.session_factory() as session:
            result = await job(build_sync_service(app, session))
        logging.info(f"Manual run '{task_name}' finished: {result}")
    except Exception as e:
        logging.error(f"Error during manual run '{task_name}': {e}", exc_info=True)
    finally:
        app.state.is_syncing = False


def _start(request: Request, background_tasks: BackgroundTasks, task_name: str, job) -> JSONResponse:
    app = request.app
    if app.state.is_syncing:
        return JSONResponse(status_code=409, content={"success": False, "error": "Another sync is already running."})
    app.state.is_syncing = True
    background_tasks.add_task(run_sync_task, app, task_name, job)
    return JSONResponse(content={"success": True, "message": f"{task_name} started."})


@router.post("/orders")
async def sync_orders_start(request: Request, background_tasks: BackgroundTasks):
    return _start(request, background_tasks, "Order sync", _sync_orders)


@router.post("/statuses")
async def sync_statuses_start(request: Request, background_tasks: BackgroundTasks):
    return _start(request, background_tasks, "Status update", _update_statuses)


@router.post("/repair")
async def repair_notes_start(request: Request, background_tasks: BackgroundTasks):
    return _start(request, background_tasks, "Note repair", _repair_notes)
