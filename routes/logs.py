# routes/logs.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crud import sync_logs
from dependencies import get_db
from schemas import ClearLogsRequest

router = APIRouter()


@router.get("")
async def list_logs(
    type: Optional[str] = Query(None, pattern="^(sync|status_update|error)$"),
    order_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    logs = await sync_logs.get_logs(db, type=type, order_id=order_id, status=status, limit=limit)
    return {"success": True, "logs": [entry.to_dict() for entry in logs]}


@router.get("/stats")
async def log_stats(db: AsyncSession = Depends(get_db)):
    return {"success": True, "stats": await sync_logs.get_stats(db)}


@router.post("/clear-old")
async def clear_old_logs(body: ClearLogsRequest, db: AsyncSession = Depends(get_db)):
    return await sync_logs.clear_old_logs(db, days_old=body.days_old)


@router.post("/clear-all")
async def clear_all_logs(db: AsyncSession = Depends(get_db)):
    return await sync_logs.clear_old_logs(db, days_old=0)
