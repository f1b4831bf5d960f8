# crud/sync_logs.py

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from models import SyncLog

LOG_TYPES = ("sync", "status_update", "error")


async def add_log(db: AsyncSession, type: str, **fields: Any) -> SyncLog:
    """Appends one entry. Entries are never updated afterwards."""
    if type not in LOG_TYPES:
        raise ValueError(f"Unknown sync log type '{type}'")
    entry = SyncLog(timestamp=datetime.now(timezone.utc), type=type, **fields)
    db.add(entry)
    await db.commit()
    return entry


async def log_sync(
    db: AsyncSession,
    status: str,
    order_id: Optional[str] = None,
    consignment_id: Optional[str] = None,
    synced: int = 0,
    failed: int = 0,
    total: int = 0,
    message: str = "",
    error: Optional[str] = None,
    duration: int = 0,
) -> SyncLog:
    return await add_log(
        db, "sync",
        status=status, order_id=order_id, consignment_id=consignment_id,
        synced=synced, failed=failed, total=total,
        message=message, error=error, duration=duration,
    )


async def log_status_update(
    db: AsyncSession,
    status: str,
    order_id: str,
    consignment_id: Optional[str],
    old_status: Optional[str] = None,
    new_status: Optional[str] = None,
    message: str = "",
    error: Optional[str] = None,
) -> SyncLog:
    return await add_log(
        db, "status_update",
        status=status, order_id=order_id, consignment_id=consignment_id,
        old_status=old_status, new_status=new_status, message=message, error=error,
    )


async def log_error(
    db: AsyncSession,
    message: str,
    order_id: Optional[str] = None,
    consignment_id: Optional[str] = None,
    error: Optional[str] = None,
    severity: str = "medium",
) -> SyncLog:
    return await add_log(
        db, "error",
        status="failed", order_id=order_id, consignment_id=consignment_id,
        message=message, error=error, severity=severity,
    )


async def get_logs(
    db: AsyncSession,
    type: Optional[str] = None,
    order_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: Optional[int] = 100,
) -> List[SyncLog]:
    """Most recent `limit` entries matching the filters, oldest first."""
    query = select(SyncLog)
    if type:
        query = query.where(SyncLog.type == type)
    if order_id:
        query = query.where(SyncLog.order_id == str(order_id))
    if status:
        query = query.where(SyncLog.status == status)
    query = query.order_by(SyncLog.id.desc())
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(reversed(result.scalars().all()))


async def get_stats(db: AsyncSession) -> Dict[str, Any]:
    status_counts = dict((await db.execute(
        select(SyncLog.status, func.count()).group_by(SyncLog.status)
    )).all())
    totals = (await db.execute(
        select(func.coalesce(func.sum(SyncLog.synced), 0), func.coalesce(func.sum(SyncLog.failed), 0))
        .where(SyncLog.type == "sync", SyncLog.total > 0)
    )).one()
    last_sync = (await db.execute(select(func.max(SyncLog.timestamp)))).scalar_one_or_none()

    return {
        "total": sum(status_counts.values()),
        "successful": status_counts.get("success", 0),
        "failed": status_counts.get("failed", 0),
        "partial": status_counts.get("partial", 0),
        "skipped": status_counts.get("skipped", 0),
        "total_synced": int(totals[0]),
        "total_failed": int(totals[1]),
        "last_sync": last_sync.isoformat() if last_sync else None,
    }


async def clear_old_logs(db: AsyncSession, days_old: int = 30) -> Dict[str, Any]:
    """Deletes entries older than `days_old` days; 0 deletes everything."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
    result = await db.execute(delete(SyncLog).where(SyncLog.timestamp <= cutoff))
    await db.commit()
    remaining = (await db.execute(select(func.count()).select_from(SyncLog))).scalar_one()
    return {"success": True, "removed": result.rowcount, "remaining": remaining}
