# crud/order_syncs.py

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from models import OrderSync


class StaleSyncStateError(Exception):
    """The record changed between read and write."""


async def get_order_sync(db: AsyncSession, order_id: str) -> Optional[OrderSync]:
    result = await db.execute(select(OrderSync).where(OrderSync.order_id == str(order_id)))
    return result.scalar_one_or_none()


async def get_unwritten_notes(db: AsyncSession, limit: int = 100) -> List[OrderSync]:
    """Records whose consignment id never made it into the Shopify note."""
    result = await db.execute(
        select(OrderSync)
        .where(OrderSync.note_written == False, OrderSync.consignment_id.is_not(None))  # noqa: E712
        .order_by(OrderSync.synced_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def create_order_sync(
    db: AsyncSession,
    order_id: str,
    consignment_id: str,
    state: str,
    note_written: bool = False,
    synced_at: Optional[datetime] = None,
) -> OrderSync:
    record = OrderSync(
        order_id=str(order_id),
        consignment_id=str(consignment_id),
        state=state,
        note_written=note_written,
        version=1,
        synced_at=synced_at or datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(record)
    await db.commit()
    return record


async def update_order_sync(db: AsyncSession, record: OrderSync, **fields) -> OrderSync:
    """
    Writes `fields` only if nobody bumped the version since `record` was read.
    """
    order_id = record.order_id
    expected_version = record.version
    values = dict(fields, version=expected_version + 1, updated_at=datetime.now(timezone.utc))
    result = await db.execute(
        update(OrderSync)
        .where(OrderSync.order_id == order_id, OrderSync.version == expected_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise StaleSyncStateError(
            f"Sync state of order {order_id} changed since version {expected_version}."
        )
    await db.commit()
    await db.refresh(record)
    return record


async def delete_order_sync(db: AsyncSession, order_id: str) -> bool:
    result = await db.execute(delete(OrderSync).where(OrderSync.order_id == str(order_id)))
    await db.commit()
    return result.rowcount > 0


async def count_by_state(db: AsyncSession) -> Dict[str, int]:
    result = await db.execute(select(OrderSync.state, func.count()).group_by(OrderSync.state))
    return {state: count for state, count in result.all()}
