# services/sync_service.py
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import models
from crud import order_syncs, sync_logs
from schemas import Order, SyncResult, BatchResult, StatusUpdateResult, Consignment
from settings import Settings
from services.couriers import BaseCourierService, CarrierError
from services.locks import OrderLocks
from services.shopify_service import ShopifyService
from services.status_map import StatusMapping, build_status_map, get_status_mapping
from services.sync_note import append_sync_note, extract_consignment_id, extract_sync_timestamp, strip_sync_note
from services.sync_state import (
    ResolvedState, SyncState, apply_carrier_status, is_terminal, mark_cancelled, mark_synced, resolve_state,
)
from services.utils import retry_async

SYNCED_TAG = "shipsy-synced"
ALREADY_SYNCED = "already_synced"
NOTE_PENDING = "note_pending"

SKIPPED_FINANCIAL_STATUSES = {"refunded"}
SKIPPED_FULFILLMENT_STATUSES = {"cancelled"}


class OrderNotSyncedError(Exception):
    """The order has no consignment associated with it."""


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class SyncService:
    """
    Order ⇄ consignment synchronization.

    One instance per unit of work (request, scheduled tick); the clients,
    the settings object and the lock registry are shared across instances.
    """

    def __init__(
        self,
        db: AsyncSession,
        shopify: ShopifyService,
        carrier: BaseCourierService,
        settings: Settings,
        locks: Optional[OrderLocks] = None,
        status_map: Optional[Mapping[str, StatusMapping]] = None,
    ):
        self.db = db
        self.shopify = shopify
        self.carrier = carrier
        self.settings = settings
        self.locks = locks or OrderLocks()
        self.status_map = status_map if status_map is not None else build_status_map(settings.SHIPMENT_STATUS_MAP)

    # --- sync state ---

    @staticmethod
    def extract_consignment_id(note: Optional[str]) -> Optional[str]:
        return extract_consignment_id(note)

    async def _resolve(self, order: Order) -> Tuple[Optional[models.OrderSync], ResolvedState]:
        record = await order_syncs.get_order_sync(self.db, order.id)
        return record, resolve_state(record, order.note)

    async def get_sync_state(self, order: Order) -> ResolvedState:
        _, resolved = await self._resolve(order)
        return resolved

    async def _adopt_note_state(self, order: Order, resolved: ResolvedState, state: SyncState,
                                last_status: Optional[str] = None) -> models.OrderSync:
        """Moves a note-only association into the order_syncs table."""
        record = await order_syncs.create_order_sync(
            self.db,
            order_id=order.id,
            consignment_id=resolved.consignment_id,
            state=state.value,
            note_written=True,
            synced_at=extract_sync_timestamp(order.note),
        )
        if last_status:
            record = await order_syncs.update_order_sync(self.db, record, last_status=last_status)
        logging.info(f"Order {order.id}: adopted consignment {resolved.consignment_id} from the order note.")
        return record

    async def _write_sync_note(self, order: Order, consignment_id: str, created_at: datetime,
                               log_failure: bool = True) -> bool:
        """
        Appends the note token and adds the synced tag. False when Shopify refused.
        Only the first failure for a consignment goes to the sync log; repair
        passes call this with log_failure=False.
        """
        try:
            if extract_consignment_id(order.note) != consignment_id:
                note = append_sync_note(order.note, consignment_id, created_at)
                await self.shopify.update_order_note(order.id, note)
                order.note = note
            await self.shopify.add_order_tag(order.id, SYNCED_TAG)
            if SYNCED_TAG not in order.tags:
                order.tags.append(SYNCED_TAG)
            return True
        except Exception as e:
            logging.error(f"Order {order.id}: note/tag write for consignment {consignment_id} failed: {e}")
            if not log_failure:
                return False
            await sync_logs.log_error(
                self.db,
                message="Consignment recorded but order note not written; will be retried by the repair job",
                order_id=order.id, consignment_id=consignment_id, error=str(e), severity="high",
            )
            return False

    # --- one order ---

    async def sync_order(self, order: Order) -> SyncResult:
        """
        Creates the Shipsy consignment for one order, at most once.
        Raises on carrier or storage failure.
        """
        start = time.monotonic()
        async with self.locks.hold(order.id):
            record, resolved = await self._resolve(order)

            if resolved.consignment_id:
                if resolved.from_note:
                    await self._adopt_note_state(order, resolved, resolved.state)
                logging.info(f"Order {order.id} already synced (consignment {resolved.consignment_id}).")
                await sync_logs.log_sync(
                    self.db, status="skipped", order_id=order.id, consignment_id=resolved.consignment_id,
                    message="Order already synced", duration=_elapsed_ms(start),
                )
                return SyncResult(success=False, order_id=order.id,
                                  consignment_id=resolved.consignment_id, reason=ALREADY_SYNCED)

            try:
                created = await self.carrier.create_consignment(order)
            except Exception as e:
                logging.error(f"Failed to sync order {order.id}: {e}")
                await sync_logs.log_sync(
                    self.db, status="failed", order_id=order.id,
                    message="Consignment creation failed", error=str(e), duration=_elapsed_ms(start),
                )
                raise

            consignment_id = created.consignment_id
            synced_at = datetime.now(timezone.utc)
            try:
                record = await order_syncs.create_order_sync(
                    self.db, order_id=order.id, consignment_id=consignment_id,
                    state=mark_synced(resolved.state).value, note_written=False, synced_at=synced_at,
                )
            except SQLAlchemyError as e:
                await self.db.rollback()
                logging.critical(f"Order {order.id}: consignment {consignment_id} created but not recorded: {e}")
                await sync_logs.log_error(
                    self.db, message="Consignment created but sync state could not be stored",
                    order_id=order.id, consignment_id=consignment_id, error=str(e), severity="critical",
                )
                raise

            note_written = await self._write_sync_note(order, consignment_id, synced_at)
            if note_written:
                record = await order_syncs.update_order_sync(self.db, record, note_written=True)

            logging.info(f"Order {order.id} synced to consignment {consignment_id}.")
            await sync_logs.log_sync(
                self.db, status="success" if note_written else "partial",
                order_id=order.id, consignment_id=consignment_id,
                message="Order synced" if note_written else "Order synced, note write pending",
                duration=_elapsed_ms(start),
            )
            return SyncResult(success=True, order_id=order.id, consignment_id=consignment_id,
                              reason=None if note_written else NOTE_PENDING)

    # --- batches ---

    async def sync_pending_orders(self, limit: Optional[int] = None,
                                  created_after: Optional[datetime] = None) -> BatchResult:
        """
        Syncs one page of orders. One order failing never stops the batch.
        """
        start = time.monotonic()
        logging.info("Starting order sync...")
        orders = await self.shopify.get_all_orders(
            status="any", limit=limit or self.settings.SYNC_BATCH_LIMIT, created_after=created_after,
        )
        result = BatchResult(total=len(orders))

        for order in orders:
            if (order.financial_status in SKIPPED_FINANCIAL_STATUSES
                    or order.fulfillment_status in SKIPPED_FULFILLMENT_STATUSES):
                continue
            try:
                outcome = await self.sync_order(order)
                if outcome.success:
                    result.synced += 1
                else:
                    result.skipped += 1
            except Exception as e:
                logging.error(f"Error syncing order {order.id}: {e}")
                result.failed += 1

        if result.failed == 0:
            status = "success"
        elif result.synced == 0 and result.skipped == 0:
            status = "failed"
        else:
            status = "partial"
        await sync_logs.log_sync(
            self.db, status=status, synced=result.synced, failed=result.failed, total=result.total,
            message=f"Batch sync: {result.synced} synced, {result.skipped} already synced, {result.failed} failed",
            duration=_elapsed_ms(start),
        )
        logging.info(f"Order sync completed: synced={result.synced} failed={result.failed} total={result.total}")
        return result

    async def update_consignment_statuses(self, limit: Optional[int] = None) -> StatusUpdateResult:
        """
        Polls Shipsy for every synced order in one page and mirrors the status
        onto the Shopify order.
        """
        logging.info("Starting consignment status update...")
        orders = await self.shopify.get_all_orders(limit=limit or self.settings.STATUS_BATCH_LIMIT)
        result = StatusUpdateResult()

        for order in orders:
            try:
                async with self.locks.hold(order.id):
                    record, resolved = await self._resolve(order)
                if not resolved.consignment_id:
                    continue
                if record is not None and is_terminal(resolved.state):
                    result.skipped += 1
                    continue

                # The order lock is not held while Shipsy is polled
                tracking = await retry_async(
                    lambda: self.carrier.get_consignment_status(resolved.consignment_id),
                    max_retries=self.settings.MAX_RETRIES,
                    delay=self.settings.RETRY_DELAY_SECONDS,
                    retry_on=(CarrierError,),
                )
                if not tracking.current_status:
                    result.skipped += 1
                    continue

                async with self.locks.hold(order.id):
                    fresh, current = await self._resolve(order)
                    changed = (
                        (fresh is None) != (record is None)
                        or current.consignment_id != resolved.consignment_id
                        or (fresh is not None and is_terminal(current.state))
                    )
                    if changed:
                        logging.info(f"Order {order.id} changed while its status was read; skipping.")
                        applied = False
                    else:
                        applied = await self._apply_status(order, fresh, current, tracking.current_status)
                if applied:
                    result.updated += 1
                else:
                    result.skipped += 1
            except Exception as e:
                await self.db.rollback()
                logging.error(f"Error updating status of order {order.id}: {e}")
                await sync_logs.log_status_update(
                    self.db, status="failed", order_id=order.id,
                    consignment_id=extract_consignment_id(order.note), error=str(e),
                    message="Status update failed",
                )
                result.failed += 1

        logging.info(f"Status update completed: updated={result.updated} failed={result.failed} skipped={result.skipped}")
        return result

    # --- status mapping ---

    async def _apply_status(self, order: Order, record: Optional[models.OrderSync],
                            resolved: ResolvedState, carrier_status: str) -> bool:
        mapping = get_status_mapping(carrier_status, self.status_map)
        if mapping is None:
            await sync_logs.log_status_update(
                self.db, status="skipped", order_id=order.id, consignment_id=resolved.consignment_id,
                new_status=carrier_status, message=f"Unknown shipment status '{carrier_status}'",
            )
            return False

        old_status = record.last_status if record is not None else None
        if old_status == carrier_status:
            return False

        await self.shopify.update_order_status(order.id, mapping.shopify_status)
        if mapping.notify:
            await self.shopify.send_order_message(order.id, f"Shipment update: {mapping.name}")

        new_state = apply_carrier_status(resolved.state, carrier_status)
        if record is None:
            await self._adopt_note_state(order, resolved, new_state, last_status=carrier_status)
        else:
            await order_syncs.update_order_sync(self.db, record, state=new_state.value, last_status=carrier_status)

        logging.info(f"Order {order.id} status updated to '{mapping.shopify_status}' ({carrier_status}).")
        await sync_logs.log_status_update(
            self.db, status="success", order_id=order.id, consignment_id=resolved.consignment_id,
            old_status=old_status, new_status=carrier_status,
            message=f"Order status set to {mapping.shopify_status}",
        )
        return True

    async def update_order_from_shipment_status(self, order: Order, carrier_status: str) -> bool:
        """Applies one carrier status to one order. False when nothing changed."""
        async with self.locks.hold(order.id):
            record, resolved = await self._resolve(order)
            if not resolved.consignment_id:
                raise OrderNotSyncedError(f"Order {order.id} has no consignment.")
            return await self._apply_status(order, record, resolved, carrier_status)

    # --- maintenance ---

    async def repair_unwritten_notes(self, limit: int = 100) -> Dict[str, int]:
        """Retries the note/tag write for consignments recorded without one."""
        repaired = failed = 0
        pending = [r.order_id for r in await order_syncs.get_unwritten_notes(self.db, limit=limit)]
        for order_id in pending:
            try:
                async with self.locks.hold(order_id):
                    record = await order_syncs.get_order_sync(self.db, order_id)
                    if record is None or record.note_written:
                        continue
                    order = await self.shopify.get_order(order_id)
                    note_id = extract_consignment_id(order.note)
                    if note_id and note_id != record.consignment_id:
                        raise ValueError(
                            f"note carries consignment {note_id}, store has {record.consignment_id}"
                        )
                    created_at = record.synced_at or datetime.now(timezone.utc)
                    if await self._write_sync_note(order, record.consignment_id, created_at, log_failure=False):
                        await order_syncs.update_order_sync(self.db, record, note_written=True)
                        repaired += 1
                    else:
                        failed += 1
            except Exception as e:
                await self.db.rollback()
                logging.error(f"Could not repair note of order {order_id}: {e}")
                failed += 1
        logging.info(f"Note repair completed: repaired={repaired} failed={failed}")
        return {"repaired": repaired, "failed": failed}

    async def get_sync_stats(self, limit: int = 100) -> Dict[str, Any]:
        orders = await self.shopify.get_all_orders(limit=limit)
        stats = {"total": len(orders), "synced": 0, "not_synced": 0, "pending": 0, "completed": 0}
        records = {}
        for order in orders:
            records[order.id] = await order_syncs.get_order_sync(self.db, order.id)

        for order in orders:
            if resolve_state(records[order.id], order.note).consignment_id:
                stats["synced"] += 1
            else:
                stats["not_synced"] += 1
            if order.fulfillment_status in ("pending", "partial"):
                stats["pending"] += 1
            elif order.fulfillment_status == "fulfilled":
                stats["completed"] += 1
        stats["store_states"] = await order_syncs.count_by_state(self.db)
        return stats

    # --- single-order operations used by the API ---

    async def get_order_shipment(self, order_id: str) -> Dict[str, Any]:
        order = await self.shopify.get_order(order_id)
        _, resolved = await self._resolve(order)
        if not resolved.consignment_id:
            raise OrderNotSyncedError(f"Order {order_id} has not been synced yet.")
        tracking = await self.carrier.get_consignment_status(resolved.consignment_id)
        consignment = Consignment.from_shipsy({"consignment_id": resolved.consignment_id, **tracking.raw})
        return {
            "order_id": order.id,
            "consignment_id": resolved.consignment_id,
            "sync_state": resolved.state.value,
            "status": consignment.to_dict(),
        }

    async def get_consignment_id(self, order_id: str) -> str:
        order = await self.shopify.get_order(order_id)
        _, resolved = await self._resolve(order)
        if not resolved.consignment_id:
            raise OrderNotSyncedError(f"Order {order_id} has not been synced yet.")
        return resolved.consignment_id

    async def cancel_order_shipment(self, order_id: str) -> Dict[str, Any]:
        async with self.locks.hold(order_id):
            order = await self.shopify.get_order(order_id)
            record, resolved = await self._resolve(order)
            if not resolved.consignment_id:
                raise OrderNotSyncedError(f"Order {order_id} has not been synced yet.")
            new_state = mark_cancelled(resolved.state)
            old_status = record.last_status if record is not None else None

            await self.carrier.cancel_consignment(resolved.consignment_id)
            if record is None:
                await self._adopt_note_state(order, resolved, new_state, last_status="cancelled")
            else:
                await order_syncs.update_order_sync(self.db, record, state=new_state.value, last_status="cancelled")
            await sync_logs.log_status_update(
                self.db, status="success", order_id=order.id, consignment_id=resolved.consignment_id,
                old_status=old_status, new_status="cancelled",
                message="Consignment cancelled",
            )
            return {"order_id": order.id, "consignment_id": resolved.consignment_id, "state": new_state.value}

    async def clear_order_sync(self, order_id: str) -> Dict[str, Any]:
        """
        Forgets the consignment of an order so the next sync creates a new one.
        The consignment itself is left untouched at the carrier.
        """
        async with self.locks.hold(order_id):
            order = await self.shopify.get_order(order_id)
            record, resolved = await self._resolve(order)

            if extract_consignment_id(order.note):
                note = strip_sync_note(order.note)
                if extract_consignment_id(note):
                    raise ValueError(f"Order {order.id}: could not remove the sync token from the note.")
                await self.shopify.update_order_note(order.id, note)
            if SYNCED_TAG in order.tags:
                await self.shopify.remove_order_tag(order.id, SYNCED_TAG)
            if record is not None:
                await order_syncs.delete_order_sync(self.db, order.id)

            logging.warning(f"Order {order.id}: association with consignment {resolved.consignment_id} cleared.")
            await sync_logs.log_sync(
                self.db, status="success", order_id=order.id, consignment_id=resolved.consignment_id,
                message="Sync association cleared",
            )
            return {"order_id": order.id, "cleared_consignment_id": resolved.consignment_id}
