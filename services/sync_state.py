# services/sync_state.py
from enum import Enum
from typing import NamedTuple, Optional

import models
from .sync_note import extract_consignment_id


class SyncState(str, Enum):
    UNSYNCED = "unsynced"
    SYNCED = "synced"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({SyncState.DELIVERED, SyncState.CANCELLED})

_TERMINAL_BY_STATUS = {
    "delivered": SyncState.DELIVERED,
    "cancelled": SyncState.CANCELLED,
}


class ResolvedState(NamedTuple):
    state: SyncState
    consignment_id: Optional[str]
    # True when only the note carries the association
    from_note: bool = False


def is_terminal(state: SyncState) -> bool:
    return state in TERMINAL_STATES


def resolve_state(record: Optional[models.OrderSync], note: Optional[str]) -> ResolvedState:
    """
    Single answer to "is this order synced". The stored record wins; the
    note token is the fallback for orders synced before the table existed.
    """
    if record is not None and record.consignment_id:
        return ResolvedState(SyncState(record.state), record.consignment_id)

    consignment_id = extract_consignment_id(note)
    if consignment_id:
        return ResolvedState(SyncState.SYNCED, consignment_id, from_note=True)
    return ResolvedState(SyncState.UNSYNCED, None)


def apply_carrier_status(state: SyncState, carrier_status: Optional[str]) -> SyncState:
    """Next state after the carrier reports `carrier_status`."""
    if state == SyncState.UNSYNCED:
        raise ValueError("An unsynced order has no consignment status to apply.")
    if is_terminal(state):
        return state
    return _TERMINAL_BY_STATUS.get(carrier_status or "", SyncState.SYNCED)


def mark_synced(state: SyncState) -> SyncState:
    if state != SyncState.UNSYNCED:
        raise ValueError(f"Cannot sync an order in state '{state.value}'.")
    return SyncState.SYNCED


def mark_cancelled(state: SyncState) -> SyncState:
    if state == SyncState.UNSYNCED:
        raise ValueError("Cannot cancel an order that has no consignment.")
    if state == SyncState.DELIVERED:
        raise ValueError("Cannot cancel a delivered consignment.")
    return SyncState.CANCELLED
