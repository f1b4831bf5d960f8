# services/sync_note.py
"""
Reads and writes the sync token kept in a Shopify order note.

Grammar (version 1), appended after whatever text the note already holds:

    SHIPSY_ID: <digits>
    Created: <ISO-8601 UTC timestamp>

Orders synced before the `order_syncs` table existed only carry this token,
so it stays the compatibility format: it is still written on every sync and
read whenever the table has no row for an order.
"""
import re
from datetime import datetime, timezone
from typing import Optional

NOTE_GRAMMAR_VERSION = 1
TOKEN_PREFIX = "SHIPSY_ID:"

_TOKEN = r"SHIPSY_ID:\s*(\d+)"
_CREATED_TAIL = r"(?:[ \t]*\n[ \t]*Created:[ \t]*\S+[ \t]*(?=\n|$))?"

CONSIGNMENT_ID_RE = re.compile(_TOKEN)
CREATED_RE = re.compile(r"^Created:\s*(\S+)\s*$", re.MULTILINE)
# A token filling its line, removed together with the newline before it
_TOKEN_LINE_RE = re.compile(r"(?:\n|^)[ \t]*" + _TOKEN + r"[ \t]*" + _CREATED_TAIL + r"(?=\n|$)")
_TOKEN_INLINE_RE = re.compile(r"[ \t]*" + _TOKEN + _CREATED_TAIL)


def extract_consignment_id(note: Optional[str]) -> Optional[str]:
    """Returns the digits of the first `SHIPSY_ID:` token, or None."""
    if not note:
        return None
    match = CONSIGNMENT_ID_RE.search(note)
    return match.group(1) if match else None


def extract_sync_timestamp(note: Optional[str]) -> Optional[datetime]:
    if not note:
        return None
    match = CREATED_RE.search(note)
    if not match:
        return None
    try:
        return datetime.fromisoformat(match.group(1).replace("Z", "+00:00"))
    except ValueError:
        return None


def format_sync_token(consignment_id: str, created_at: Optional[datetime] = None) -> str:
    consignment_id = str(consignment_id).strip()
    if not consignment_id.isdigit():
        raise ValueError(f"Consignment id must be numeric, got '{consignment_id}'")
    created_at = created_at or datetime.now(timezone.utc)
    return f"{TOKEN_PREFIX} {consignment_id}\nCreated: {created_at.isoformat()}"


def append_sync_note(note: Optional[str], consignment_id: str, created_at: Optional[datetime] = None) -> str:
    """Appends the token lines, keeping any text already in the note."""
    token = format_sync_token(consignment_id, created_at)
    existing = (note or "").rstrip("\n")
    return f"{existing}\n{token}" if existing.strip() else token


def strip_sync_note(note: Optional[str]) -> str:
    """
    Removes every token the parser would find, with the `Created:` line that
    follows it. A token on a line of its own takes the whole line with it.
    """
    if not note:
        return ""
    stripped = note
    # Removing one token can join its neighbours into a new one
    while CONSIGNMENT_ID_RE.search(stripped):
        stripped = _TOKEN_LINE_RE.sub("", stripped)
        stripped = _TOKEN_INLINE_RE.sub("", stripped)
    return stripped.strip("\n")
