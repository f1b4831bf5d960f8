from datetime import datetime, timezone

import pytest

from services.sync_note import (
    append_sync_note, extract_consignment_id, extract_sync_timestamp, format_sync_token, strip_sync_note,
)

CREATED = datetime(2026, 10, 1, 12, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("note, expected", [
    ("SHIPSY_ID: 123456", "123456"),
    ("Customer asked for a call\nSHIPSY_ID:987\nCreated: 2026-10-01T12:30:00+00:00", "987"),
    ("SHIPSY_ID: 1\nSHIPSY_ID: 2", "1"),
    ("SHIPSY_ID: abc", None),
    ("no token here", None),
    ("", None),
    (None, None),
])
def test_extract_consignment_id(note, expected):
    assert extract_consignment_id(note) == expected


def test_append_to_empty_note_is_just_the_token():
    assert append_sync_note("", "555", CREATED) == "SHIPSY_ID: 555\nCreated: 2026-10-01T12:30:00+00:00"
    assert append_sync_note(None, "555", CREATED).startswith("SHIPSY_ID: 555\n")


def test_append_keeps_existing_text():
    note = append_sync_note("Ring twice\n", "555", CREATED)
    assert note == "Ring twice\nSHIPSY_ID: 555\nCreated: 2026-10-01T12:30:00+00:00"
    assert extract_consignment_id(note) == "555"


def test_token_requires_numeric_id():
    with pytest.raises(ValueError):
        format_sync_token("CN-55", CREATED)


def test_extract_sync_timestamp():
    note = append_sync_note("hello", "555", CREATED)
    assert extract_sync_timestamp(note) == CREATED
    assert extract_sync_timestamp("SHIPSY_ID: 555") is None
    assert extract_sync_timestamp("Created: yesterday") is None


def test_strip_removes_token_lines_only():
    note = append_sync_note("Ring twice\nFragile", "555", CREATED)
    assert strip_sync_note(note) == "Ring twice\nFragile"
    assert strip_sync_note("Created: by hand") == "Created: by hand"
    assert strip_sync_note(None) == ""


@pytest.mark.parametrize("note, expected", [
    ("old ref SHIPSY_ID: 4242 from manual entry", "old ref from manual entry"),
    ("Pickup note SHIPSY_ID:\n4242\nCreated: 2026-09-01T08:00:00+00:00\nCall first", "Pickup note\nCall first"),
    ("Gate code 77\nSHIPSY_ID:\n4242\nCreated: 2026-09-01T08:00:00+00:00", "Gate code 77"),
    ("SHIPSY_ID:SHIPSY_ID: 1 2", ""),
])
def test_strip_removes_every_token_the_parser_finds(note, expected):
    assert extract_consignment_id(note) is not None
    stripped = strip_sync_note(note)
    assert stripped == expected
    assert extract_consignment_id(stripped) is None
