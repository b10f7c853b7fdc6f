"""
sdjournal - read, filter, follow and write the system journal.

This package provides access to an append-only, field-structured log store
with features including:
- Positional navigation by head, tail, timestamp and cursor
- Boolean field filters compiled into the store's native match stack
- Live following of newly appended entries from a background thread
- Thread-safe submission of entries with custom fields
"""

__version__ = "0.1.0"

from sdjournal.connection import Connection, open_connection
from sdjournal.entry import Entry
from sdjournal.errors import (
    ClosedHandle,
    EmptyMatch,
    FieldNotPresent,
    JournalError,
    MatchError,
    NavigationError,
    NoCurrentEntry,
    OpenError,
    ReadError,
    StreamTerminated,
    SubmitError,
    ThreadAffinityError,
    ValidationError,
    WaitError,
)
from sdjournal.fields import Priority
from sdjournal.follow import FollowHandler, FollowStop
from sdjournal.match import Match
from sdjournal.store import MemoryStore, WakeupEvent
from sdjournal.submit import submit, submit_with_fields

__all__ = [
    "ClosedHandle",
    "Connection",
    "EmptyMatch",
    "Entry",
    "FieldNotPresent",
    "FollowHandler",
    "FollowStop",
    "JournalError",
    "Match",
    "MatchError",
    "MemoryStore",
    "NavigationError",
    "NoCurrentEntry",
    "OpenError",
    "Priority",
    "ReadError",
    "StreamTerminated",
    "SubmitError",
    "ThreadAffinityError",
    "ValidationError",
    "WaitError",
    "WakeupEvent",
    "open_connection",
    "submit",
    "submit_with_fields",
]
