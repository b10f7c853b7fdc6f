"""
In-process journal store.

Implements the full handle protocol over an append-only list of entries kept
in memory. It follows the host journal's behaviour closely enough that every
layer above it (connections, filters, follow sessions, submission) can be
exercised without a running journal daemon:

- Entries are addressed by a monotonically increasing sequence number
- Filters form the journal's three-level stack: conjunction groups of
  disjunction terms, each term a set of per-field value alternatives
- Waiting handles are woken through a condition variable shared by the store
- Vacuuming removes the oldest entries and invalidates waiting handles
"""

import bisect
import errno
import os
import re
import socket
import sys
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sdjournal.store.base import StoreBackend, StoreHandle, WakeupEvent
from sdjournal.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DATA_THRESHOLD = 64 * 1024

_FIELD_NAME = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CATALOG_PLACEHOLDER = re.compile(r"@([A-Z0-9_]+)@")

# Matches are kept as conjunction groups of disjunction terms; a term maps a
# field name to the accepted values.
MatchTerm = Dict[str, Set[bytes]]


def _os_error(code: int, message: str) -> OSError:
    return OSError(code, f"{message}: {os.strerror(code)}")


def _split_record(record: bytes) -> Tuple[str, bytes]:
    name, sep, value = record.partition(b"=")
    if not sep:
        raise _os_error(errno.EINVAL, f"record without '=' separator: {record[:32]!r}")
    try:
        text = name.decode("ascii")
    except UnicodeDecodeError:
        raise _os_error(errno.EINVAL, f"invalid field name {name!r}")
    if not _FIELD_NAME.match(text):
        raise _os_error(errno.EINVAL, f"invalid field name {text!r}")
    return text, value


@dataclass
class StoredEntry:
    """
    A single entry held by the store.

    Attributes:
        seqnum: Position in the store, strictly increasing
        realtime_usec: Wall-clock time of the write in microseconds
        monotonic_usec: Monotonic clock at the time of the write
        fields: Field name to raw value, in write order
    """

    seqnum: int
    realtime_usec: int
    monotonic_usec: int
    fields: Dict[str, bytes] = field(default_factory=dict)

    def size(self) -> int:
        return sum(len(name) + 1 + len(value) for name, value in self.fields.items())


class MemoryStore(StoreBackend):
    """
    Append-only journal store living in the current process.

    Thread-safe: any number of threads may send while handles read and wait.

    Example:
        store = MemoryStore()
        store.send([b"MESSAGE=hello", b"PRIORITY=6"])

        handle = store.open_handle()
        handle.seek_head()
        handle.next()
        handle.get_data("MESSAGE")  # b"MESSAGE=hello"
    """

    name = "memory"

    def __init__(
        self,
        store_id: Optional[str] = None,
        boot_id: Optional[str] = None,
        machine_id: Optional[str] = None,
    ):
        """
        Initialize an empty store.

        Args:
            store_id: Identifier embedded in cursors (random if omitted)
            boot_id: Value of the _BOOT_ID trusted field (random if omitted)
            machine_id: Value of the _MACHINE_ID trusted field (random if omitted)
        """
        self.store_id = store_id or uuid.uuid4().hex
        self.boot_id = boot_id or uuid.uuid4().hex
        self.machine_id = machine_id or uuid.uuid4().hex

        self._entries: List[StoredEntry] = []
        self._seqnums: List[int] = []
        self._next_seqnum = 1
        self._last_realtime_usec = 0
        self._usage = 0

        # Change counters observed by waiting handles
        self._appends = 0
        self._invalidations = 0

        self._catalog: Dict[str, str] = {}
        self._cond = threading.Condition(threading.Lock())

        logger.debug("Initialized memory store", store_id=self.store_id)

    def open_handle(self) -> "MemoryHandle":
        return MemoryHandle(self)

    def send(self, records: Iterable[bytes]) -> None:
        fields: Dict[str, bytes] = {}
        for record in records:
            name, value = _split_record(record)
            # Clients cannot forge trusted fields
            if name.startswith("_"):
                continue
            fields[name] = value

        if not fields:
            raise _os_error(errno.EINVAL, "entry has no fields")

        fields.update(self._trusted_fields(time.time_ns() // 1000))

        with self._cond:
            # Stamped under the lock so wall-clock order follows seqnum order
            realtime_usec = max(time.time_ns() // 1000, self._last_realtime_usec)
            self._last_realtime_usec = realtime_usec
            entry = StoredEntry(
                seqnum=self._next_seqnum,
                realtime_usec=realtime_usec,
                monotonic_usec=time.monotonic_ns() // 1000,
                fields=fields,
            )
            self._next_seqnum += 1
            self._entries.append(entry)
            self._seqnums.append(entry.seqnum)
            self._usage += entry.size()
            self._appends += 1
            self._cond.notify_all()

        logger.debug("Appended entry", seqnum=entry.seqnum, fields=len(fields))

    def _trusted_fields(self, now_usec: int) -> Dict[str, bytes]:
        comm = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "python"
        return {
            "_PID": str(os.getpid()).encode(),
            "_UID": str(os.getuid()).encode(),
            "_GID": str(os.getgid()).encode(),
            "_COMM": comm.encode(),
            "_HOSTNAME": socket.gethostname().encode(),
            "_BOOT_ID": self.boot_id.encode(),
            "_MACHINE_ID": self.machine_id.encode(),
            "_TRANSPORT": b"journal",
            "_SOURCE_REALTIME_TIMESTAMP": str(now_usec).encode(),
        }

    def vacuum(self, max_entries: int) -> int:
        """
        Drop the oldest entries so at most ``max_entries`` remain.

        Waiting handles are woken with an invalidation.

        Args:
            max_entries: Number of newest entries to keep

        Returns:
            Number of entries removed
        """
        if max_entries < 0:
            raise ValueError(f"max_entries must be non-negative, got {max_entries}")

        with self._cond:
            removed = max(len(self._entries) - max_entries, 0)
            if removed == 0:
                return 0

            for entry in self._entries[:removed]:
                self._usage -= entry.size()
            del self._entries[:removed]
            del self._seqnums[:removed]

            self._invalidations += 1
            self._cond.notify_all()

        logger.info("Vacuumed store", removed=removed, remaining=max_entries)
        return removed

    def register_catalog(self, message_id: str, text: str) -> None:
        """Register catalog text for entries carrying ``MESSAGE_ID=message_id``."""
        with self._cond:
            self._catalog[message_id] = text

    def usage(self) -> int:
        with self._cond:
            return self._usage

    def __len__(self) -> int:
        with self._cond:
            return len(self._entries)

    def format_cursor(self, entry: StoredEntry) -> str:
        return (
            f"s={self.store_id};i={entry.seqnum:x};b={self.boot_id};"
            f"m={entry.monotonic_usec:x};t={entry.realtime_usec:x}"
        )

    @staticmethod
    def parse_cursor(cursor: str) -> Dict[str, str]:
        """
        Split a cursor into its components.

        Raises:
            OSError: EINVAL if the cursor is malformed
        """
        parts: Dict[str, str] = {}
        for item in cursor.split(";"):
            key, sep, value = item.partition("=")
            if not sep or not key or not value:
                raise _os_error(errno.EINVAL, f"malformed cursor {cursor!r}")
            parts[key] = value

        try:
            int(parts["i"], 16)
            if "t" in parts:
                int(parts["t"], 16)
        except (KeyError, ValueError):
            raise _os_error(errno.EINVAL, f"malformed cursor {cursor!r}")

        if "s" not in parts:
            raise _os_error(errno.EINVAL, f"malformed cursor {cursor!r}")

        return parts


class MemoryHandle(StoreHandle):
    """
    A session against a MemoryStore.

    Position is tracked as two thresholds: the smallest sequence number the
    next forward step may land on, and the largest one a backward step may
    land on. Seeking sets both without selecting an entry.
    """

    def __init__(self, store: MemoryStore):
        self._store = store
        self._closed = False

        self._current: Optional[int] = None
        self._next_from = 0
        self._prev_from = -1

        self._groups: List[List[MatchTerm]] = []
        self._data_threshold = DEFAULT_DATA_THRESHOLD
        self._data_pos = 0
        self._unique: Optional[List[bytes]] = None
        self._unique_pos = 0

        with store._cond:
            self._seen_appends = store._appends
            self._seen_invalidations = store._invalidations

    def _check_open(self) -> None:
        if self._closed:
            raise _os_error(errno.EBADF, "journal handle is closed")

    def close(self) -> None:
        self._check_open()
        self._closed = True
        self._current = None
        self._unique = None

    # Navigation

    def _set_position(self, next_from: int, prev_from: int) -> None:
        self._current = None
        self._next_from = next_from
        self._prev_from = prev_from
        self._data_pos = 0

    def _land(self, entry: StoredEntry) -> None:
        self._current = entry.seqnum
        self._next_from = entry.seqnum + 1
        self._prev_from = entry.seqnum - 1
        self._data_pos = 0

    def seek_head(self) -> None:
        self._check_open()
        self._set_position(0, -1)

    def seek_tail(self) -> None:
        self._check_open()
        with self._store._cond:
            last = self._store._next_seqnum - 1
        self._set_position(last + 1, sys.maxsize)

    def seek_realtime(self, usec: int) -> None:
        self._check_open()
        store = self._store
        with store._cond:
            next_from = store._next_seqnum
            prev_from = -1
            for entry in store._entries:
                if entry.realtime_usec >= usec:
                    next_from = entry.seqnum
                    break
            for entry in reversed(store._entries):
                if entry.realtime_usec <= usec:
                    prev_from = entry.seqnum
                    break
        self._set_position(next_from, prev_from)

    def seek_cursor(self, cursor: str) -> None:
        self._check_open()
        parts = MemoryStore.parse_cursor(cursor)
        if parts["s"] != self._store.store_id:
            # Foreign cursor, fall back to its wall-clock time
            if "t" not in parts:
                raise _os_error(errno.EINVAL, f"cursor {cursor!r} is from another store")
            self.seek_realtime(int(parts["t"], 16))
            return
        seqnum = int(parts["i"], 16)
        self._set_position(seqnum, seqnum)

    def next(self) -> int:
        self._check_open()
        store = self._store
        with store._cond:
            index = bisect.bisect_left(store._seqnums, self._next_from)
            for entry in store._entries[index:]:
                if self._matches(entry):
                    self._land(entry)
                    return 1
        return 0

    def previous(self) -> int:
        self._check_open()
        store = self._store
        with store._cond:
            index = bisect.bisect_right(store._seqnums, self._prev_from)
            for entry in reversed(store._entries[:index]):
                if self._matches(entry):
                    self._land(entry)
                    return 1
        return 0

    def next_skip(self, count: int) -> int:
        if count < 0:
            raise _os_error(errno.EINVAL, f"negative skip count {count}")
        moved = 0
        while moved < count and self.next():
            moved += 1
        return moved

    def previous_skip(self, count: int) -> int:
        if count < 0:
            raise _os_error(errno.EINVAL, f"negative skip count {count}")
        moved = 0
        while moved < count and self.previous():
            moved += 1
        return moved

    # Data access

    def _current_entry(self) -> StoredEntry:
        self._check_open()
        if self._current is None:
            raise _os_error(errno.EADDRNOTAVAIL, "no current entry")

        store = self._store
        with store._cond:
            index = bisect.bisect_left(store._seqnums, self._current)
            if index < len(store._seqnums) and store._seqnums[index] == self._current:
                return store._entries[index]
        raise _os_error(errno.EADDRNOTAVAIL, "current entry no longer exists")

    def _record(self, name: str, value: bytes) -> bytes:
        record = name.encode() + b"=" + value
        if self._data_threshold and len(record) > self._data_threshold:
            record = record[: max(self._data_threshold, len(name) + 1)]
        return record

    def get_data(self, field: str) -> bytes:
        entry = self._current_entry()
        if field not in entry.fields:
            raise _os_error(errno.ENOENT, f"field {field!r} not present")
        return self._record(field, entry.fields[field])

    def restart_data(self) -> None:
        self._check_open()
        self._data_pos = 0

    def enumerate_data(self) -> Optional[bytes]:
        entry = self._current_entry()
        items = list(entry.fields.items())
        if self._data_pos >= len(items):
            return None
        name, value = items[self._data_pos]
        self._data_pos += 1
        return self._record(name, value)

    def get_realtime_usec(self) -> int:
        return self._current_entry().realtime_usec

    def get_monotonic_usec(self) -> int:
        return self._current_entry().monotonic_usec

    def get_cursor(self) -> str:
        return self._store.format_cursor(self._current_entry())

    def test_cursor(self, cursor: str) -> bool:
        entry = self._current_entry()
        parts = MemoryStore.parse_cursor(cursor)
        return parts["s"] == self._store.store_id and int(parts["i"], 16) == entry.seqnum

    def get_catalog(self) -> str:
        entry = self._current_entry()
        message_id = entry.fields.get("MESSAGE_ID")
        if message_id is None:
            raise _os_error(errno.ENOENT, "entry has no MESSAGE_ID")

        with self._store._cond:
            text = self._store._catalog.get(message_id.decode("utf-8", "replace"))
        if text is None:
            raise _os_error(errno.ENOENT, "no catalog entry")

        def substitute(placeholder: re.Match) -> str:
            value = entry.fields.get(placeholder.group(1))
            if value is None:
                return placeholder.group(0)
            return value.decode("utf-8", "replace")

        return _CATALOG_PLACEHOLDER.sub(substitute, text)

    # Change notification

    def wait(self, timeout_usec: Optional[int]) -> WakeupEvent:
        self._check_open()
        timeout = None if timeout_usec is None or timeout_usec < 0 else timeout_usec / 1e6
        store = self._store

        def changed() -> bool:
            return (
                store._appends != self._seen_appends
                or store._invalidations != self._seen_invalidations
            )

        with store._cond:
            store._cond.wait_for(changed, timeout)

            if store._invalidations != self._seen_invalidations:
                event = WakeupEvent.INVALIDATE
            elif store._appends != self._seen_appends:
                event = WakeupEvent.APPEND
            else:
                event = WakeupEvent.NOP

            self._seen_appends = store._appends
            self._seen_invalidations = store._invalidations

        return event

    # Filters

    def _matches(self, entry: StoredEntry) -> bool:
        for group in self._groups:
            terms = [term for term in group if term]
            if not terms:
                continue
            if not any(
                all(entry.fields.get(name) in values for name, values in term.items())
                for term in terms
            ):
                return False
        return True

    def add_match(self, data: bytes) -> None:
        self._check_open()
        name, value = _split_record(data)
        if not self._groups:
            self._groups.append([{}])
        self._groups[-1][-1].setdefault(name, set()).add(value)

    def add_disjunction(self) -> None:
        self._check_open()
        if not self._groups or not self._groups[-1][-1]:
            return
        self._groups[-1].append({})

    def add_conjunction(self) -> None:
        self._check_open()
        if not self._groups or not any(self._groups[-1]):
            return
        self._groups.append([{}])

    def flush_matches(self) -> None:
        self._check_open()
        self._groups = []

    # Store-wide queries

    def query_unique(self, field: str) -> None:
        self._check_open()
        if not _FIELD_NAME.match(field):
            raise _os_error(errno.EINVAL, f"invalid field name {field!r}")

        with self._store._cond:
            values = dict.fromkeys(
                entry.fields[field] for entry in self._store._entries if field in entry.fields
            )
        self._unique = [self._record(field, value) for value in values]
        self._unique_pos = 0

    def restart_unique(self) -> None:
        self._check_open()
        self._unique_pos = 0

    def enumerate_unique(self) -> Optional[bytes]:
        self._check_open()
        if self._unique is None:
            raise _os_error(errno.EINVAL, "no unique query in progress")
        if self._unique_pos >= len(self._unique):
            return None
        record = self._unique[self._unique_pos]
        self._unique_pos += 1
        return record

    def get_usage(self) -> int:
        self._check_open()
        return self._store.usage()

    def set_data_threshold(self, threshold: int) -> None:
        self._check_open()
        if threshold < 0:
            raise _os_error(errno.EINVAL, f"negative data threshold {threshold}")
        self._data_threshold = threshold


_default_store: Optional[MemoryStore] = None
_default_lock = threading.Lock()


def default_memory_store() -> MemoryStore:
    """Process-wide MemoryStore used when the memory backend is configured."""
    global _default_store
    with _default_lock:
        if _default_store is None:
            _default_store = MemoryStore()
        return _default_store


def reset_default_memory_store() -> None:
    """Discard the process-wide MemoryStore (mainly for testing)."""
    global _default_store
    with _default_lock:
        _default_store = None
