"""
Host journal adapter built on python-systemd.

Requires the ``systemd-python`` distribution (``pip install sdjournal[systemd]``)
and libsystemd on the host. Handles wrap ``systemd.journal._Reader``, the thin
binding over sd-journal, so positions, filters and cursors behave exactly as
the host journal defines them.
"""

import errno
import os
from typing import Iterable, List, Optional, Tuple

from systemd import journal

from sdjournal.store.base import StoreBackend, StoreHandle, WakeupEvent
from sdjournal.utils.logging import get_logger

logger = get_logger(__name__)

_WAKEUP_EVENTS = {
    journal.NOP: WakeupEvent.NOP,
    journal.APPEND: WakeupEvent.APPEND,
    journal.INVALIDATE: WakeupEvent.INVALIDATE,
}


def _os_error(code: int, message: str) -> OSError:
    return OSError(code, f"{message}: {os.strerror(code)}")


def _as_bytes(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8", "surrogateescape")


class SystemdHandle(StoreHandle):
    """A session against the host journal."""

    def __init__(self) -> None:
        self._reader = journal._Reader(flags=journal.LOCAL_ONLY)
        self._data: Optional[List[bytes]] = None
        self._data_pos = 0
        self._unique: Optional[List[bytes]] = None
        self._unique_pos = 0

    def close(self) -> None:
        self._reader.close()

    def seek_head(self) -> None:
        self._reader.seek_head()
        self._data = None

    def seek_tail(self) -> None:
        self._reader.seek_tail()
        self._data = None

    def seek_realtime(self, usec: int) -> None:
        self._reader.seek_realtime(usec)
        self._data = None

    def seek_cursor(self, cursor: str) -> None:
        self._reader.seek_cursor(cursor)
        self._data = None

    def next(self) -> int:
        self._data = None
        return int(bool(self._reader._next()))

    def previous(self) -> int:
        self._data = None
        return int(bool(self._reader._previous()))

    def next_skip(self, count: int) -> int:
        # _Reader only reports whether it moved, so step one at a time
        moved = 0
        while moved < count and self.next():
            moved += 1
        return moved

    def previous_skip(self, count: int) -> int:
        moved = 0
        while moved < count and self.previous():
            moved += 1
        return moved

    def get_data(self, field: str) -> bytes:
        try:
            value = self._reader._get(field)
        except KeyError:
            raise _os_error(errno.ENOENT, f"field {field!r} not present")
        return field.encode() + b"=" + _as_bytes(value)

    def _records(self) -> List[bytes]:
        records: List[bytes] = []
        for name, value in self._reader._get_all().items():
            # Repeated fields come back as a list; the last value wins
            if isinstance(value, list):
                value = value[-1]
            records.append(name.encode() + b"=" + _as_bytes(value))
        return records

    def restart_data(self) -> None:
        self._data = None
        self._data_pos = 0

    def enumerate_data(self) -> Optional[bytes]:
        if self._data is None:
            self._data = self._records()
            self._data_pos = 0
        if self._data_pos >= len(self._data):
            return None
        record = self._data[self._data_pos]
        self._data_pos += 1
        return record

    def get_realtime_usec(self) -> int:
        return int(self._reader._get_realtime())

    def get_monotonic_usec(self) -> int:
        monotonic: Tuple[int, object] = self._reader._get_monotonic()
        return int(monotonic[0])

    def get_cursor(self) -> str:
        return self._reader._get_cursor()

    def test_cursor(self, cursor: str) -> bool:
        return bool(self._reader.test_cursor(cursor))

    def wait(self, timeout_usec: Optional[int]) -> WakeupEvent:
        timeout = -1 if timeout_usec is None or timeout_usec < 0 else timeout_usec
        return _WAKEUP_EVENTS.get(self._reader.wait(timeout), WakeupEvent.NOP)

    def add_match(self, data: bytes) -> None:
        self._reader.add_match(data)

    def add_conjunction(self) -> None:
        self._reader.add_conjunction()

    def add_disjunction(self) -> None:
        self._reader.add_disjunction()

    def flush_matches(self) -> None:
        self._reader.flush_matches()

    def query_unique(self, field: str) -> None:
        prefix = field.encode() + b"="
        values = []
        for value in self._reader.query_unique(field):
            value = _as_bytes(value)
            values.append(value if value.startswith(prefix) else prefix + value)
        self._unique = values
        self._unique_pos = 0

    def restart_unique(self) -> None:
        self._unique_pos = 0

    def enumerate_unique(self) -> Optional[bytes]:
        if self._unique is None:
            raise _os_error(errno.EINVAL, "no unique query in progress")
        if self._unique_pos >= len(self._unique):
            return None
        record = self._unique[self._unique_pos]
        self._unique_pos += 1
        return record

    def get_usage(self) -> int:
        return int(self._reader.get_usage())

    def set_data_threshold(self, threshold: int) -> None:
        self._reader.data_threshold = threshold

    def get_catalog(self) -> str:
        return self._reader.get_catalog()


class SystemdStore(StoreBackend):
    """The local host journal."""

    name = "systemd"

    def open_handle(self) -> SystemdHandle:
        handle = SystemdHandle()
        logger.debug("Opened host journal handle")
        return handle

    def send(self, records: Iterable[bytes]) -> None:
        journal.sendv(*list(records))
