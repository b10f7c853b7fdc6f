"""
Handle protocol for the journal store.

The store itself (storage engine, disk format, indexing) lives outside this
package. Everything sdjournal needs from it is the narrow, handle-based
protocol below. Failures are reported as OSError carrying an errno, the way
the host journal library reports them:

- EADDRNOTAVAIL: the position does not address an entry
- ENOENT: field or catalog entry not present
- EINVAL: malformed match, cursor or argument
- EBADF: handle already closed
"""

from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Iterable, Optional


class WakeupEvent(IntEnum):
    """Outcome of a bounded wait for store changes."""

    NOP = 0  # nothing changed before the timeout
    APPEND = 1  # new entries were appended
    INVALIDATE = 2  # entries were added, removed or changed (rotation, vacuum)


class StoreHandle(ABC):
    """
    One open session against the store.

    A handle is not thread-safe and must be driven from one thread at a time.
    Seek operations never leave the handle on a readable entry; a successful
    step is required first.
    """

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def seek_head(self) -> None:
        pass

    @abstractmethod
    def seek_tail(self) -> None:
        pass

    @abstractmethod
    def seek_realtime(self, usec: int) -> None:
        """Position near the entry with the given wall-clock time (microseconds)."""
        pass

    @abstractmethod
    def seek_cursor(self, cursor: str) -> None:
        pass

    @abstractmethod
    def next(self) -> int:
        """Step forward; returns 1 if moved, 0 at the end."""
        pass

    @abstractmethod
    def previous(self) -> int:
        """Step backward; returns 1 if moved, 0 at the beginning."""
        pass

    @abstractmethod
    def next_skip(self, count: int) -> int:
        """Step forward up to ``count`` entries; returns how many were passed."""
        pass

    @abstractmethod
    def previous_skip(self, count: int) -> int:
        """Step backward up to ``count`` entries; returns how many were passed."""
        pass

    @abstractmethod
    def get_data(self, field: str) -> bytes:
        """Return the raw ``FIELD=value`` record of the current entry."""
        pass

    @abstractmethod
    def restart_data(self) -> None:
        pass

    @abstractmethod
    def enumerate_data(self) -> Optional[bytes]:
        """Return the next raw ``FIELD=value`` record, or None when exhausted."""
        pass

    @abstractmethod
    def get_realtime_usec(self) -> int:
        pass

    @abstractmethod
    def get_monotonic_usec(self) -> int:
        pass

    @abstractmethod
    def get_cursor(self) -> str:
        pass

    @abstractmethod
    def test_cursor(self, cursor: str) -> bool:
        pass

    @abstractmethod
    def wait(self, timeout_usec: Optional[int]) -> WakeupEvent:
        """Block until the store changes or the timeout elapses (None blocks forever)."""
        pass

    @abstractmethod
    def add_match(self, data: bytes) -> None:
        """Add a ``FIELD=value`` term to the filter stack."""
        pass

    @abstractmethod
    def add_conjunction(self) -> None:
        pass

    @abstractmethod
    def add_disjunction(self) -> None:
        pass

    @abstractmethod
    def flush_matches(self) -> None:
        pass

    @abstractmethod
    def query_unique(self, field: str) -> None:
        """Start enumerating the distinct values of ``field``, ignoring filters."""
        pass

    @abstractmethod
    def restart_unique(self) -> None:
        pass

    @abstractmethod
    def enumerate_unique(self) -> Optional[bytes]:
        """Return the next raw ``FIELD=value`` record, or None when exhausted."""
        pass

    @abstractmethod
    def get_usage(self) -> int:
        pass

    @abstractmethod
    def set_data_threshold(self, threshold: int) -> None:
        pass

    @abstractmethod
    def get_catalog(self) -> str:
        pass


class StoreBackend(ABC):
    """A journal store: the factory for handles and the write path."""

    name = "abstract"

    @abstractmethod
    def open_handle(self) -> StoreHandle:
        """
        Open a new session.

        Raises:
            OSError: If the session cannot be established
        """
        pass

    @abstractmethod
    def send(self, records: Iterable[bytes]) -> None:
        """
        Append one entry built from raw ``FIELD=value`` records.

        Must be safe to call concurrently from any thread.

        Raises:
            OSError: If the store rejects the write
        """
        pass
