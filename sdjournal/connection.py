"""
Connections to the journal store.

A Connection owns exactly one store handle. The handle is thread-affine:
every call made through the Connection is serialized by an internal lock,
and with ``connection.strict_affinity`` enabled calls from any thread other
than the one that opened the connection are refused. Following the journal
from another thread never shares the handle; the follow engine opens a
separate connection with the same filters instead.
"""

import errno
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, List, Optional, Tuple, Type, Union

from sdjournal.entry import Entry, split_record, strip_field_name, timestamp_from_usec
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
    ThreadAffinityError,
    WaitError,
)
from sdjournal.follow import FollowHandler, FollowStop, start_follow
from sdjournal.match import Match
from sdjournal.store import StoreBackend, StoreHandle, WakeupEvent, get_store
from sdjournal.utils.config import Config, get_config
from sdjournal.utils.logging import get_logger

logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _store_error(exc: OSError, error_cls: Type[JournalError], message: str) -> JournalError:
    """Translate a store OSError into the journal error taxonomy."""
    detail = exc.strerror or str(exc)
    if exc.errno == errno.EADDRNOTAVAIL:
        return NoCurrentEntry(f"{message}: no current entry", errno=exc.errno)
    return error_cls(f"{message}: {detail}", errno=exc.errno)


class Connection:
    """
    One open session against the journal store.

    Example:
        with Connection.open() as conn:
            conn.add_match(Match().match(fields.SYSTEMD_UNIT, "sshd.service"))
            conn.seek_head()
            while conn.next():
                print(conn.read_entry().message)

    Note:
        After any seek the connection does not address an entry. Call
        next(), previous() or skip() before reading.
    """

    def __init__(
        self,
        handle: StoreHandle,
        store: StoreBackend,
        strict_affinity: bool = False,
        config: Optional[Config] = None,
        data_threshold: Optional[int] = None,
    ):
        """
        Wrap an already opened store handle. Use Connection.open() instead.

        Args:
            handle: Store handle, owned by this connection from now on
            store: Store the handle belongs to
            strict_affinity: Refuse calls from threads other than the creator
            config: Configuration the connection was opened with
            data_threshold: Data threshold already set on the handle
        """
        self._handle = handle
        self._store = store
        self._strict_affinity = strict_affinity
        self._config = config
        self._data_threshold = data_threshold
        self._owner = threading.get_ident()
        self._matches: List[Match] = []
        self._lock = threading.RLock()
        self._closed = False

    @classmethod
    def open(
        cls,
        store: Optional[StoreBackend] = None,
        config: Optional[Config] = None,
    ) -> "Connection":
        """
        Open a new connection.

        Args:
            store: Store to connect to (defaults to the configured backend)
            config: Configuration (defaults to the global configuration)

        Returns:
            Open connection owned by the calling thread

        Raises:
            OpenError: If the session cannot be established
        """
        config = config or get_config()
        if store is None:
            store = get_store(config.get("store.backend"))

        try:
            handle = store.open_handle()
        except OSError as exc:
            raise OpenError(
                f"journal: failed to open journal: {exc.strerror or exc}",
                errno=exc.errno,
            ) from exc

        threshold = config.get("connection.data_threshold")
        if threshold is not None:
            threshold = int(threshold)
            try:
                handle.set_data_threshold(threshold)
            except OSError as exc:
                handle.close()
                raise OpenError(
                    f"journal: failed to set data threshold: {exc.strerror or exc}",
                    errno=exc.errno,
                ) from exc

        conn = cls(
            handle,
            store,
            strict_affinity=bool(config.get("connection.strict_affinity", False)),
            config=config,
            data_threshold=threshold,
        )

        logger.info("Opened journal connection", backend=store.name)
        return conn

    @property
    def store(self) -> StoreBackend:
        return self._store

    @property
    def config(self) -> Optional[Config]:
        return self._config

    @property
    def data_threshold(self) -> Optional[int]:
        """Threshold set on the handle; None if the store default applies."""
        with self._lock:
            return self._data_threshold

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def matches(self) -> Tuple[Match, ...]:
        """Matches applied since the last flush, in order."""
        with self._lock:
            return tuple(self._matches)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[StoreHandle]:
        with self._lock:
            if self._closed:
                raise ClosedHandle(operation)
            if self._strict_affinity and threading.get_ident() != self._owner:
                raise ThreadAffinityError(
                    f"journal: cannot {operation} from a thread that does not own the connection"
                )
            yield self._handle

    def close(self) -> None:
        """
        Close the connection and release the store handle.

        Calling close() again is a no-op; the handle is released once.
        """
        with self._lock:
            if self._closed:
                return
            if self._strict_affinity and threading.get_ident() != self._owner:
                raise ThreadAffinityError(
                    "journal: cannot close from a thread that does not own the connection"
                )
            self._closed = True
            try:
                self._handle.close()
            except OSError as exc:
                raise JournalError(
                    f"journal: failed to close journal: {exc.strerror or exc}",
                    errno=exc.errno,
                ) from exc

        logger.info("Closed journal connection", backend=self._store.name)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Navigation

    def _navigate(self, operation: str, call: Callable[[StoreHandle], int]) -> int:
        with self._guard(operation) as handle:
            try:
                return call(handle)
            except OSError as exc:
                raise _store_error(exc, NavigationError, f"journal: failed to {operation}") from exc

    def seek_head(self) -> None:
        """Move before the first entry."""
        self._navigate("seek head", lambda h: h.seek_head())
        logger.debug("Seeked journal", position="head")

    def seek_tail(self) -> None:
        """Move after the last entry."""
        self._navigate("seek tail", lambda h: h.seek_tail())
        logger.debug("Seeked journal", position="tail")

    def seek_timestamp(self, timestamp: datetime) -> None:
        """
        Move next to the entry written closest to ``timestamp``.

        Naive datetimes are taken as local time.
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.astimezone()
        usec = (timestamp - _EPOCH) // timedelta(microseconds=1)
        self._navigate(f"seek to timestamp {timestamp.isoformat()}", lambda h: h.seek_realtime(usec))
        logger.debug("Seeked journal", position="timestamp", at=timestamp.isoformat())

    def seek_cursor(self, cursor: str) -> None:
        """Move to the entry addressed by ``cursor``."""
        self._navigate("seek to cursor", lambda h: h.seek_cursor(cursor))
        logger.debug("Seeked journal", position="cursor", cursor=cursor)

    def next(self) -> int:
        """
        Move to the next entry.

        Returns:
            1 if moved, 0 if already at the end
        """
        return self._navigate("move to next entry", lambda h: h.next())

    def previous(self) -> int:
        """
        Move to the previous entry.

        Returns:
            1 if moved, 0 if already at the beginning
        """
        return self._navigate("move to previous entry", lambda h: h.previous())

    def skip(self, count: int) -> int:
        """
        Move ``abs(count)`` entries, forward if positive, backward if negative.

        Args:
            count: Number of entries to skip

        Returns:
            Number of entries actually passed, fewer than ``abs(count)`` when
            the beginning or end is reached
        """
        if count == 0:
            return 0
        if count > 0:
            return self._navigate("skip entries", lambda h: h.next_skip(count))
        return self._navigate("skip entries", lambda h: h.previous_skip(-count))

    # Reading

    def cursor(self) -> str:
        """
        Serialize the current position.

        Raises:
            NoCurrentEntry: If the position does not address an entry
        """
        with self._guard("read cursor") as handle:
            try:
                return handle.get_cursor()
            except OSError as exc:
                raise _store_error(exc, ReadError, "journal: failed to read cursor") from exc

    def test_cursor(self, cursor: str) -> bool:
        """Check whether the current entry is the one ``cursor`` addresses."""
        with self._guard("test cursor") as handle:
            try:
                return handle.test_cursor(cursor)
            except OSError as exc:
                raise _store_error(exc, ReadError, "journal: failed to test cursor") from exc

    def field(self, name: str) -> str:
        """
        Read one field of the current entry.

        Raises:
            FieldNotPresent: If the entry has no such field
            NoCurrentEntry: If the position does not address an entry
        """
        with self._guard("read field") as handle:
            try:
                record = handle.get_data(name)
            except OSError as exc:
                if exc.errno == errno.ENOENT:
                    raise FieldNotPresent(name) from exc
                raise _store_error(exc, ReadError, f"journal: failed to get field '{name}'") from exc

        return strip_field_name(record, name)

    def read_entry(self) -> Entry:
        """
        Read the complete entry at the current position.

        All data is read while holding the connection, and nothing is
        returned unless every field was enumerated.

        Raises:
            NoCurrentEntry: If the position does not address an entry
            ReadError: If any part of the entry cannot be read
        """
        with self._guard("read entry") as handle:
            try:
                realtime = handle.get_realtime_usec()
                monotonic = handle.get_monotonic_usec()
                cursor = handle.get_cursor()

                entry_fields = {}
                handle.restart_data()
                while True:
                    record = handle.enumerate_data()
                    if record is None:
                        break
                    name, value = split_record(record)
                    entry_fields[name] = value
            except OSError as exc:
                raise _store_error(exc, ReadError, "journal: failed to read entry") from exc

        return Entry(
            fields=entry_fields,
            cursor=cursor,
            timestamp=timestamp_from_usec(realtime),
            elapsed=timedelta(microseconds=monotonic),
        )

    def catalog(self) -> str:
        """Return the message catalog text for the current entry."""
        with self._guard("read catalog entry") as handle:
            try:
                return handle.get_catalog()
            except OSError as exc:
                raise _store_error(exc, ReadError, "journal: failed to read catalog entry") from exc

    def set_data_threshold(self, threshold: int) -> None:
        """Limit the size of returned field data; 0 disables the limit."""
        with self._guard("set data threshold") as handle:
            try:
                handle.set_data_threshold(threshold)
            except OSError as exc:
                raise _store_error(exc, ReadError, "journal: failed to set data threshold") from exc
            self._data_threshold = threshold

    def usage(self) -> int:
        """Disk space used by the store, in bytes."""
        with self._guard("get disk usage") as handle:
            try:
                return handle.get_usage()
            except OSError as exc:
                raise _store_error(exc, ReadError, "journal: failed to get disk space usage") from exc

    def unique_values(self, field: str) -> Iterator[str]:
        """
        Iterate over every distinct value the store holds for ``field``.

        Filters are ignored. The query runs when iteration starts; call
        again for a fresh pass. Two passes on one connection must not be
        interleaved.
        """
        with self._guard("query unique values") as handle:
            try:
                handle.query_unique(field)
                handle.restart_unique()
            except OSError as exc:
                raise _store_error(exc, ReadError, f"journal: failed to query field '{field}'") from exc

        while True:
            with self._guard("read unique value") as handle:
                try:
                    record = handle.enumerate_unique()
                except OSError as exc:
                    raise _store_error(exc, ReadError, f"journal: failed to read field '{field}'") from exc
            if record is None:
                return
            yield strip_field_name(record, field)

    # Waiting

    def wait(self, timeout: Optional[Union[float, timedelta]] = None) -> WakeupEvent:
        """
        Block until the store changes or ``timeout`` elapses.

        Args:
            timeout: Seconds (or timedelta) to wait; None or negative waits
                indefinitely

        Returns:
            What changed, NOP if nothing did
        """
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        timeout_usec = None if timeout is None or timeout < 0 else int(timeout * 1_000_000)

        with self._guard("wait for journal change") as handle:
            try:
                return handle.wait(timeout_usec)
            except OSError as exc:
                raise _store_error(exc, WaitError, "journal: failed to wait for journal change") from exc

    # Filtering

    def add_match(self, match: Optional[Match]) -> None:
        """
        Apply a match expression on top of the current filters.

        Raises:
            EmptyMatch: If ``match`` is None or has no nodes
            MatchError: If the store refuses a term
        """
        if match is None or match.is_empty():
            raise EmptyMatch()

        with self._guard("add match") as handle:
            try:
                match.apply(handle)
            except OSError as exc:
                self._restore_matches(handle)
                raise _store_error(exc, MatchError, "journal: failed to add match") from exc
            # Kept so a follow session can rebuild the same filter
            self._matches.append(match)

        logger.debug("Added match", match=str(match))

    def _restore_matches(self, handle: StoreHandle) -> None:
        """Rebuild the store filter from the retained matches after a partial apply."""
        try:
            handle.flush_matches()
            for match in self._matches:
                match.apply(handle)
        except OSError as exc:
            logger.error("Failed to restore matches", error=str(exc))
            raise _store_error(exc, MatchError, "journal: failed to restore matches") from exc

    def flush_matches(self) -> None:
        """Remove all filters."""
        with self._guard("flush matches") as handle:
            try:
                handle.flush_matches()
            except OSError as exc:
                raise _store_error(exc, MatchError, "journal: failed to flush matches") from exc
            self._matches.clear()

        logger.debug("Flushed matches")

    # Following

    def follow(self, handler: FollowHandler, wait_timeout: Optional[float] = None) -> FollowStop:
        """
        Stream entries to ``handler`` from a background thread.

        See sdjournal.follow.start_follow.
        """
        return start_follow(self, handler, wait_timeout=wait_timeout)

    tail = follow


def open_connection(store: Optional[StoreBackend] = None) -> Connection:
    """Open a connection to the configured (or given) store."""
    return Connection.open(store=store)
