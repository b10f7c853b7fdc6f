"""
Following (tailing) the journal from a background thread.

A store handle cannot be shared between threads, so following never uses the
caller's connection from the worker. Instead the caller's position and
filters are captured into a FollowState and a worker thread opens its own
connection, replays the filters, seeks to the captured cursor and streams
every newer entry to the handler.

Worker states:
    Starting -> Streaming -> (Waiting <-> Streaming) -> Stopped | Failed

Stopping is cooperative. The worker checks for a stop request right before
reading an entry it has just stepped onto, and before every bounded wait.
Each session ends with exactly one terminal handler call with ``entry=None``:
StreamTerminated after a stop, or the error that ended it.
"""

import threading
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Callable, Optional, Tuple

from sdjournal.entry import Entry
from sdjournal.errors import JournalError, NoCurrentEntry, StreamTerminated, ValidationError
from sdjournal.match import Match
from sdjournal.store.base import WakeupEvent
from sdjournal.utils.config import get_config
from sdjournal.utils.logging import get_logger

if TYPE_CHECKING:
    from sdjournal.connection import Connection

logger = get_logger(__name__)

# Receives each entry with error None. On termination it is called once
# more with entry None and either StreamTerminated or the failure.
FollowHandler = Callable[[Optional[Entry], Optional[BaseException]], None]


@dataclass(frozen=True)
class FollowState:
    """
    Everything a worker needs to rebuild the caller's view on its own connection.

    Attributes:
        cursor: Entry to start from; None if no entry existed when following began
        matches: Filters applied to the caller's connection, in order
        at_eof: The caller was past the last entry; skip the cursor entry itself
        data_threshold: Data threshold set on the caller's connection, if any
    """

    cursor: Optional[str]
    matches: Tuple[Match, ...] = ()
    at_eof: bool = False
    data_threshold: Optional[int] = None


def capture_state(conn: "Connection") -> FollowState:
    """
    Capture the position and filters of ``conn``.

    When the connection does not address an entry (fresh, or just seeked),
    following starts at the end: the connection is moved onto the last entry
    and only entries after it will be streamed.

    Raises:
        JournalError: If the position cannot be read for any other reason
    """
    try:
        return FollowState(
            cursor=conn.cursor(),
            matches=conn.matches,
            data_threshold=conn.data_threshold,
        )
    except NoCurrentEntry:
        pass

    conn.seek_tail()
    cursor = conn.cursor() if conn.previous() else None
    return FollowState(
        cursor=cursor,
        matches=conn.matches,
        at_eof=True,
        data_threshold=conn.data_threshold,
    )


class Follower:
    """
    Worker thread streaming entries from a private connection.

    Not created directly; see start_follow().
    """

    def __init__(
        self,
        opener: Callable[[], "Connection"],
        state: FollowState,
        handler: FollowHandler,
        wait_timeout: float,
    ):
        """
        Initialize a follower.

        Args:
            opener: Opens the worker's connection; called on the worker thread
            state: Captured position and filters
            handler: Callback receiving entries and the terminal notification
            wait_timeout: Seconds per bounded wait for new entries
        """
        self.state = state
        self.wait_timeout = wait_timeout

        self._opener = opener
        self._handler = handler
        self._done = threading.Event()
        self._stop_lock = threading.Lock()
        self._stop_requested = False
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the worker thread."""
        self._thread = threading.Thread(
            target=self._run,
            name="journal-follow",
            daemon=True,
        )
        self._thread.start()

        logger.info(
            "Started following journal",
            at_eof=self.state.at_eof,
            matches=len(self.state.matches),
        )

    def stop(self) -> None:
        """Ask the worker to stop. Safe to call more than once."""
        with self._stop_lock:
            if self._stop_requested:
                return
            self._stop_requested = True
        self._done.set()

        logger.debug("Requested follow stop")

    @property
    def stopped(self) -> bool:
        return self._stop_requested

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the worker to exit.

        Returns:
            True if the worker has exited
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _deliver(self, entry: Optional[Entry], error: Optional[BaseException]) -> bool:
        try:
            self._handler(entry, error)
        except Exception:
            logger.exception("Follow handler raised, stopping follow")
            return False
        return True

    def _run(self) -> None:
        try:
            conn = self._opener()
        except JournalError as exc:
            logger.error("Failed to open follow connection", error=str(exc))
            self._deliver(None, exc)
            return

        try:
            error = self._stream(conn)
        finally:
            try:
                conn.close()
            except JournalError as exc:
                logger.warning("Failed to close follow connection", error=str(exc))

        if error is None:
            return

        if isinstance(error, StreamTerminated):
            logger.info("Stopped following journal")
        else:
            logger.error("Follow failed", error=str(error), error_type=type(error).__name__)
        self._deliver(None, error)

    def _position(self, conn: "Connection") -> None:
        if self.state.data_threshold is not None:
            conn.set_data_threshold(self.state.data_threshold)
        for match in self.state.matches:
            conn.add_match(match)

        if self.state.cursor is None:
            conn.seek_head()
            return

        conn.seek_cursor(self.state.cursor)
        if self.state.at_eof:
            # Step onto the last known entry so the loop only sees newer ones
            conn.next()

    def _stream(self, conn: "Connection") -> Optional[BaseException]:
        """
        Run the streaming loop.

        Returns:
            The terminal notification to deliver, or None if the handler
            itself ended the session
        """
        try:
            self._position(conn)

            while True:
                if conn.next():
                    if self._done.is_set():
                        return StreamTerminated()
                    entry = conn.read_entry()
                    if not self._deliver(entry, None):
                        return None
                    continue

                while True:
                    if self._done.is_set():
                        return StreamTerminated()
                    if conn.wait(self.wait_timeout) is not WakeupEvent.NOP:
                        break
        except JournalError as exc:
            return exc


class FollowStop:
    """
    Handle returned by start_follow().

    Calling it stops following; calling it again has no effect.
    """

    def __init__(self, follower: Follower):
        self._follower = follower

    def __call__(self) -> None:
        self._follower.stop()

    @property
    def stopped(self) -> bool:
        return self._follower.stopped

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker to exit; defaults to ``follow.join_timeout_s``."""
        if timeout is None:
            timeout = float(get_config().get("follow.join_timeout_s", 5.0))
        return self._follower.join(timeout)


def start_follow(
    conn: "Connection",
    handler: FollowHandler,
    wait_timeout: Optional[float] = None,
) -> FollowStop:
    """
    Start streaming entries of ``conn``'s store to ``handler``.

    Streaming starts at the current entry of ``conn`` (which is delivered
    first), or after the last entry if ``conn`` does not address one.

    Args:
        conn: Connection whose position and filters are captured
        handler: Called with (entry, None) per entry, then once with
            (None, error) when the session ends
        wait_timeout: Seconds per bounded wait (defaults to
            ``follow.wait_timeout_ms``)

    Returns:
        Stop handle

    Raises:
        ValidationError: If no handler is given
        JournalError: If the starting position cannot be determined
    """
    if handler is None or not callable(handler):
        raise ValidationError("journal: a follow handler must be provided")

    state = capture_state(conn)

    if wait_timeout is None:
        wait_timeout = get_config().get("follow.wait_timeout_ms", 300) / 1000.0

    follower = Follower(
        opener=partial(type(conn).open, store=conn.store, config=conn.config),
        state=state,
        handler=handler,
        wait_timeout=wait_timeout,
    )
    follower.start()

    return FollowStop(follower)
