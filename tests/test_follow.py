"""Tests for following the journal."""

import errno
import threading

import pytest

from sdjournal.connection import Connection
from sdjournal.errors import (
    ClosedHandle,
    OpenError,
    ReadError,
    StreamTerminated,
    ValidationError,
    WaitError,
)
from sdjournal.fields import Priority
from sdjournal.follow import FollowState, capture_state
from sdjournal.match import Match
from sdjournal.store import MemoryStore
from sdjournal.store.memory import MemoryHandle
from sdjournal.submit import submit, submit_with_fields

TIMEOUT = 5.0


class Recorder:
    """Follow handler collecting every callback."""

    def __init__(self):
        self.calls = []
        self._cond = threading.Condition()

    def __call__(self, entry, error):
        with self._cond:
            self.calls.append((entry, error))
            self._cond.notify_all()

    @property
    def entries(self):
        with self._cond:
            return [entry for entry, error in self.calls if error is None]

    @property
    def errors(self):
        with self._cond:
            return [error for entry, error in self.calls if error is not None]

    def wait_for_entries(self, count):
        with self._cond:
            return self._cond.wait_for(
                lambda: len([c for c in self.calls if c[1] is None]) >= count, TIMEOUT
            )

    def wait_for_error(self):
        with self._cond:
            return self._cond.wait_for(
                lambda: any(error is not None for _, error in self.calls), TIMEOUT
            )


class OpenOnceStore(MemoryStore):
    """Store that refuses every session after the first one."""

    def __init__(self):
        super().__init__()
        self.opened = 0

    def open_handle(self):
        self.opened += 1
        if self.opened > 1:
            raise OSError(errno.EMFILE, "Too many open files")
        return super().open_handle()


class FailingReadHandle(MemoryHandle):
    """Handle whose second entry read fails."""

    def __init__(self, store):
        super().__init__(store)
        self.reads = 0

    def get_realtime_usec(self):
        self.reads += 1
        if self.reads > 1:
            raise OSError(errno.EIO, "Input/output error")
        return super().get_realtime_usec()


class FailingReadStore(MemoryStore):
    def open_handle(self):
        return FailingReadHandle(self)


class FailingWaitHandle(MemoryHandle):
    def wait(self, timeout_usec):
        raise OSError(errno.EIO, "Input/output error")


class FailingWaitStore(MemoryStore):
    def open_handle(self):
        return FailingWaitHandle(self)


class TestCaptureState:
    """Test capturing a connection's position and filters."""

    def test_capture_current_entry(self, store, conn):
        """Test capturing a connection positioned on an entry."""
        submit(Priority.INFO, "a", store=store)
        match = Match().match("MESSAGE", "a")
        conn.add_match(match)
        conn.seek_head()
        conn.next()

        state = capture_state(conn)

        assert state == FollowState(
            cursor=conn.cursor(),
            matches=(match,),
            at_eof=False,
            data_threshold=65536,
        )

    def test_capture_at_eof(self, store, conn):
        """Test a connection without a position follows from the end."""
        submit(Priority.INFO, "a", store=store)
        submit(Priority.INFO, "b", store=store)

        state = capture_state(conn)

        assert state.at_eof
        assert conn.field("MESSAGE") == "b"
        assert state.cursor == conn.cursor()

    def test_capture_empty_store(self, conn):
        """Test capturing an empty store has no cursor."""
        state = capture_state(conn)

        assert state.at_eof
        assert state.cursor is None


class TestFollow:
    """Test streaming entries from a worker thread."""

    def test_follow_new_entry(self, store, conn):
        """Test following from the tail delivers exactly the new entry."""
        submit(Priority.INFO, "old", store=store)
        recorder = Recorder()

        stop = conn.follow(recorder)

        writer = threading.Thread(target=submit, args=(Priority.INFO, "x"), kwargs={"store": store})
        writer.start()
        writer.join()

        assert recorder.wait_for_entries(1)
        stop()
        assert stop.join(TIMEOUT)

        assert [e.message for e in recorder.entries] == ["x"]
        assert recorder.calls[0][1] is None
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], StreamTerminated)
        assert recorder.calls[-1][0] is None

    def test_stop_before_entries(self, store, conn):
        """Test stopping before anything arrives delivers only the stop signal."""
        submit(Priority.INFO, "old", store=store)
        recorder = Recorder()

        stop = conn.follow(recorder)
        stop()

        assert stop.join(TIMEOUT)
        assert len(recorder.calls) == 1
        entry, error = recorder.calls[0]
        assert entry is None
        assert isinstance(error, StreamTerminated)

    def test_stop_is_idempotent(self, conn):
        """Test calling stop twice delivers one terminal notification."""
        recorder = Recorder()

        stop = conn.follow(recorder)
        stop()
        stop()

        assert stop.stopped
        assert stop.join(TIMEOUT)
        stop()

        assert len(recorder.errors) == 1

    def test_follow_from_current_entry(self, store, conn):
        """Test following from an entry delivers it and everything after."""
        for message in ("a", "b", "c"):
            submit(Priority.INFO, message, store=store)
        conn.seek_head()
        conn.next()
        conn.next()
        recorder = Recorder()

        stop = conn.follow(recorder)
        assert recorder.wait_for_entries(2)
        submit(Priority.INFO, "d", store=store)
        assert recorder.wait_for_entries(3)
        stop()
        stop.join(TIMEOUT)

        assert [e.message for e in recorder.entries] == ["b", "c", "d"]

    def test_follow_empty_store(self, store, conn):
        """Test following a store that has no entries yet."""
        recorder = Recorder()

        stop = conn.tail(recorder)
        submit(Priority.INFO, "first", store=store)

        assert recorder.wait_for_entries(1)
        stop()
        stop.join(TIMEOUT)

        assert [e.message for e in recorder.entries] == ["first"]

    def test_follow_applies_matches(self, store, conn):
        """Test the worker replays the connection's filters."""
        conn.add_match(Match().match("TAG", "keep"))
        recorder = Recorder()

        stop = conn.follow(recorder)
        for i in range(6):
            tag = "keep" if i % 2 == 0 else "drop"
            submit_with_fields(Priority.INFO, f"m{i}", {"TAG": tag}, store=store)

        assert recorder.wait_for_entries(3)
        stop()
        stop.join(TIMEOUT)

        assert [e.message for e in recorder.entries] == ["m0", "m2", "m4"]

    def test_follow_order_without_gaps(self, store, conn):
        """Test entries written concurrently arrive in order, once each."""
        recorder = Recorder()
        stop = conn.follow(recorder)

        def writer():
            for i in range(50):
                submit(Priority.INFO, f"msg-{i}", store=store)

        thread = threading.Thread(target=writer)
        thread.start()
        thread.join()

        assert recorder.wait_for_entries(50)
        stop()
        stop.join(TIMEOUT)

        assert [e.message for e in recorder.entries] == [f"msg-{i}" for i in range(50)]

    def test_follow_survives_invalidation(self, store, conn):
        """Test vacuuming while following neither skips nor repeats entries."""
        recorder = Recorder()
        stop = conn.follow(recorder)

        submit(Priority.INFO, "a", store=store)
        assert recorder.wait_for_entries(1)
        store.vacuum(0)
        submit(Priority.INFO, "b", store=store)
        assert recorder.wait_for_entries(2)
        stop()
        stop.join(TIMEOUT)

        assert [e.message for e in recorder.entries] == ["a", "b"]

    def test_parent_connection_stays_usable(self, store, conn):
        """Test the caller keeps using its connection while following."""
        submit(Priority.INFO, "a", store=store)
        recorder = Recorder()
        stop = conn.follow(recorder)

        conn.seek_head()
        assert conn.next() == 1
        assert conn.field("MESSAGE") == "a"

        stop()
        stop.join(TIMEOUT)

    def test_follow_keeps_data_threshold(self, store, conn):
        """Test the worker reads with the caller's data threshold."""
        conn.set_data_threshold(0)
        submit_with_fields(Priority.INFO, "big", {"BIG": "x" * 100_000}, store=store)
        conn.seek_head()
        conn.next()
        parent_entry = conn.read_entry()
        recorder = Recorder()

        stop = conn.follow(recorder)
        assert recorder.wait_for_entries(1)
        stop()
        stop.join(TIMEOUT)

        assert len(parent_entry.fields["BIG"]) == 100_000
        assert recorder.entries[0].fields["BIG"] == parent_entry.fields["BIG"]

    def test_capture_data_threshold(self, conn):
        """Test the caller's threshold is part of the captured state."""
        conn.set_data_threshold(128)

        assert capture_state(conn).data_threshold == 128


class TestFollowErrors:
    """Test follow failures."""

    def test_handler_required(self, conn):
        """Test a missing handler is rejected."""
        with pytest.raises(ValidationError):
            conn.follow(None)

    def test_closed_parent(self, store):
        """Test following a closed connection fails synchronously."""
        conn = Connection.open(store=store)
        conn.close()

        with pytest.raises(ClosedHandle):
            conn.follow(Recorder())

    def test_worker_open_failure(self):
        """Test a failing worker session is reported once through the handler."""
        store = OpenOnceStore()
        conn = Connection.open(store=store)
        recorder = Recorder()

        stop = conn.follow(recorder)

        assert recorder.wait_for_error()
        assert stop.join(TIMEOUT)
        assert len(recorder.calls) == 1
        entry, error = recorder.calls[0]
        assert entry is None
        assert isinstance(error, OpenError)
        assert not isinstance(error, StreamTerminated)

        stop()
        assert len(recorder.calls) == 1
        conn.close()

    def test_handler_exception_ends_follow(self, store, conn):
        """Test a raising handler stops the worker without more callbacks."""
        calls = []

        def handler(entry, error):
            calls.append((entry, error))
            raise RuntimeError("handler failed")

        stop = conn.follow(handler)
        submit(Priority.INFO, "a", store=store)
        submit(Priority.INFO, "b", store=store)

        assert stop.join(TIMEOUT)
        assert len(calls) == 1
        assert calls[0][0].message == "a"

    def test_read_failure_mid_stream(self):
        """Test a read failure after some entries is delivered once, last."""
        store = FailingReadStore()
        submit(Priority.INFO, "a", store=store)
        submit(Priority.INFO, "b", store=store)
        conn = Connection.open(store=store)
        conn.seek_head()
        conn.next()
        recorder = Recorder()

        stop = conn.follow(recorder)

        assert recorder.wait_for_error()
        assert stop.join(TIMEOUT)
        assert [e.message for e in recorder.entries] == ["a"]
        assert len(recorder.errors) == 1
        entry, error = recorder.calls[-1]
        assert entry is None
        assert isinstance(error, ReadError)
        assert not isinstance(error, StreamTerminated)

        stop()
        assert len(recorder.calls) == 2
        conn.close()

    def test_wait_failure(self):
        """Test a failing wait ends the session with a single WaitError."""
        store = FailingWaitStore()
        conn = Connection.open(store=store)
        recorder = Recorder()

        stop = conn.follow(recorder)

        assert recorder.wait_for_error()
        assert stop.join(TIMEOUT)
        assert len(recorder.calls) == 1
        entry, error = recorder.calls[0]
        assert entry is None
        assert isinstance(error, WaitError)
        conn.close()
