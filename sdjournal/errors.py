"""
Error types raised by sdjournal.

Every failure derives from JournalError. StreamTerminated does not: it marks
a follow session the caller stopped.
"""

import errno as errno_codes
from typing import Optional


class JournalError(Exception):
    """Base error for all journal failures."""

    def __init__(self, message: str, errno: Optional[int] = None):
        super().__init__(message)
        self.errno = errno


class OpenError(JournalError):
    """Raised when a session against the store cannot be established."""


class ClosedHandle(JournalError):
    """Raised when a connection is used after it was closed."""

    def __init__(self, operation: str):
        super().__init__(
            f"journal: cannot {operation}, connection is closed",
            errno=errno_codes.EBADF,
        )
        self.operation = operation


class ThreadAffinityError(JournalError):
    """Raised when a strictly thread-affine connection is driven from another thread."""


class NavigationError(JournalError):
    """Raised when a seek, step or skip fails against the store."""


class NoCurrentEntry(JournalError):
    """Raised when a read needs a position but the cursor addresses no entry."""


class FieldNotPresent(JournalError):
    """Raised when the current entry has no such field."""

    def __init__(self, field: str, errno: Optional[int] = errno_codes.ENOENT):
        super().__init__(f"journal: field '{field}' not present", errno=errno)
        self.field = field


class ReadError(JournalError):
    """Raised when reading entry data or store metadata fails."""


class ValidationError(JournalError):
    """Raised for malformed filters and field-name rule violations."""


class EmptyMatch(ValidationError):
    """Raised when a match without any expression is applied."""

    def __init__(self) -> None:
        super().__init__("journal: no match expression to add")


class MatchError(JournalError):
    """Raised when the store refuses a filter term."""


class WaitError(JournalError):
    """Raised when a blocking wait for changes fails."""


class SubmitError(JournalError):
    """Raised when the store rejects a write."""


class StreamTerminated(Exception):
    """
    Completion signal delivered to a follow handler after it was stopped.

    Not a JournalError: handlers can test for it to tell an explicit stop
    apart from a real failure.
    """

    def __init__(self, message: str = "journal: follow stopped"):
        super().__init__(message)
