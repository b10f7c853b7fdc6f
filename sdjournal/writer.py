"""
Structured log writer for the journal.

JournalWriter is a file-like sink for JSON log lines, such as those produced
by structlog's JSONRenderer, turning every line into a journal entry. Point a
logging stream at it to send application logs to the journal:

    configure_logging(log_output="journal")
"""

import base64
import json
import re
import threading
from datetime import date, datetime
from typing import Any, Dict, Optional, Union

from sdjournal.errors import ValidationError
from sdjournal.fields import Priority
from sdjournal.store import StoreBackend
from sdjournal.submit import submit_with_fields

_MESSAGE_KEYS = ("message", "@m", "event")
_LEVEL_KEYS = ("level", "@l")
_TIMESTAMP_KEYS = ("timestamp", "@t")

_LEVELS = {
    "debug": Priority.DEBUG,
    "info": Priority.INFO,
    "information": Priority.INFO,
    "notice": Priority.NOTICE,
    "warn": Priority.WARNING,
    "warning": Priority.WARNING,
    "error": Priority.ERROR,
    "exception": Priority.ERROR,
    "critical": Priority.CRITICAL,
    "fatal": Priority.CRITICAL,
}

_INVALID_NAME_CHARS = re.compile(r"[^A-Z0-9_]")


def journal_priority(level: str) -> Priority:
    """Map a log level name to a priority; unknown levels are INFO."""
    return _LEVELS.get(level.strip().lower(), Priority.INFO)


def journal_field_name(key: str) -> str:
    """Turn an arbitrary log key into a valid journal field name."""
    name = _INVALID_NAME_CHARS.sub("_", key.upper())
    return name.lstrip("_0123456789")


def value_as_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if value is None:
        return ""
    return json.dumps(value, default=str)


class JournalWriter:
    """
    File-like object writing JSON log lines to the journal.

    Each line must be a JSON object. Keys are mapped as follows:
    - message, @m or event: the MESSAGE field
    - level or @l: the PRIORITY field
    - timestamp or @t: dropped, the store stamps entries itself
    - other keys starting with '@': dropped
    - everything else: upper-cased custom fields
    """

    def __init__(self, store: Optional[StoreBackend] = None):
        self.store = store
        # Submission logs too; writes nested inside a write on the same
        # thread are dropped
        self._local = threading.local()

    def write(self, data: Union[str, bytes]) -> int:
        if isinstance(data, bytes):
            text = data.decode("utf-8", "replace")
        else:
            text = data

        if getattr(self._local, "active", False):
            return len(data)

        self._local.active = True
        try:
            for line in text.splitlines():
                if line.strip():
                    self._write_line(line)
        finally:
            self._local.active = False

        return len(data)

    def _write_line(self, line: str) -> None:
        try:
            record = json.loads(line)
        except ValueError as exc:
            raise ValidationError(f"journal: invalid structured log entry: {exc}") from exc

        if not isinstance(record, dict) or not record:
            raise ValidationError("journal: invalid structured log entry")

        message = ""
        priority = Priority.INFO
        entry_fields: Dict[str, str] = {}

        for key, value in record.items():
            if not key:
                continue
            if key in _MESSAGE_KEYS:
                # An explicit message wins over structlog's event key
                if key != "event" or not message:
                    message = value_as_string(value)
            elif key in _LEVEL_KEYS:
                priority = journal_priority(value_as_string(value))
            elif key in _TIMESTAMP_KEYS or key.startswith("@"):
                continue
            else:
                name = journal_field_name(key)
                if name:
                    entry_fields[name] = value_as_string(value)

        submit_with_fields(priority, message, entry_fields, store=self.store)

    def flush(self) -> None:
        pass

    def writable(self) -> bool:
        return True
