"""
Decoded journal entries.

The store hands out field data as raw ``NAME=value`` byte records. A record
is split on the first ``=``: the name is everything before it, the value is
everything after it, including any further ``=`` characters.

Values are decoded as UTF-8 with the ``surrogateescape`` error handler, so
non-UTF-8 payloads survive a round trip byte-for-byte: ``Entry.raw(name)``
returns exactly the bytes the store holds.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from sdjournal.errors import ReadError
from sdjournal.fields import MESSAGE, PRIORITY, Priority

ENCODING = "utf-8"
ERRORS = "surrogateescape"


def split_record(record: bytes) -> Tuple[str, str]:
    """
    Split a raw ``NAME=value`` record.

    Args:
        record: Raw field record as returned by the store

    Returns:
        Tuple of (name, value)

    Raises:
        ReadError: If the record has no ``=`` separator
    """
    name, sep, value = record.partition(b"=")
    if not sep:
        raise ReadError(f"journal: failed to parse field record {record[:32]!r}")
    return name.decode(ENCODING, ERRORS), value.decode(ENCODING, ERRORS)


def strip_field_name(record: bytes, name: str) -> str:
    """Return the value of a raw record known to belong to ``name``."""
    prefix = name.encode(ENCODING, ERRORS) + b"="
    if record.startswith(prefix):
        record = record[len(prefix):]
    return record.decode(ENCODING, ERRORS)


def timestamp_from_usec(usec: int) -> datetime:
    return datetime.fromtimestamp(0, tz=timezone.utc) + timedelta(microseconds=usec)


@dataclass(frozen=True)
class Entry:
    """
    One journal entry, read atomically at a cursor position.

    Attributes:
        fields: Field name to value (read-only mapping)
        cursor: Opaque cursor token addressing the entry
        timestamp: Wall-clock time the entry was written (UTC)
        elapsed: Monotonic time since boot when the entry was written
    """

    fields: Mapping[str, str]
    cursor: str
    timestamp: datetime
    elapsed: timedelta = field(default_factory=timedelta)

    def __post_init__(self) -> None:
        if not isinstance(self.fields, MappingProxyType):
            object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def message(self) -> Optional[str]:
        return self.fields.get(MESSAGE)

    @property
    def priority(self) -> Optional[Priority]:
        value = self.fields.get(PRIORITY)
        if value is None or not value.isdigit():
            return None
        try:
            return Priority(int(value))
        except ValueError:
            return None

    def raw(self, name: str) -> bytes:
        """Return the stored bytes of a field."""
        return self.fields[name].encode(ENCODING, ERRORS)

    def to_dict(self) -> Dict[str, Any]:
        """
        Render the entry for display or export.

        ``timestamp`` is RFC 3339, ``elapsed`` is in seconds.
        """
        return {
            "fields": dict(self.fields),
            "cursor": self.cursor,
            "timestamp": self.timestamp.isoformat(),
            "elapsed": self.elapsed.total_seconds(),
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __str__(self) -> str:
        return self.to_json(indent=2)
