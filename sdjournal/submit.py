"""
Writing entries to the journal.

Submission is stateless and may be called from any thread; the store's write
path accepts concurrent writers.
"""

from typing import List, Mapping, Optional, Union

from sdjournal.errors import OpenError, SubmitError, ValidationError
from sdjournal.fields import MESSAGE, PRIORITY, RESERVED_PREFIX, Priority
from sdjournal.store import StoreBackend, get_store
from sdjournal.utils.logging import get_logger

logger = get_logger(__name__)

FieldValue = Union[str, bytes]


def validate_field_name(name: str) -> None:
    """
    Check a caller-supplied field name.

    Names must be non-empty, must not start with the reserved ``_`` prefix
    and must be upper-case. Lower-case names are rejected, not converted.

    Raises:
        ValidationError: If a rule is violated
    """
    if not name:
        raise ValidationError("journal: field name must not be empty")
    if name.startswith(RESERVED_PREFIX):
        raise ValidationError(
            f"journal: field name '{name}' must not begin with the character '{RESERVED_PREFIX}'"
        )
    if name.upper() != name:
        raise ValidationError(f"journal: field name '{name}' must be upper-case")


def _record(name: str, value: FieldValue) -> bytes:
    if isinstance(value, str):
        value = value.encode("utf-8", "surrogateescape")
    return name.encode("utf-8") + b"=" + value


def submit(
    priority: Union[Priority, int],
    message: str,
    store: Optional[StoreBackend] = None,
) -> None:
    """Write a message with the given priority."""
    submit_with_fields(priority, message, None, store=store)


def submit_with_fields(
    priority: Union[Priority, int],
    message: str,
    fields: Optional[Mapping[str, FieldValue]] = None,
    store: Optional[StoreBackend] = None,
) -> None:
    """
    Write a message with additional fields.

    PRIORITY and MESSAGE entries in ``fields`` take precedence over the
    ``priority`` and ``message`` arguments. ``fields`` is not modified.

    Args:
        priority: Syslog priority
        message: Message text
        fields: Extra fields; names must be upper-case without a leading '_'
        store: Store to write to (defaults to the configured backend)

    Raises:
        ValidationError: If a field name is invalid; nothing is written
        SubmitError: If the store rejects the write
    """
    entry_fields = dict(fields or {})

    for name in entry_fields:
        try:
            validate_field_name(name)
        except ValidationError:
            logger.warning("Rejected journal submission", field=name)
            raise

    entry_fields.setdefault(PRIORITY, str(int(priority)))
    entry_fields.setdefault(MESSAGE, message)

    records: List[bytes] = [_record(name, value) for name, value in entry_fields.items()]

    if store is None:
        try:
            store = get_store()
        except OpenError as exc:
            raise SubmitError(f"journal: failed to send entry to journal: {exc}", errno=exc.errno) from exc

    try:
        store.send(records)
    except OSError as exc:
        raise SubmitError(
            f"journal: failed to send entry to journal: {exc.strerror or exc}",
            errno=exc.errno,
        ) from exc

    logger.debug("Submitted journal entry", fields=len(records), backend=store.name)
