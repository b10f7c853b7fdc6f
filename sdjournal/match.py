"""
Match expressions for filtering journal entries.

A Match is an ordered list of nodes compiled into the store's native filter
stack in declaration order:

- Field nodes add ``FIELD=value`` terms; several values of one field are
  alternatives (OR)
- Consecutive field nodes with no marker between them must all hold (AND)
- ``or_()`` disjoins everything that follows with everything before
- ``and_()`` closes the current disjunction and starts a new group that must
  hold as well

Example:
    # (unit is sshd or cron) and priority is err
    Match().match("_SYSTEMD_UNIT", "sshd.service", "cron.service").match("PRIORITY", "3")

    # unit is sshd, or priority is err
    Match().match("_SYSTEMD_UNIT", "sshd.service").or_().match("PRIORITY", "3")

A value of "" matches entries where the field is present and empty. There is
no way to express "field absent".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from sdjournal.errors import ValidationError
from sdjournal.store.base import StoreHandle

Value = Union[str, bytes]


class MatchOp(str, Enum):
    """Kinds of match nodes."""

    FIELD = "field"
    AND = "and"
    OR = "or"


@dataclass(frozen=True)
class MatchNode:
    op: MatchOp
    field: Optional[str] = None
    values: Tuple[bytes, ...] = ()

    def records(self) -> Tuple[bytes, ...]:
        """Raw ``FIELD=value`` terms of a field node."""
        name = (self.field or "").encode()
        return tuple(name + b"=" + value for value in self.values)


def _encode(value: Value) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8", "surrogateescape")
    raise ValidationError(f"match value must be str or bytes, got {type(value).__name__}")


@dataclass(frozen=True)
class Match:
    """
    Immutable match expression.

    Builder methods return a new Match, so a partially built expression can
    be shared and extended without affecting other holders.
    """

    nodes: Tuple[MatchNode, ...] = ()

    def match(self, field: str, *values: Value) -> "Match":
        """
        Add a field term.

        Args:
            field: Field name
            *values: One or more accepted values, ORed together

        Returns:
            New Match with the term appended

        Raises:
            ValidationError: If the field name is empty or no value is given
        """
        if not field:
            raise ValidationError("match field name must not be empty")
        if not values:
            raise ValidationError(f"match on '{field}' needs at least one value")

        node = MatchNode(MatchOp.FIELD, field, tuple(_encode(v) for v in values))
        return Match(self.nodes + (node,))

    def and_(self) -> "Match":
        """Start a new conjunction group for the terms that follow."""
        return Match(self.nodes + (MatchNode(MatchOp.AND),))

    def or_(self) -> "Match":
        """Disjoin the terms that follow with everything before."""
        return Match(self.nodes + (MatchNode(MatchOp.OR),))

    def is_empty(self) -> bool:
        return not self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def apply(self, handle: StoreHandle) -> None:
        """
        Compile the nodes onto a store handle's filter stack.

        Raises:
            OSError: If the store refuses a term
        """
        for node in self.nodes:
            if node.op is MatchOp.FIELD:
                for record in node.records():
                    handle.add_match(record)
            elif node.op is MatchOp.AND:
                handle.add_conjunction()
            else:
                handle.add_disjunction()

    def __str__(self) -> str:
        parts = []
        for node in self.nodes:
            if node.op is MatchOp.FIELD:
                alternatives = " | ".join(
                    f"{node.field}={v.decode('utf-8', 'replace')}" for v in node.values
                )
                parts.append(f"({alternatives})" if len(node.values) > 1 else alternatives)
            else:
                parts.append(node.op.value.upper())
        return " ".join(parts)
