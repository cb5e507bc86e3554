# =============================================================================
# File: hirechat/chat/value_objects.py
# Description: Messaging core value objects
# =============================================================================

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from hirechat.chat.enums import ChangeOperation, FilterOp
from hirechat.common.enums.enums import Table
from hirechat.utils.datetime_utils import parse_timestamp_robust


_COMPARATORS: Dict[FilterOp, Callable[[Any, Any], bool]] = {
    FilterOp.EQ: operator.eq,
    FilterOp.NEQ: operator.ne,
    FilterOp.GT: operator.gt,
    FilterOp.GTE: operator.ge,
    FilterOp.LT: operator.lt,
    FilterOp.LTE: operator.le,
}


def _coerce_pair(cell: Any, value: Any) -> Tuple[Any, Any]:
    """Bring a row cell and a filter operand to comparable types."""
    if isinstance(value, datetime) and isinstance(cell, str):
        return parse_timestamp_robust(cell), value
    if isinstance(cell, datetime) and isinstance(value, str):
        return cell, parse_timestamp_robust(value)
    if isinstance(cell, datetime) and isinstance(value, datetime):
        return parse_timestamp_robust(cell), parse_timestamp_robust(value)
    return cell, value


@dataclass(frozen=True)
class RowFilter:
    """
    Value Object: a single column predicate (``column <op> value``).

    Used both to build row store queries and to filter change feed events,
    so the same predicate means the same thing on either side.
    """
    column: str
    op: FilterOp
    value: Any

    @classmethod
    def eq(cls, column: str, value: Any) -> 'RowFilter':
        return cls(column, FilterOp.EQ, value)

    @classmethod
    def neq(cls, column: str, value: Any) -> 'RowFilter':
        return cls(column, FilterOp.NEQ, value)

    @classmethod
    def gt(cls, column: str, value: Any) -> 'RowFilter':
        return cls(column, FilterOp.GT, value)

    @classmethod
    def gte(cls, column: str, value: Any) -> 'RowFilter':
        return cls(column, FilterOp.GTE, value)

    @classmethod
    def lt(cls, column: str, value: Any) -> 'RowFilter':
        return cls(column, FilterOp.LT, value)

    @classmethod
    def lte(cls, column: str, value: Any) -> 'RowFilter':
        return cls(column, FilterOp.LTE, value)

    @classmethod
    def in_(cls, column: str, values: Iterable[Any]) -> 'RowFilter':
        return cls(column, FilterOp.IN, tuple(values))

    def matches(self, row: Mapping[str, Any]) -> bool:
        """
        Evaluate the predicate against a row dict.

        A missing column never matches. NULL behaves as in SQL: ``eq None``
        is IS NULL, ``neq None`` is IS NOT NULL, and a NULL cell fails every
        other comparison.
        """
        if self.column not in row:
            return False
        cell = row[self.column]

        if self.op == FilterOp.IN:
            return cell is not None and cell in self.value

        if cell is None or self.value is None:
            if self.op == FilterOp.EQ:
                return cell is None and self.value is None
            if self.op == FilterOp.NEQ:
                return cell is not None and self.value is None
            return False

        left, right = _coerce_pair(cell, self.value)
        try:
            return _COMPARATORS[self.op](left, right)
        except TypeError:
            return False


def matches_all(filters: Iterable[RowFilter], row: Mapping[str, Any]) -> bool:
    """True when every filter accepts the row (an empty list accepts all)."""
    return all(f.matches(row) for f in filters)


@dataclass(frozen=True)
class RoomKey:
    """
    Value Object: room identity.

    A room is one (project, counterparty) pair seen from the viewer's side.
    """
    project_id: str
    counterparty_id: str

    def __str__(self) -> str:
        return f"{self.project_id}:{self.counterparty_id}"


@dataclass(frozen=True)
class ChangeEvent:
    """
    Value Object: one row-level change delivered by the change feed.

    ``row`` is the new row for INSERT/UPDATE, ``old`` the previous row for
    UPDATE/DELETE (may carry only the primary key).
    """
    table: Table
    operation: ChangeOperation
    row: Dict[str, Any] = field(default_factory=dict)
    old: Optional[Dict[str, Any]] = None

    @property
    def record(self) -> Dict[str, Any]:
        """The row a filter should be evaluated against."""
        if self.operation == ChangeOperation.DELETE:
            return self.old or {}
        return self.row


@dataclass(frozen=True)
class OutgoingAttachment:
    """Value Object: a file the user attached to an outgoing message."""
    filename: str
    content: bytes = field(repr=False)
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)
