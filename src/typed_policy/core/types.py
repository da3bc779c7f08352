"""typed-policy shared value types.

This module defines the reference types that expression nodes are built
from, the primitive value set, and the :class:`ExprKind` enum that tags
every node.

Key design decisions:
* Subject paths are never strings.  :class:`SubjectRef` and
  :class:`ScopedSubjectRef` always carry an explicit ``(table, column)``
  pair so the compiler can check them against the declared mapping.
* :class:`ActorRef` wraps a value captured from the actor at authoring
  time.  It is a bound runtime value, never a column reference.
* All reference types are frozen, slotted dataclasses: they are created
  once when a policy module loads and only ever read afterwards.
* Enums use *string* values so they render cleanly in logs and errors.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, TypeAlias
from uuid import UUID

# ---------------------------------------------------------------------------
# Primitive values
# ---------------------------------------------------------------------------

Primitive: TypeAlias = str | int | float | bool | None | Decimal | date | datetime | time | UUID
"""Scalar values that may appear directly in an expression."""

PRIMITIVE_TYPES: tuple[type, ...] = (
    str, int, float, bool, type(None), Decimal, date, datetime, time, UUID,
)


def is_primitive(value: object) -> bool:
    """Return ``True`` if *value* is one of the supported scalar types."""
    return isinstance(value, PRIMITIVE_TYPES)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ExprKind(enum.StrEnum):
    """Tag carried by every expression node."""

    LITERAL = "literal"
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    IN_ARRAY = "inArray"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    CONTAINS = "contains"
    BETWEEN = "between"
    MATCHES = "matches"
    EXISTS = "exists"
    COUNT = "count"
    HAS_MANY = "hasMany"
    TENANT_SCOPED = "tenantScoped"
    BELONGS_TO_TENANT = "belongsToTenant"
    NOT = "not"
    AND = "and"
    OR = "or"
    FUNCTION = "function"


COMPARISON_KINDS = frozenset(
    {ExprKind.EQ, ExprKind.NEQ, ExprKind.GT, ExprKind.LT, ExprKind.GTE, ExprKind.LTE}
)
ORDERING_KINDS = frozenset({ExprKind.GT, ExprKind.LT, ExprKind.GTE, ExprKind.LTE})
NULL_CHECK_KINDS = frozenset({ExprKind.IS_NULL, ExprKind.IS_NOT_NULL})
TEXT_KINDS = frozenset({ExprKind.STARTS_WITH, ExprKind.ENDS_WITH, ExprKind.CONTAINS})
RELATED_KINDS = frozenset({ExprKind.EXISTS, ExprKind.COUNT, ExprKind.HAS_MANY})
JUNCTION_KINDS = frozenset({ExprKind.AND, ExprKind.OR})


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SubjectRef:
    """A column of the outer subject, e.g. ``subject.post.owner_id``."""

    table: str
    column: str

    def __str__(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass(frozen=True, slots=True)
class ScopedSubjectRef:
    """A column of a related table inside an exists/count/has_many predicate.

    Structurally identical to :class:`SubjectRef`; the distinct type lets
    the compiler tell correlated inner paths from outer subject paths.
    """

    table: str
    column: str

    def __str__(self) -> str:
        return f"{self.table}[*].{self.column}"


@dataclass(frozen=True, slots=True)
class TableRef:
    """A related table referenced by exists/count/has_many."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class ActorRef:
    """A value captured from the actor.

    Attributes
    ----------
    value:
        The captured runtime value.  Becomes a bound parameter when
        compiled; never interpolated into SQL text.
    source:
        Dotted access path the value was read from (``"actor.user.id"``),
        kept for diagnostics only.
    """

    value: Any
    source: str = field(default="actor", compare=False)

    def __str__(self) -> str:
        return self.source


PathRef: TypeAlias = SubjectRef | ScopedSubjectRef
Operand: TypeAlias = SubjectRef | ScopedSubjectRef | ActorRef | Primitive


def is_path_ref(value: object) -> bool:
    """Return ``True`` for subject and scoped subject references."""
    return isinstance(value, (SubjectRef, ScopedSubjectRef))


def is_operand(value: object) -> bool:
    """Return ``True`` if *value* may sit in an operator's value position."""
    return is_path_ref(value) or isinstance(value, ActorRef) or is_primitive(value)
