"""Symbolic path capture.

Rule authors write field access instead of strings::

    subject = subject_proxy()
    subject.post.owner_id      # -> path proxy, normalises to SubjectRef("post", "owner_id")
    subject.comments           # -> table proxy, normalises to TableRef("comments")

    actor = actor_proxy({"user": {"id": "u1"}})
    actor.user.id              # -> ActorRef("u1", source="actor.user.id")

The subject model is exactly two levels deep: the first attribute names
the table, the second names the column.  A third attribute access fails
immediately with :class:`~typed_policy.core.errors.PathResolutionError`.

Proxies only exist at authoring time.  Operators normalise them to the
concrete reference types of :mod:`typed_policy.core.types` on entry, so
expression trees never hold a live proxy.
"""
from __future__ import annotations

import typing
from collections.abc import Mapping, Sequence
from typing import Any

from typed_policy.core.errors import MissingActorFieldError, PathResolutionError
from typed_policy.core.records import MISSING, is_record, read_field
from typed_policy.core.types import (
    ActorRef,
    PathRef,
    Primitive,
    ScopedSubjectRef,
    SubjectRef,
    TableRef,
    is_primitive,
)

# ---------------------------------------------------------------------------
# Schema handling
# ---------------------------------------------------------------------------

def _record_columns(annotation: Any) -> frozenset[str] | None:
    """Column names of a record type, unwrapping ``list[Record]``."""
    origin = typing.get_origin(annotation)
    if origin in (list, tuple, Sequence):
        args = typing.get_args(annotation)
        if not args:
            return None
        annotation = args[0]
    try:
        hints = typing.get_type_hints(annotation)
    except (TypeError, NameError):
        return None
    return frozenset(hints) or None


def normalize_schema(schema: Any) -> dict[str, frozenset[str] | None] | None:
    """Turn a schema description into ``{table: columns}``.

    Accepts ``None`` (no checking), a mapping of table names to column
    names, or a class whose annotations name tables (``TypedDict``,
    dataclass, pydantic model ...).  A table whose columns cannot be
    determined maps to ``None`` and accepts any column.
    """
    if schema is None:
        return None
    if isinstance(schema, Mapping):
        return {table: frozenset(columns) for table, columns in schema.items()}
    try:
        hints = typing.get_type_hints(schema)
    except (TypeError, NameError) as exc:
        raise PathResolutionError(
            f"Cannot derive a schema from {schema!r}",
            details={"schema": repr(schema)},
        ) from exc
    return {table: _record_columns(annotation) for table, annotation in hints.items()}


def _check_table(schema: dict[str, frozenset[str] | None] | None, table: str) -> None:
    if schema is not None and table not in schema:
        raise PathResolutionError(
            f"Unknown table '{table}'. Known tables: {', '.join(sorted(schema))}",
            details={"table": table, "known": sorted(schema)},
        )


def _check_column(
    schema: dict[str, frozenset[str] | None] | None, table: str, column: str
) -> None:
    if schema is None:
        return
    columns = schema.get(table)
    if columns is not None and column not in columns:
        raise PathResolutionError(
            f"Unknown column '{table}.{column}'. Known columns: {', '.join(sorted(columns))}",
            details={"table": table, "column": column, "known": sorted(columns)},
        )


# ---------------------------------------------------------------------------
# Subject proxies
# ---------------------------------------------------------------------------

class PathProxy:
    """Captured ``table.column`` access.  Any further access is an error."""

    __slots__ = ("_table", "_column", "_scoped")

    def __init__(self, table: str, column: str, scoped: bool) -> None:
        self._table = table
        self._column = column
        self._scoped = scoped

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        raise PathResolutionError(
            f"Cannot access '{name}' on '{self._table}.{self._column}': "
            f"paths are limited to table.column",
            details={"path": f"{self._table}.{self._column}.{name}"},
        )

    def to_ref(self) -> PathRef:
        if self._scoped:
            return ScopedSubjectRef(self._table, self._column)
        return SubjectRef(self._table, self._column)

    def __repr__(self) -> str:
        return f"PathProxy({self._table}.{self._column})"


class TableProxy:
    """Captured table access; the next attribute names a column."""

    __slots__ = ("_table", "_scoped", "_schema")

    def __init__(
        self,
        table: str,
        scoped: bool,
        schema: dict[str, frozenset[str] | None] | None,
    ) -> None:
        self._table = table
        self._scoped = scoped
        self._schema = schema

    def __getattr__(self, name: str) -> PathProxy:
        if name.startswith("__"):
            raise AttributeError(name)
        _check_column(self._schema, self._table, name)
        return PathProxy(self._table, name, self._scoped)

    def to_ref(self) -> TableRef:
        return TableRef(self._table)

    def scoped(self) -> TableProxy:
        """Return a proxy for the same table whose paths are scoped."""
        return TableProxy(self._table, True, self._schema)

    def __repr__(self) -> str:
        return f"TableProxy({self._table})"


class SubjectProxy:
    """Root proxy for the subject; the first attribute names a table."""

    __slots__ = ("_schema",)

    def __init__(self, schema: dict[str, frozenset[str] | None] | None = None) -> None:
        self._schema = schema

    def __getattr__(self, name: str) -> TableProxy:
        if name.startswith("__"):
            raise AttributeError(name)
        _check_table(self._schema, name)
        return TableProxy(name, False, self._schema)

    def __repr__(self) -> str:
        return "SubjectProxy()"


def subject_proxy(schema: Any = None) -> SubjectProxy:
    """Create a subject proxy, optionally validated against *schema*.

    Parameters
    ----------
    schema:
        ``None``, a mapping ``{table: columns}``, or a class whose
        annotations describe the subject (``post: Post``,
        ``comments: list[Comment]``).
    """
    return SubjectProxy(normalize_schema(schema))


def scoped_proxy(table: str, schema: Any = None) -> TableProxy:
    """Create a proxy for one related table inside exists/count/has_many.

    Column access yields :class:`ScopedSubjectRef` values.  *schema* is
    either the subject schema (the table's columns are looked up in it)
    or ``None``.
    """
    normalized = normalize_schema(schema)
    _check_table(normalized, table)
    return TableProxy(table, True, normalized)


# ---------------------------------------------------------------------------
# Actor proxy
# ---------------------------------------------------------------------------

class ActorProxy:
    """Wraps an actor record; attribute access captures runtime values.

    Leaf values come back as :class:`ActorRef`; nested records come back
    as further :class:`ActorProxy` instances so ``actor.user.id`` works.
    """

    __slots__ = ("_value", "_source")

    def __init__(self, value: Any, source: str = "actor") -> None:
        self._value = value
        self._source = source

    def __getattr__(self, name: str) -> ActorProxy | ActorRef:
        if name.startswith("__"):
            raise AttributeError(name)
        value = read_field(self._value, name, MISSING)
        source = f"{self._source}.{name}"
        if value is MISSING:
            raise MissingActorFieldError(
                f"Missing required actor field '{source}'",
                details={"path": source},
            )
        if not is_primitive(value) and is_record(value):
            return ActorProxy(value, source)
        return ActorRef(value, source)

    def to_ref(self) -> ActorRef:
        return ActorRef(self._value, self._source)

    def unwrap(self) -> Any:
        """Return the wrapped actor value."""
        return self._value

    def __repr__(self) -> str:
        return f"ActorProxy({self._source})"


def actor_proxy(actor: Any) -> ActorProxy:
    """Wrap *actor* so field access yields bound :class:`ActorRef` values."""
    if isinstance(actor, ActorProxy):
        return actor
    return ActorProxy(actor)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def normalize_path(value: Any) -> SubjectRef | ScopedSubjectRef | TableRef:
    """Normalise a proxy or reference to a concrete path or table reference.

    Raises
    ------
    PathResolutionError
        If *value* is not a subject/scoped path or a table.
    """
    if isinstance(value, (SubjectRef, ScopedSubjectRef, TableRef)):
        return value
    if isinstance(value, (PathProxy, TableProxy)):
        return value.to_ref()
    if isinstance(value, str):
        raise PathResolutionError(
            f"Cannot normalize string path {value!r}: build paths through a subject proxy",
            details={"input": value},
        )
    raise PathResolutionError(
        f"Cannot normalize path: {value!r}",
        details={"input": repr(value)},
    )


def normalize_column(value: Any) -> PathRef:
    """Like :func:`normalize_path` but rejects table-level references."""
    ref = normalize_path(value)
    if isinstance(ref, TableRef):
        raise PathResolutionError(
            f"'{ref.name}' is a table, not a column; use subject.{ref.name}.<column>",
            details={"input": ref.name},
        )
    return ref


def normalize_value(value: Any) -> PathRef | ActorRef | Primitive:
    """Normalise an operand: path proxies to refs, actor proxies to :class:`ActorRef`.

    Primitives and existing references pass through unchanged.

    Raises
    ------
    PathResolutionError
        If *value* is a table reference or an unsupported object.
    """
    if isinstance(value, (SubjectRef, ScopedSubjectRef, ActorRef)) or is_primitive(value):
        return value
    if isinstance(value, PathProxy):
        return value.to_ref()
    if isinstance(value, ActorProxy):
        return value.to_ref()
    if isinstance(value, (TableProxy, TableRef)):
        raise PathResolutionError(
            f"Table {value!r} cannot be used as a value",
            details={"input": repr(value)},
        )
    raise PathResolutionError(
        f"Cannot normalize value: {value!r}",
        details={"input": repr(value), "type": type(value).__name__},
    )


def get_table_name(value: Any) -> str:
    """Return the table name of a table proxy or :class:`TableRef`."""
    ref = normalize_path(value)
    if not isinstance(ref, TableRef):
        raise PathResolutionError(
            f"Expected a table, got column path {ref}",
            details={"input": str(ref)},
        )
    return ref.name


def get_path_info(value: Any) -> tuple[str, str]:
    """Return ``(table, column)`` for a path proxy or reference."""
    ref = normalize_column(value)
    return ref.table, ref.column
