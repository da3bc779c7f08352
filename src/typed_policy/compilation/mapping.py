"""Table mappings: the declared tables and columns a predicate may touch.

A table mapping is a plain ``{table: {column: handle}}`` mapping where a
handle is any SQLAlchemy column expression (a Core ``Column`` or an ORM
instrumented attribute).  The compiler resolves every path through it
and refuses anything that is not declared.  Mappings are passed per
call and never cached.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import FromClause, inspect
from sqlalchemy.orm import Mapper

from typed_policy.core.errors import (
    PathResolutionError,
    UndeclaredColumnError,
    UndeclaredTableError,
)
from typed_policy.core.expressions import (
    ActionRule,
    Related,
    as_expr,
    path_refs,
    unscoped_paths,
    walk,
)
from typed_policy.core.types import PathRef, ScopedSubjectRef

TableMapping = Mapping[str, Mapping[str, Any]]


def map_table(source: Any, *, columns: list[str] | tuple[str, ...] | None = None) -> dict[str, Any]:
    """Build ``{column_name: handle}`` from a ``Table`` or an ORM mapped class.

    Parameters
    ----------
    source:
        A SQLAlchemy ``Table`` (or other ``FromClause``) or a mapped class.
    columns:
        Optional whitelist.  Only these columns are declared.

    Raises
    ------
    TypeError
        If *source* is neither a selectable nor a mapped class.
    UndeclaredColumnError
        If the whitelist names a column *source* does not have.
    """
    if isinstance(source, FromClause):
        handles = {column.key: column for column in source.c}
    else:
        mapper = inspect(source, raiseerr=False)
        if not isinstance(mapper, Mapper):
            raise TypeError(
                f"Cannot map {source!r}: expected a Table or an ORM mapped class"
            )
        handles = {attr.key: getattr(source, attr.key) for attr in mapper.column_attrs}

    if columns is None:
        return handles

    missing = [name for name in columns if name not in handles]
    if missing:
        raise UndeclaredColumnError(
            f"Columns {missing} do not exist on {source!r}",
            details={"missing": missing, "available": sorted(handles)},
        )
    return {name: handles[name] for name in columns}


def table_mapping(**tables: Any) -> dict[str, dict[str, Any]]:
    """Build a table mapping from keyword arguments.

    Each value may be a ``Table``, a mapped class, or a ready
    ``{column: handle}`` mapping::

        tables = table_mapping(post=posts_table, comments=Comment)
    """
    mapping: dict[str, dict[str, Any]] = {}
    for name, source in tables.items():
        if isinstance(source, Mapping):
            mapping[name] = dict(source)
        else:
            mapping[name] = map_table(source)
    return mapping


def referenced_columns(rule: ActionRule) -> set[tuple[str, str]]:
    """Return every ``(table, column)`` the declarative parts of *rule* use.

    Escape-hatch functions are not expanded.
    """
    return {(ref.table, ref.column) for ref in path_refs(as_expr(rule))}


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _declared(
    name: str,
    tables: TableMapping,
    related_tables: TableMapping | None,
    scoped: bool,
) -> Mapping[str, Any]:
    if scoped and related_tables is not None and name in related_tables:
        return related_tables[name]
    if name in tables:
        return tables[name]
    declared = sorted(set(tables) | set(related_tables or {}) if scoped else set(tables))
    raise UndeclaredTableError(
        f"Table '{name}' is not declared; declared tables: {declared}",
        details={"table": name, "declared": declared},
    )


def resolve_table(
    name: str,
    tables: TableMapping,
    related_tables: TableMapping | None = None,
) -> Mapping[str, Any]:
    """Return the declared columns of a related table.

    Looks in *related_tables* first, then *tables*.

    Raises
    ------
    UndeclaredTableError
        If the table is declared in neither mapping.
    """
    return _declared(name, tables, related_tables, scoped=True)


def resolve_column(
    ref: PathRef,
    tables: TableMapping,
    related_tables: TableMapping | None = None,
) -> Any:
    """Return the column handle a path refers to.

    Subject paths resolve in *tables*; scoped paths resolve in
    *related_tables* and then *tables*.

    Raises
    ------
    UndeclaredTableError
        If the table is not declared.
    UndeclaredColumnError
        If the table is declared but the column is not.
    """
    columns = _declared(ref.table, tables, related_tables, isinstance(ref, ScopedSubjectRef))
    if ref.column not in columns:
        declared = sorted(columns)
        raise UndeclaredColumnError(
            f"Column '{ref.column}' is not declared on table '{ref.table}'; "
            f"declared columns: {declared}",
            details={"table": ref.table, "column": ref.column, "declared": declared},
        )
    return columns[ref.column]


def from_clause_for(columns: Mapping[str, Any]) -> FromClause:
    """Return the selectable that owns a table's column handles.

    Raises
    ------
    UndeclaredTableError
        If *columns* is empty or its handles are not bound to a table.
    """
    for handle in columns.values():
        element = handle.__clause_element__() if hasattr(handle, "__clause_element__") else handle
        table = getattr(element, "table", None)
        if table is not None:
            return table
    raise UndeclaredTableError(
        "Cannot derive a FROM clause: the table declares no bound columns",
        details={"declared": sorted(columns)},
    )


def validate_mapping(
    rule: ActionRule,
    tables: TableMapping,
    related_tables: TableMapping | None = None,
) -> None:
    """Check that every table and column *rule* uses is declared.

    Raises the first declaration error found, without compiling.
    Escape-hatch functions are not expanded.

    Raises
    ------
    PathResolutionError
        If a scoped path sits outside exists/count/has_many over its table.
    UndeclaredTableError, UndeclaredColumnError
        If a table or column is not declared.
    """
    expr = as_expr(rule)
    stray = next(unscoped_paths(expr), None)
    if stray is not None:
        raise PathResolutionError(
            f"Scoped path '{stray}' is used outside exists/count/has_many over '{stray.table}'",
            details={"table": stray.table, "column": stray.column},
        )
    for node in walk(expr):
        if isinstance(node, Related):
            resolve_table(node.table.name, tables, related_tables)
    for ref in path_refs(expr):
        resolve_column(ref, tables, related_tables)
