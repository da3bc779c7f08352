"""Field access on actor and resource records.

Actors and resources are application-defined.  They may be plain
mappings, dataclasses, pydantic models or ORM instances, so every read
goes through :func:`read_field`, which uses key lookup for mappings and
attribute lookup for everything else.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from typed_policy.core.errors import MissingActorFieldError

MISSING: Any = object()
"""Sentinel returned by :func:`read_field` when a field is absent."""


def read_field(record: Any, name: str, default: Any = None) -> Any:
    """Return ``record[name]`` or ``record.name``, or *default* when absent."""
    if record is None:
        return default
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def is_record(value: Any) -> bool:
    """Return ``True`` if *value* has fields that can be walked into."""
    if isinstance(value, Mapping):
        return True
    if isinstance(value, (str, bytes, list, tuple, set, frozenset)):
        return False
    return hasattr(value, "__dict__") or hasattr(value, "__slots__")


def is_row_sequence(value: Any) -> bool:
    """Return ``True`` for the ordered sequences accepted as related-table rows.

    Only lists and tuples qualify.  A single mapping is never coerced
    into a one-row sequence.
    """
    return isinstance(value, (list, tuple))


def lookup_tenant_value(actor: Any, column: str, namespace: str = "user") -> Any:
    """Resolve the actor's value for a tenant column.

    Looks under ``actor.<namespace>.<column>`` first, then at
    ``actor.<column>``.

    Raises
    ------
    MissingActorFieldError
        If the field is absent in both places.  ``None`` is a present
        value and is returned as such.
    """
    nested = read_field(actor, namespace, MISSING)
    if nested is not MISSING:
        value = read_field(nested, column, MISSING)
        if value is not MISSING:
            return value
    value = read_field(actor, column, MISSING)
    if value is MISSING:
        raise MissingActorFieldError(
            f"Missing required actor field '{column}' "
            f"(looked under 'actor.{namespace}.{column}' and 'actor.{column}')",
            details={"column": column, "namespace": namespace},
        )
    return value
