"""typed-policy authoring surface.

This subpackage is what policy modules import at load time:

* **Symbolic paths** -- :func:`subject_proxy`, :func:`scoped_proxy` and
  :func:`actor_proxy` capture ``table.column`` references and actor
  values without strings.
* **Operators** -- comparison, membership, null, text, regex,
  related-table, tenancy and boolean constructors returning immutable
  expression nodes.
"""
from __future__ import annotations

from typed_policy.authoring.operators import (
    and_,
    belongs_to_tenant,
    between,
    contains,
    count,
    ends_with,
    eq,
    exists,
    fn,
    gt,
    gte,
    has_many,
    in_array,
    is_not_null,
    is_null,
    literal,
    lt,
    lte,
    matches,
    neq,
    not_,
    or_,
    starts_with,
    tenant_scoped,
)
from typed_policy.authoring.paths import (
    ActorProxy,
    PathProxy,
    SubjectProxy,
    TableProxy,
    actor_proxy,
    get_path_info,
    get_table_name,
    normalize_path,
    normalize_value,
    scoped_proxy,
    subject_proxy,
)

__all__ = [
    "ActorProxy",
    "PathProxy",
    "SubjectProxy",
    "TableProxy",
    "actor_proxy",
    "and_",
    "belongs_to_tenant",
    "between",
    "contains",
    "count",
    "ends_with",
    "eq",
    "exists",
    "fn",
    "get_path_info",
    "get_table_name",
    "gt",
    "gte",
    "has_many",
    "in_array",
    "is_not_null",
    "is_null",
    "literal",
    "lt",
    "lte",
    "matches",
    "neq",
    "normalize_path",
    "normalize_value",
    "not_",
    "or_",
    "scoped_proxy",
    "starts_with",
    "subject_proxy",
    "tenant_scoped",
]
