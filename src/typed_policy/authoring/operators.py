"""Operator library: the sanctioned constructors for expression nodes.

Every operator normalises its arguments on entry (proxies become
concrete references) and returns an immutable node from
:mod:`typed_policy.core.expressions`.  Value positions accept only a
subject path, an actor value or a primitive.

Example::

    subject = subject_proxy()
    actor = actor_proxy(current_user)

    read = or_(
        eq(subject.post.published, True),
        eq(subject.post.owner_id, actor.user.id),
    )
    has_replies = exists(
        subject.comments,
        lambda c: eq(c.post_id, subject.post.id),
    )
"""
from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from typing import Any

from typed_policy.authoring.paths import (
    ActorProxy,
    PathProxy,
    TableProxy,
    normalize_column,
    normalize_value,
    scoped_proxy,
)
from typed_policy.core.errors import InvalidOperandError, UncorrelatedPredicateError
from typed_policy.core.expressions import (
    ActionRule,
    BelongsToTenant,
    Between,
    Comparison,
    Expr,
    Function,
    InArray,
    Junction,
    Literal,
    Matches,
    Not,
    NullCheck,
    Related,
    TenantScoped,
    TextMatch,
    as_expr,
    is_expr,
    path_refs,
    walk,
)
from typed_policy.core.types import (
    ActorRef,
    ExprKind,
    Operand,
    ScopedSubjectRef,
    SubjectRef,
    TableRef,
    is_primitive,
)

PredicateFactory = Callable[[TableProxy], Expr]


def _scalar_actor(ref: ActorRef, role: str) -> ActorRef:
    if not is_primitive(ref.value):
        raise InvalidOperandError(
            f"Actor value {ref.source} used as {role} is a {type(ref.value).__name__}, "
            "not a scalar; use in_array() to test membership in a sequence",
            details={"role": role, "source": ref.source, "type": type(ref.value).__name__},
        )
    return ref


def _value(value: Any, role: str) -> Operand:
    if isinstance(value, (PathProxy, ActorProxy, SubjectRef, ScopedSubjectRef, ActorRef)):
        normalized = normalize_value(value)
        if isinstance(normalized, ActorRef):
            return _scalar_actor(normalized, role)
        return normalized
    if is_primitive(value):
        return value
    raise InvalidOperandError(
        f"Unsupported {role}: {type(value).__name__}",
        details={"role": role, "type": type(value).__name__},
    )


def _text(value: Any, role: str) -> str:
    if not isinstance(value, str):
        raise InvalidOperandError(
            f"{role} must be a str, got {type(value).__name__}",
            details={"role": role},
        )
    return value


def _compare(kind: ExprKind, left: Any, right: Any) -> Comparison:
    return Comparison(kind, normalize_column(left), _value(right, "right operand"))


# ---------------------------------------------------------------------------
# Comparisons
# ---------------------------------------------------------------------------

def eq(left: Any, right: Any) -> Comparison:
    """``left == right``."""
    return _compare(ExprKind.EQ, left, right)


def neq(left: Any, right: Any) -> Comparison:
    """``left != right``."""
    return _compare(ExprKind.NEQ, left, right)


def gt(left: Any, right: Any) -> Comparison:
    """``left > right``; false when either side is null."""
    return _compare(ExprKind.GT, left, right)


def lt(left: Any, right: Any) -> Comparison:
    """``left < right``; false when either side is null."""
    return _compare(ExprKind.LT, left, right)


def gte(left: Any, right: Any) -> Comparison:
    """``left >= right``; false when either side is null."""
    return _compare(ExprKind.GTE, left, right)


def lte(left: Any, right: Any) -> Comparison:
    """``left <= right``; false when either side is null."""
    return _compare(ExprKind.LTE, left, right)


def between(path: Any, low: Any, high: Any) -> Between:
    """``low <= path <= high``; false when any operand is null."""
    return Between(normalize_column(path), _value(low, "min"), _value(high, "max"))


# ---------------------------------------------------------------------------
# Single-column predicates
# ---------------------------------------------------------------------------

def in_array(path: Any, values: Sequence[Any] | ActorRef | ActorProxy) -> InArray:
    """Membership test.  An empty *values* list never matches.

    *values* may be a sequence of primitives or an actor value holding
    one (``actor.user.team_ids``).
    """
    if isinstance(values, ActorProxy):
        values = values.to_ref()
    if isinstance(values, ActorRef):
        values = values.value
    if isinstance(values, (str, bytes)) or not isinstance(values, (Sequence, set, frozenset)):
        raise InvalidOperandError(
            f"in_array requires a sequence of values, got {type(values).__name__}",
            details={"type": type(values).__name__},
        )
    items = tuple(values)
    for item in items:
        if not is_primitive(item):
            raise InvalidOperandError(
                f"in_array values must be primitives, got {type(item).__name__}",
                details={"type": type(item).__name__},
            )
    return InArray(normalize_column(path), items)


def is_null(path: Any) -> NullCheck:
    """The column is null (or the field is absent)."""
    return NullCheck(ExprKind.IS_NULL, normalize_column(path))


def is_not_null(path: Any) -> NullCheck:
    """The column holds a value."""
    return NullCheck(ExprKind.IS_NOT_NULL, normalize_column(path))


def starts_with(path: Any, prefix: str) -> TextMatch:
    """String prefix test; false for non-string values."""
    return TextMatch(ExprKind.STARTS_WITH, normalize_column(path), _text(prefix, "prefix"))


def ends_with(path: Any, suffix: str) -> TextMatch:
    """String suffix test; false for non-string values."""
    return TextMatch(ExprKind.ENDS_WITH, normalize_column(path), _text(suffix, "suffix"))


def contains(path: Any, text: str) -> TextMatch:
    """Substring test; false for non-string values."""
    return TextMatch(ExprKind.CONTAINS, normalize_column(path), _text(text, "text"))


def matches(path: Any, pattern: str, flags: str = "") -> Matches:
    """Regular-expression search (Python ``re`` syntax).

    Compiled predicates only approximate the pattern; see
    :mod:`typed_policy.compilation.patterns`.

    Raises
    ------
    InvalidOperandError
        If *pattern* does not compile.
    """
    node = Matches(normalize_column(path), _text(pattern, "pattern"), _text(flags, "flags"))
    try:
        re.compile(node.pattern, node.regex_flags)
    except re.error as exc:
        raise InvalidOperandError(
            f"Invalid regular expression {pattern!r}: {exc}",
            details={"pattern": pattern},
        ) from exc
    return node


# ---------------------------------------------------------------------------
# Related tables
# ---------------------------------------------------------------------------

def _related(
    kind: ExprKind,
    table: Any,
    predicate: PredicateFactory | Expr,
    min_count: int,
) -> Related:
    if isinstance(table, TableProxy):
        ref = table.to_ref()
        scope = table.scoped()
    elif isinstance(table, TableRef):
        ref = table
        scope = scoped_proxy(table.name)
    else:
        raise InvalidOperandError(
            f"{kind} requires a table (e.g. subject.comments), got {table!r}",
            details={"kind": str(kind)},
        )
    expr = predicate if is_expr(predicate) else predicate(scope)  # type: ignore[operator]
    expr = as_expr(expr)
    inner = {ref.name} | {node.table.name for node in walk(expr) if isinstance(node, Related)}
    if not any(path.table not in inner for path in path_refs(expr)):
        if any(isinstance(node, Function) for node in walk(expr)):
            raise UncorrelatedPredicateError(
                f"{kind}({ref.name}, ...) has no correlation outside "
                "escape-hatch functions; functions are not inspected, so the "
                "correlating comparison must be written as an expression",
                details={"table": ref.name},
            )
        raise UncorrelatedPredicateError(
            f"{kind}({ref.name}, ...) never references a path outside '{ref.name}'",
            details={"table": ref.name},
        )
    return Related(kind, ref, expr, min_count)


def exists(table: Any, predicate: PredicateFactory | Expr) -> Related:
    """At least one related row satisfies *predicate*.

    *predicate* receives a scoped proxy for *table* and must reference at
    least one path outside *table* (the correlation with the outer row).
    The correlation must be a declarative expression: a reference made
    only inside an :func:`fn` escape hatch does not count, because
    functions are expanded per call and are never inspected here.
    """
    return _related(ExprKind.EXISTS, table, predicate, 1)


def count(table: Any, predicate: PredicateFactory | Expr, min_count: int = 1) -> Related:
    """At least *min_count* related rows satisfy *predicate*."""
    return _related(ExprKind.COUNT, table, predicate, min_count)


def has_many(table: Any, predicate: PredicateFactory | Expr, min_count: int = 2) -> Related:
    """At least *min_count* (default 2) related rows satisfy *predicate*."""
    return _related(ExprKind.HAS_MANY, table, predicate, min_count)


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------

def tenant_scoped(path: Any) -> TenantScoped:
    """The column equals the actor's field of the same name.

    The actor field is looked up under ``actor.user.<column>`` first, then
    ``actor.<column>``; see :class:`~typed_policy.core.config.EngineConfig`.
    """
    return TenantScoped(normalize_column(path))


def belongs_to_tenant(actor_value: Any, subject_path: Any) -> BelongsToTenant:
    """The subject column equals an explicit actor value."""
    value = normalize_value(actor_value) if isinstance(actor_value, ActorProxy) else actor_value
    if not isinstance(value, ActorRef):
        raise InvalidOperandError(
            "belongs_to_tenant requires an actor value (e.g. actor.user.org_id)",
            details={"type": type(actor_value).__name__},
        )
    return BelongsToTenant(_scalar_actor(value, "actor value"), normalize_column(subject_path))


# ---------------------------------------------------------------------------
# Boolean combinators
# ---------------------------------------------------------------------------

def not_(rule: ActionRule) -> Not:
    """Logical negation."""
    return Not(as_expr(rule))


def and_(*rules: ActionRule) -> Junction:
    """All rules hold.  ``and_()`` with no rules is always true."""
    return Junction(ExprKind.AND, tuple(as_expr(rule) for rule in rules))


def or_(*rules: ActionRule) -> Junction:
    """Any rule holds.  ``or_()`` with no rules is always false."""
    return Junction(ExprKind.OR, tuple(as_expr(rule) for rule in rules))


def literal(value: bool) -> Literal:
    """Constant rule."""
    return Literal(value)


def fn(function: Callable[[Any], bool | Expr], description: str = "") -> Function:
    """Escape hatch: a function of the actor returning ``bool`` or an expression.

    The function must not depend on subject data and must be free of
    side effects: it runs once per evaluation and once per compilation,
    and again for every nested traversal that reaches it.

    It is called as ``function(actor)`` with the actor itself, never with
    a context mapping such as ``{"actor": actor}``; read fields from the
    actor directly, e.g. ``lambda actor: actor["user"]["role"] == "admin"``.
    """
    return Function(function, description or getattr(function, "__name__", ""))
