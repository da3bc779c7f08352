"""Expression AST for authorization rules.

An ``Expr`` is a closed union of frozen node classes.  Every node has a
``kind`` (:class:`~typed_policy.core.types.ExprKind`) and validates its
own shape on construction, so a tree that exists is a tree both
interpreters can walk.  Trees are built once, through
:mod:`typed_policy.authoring.operators`, and never mutated.

Node classes
------------
* :class:`Literal` -- constant ``True``/``False``.
* :class:`Comparison` -- ``eq``, ``neq``, ``gt``, ``lt``, ``gte``, ``lte``.
* :class:`InArray`, :class:`NullCheck`, :class:`TextMatch`,
  :class:`Between`, :class:`Matches` -- single-column predicates.
* :class:`Related` -- ``exists``, ``count``, ``hasMany`` over a related table.
* :class:`TenantScoped`, :class:`BelongsToTenant` -- tenant equality.
* :class:`Not`, :class:`Junction` -- boolean combinators.
* :class:`Function` -- escape hatch evaluated against the actor only.
"""
from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from typed_policy.core.errors import InvalidExpressionError, InvalidRuleError
from typed_policy.core.types import (
    COMPARISON_KINDS,
    JUNCTION_KINDS,
    NULL_CHECK_KINDS,
    RELATED_KINDS,
    TEXT_KINDS,
    ActorRef,
    ExprKind,
    Operand,
    PathRef,
    Primitive,
    ScopedSubjectRef,
    SubjectRef,
    TableRef,
    is_operand,
    is_path_ref,
    is_primitive,
)

REGEX_FLAGS: dict[str, re.RegexFlag] = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
}


def _require_path(kind: ExprKind, value: object, role: str = "path") -> None:
    if not is_path_ref(value):
        raise InvalidExpressionError(
            f"{kind} requires a subject path as {role}, got {type(value).__name__}",
            details={"kind": str(kind), "role": role},
        )


def _require_operand(kind: ExprKind, value: object, role: str) -> None:
    if not is_operand(value):
        raise InvalidExpressionError(
            f"{kind} requires a path, actor value or primitive as {role}, "
            f"got {type(value).__name__}",
            details={"kind": str(kind), "role": role},
        )


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Literal:
    value: bool
    kind: ExprKind = field(default=ExprKind.LITERAL, init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.value, bool):
            raise InvalidExpressionError("literal requires a bool value")


@dataclass(frozen=True, slots=True)
class Comparison:
    kind: ExprKind
    left: PathRef
    right: Operand

    def __post_init__(self) -> None:
        if self.kind not in COMPARISON_KINDS:
            raise InvalidExpressionError(f"'{self.kind}' is not a comparison kind")
        _require_path(self.kind, self.left, "left operand")
        _require_operand(self.kind, self.right, "right operand")


@dataclass(frozen=True, slots=True)
class InArray:
    path: PathRef
    values: tuple[Primitive, ...]
    kind: ExprKind = field(default=ExprKind.IN_ARRAY, init=False)

    def __post_init__(self) -> None:
        _require_path(self.kind, self.path)
        if not isinstance(self.values, tuple) or not all(is_primitive(v) for v in self.values):
            raise InvalidExpressionError("inArray requires a tuple of primitive values")


@dataclass(frozen=True, slots=True)
class NullCheck:
    kind: ExprKind
    path: PathRef

    def __post_init__(self) -> None:
        if self.kind not in NULL_CHECK_KINDS:
            raise InvalidExpressionError(f"'{self.kind}' is not a null-check kind")
        _require_path(self.kind, self.path)


@dataclass(frozen=True, slots=True)
class TextMatch:
    kind: ExprKind
    path: PathRef
    text: str

    def __post_init__(self) -> None:
        if self.kind not in TEXT_KINDS:
            raise InvalidExpressionError(f"'{self.kind}' is not a text-match kind")
        _require_path(self.kind, self.path)
        if not isinstance(self.text, str):
            raise InvalidExpressionError(f"{self.kind} requires a str argument")


@dataclass(frozen=True, slots=True)
class Between:
    path: PathRef
    min: Operand
    max: Operand
    kind: ExprKind = field(default=ExprKind.BETWEEN, init=False)

    def __post_init__(self) -> None:
        _require_path(self.kind, self.path)
        _require_operand(self.kind, self.min, "min")
        _require_operand(self.kind, self.max, "max")


@dataclass(frozen=True, slots=True)
class Matches:
    path: PathRef
    pattern: str
    flags: str = ""
    kind: ExprKind = field(default=ExprKind.MATCHES, init=False)

    def __post_init__(self) -> None:
        _require_path(self.kind, self.path)
        if not isinstance(self.pattern, str) or not isinstance(self.flags, str):
            raise InvalidExpressionError("matches requires str pattern and flags")
        unknown = set(self.flags) - set(REGEX_FLAGS)
        if unknown:
            raise InvalidExpressionError(
                f"matches does not support flags {sorted(unknown)}",
                details={"supported": sorted(REGEX_FLAGS)},
            )

    @property
    def regex_flags(self) -> re.RegexFlag:
        result = re.NOFLAG
        for flag in self.flags:
            result |= REGEX_FLAGS[flag]
        return result


@dataclass(frozen=True, slots=True)
class Related:
    """A cardinality test over the rows of a related table.

    ``exists`` is ``min_count == 1``; ``count`` defaults to 1 and
    ``hasMany`` to 2.  The predicate is evaluated per related row.
    """

    kind: ExprKind
    table: TableRef
    predicate: Expr
    min_count: int = 1

    def __post_init__(self) -> None:
        if self.kind not in RELATED_KINDS:
            raise InvalidExpressionError(f"'{self.kind}' is not a related-table kind")
        if not isinstance(self.table, TableRef):
            raise InvalidExpressionError(f"{self.kind} requires a table reference")
        if not is_expr(self.predicate):
            raise InvalidExpressionError(f"{self.kind} requires an expression predicate")
        if isinstance(self.min_count, bool) or not isinstance(self.min_count, int) or self.min_count < 0:
            raise InvalidExpressionError(f"{self.kind} requires a non-negative int min_count")


@dataclass(frozen=True, slots=True)
class TenantScoped:
    path: PathRef
    kind: ExprKind = field(default=ExprKind.TENANT_SCOPED, init=False)

    def __post_init__(self) -> None:
        _require_path(self.kind, self.path)


@dataclass(frozen=True, slots=True)
class BelongsToTenant:
    actor_value: ActorRef
    subject_path: PathRef
    kind: ExprKind = field(default=ExprKind.BELONGS_TO_TENANT, init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.actor_value, ActorRef):
            raise InvalidExpressionError("belongsToTenant requires an actor value")
        _require_path(self.kind, self.subject_path, "subject path")


@dataclass(frozen=True, slots=True)
class Not:
    expr: Expr
    kind: ExprKind = field(default=ExprKind.NOT, init=False)

    def __post_init__(self) -> None:
        if not is_expr(self.expr):
            raise InvalidExpressionError("not requires an expression")


@dataclass(frozen=True, slots=True)
class Junction:
    kind: ExprKind
    rules: tuple[Expr, ...] = ()

    def __post_init__(self) -> None:
        if self.kind not in JUNCTION_KINDS:
            raise InvalidExpressionError(f"'{self.kind}' is not a junction kind")
        if not isinstance(self.rules, tuple) or not all(is_expr(r) for r in self.rules):
            raise InvalidExpressionError(f"{self.kind} requires a tuple of expressions")


@dataclass(frozen=True, slots=True)
class Function:
    """Escape hatch: a function of the actor returning ``bool`` or an ``Expr``.

    The function never sees subject or resource data, which is what lets
    the compiler call it once up front instead of per row.  It may be
    called several times per decision and must be side-effect-free.
    """

    fn: Callable[[Any], bool | Expr]
    description: str = ""
    kind: ExprKind = field(default=ExprKind.FUNCTION, init=False)

    def __post_init__(self) -> None:
        if not callable(self.fn):
            raise InvalidExpressionError("function requires a callable")


Expr: TypeAlias = (
    Literal
    | Comparison
    | InArray
    | NullCheck
    | TextMatch
    | Between
    | Matches
    | Related
    | TenantScoped
    | BelongsToTenant
    | Not
    | Junction
    | Function
)

ActionRule: TypeAlias = Expr | bool | Callable[[Any], bool | Expr]

EXPR_TYPES: tuple[type, ...] = (
    Literal, Comparison, InArray, NullCheck, TextMatch, Between, Matches,
    Related, TenantScoped, BelongsToTenant, Not, Junction, Function,
)


def is_expr(value: object) -> bool:
    """Return ``True`` if *value* is an expression node."""
    return isinstance(value, EXPR_TYPES)


def as_expr(rule: ActionRule) -> Expr:
    """Coerce an action rule to an expression node.

    Booleans become :class:`Literal`, callables become :class:`Function`.

    Raises
    ------
    InvalidRuleError
        If *rule* is neither an expression, a bool nor a callable.
    """
    if is_expr(rule):
        return rule  # type: ignore[return-value]
    if isinstance(rule, bool):
        return Literal(rule)
    if callable(rule):
        return Function(rule, getattr(rule, "__name__", ""))
    raise InvalidRuleError(
        f"Cannot use {type(rule).__name__} as a rule",
        details={"type": type(rule).__name__},
    )


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def children(expr: Expr) -> tuple[Expr, ...]:
    """Return the direct sub-expressions of *expr*."""
    if isinstance(expr, Junction):
        return expr.rules
    if isinstance(expr, Not):
        return (expr.expr,)
    if isinstance(expr, Related):
        return (expr.predicate,)
    return ()


def walk(expr: Expr) -> Iterator[Expr]:
    """Yield *expr* and every declarative descendant, depth first.

    Function nodes are yielded but not expanded: their output depends on
    the actor and is only known at evaluation or compile time.
    """
    stack = [expr]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(children(node)))


def node_paths(node: Expr) -> tuple[PathRef, ...]:
    """Return the paths held directly by *node*, not by its children."""
    if isinstance(node, Comparison):
        candidates: tuple[object, ...] = (node.left, node.right)
    elif isinstance(node, Between):
        candidates = (node.path, node.min, node.max)
    elif isinstance(node, BelongsToTenant):
        candidates = (node.subject_path,)
    elif isinstance(node, (InArray, NullCheck, TextMatch, Matches, TenantScoped)):
        candidates = (node.path,)
    else:
        return ()
    return tuple(c for c in candidates if isinstance(c, (SubjectRef, ScopedSubjectRef)))


def path_refs(expr: Expr) -> Iterator[PathRef]:
    """Yield every subject/scoped path referenced by *expr* (functions excluded)."""
    for node in walk(expr):
        yield from node_paths(node)


def unscoped_paths(expr: Expr, scopes: frozenset[str] = frozenset()) -> Iterator[ScopedSubjectRef]:
    """Yield scoped paths whose table no enclosing related node opens.

    *scopes* names the related tables already open around *expr*.
    Function nodes are not expanded.
    """
    if isinstance(expr, Related):
        scopes = scopes | {expr.table.name}
    for ref in node_paths(expr):
        if isinstance(ref, ScopedSubjectRef) and ref.table not in scopes:
            yield ref
    for child in children(expr):
        yield from unscoped_paths(child, scopes)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _describe_operand(value: object) -> str:
    if isinstance(value, (SubjectRef, ScopedSubjectRef, ActorRef)):
        return str(value)
    return repr(value)


def describe(rule: ActionRule) -> str:
    """Render a rule as compact, human-readable text.

    Actor values are shown by their source path, never by value, so the
    output is safe to log.

    >>> describe(Junction(ExprKind.AND, ()))
    'and()'
    """
    expr = as_expr(rule)
    if isinstance(expr, Literal):
        return "true" if expr.value else "false"
    if isinstance(expr, Comparison):
        return f"{expr.kind}({expr.left}, {_describe_operand(expr.right)})"
    if isinstance(expr, InArray):
        return f"inArray({expr.path}, {list(expr.values)!r})"
    if isinstance(expr, NullCheck):
        return f"{expr.kind}({expr.path})"
    if isinstance(expr, TextMatch):
        return f"{expr.kind}({expr.path}, {expr.text!r})"
    if isinstance(expr, Between):
        return (
            f"between({expr.path}, {_describe_operand(expr.min)}, "
            f"{_describe_operand(expr.max)})"
        )
    if isinstance(expr, Matches):
        flags = f", {expr.flags!r}" if expr.flags else ""
        return f"matches({expr.path}, {expr.pattern!r}{flags})"
    if isinstance(expr, Related):
        suffix = f", min={expr.min_count}" if expr.kind is not ExprKind.EXISTS else ""
        return f"{expr.kind}({expr.table}, {describe(expr.predicate)}{suffix})"
    if isinstance(expr, TenantScoped):
        return f"tenantScoped({expr.path})"
    if isinstance(expr, BelongsToTenant):
        return f"belongsToTenant({expr.actor_value}, {expr.subject_path})"
    if isinstance(expr, Not):
        return f"not({describe(expr.expr)})"
    if isinstance(expr, Junction):
        return f"{expr.kind}({', '.join(describe(r) for r in expr.rules)})"
    if isinstance(expr, Function):
        return f"function({expr.description or '<anonymous>'})"
    raise InvalidRuleError(f"Cannot describe {type(expr).__name__}")
