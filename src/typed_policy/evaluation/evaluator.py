"""In-process evaluation of authorization rules.

:class:`Evaluator` walks an expression against a concrete actor and a
``resources`` mapping and returns a boolean decision.  It performs no
I/O and keeps no state between calls.

Resources
---------
``resources`` maps table names to records::

    {
        "post": {"id": "p1", "owner_id": "u1", "published": False},
        "comments": [{"post_id": "p1", "body": "..."}],
    }

A path ``post.owner_id`` reads ``resources["post"]["owner_id"]``; absent
tables or fields read as ``None``.  Records may be mappings or objects.
Tables used by ``exists``/``count``/``has_many`` must be lists or tuples;
anything else counts as zero rows.

Null handling
-------------
Ordering operators, ``between`` and the text/regex operators are false
when an operand is ``None``.  ``eq``/``neq`` use Python equality, so
``eq(path, None)`` holds for a null column.

Scoped paths (``scoped_proxy("comments").author_id``) are readable only
inside an ``exists``/``count``/``has_many`` over their table; anywhere
else they raise :class:`~typed_policy.core.errors.PathResolutionError`.
"""
from __future__ import annotations

import operator
import re
from collections.abc import Callable, Mapping
from typing import Any

from typed_policy.core.config import EngineConfig
from typed_policy.core.errors import UnknownExpressionKindError
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
)
from typed_policy.core.interpreter import Interpreter, NodeBudget
from typed_policy.core.records import is_row_sequence, lookup_tenant_value, read_field
from typed_policy.core.types import ActorRef, ExprKind, ScopedSubjectRef, SubjectRef

_ORDERING: dict[ExprKind, Callable[[Any, Any], bool]] = {
    ExprKind.GT: operator.gt,
    ExprKind.LT: operator.lt,
    ExprKind.GTE: operator.ge,
    ExprKind.LTE: operator.le,
}


def _ordered(op: Callable[[Any, Any], bool], left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    try:
        return bool(op(left, right))
    except TypeError:
        return False


class Evaluator(Interpreter):
    """Decides rules for one actor/subject pair.

    Parameters
    ----------
    config:
        Engine configuration; defaults to :data:`~typed_policy.core.config.DEFAULT_CONFIG`.
    """

    def evaluate(self, rule: ActionRule, *, actor: Any, resources: Mapping[str, Any]) -> bool:
        """Evaluate *rule* against *actor* and *resources*.

        Raises
        ------
        MissingActorFieldError
            If ``tenant_scoped`` needs an actor field that is absent.
        PathResolutionError
            If a scoped path is read outside a related node over its table.
        FunctionDepthExceededError
            If escape-hatch functions nest too deeply.
        UnknownExpressionKindError
            If the tree contains a node the evaluator does not know.
        """
        return self._eval(as_expr(rule), actor, resources, self._budget(), 0, ())

    # -- Resolution ---------------------------------------------------------

    def _resolve(self, value: Any, resources: Mapping[str, Any], scopes: tuple[str, ...]) -> Any:
        if isinstance(value, (SubjectRef, ScopedSubjectRef)):
            self._check_scope(value, scopes)
            record = read_field(resources, value.table)
            if is_row_sequence(record):
                return None
            return read_field(record, value.column)
        if isinstance(value, ActorRef):
            return value.value
        return value

    # -- Walk ---------------------------------------------------------------

    def _eval(
        self,
        expr: Expr,
        actor: Any,
        resources: Mapping[str, Any],
        budget: NodeBudget,
        depth: int,
        scopes: tuple[str, ...],
    ) -> bool:
        budget.charge()

        if isinstance(expr, Literal):
            return expr.value

        if isinstance(expr, Function):
            expanded = self._expand(expr, actor, depth)
            return self._eval(expanded, actor, resources, budget, depth + 1, scopes)

        if isinstance(expr, Comparison):
            left = self._resolve(expr.left, resources, scopes)
            right = self._resolve(expr.right, resources, scopes)
            if expr.kind is ExprKind.EQ:
                return bool(left == right)
            if expr.kind is ExprKind.NEQ:
                return bool(left != right)
            return _ordered(_ORDERING[expr.kind], left, right)

        if isinstance(expr, InArray):
            if not expr.values:
                return False
            return self._resolve(expr.path, resources, scopes) in expr.values

        if isinstance(expr, NullCheck):
            value = self._resolve(expr.path, resources, scopes)
            if expr.kind is ExprKind.IS_NULL:
                return value is None
            return value is not None

        if isinstance(expr, TextMatch):
            value = self._resolve(expr.path, resources, scopes)
            if not isinstance(value, str):
                return False
            if expr.kind is ExprKind.STARTS_WITH:
                return value.startswith(expr.text)
            if expr.kind is ExprKind.ENDS_WITH:
                return value.endswith(expr.text)
            return expr.text in value

        if isinstance(expr, Between):
            value = self._resolve(expr.path, resources, scopes)
            low = self._resolve(expr.min, resources, scopes)
            high = self._resolve(expr.max, resources, scopes)
            return _ordered(operator.ge, value, low) and _ordered(operator.le, value, high)

        if isinstance(expr, Matches):
            value = self._resolve(expr.path, resources, scopes)
            if not isinstance(value, str):
                return False
            return re.search(expr.pattern, value, expr.regex_flags) is not None

        if isinstance(expr, Related):
            return self._eval_related(expr, actor, resources, budget, depth, scopes)

        if isinstance(expr, TenantScoped):
            actor_value = lookup_tenant_value(
                actor, expr.path.column, self.config.tenant_actor_namespace
            )
            subject_value = self._resolve(expr.path, resources, scopes)
            if actor_value is None or subject_value is None:
                return False
            return bool(actor_value == subject_value)

        if isinstance(expr, BelongsToTenant):
            actor_value = expr.actor_value.value
            subject_value = self._resolve(expr.subject_path, resources, scopes)
            if actor_value is None or subject_value is None:
                return False
            return bool(actor_value == subject_value)

        if isinstance(expr, Not):
            return not self._eval(expr.expr, actor, resources, budget, depth, scopes)

        if isinstance(expr, Junction):
            if expr.kind is ExprKind.AND:
                return all(self._eval(r, actor, resources, budget, depth, scopes) for r in expr.rules)
            return any(self._eval(r, actor, resources, budget, depth, scopes) for r in expr.rules)

        raise UnknownExpressionKindError(
            f"Unknown expression kind: {getattr(expr, 'kind', type(expr).__name__)!r}",
            details={"type": type(expr).__name__},
        )

    def _eval_related(
        self,
        expr: Related,
        actor: Any,
        resources: Mapping[str, Any],
        budget: NodeBudget,
        depth: int,
        scopes: tuple[str, ...],
    ) -> bool:
        if expr.min_count == 0:
            return True
        name = expr.table.name
        inner = (*scopes, name)
        rows = read_field(resources, name)
        if not is_row_sequence(rows):
            return False
        matched = 0
        for row in rows:
            scoped = {**resources, name: row}
            if self._eval(expr.predicate, actor, scoped, budget, depth, inner):
                matched += 1
                if matched >= expr.min_count:
                    return True
        return False


def evaluate(
    rule: ActionRule,
    *,
    actor: Any,
    resources: Mapping[str, Any],
    config: EngineConfig | None = None,
) -> bool:
    """Evaluate *rule* with a one-off :class:`Evaluator`.

    >>> evaluate(True, actor={}, resources={})
    True
    """
    return Evaluator(config).evaluate(rule, actor=actor, resources=resources)
