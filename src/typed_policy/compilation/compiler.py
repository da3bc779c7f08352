"""Compilation of authorization rules to SQLAlchemy filter predicates.

:class:`Compiler` turns a rule into a ``ColumnElement[bool]`` that can
be passed to ``select(...).where(...)``, so a database returns only the
rows the actor may see.  Every path goes through the caller's table
mapping; a reference to anything undeclared raises before a predicate
is produced.

Null handling
-------------
The compiled predicate is two-valued so it agrees with
:mod:`typed_policy.evaluation` even under ``not_``:

=========================  =============================================
rule                       SQL
=========================  =============================================
``eq(col, None)``          ``col IS NULL``
``eq(col, value)``         ``col IS NOT NULL AND col = :value``
``eq(col_a, col_b)``       ``col_a IS NOT DISTINCT FROM col_b``
``neq(...)``               ``... IS DISTINCT FROM ...``
ordering / ``between``     every column operand guarded ``IS NOT NULL``
ordering against ``None``  ``false``
=========================  =============================================

Text operators
--------------
``starts_with``, ``ends_with``, ``contains`` and ``matches`` patterns
that translate to ``LIKE`` assume a case-sensitive ``LIKE``, as Python
``str`` methods are.  PostgreSQL ``LIKE`` is; SQLite and MySQL are not
by default (SQLite needs ``PRAGMA case_sensitive_like = ON``, MySQL a
case-sensitive collation).  Otherwise the compiled filter may allow rows
the evaluator denies.
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy import (
    ColumnElement,
    and_,
    false,
    func,
    literal,
    not_,
    or_,
    select,
    true,
)
from sqlalchemy.engine import Dialect

from typed_policy.compilation.mapping import (
    TableMapping,
    from_clause_for,
    resolve_column,
    resolve_table,
)
from typed_policy.compilation.patterns import pattern_clause
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
from typed_policy.core.records import lookup_tenant_value
from typed_policy.core.types import ActorRef, ExprKind, is_path_ref


class _Column:
    """A resolved column operand."""

    __slots__ = ("handle",)

    def __init__(self, handle: Any) -> None:
        self.handle = handle


class _Value:
    """A resolved bound value (actor value or primitive)."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value


_Operand = _Column | _Value

_ORDERING: dict[ExprKind, Callable[[Any, Any], Any]] = {
    ExprKind.GT: lambda a, b: a > b,
    ExprKind.LT: lambda a, b: a < b,
    ExprKind.GTE: lambda a, b: a >= b,
    ExprKind.LTE: lambda a, b: a <= b,
}


def _conjoin(clauses: list[ColumnElement[bool]]) -> ColumnElement[bool]:
    if not clauses:
        return true()
    if len(clauses) == 1:
        return clauses[0]
    return and_(*clauses)


def _guards(*operands: _Operand) -> list[ColumnElement[bool]]:
    return [op.handle.is_not(None) for op in operands if isinstance(op, _Column)]


def _side(op: _Operand) -> Any:
    if isinstance(op, _Column):
        return op.handle
    return literal(op.value)


class Compiler(Interpreter):
    """Compiles rules into SQLAlchemy boolean clauses.

    Parameters
    ----------
    config:
        Engine configuration; ``regex_strategy`` selects how ``matches``
        compiles.
    """

    def compile(
        self,
        rule: ActionRule,
        *,
        actor: Any,
        tables: TableMapping,
        related_tables: TableMapping | None = None,
    ) -> ColumnElement[bool]:
        """Compile *rule* for *actor* against the declared *tables*.

        Escape-hatch functions are called once, here, with the actor.
        Every table in *tables* must already be in the FROM clause of the
        statement the predicate filters; related tables only ever appear
        inside the subqueries built for exists/count/has_many.

        Raises
        ------
        PathResolutionError
            If a scoped path is used outside exists/count/has_many over
            its table.
        UndeclaredTableError
            If a path or related table is not declared.
        UndeclaredColumnError
            If a column is not declared on its table.
        UnsupportedPatternError
            If ``matches`` cannot be compiled under the ``"like"`` strategy.
        MissingActorFieldError
            If ``tenant_scoped`` needs an actor field that is absent.
        """
        context = _Context(actor, tables, related_tables, self._budget())
        return self._compile(as_expr(rule), context, 0)

    # -- Operands -----------------------------------------------------------

    def _operand(self, value: Any, context: _Context) -> _Operand:
        if is_path_ref(value):
            self._check_scope(value, tuple(context.scopes))
            return _Column(resolve_column(value, context.tables, context.related_tables))
        if isinstance(value, ActorRef):
            return _Value(value.value)
        return _Value(value)

    # -- Walk ---------------------------------------------------------------

    def _compile(self, expr: Expr, context: _Context, depth: int) -> ColumnElement[bool]:
        context.budget.charge()

        if isinstance(expr, Literal):
            return true() if expr.value else false()

        if isinstance(expr, Function):
            expanded = self._expand(expr, context.actor, depth)
            return self._compile(expanded, context, depth + 1)

        if isinstance(expr, Comparison):
            left = self._operand(expr.left, context)
            right = self._operand(expr.right, context)
            if expr.kind is ExprKind.EQ:
                return self._equal(left, right)
            if expr.kind is ExprKind.NEQ:
                return not_(self._equal(left, right))
            return self._ordered(_ORDERING[expr.kind], left, right)

        if isinstance(expr, InArray):
            column = self._operand(expr.path, context).handle
            values = [v for v in expr.values if v is not None]
            clauses: list[ColumnElement[bool]] = []
            if values:
                clauses.append(and_(column.is_not(None), column.in_(values)))
            if len(values) != len(expr.values):
                clauses.append(column.is_(None))
            if not clauses:
                return false()
            return clauses[0] if len(clauses) == 1 else or_(*clauses)

        if isinstance(expr, NullCheck):
            column = self._operand(expr.path, context).handle
            if expr.kind is ExprKind.IS_NULL:
                return column.is_(None)
            return column.is_not(None)

        if isinstance(expr, TextMatch):
            column = self._operand(expr.path, context).handle
            if expr.kind is ExprKind.STARTS_WITH:
                clause = column.startswith(expr.text, autoescape=True)
            elif expr.kind is ExprKind.ENDS_WITH:
                clause = column.endswith(expr.text, autoescape=True)
            else:
                clause = column.contains(expr.text, autoescape=True)
            return and_(column.is_not(None), clause)

        if isinstance(expr, Between):
            value = self._operand(expr.path, context)
            low = self._operand(expr.min, context)
            high = self._operand(expr.max, context)
            return and_(
                self._ordered(_ORDERING[ExprKind.GTE], value, low),
                self._ordered(_ORDERING[ExprKind.LTE], value, high),
            )

        if isinstance(expr, Matches):
            column = self._operand(expr.path, context).handle
            clause = pattern_clause(column, expr, self.config.regex_strategy)
            return and_(column.is_not(None), clause)

        if isinstance(expr, Related):
            return self._related(expr, context, depth)

        if isinstance(expr, TenantScoped):
            column = self._operand(expr.path, context)
            actor_value = lookup_tenant_value(
                context.actor, expr.path.column, self.config.tenant_actor_namespace
            )
            if actor_value is None:
                return false()
            return self._equal(column, _Value(actor_value))

        if isinstance(expr, BelongsToTenant):
            column = self._operand(expr.subject_path, context)
            if expr.actor_value.value is None:
                return false()
            return self._equal(column, _Value(expr.actor_value.value))

        if isinstance(expr, Not):
            return not_(self._compile(expr.expr, context, depth))

        if isinstance(expr, Junction):
            parts = [self._compile(rule, context, depth) for rule in expr.rules]
            if expr.kind is ExprKind.AND:
                return _conjoin(parts)
            if not parts:
                return false()
            return parts[0] if len(parts) == 1 else or_(*parts)

        raise UnknownExpressionKindError(
            f"Unknown expression kind: {getattr(expr, 'kind', type(expr).__name__)!r}",
            details={"type": type(expr).__name__},
        )

    # -- Helpers ------------------------------------------------------------

    @staticmethod
    def _equal(left: _Operand, right: _Operand) -> ColumnElement[bool]:
        if isinstance(left, _Column) and isinstance(right, _Column):
            return left.handle.is_not_distinct_from(right.handle)
        if isinstance(left, _Value) and isinstance(right, _Value):
            return true() if left.value == right.value else false()
        column, value = (left, right) if isinstance(left, _Column) else (right, left)
        if value.value is None:
            return column.handle.is_(None)
        return and_(column.handle.is_not(None), column.handle == value.value)

    @staticmethod
    def _ordered(
        op: Callable[[Any, Any], Any], left: _Operand, right: _Operand
    ) -> ColumnElement[bool]:
        for side in (left, right):
            if isinstance(side, _Value) and side.value is None:
                return false()
        if isinstance(left, _Value) and isinstance(right, _Value):
            try:
                return true() if op(left.value, right.value) else false()
            except TypeError:
                return false()
        return _conjoin([*_guards(left, right), op(_side(left), _side(right))])

    def _related(self, expr: Related, context: _Context, depth: int) -> ColumnElement[bool]:
        columns = resolve_table(expr.table.name, context.tables, context.related_tables)
        source = from_clause_for(columns)
        context.scopes.append(expr.table.name)
        try:
            predicate = self._compile(expr.predicate, context, depth)
        finally:
            context.scopes.pop()
        if expr.min_count == 0:
            return true()
        if expr.min_count == 1:
            return select(literal(1)).select_from(source).where(predicate).exists()
        matched = select(func.count()).select_from(source).where(predicate).scalar_subquery()
        return matched >= expr.min_count


class _Context:
    """Per-call compile state."""

    __slots__ = ("actor", "budget", "related_tables", "scopes", "tables")

    def __init__(
        self,
        actor: Any,
        tables: TableMapping,
        related_tables: TableMapping | None,
        budget: NodeBudget,
    ) -> None:
        self.actor = actor
        self.tables = tables
        self.related_tables = related_tables
        self.budget = budget
        self.scopes: list[str] = []


def compile_rule(
    rule: ActionRule,
    *,
    actor: Any,
    tables: TableMapping,
    related_tables: TableMapping | None = None,
    config: EngineConfig | None = None,
) -> ColumnElement[bool]:
    """Compile *rule* with a one-off :class:`Compiler`."""
    return Compiler(config).compile(
        rule, actor=actor, tables=tables, related_tables=related_tables
    )


def render_predicate(predicate: ColumnElement[bool], dialect: Dialect | None = None) -> str:
    """Render a compiled predicate as SQL text.

    Bound parameters are shown as placeholders, never inlined.
    """
    if dialect is None:
        return str(predicate)
    return str(predicate.compile(dialect=dialect))
