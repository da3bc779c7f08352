"""Machinery shared by the evaluator and the compiler.

Both interpreters walk the same tree and must treat escape-hatch
functions identically: call with the actor only, accept ``bool`` or an
expression, and stop after ``max_function_depth`` nested expansions.
They also share the rule that a scoped path is only readable inside an
``exists``/``count``/``has_many`` over its table.
"""
from __future__ import annotations

import logging
from typing import Any

from typed_policy.core.config import DEFAULT_CONFIG, EngineConfig
from typed_policy.core.errors import (
    ExpressionBudgetExceeded,
    FunctionDepthExceededError,
    InvalidRuleError,
    PathResolutionError,
)
from typed_policy.core.expressions import Expr, Function, Literal, is_expr
from typed_policy.core.types import ScopedSubjectRef

logger = logging.getLogger(__name__)


class NodeBudget:
    """Counts visited nodes for one evaluate/compile call."""

    __slots__ = ("_limit", "_used")

    def __init__(self, limit: int | None) -> None:
        self._limit = limit
        self._used = 0

    def charge(self) -> None:
        self._used += 1
        if self._limit is not None and self._used > self._limit:
            raise ExpressionBudgetExceeded(
                f"Visited more than {self._limit} expression nodes",
                details={"limit": self._limit},
            )

    @property
    def used(self) -> int:
        return self._used


class Interpreter:
    """Base class holding the configuration and function expansion.

    Instances keep no per-call state and are safe to share.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or DEFAULT_CONFIG

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _budget(self) -> NodeBudget:
        return NodeBudget(self._config.max_expression_nodes)

    def _expand(self, node: Function, actor: Any, depth: int) -> Expr:
        """Call an escape-hatch function and return its result as an expression.

        Raises
        ------
        FunctionDepthExceededError
            If *depth* already reached ``max_function_depth``.
        InvalidRuleError
            If the function returns neither ``bool`` nor an expression.
        """
        if depth >= self._config.max_function_depth:
            raise FunctionDepthExceededError(
                f"Escape-hatch function {node.description or '<anonymous>'!r} "
                f"nested deeper than {self._config.max_function_depth}",
                details={"max_function_depth": self._config.max_function_depth},
            )
        logger.debug("Expanding function %r at depth %d", node.description, depth + 1)
        result = node.fn(actor)
        if isinstance(result, bool):
            return Literal(result)
        if is_expr(result):
            return result
        raise InvalidRuleError(
            f"Function {node.description or '<anonymous>'!r} returned "
            f"{type(result).__name__}; expected bool or an expression",
            details={"type": type(result).__name__},
        )

    @staticmethod
    def _check_scope(ref: Any, scopes: tuple[str, ...]) -> None:
        """Reject a scoped path read outside a related node over its table.

        Raises
        ------
        PathResolutionError
            If *ref* is a :class:`ScopedSubjectRef` whose table is not in
            *scopes*.
        """
        if isinstance(ref, ScopedSubjectRef) and ref.table not in scopes:
            raise PathResolutionError(
                f"Scoped path '{ref}' is used outside exists/count/has_many "
                f"over '{ref.table}'",
                details={"table": ref.table, "column": ref.column, "open": list(scopes)},
            )
