"""typed-policy engine -- the application-facing facade.

:class:`PolicyEngine` composes an :class:`~typed_policy.evaluation.Evaluator`
and a :class:`~typed_policy.compilation.Compiler` that share one
:class:`~typed_policy.core.config.EngineConfig`, and answers the two
questions an application asks of a policy:

1. **May this actor perform this action on this record?**
   (:meth:`PolicyEngine.decide`, :meth:`~PolicyEngine.can`,
   :meth:`~PolicyEngine.check`)
2. **Which rows may this actor perform this action on?**
   (:meth:`PolicyEngine.scope`, :meth:`~PolicyEngine.authorize_select`)

Usage
-----
::

    from sqlalchemy import select

    from typed_policy.compilation import map_table
    from typed_policy.engine import PolicyEngine

    engine = PolicyEngine()

    engine.check(post_policy, "read", actor=actor, resources={"post": post})

    stmt = engine.authorize_select(
        select(posts), post_policy, "read",
        actor=actor, tables={"post": map_table(posts)},
    )
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from typed_policy.compilation.compiler import Compiler
from typed_policy.core.config import DEFAULT_CONFIG, EngineConfig
from typed_policy.core.errors import AccessDenied
from typed_policy.evaluation.evaluator import Evaluator

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Select

    from typed_policy.compilation.mapping import TableMapping
    from typed_policy.policy.container import Policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of an in-process decision."""

    allowed: bool
    subject: str
    action: str

    def __bool__(self) -> bool:
        return self.allowed


class PolicyEngine:
    """Decides and scopes policy actions.

    Instances keep no per-call state and may be shared between threads.

    Parameters
    ----------
    config:
        Engine configuration shared by the evaluator and the compiler.
        Defaults to :data:`~typed_policy.core.config.DEFAULT_CONFIG`.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or DEFAULT_CONFIG
        self._evaluator = Evaluator(self._config)
        self._compiler = Compiler(self._config)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def evaluator(self) -> Evaluator:
        return self._evaluator

    @property
    def compiler(self) -> Compiler:
        return self._compiler

    # ------------------------------------------------------------------
    # In-process decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        policy: Policy,
        action: str,
        *,
        actor: Any,
        resources: Mapping[str, Any],
    ) -> Decision:
        """Evaluate *action* of *policy* for *actor* against *resources*.

        Raises
        ------
        UnknownActionError
            If *policy* does not define *action*.
        """
        rule = policy.action(action)
        allowed = self._evaluator.evaluate(rule, actor=actor, resources=resources)
        if self._config.log_decisions:
            logger.info(
                "Decision %s.%s: %s",
                policy.subject, action, "allow" if allowed else "deny",
            )
        return Decision(allowed=allowed, subject=policy.subject, action=action)

    def can(
        self,
        policy: Policy,
        action: str,
        *,
        actor: Any,
        resources: Mapping[str, Any],
    ) -> bool:
        """Return ``True`` if *actor* may perform *action*."""
        return self.decide(policy, action, actor=actor, resources=resources).allowed

    def check(
        self,
        policy: Policy,
        action: str,
        *,
        actor: Any,
        resources: Mapping[str, Any],
    ) -> Decision:
        """Like :meth:`decide`, but raise when the action is not allowed.

        Raises
        ------
        AccessDenied
            If the policy denies the action.
        """
        decision = self.decide(policy, action, actor=actor, resources=resources)
        if not decision.allowed:
            raise AccessDenied(
                f"Action '{action}' on '{policy.subject}' is not allowed",
                details={"subject": policy.subject, "action": action},
            )
        return decision

    # ------------------------------------------------------------------
    # Query scoping
    # ------------------------------------------------------------------

    def scope(
        self,
        policy: Policy,
        action: str,
        *,
        actor: Any,
        tables: TableMapping,
        related_tables: TableMapping | None = None,
    ) -> ColumnElement[bool]:
        """Compile *action* of *policy* into a filter predicate for *actor*."""
        rule = policy.action(action)
        predicate = self._compiler.compile(
            rule, actor=actor, tables=tables, related_tables=related_tables
        )
        logger.debug("Compiled %s.%s into a filter predicate", policy.subject, action)
        return predicate

    def authorize_select(
        self,
        stmt: Select[Any],
        policy: Policy,
        action: str,
        *,
        actor: Any,
        tables: TableMapping,
        related_tables: TableMapping | None = None,
    ) -> Select[Any]:
        """Return *stmt* restricted to the rows *actor* may act on."""
        predicate = self.scope(
            policy, action, actor=actor, tables=tables, related_tables=related_tables
        )
        return stmt.where(predicate)
