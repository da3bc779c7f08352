"""Policy container and structural composition.

A :class:`Policy` groups named action rules under a subject label::

    post_policy = Policy(
        "Post",
        {
            "read": or_(eq(subject.post.published, True), owner_rule),
            "create": True,
            "delete": lambda actor: actor["user"]["role"] == "admin",
        },
    )

Rules are expressions, booleans, or functions of the actor.  Policies
are immutable; :func:`extend`, :func:`and_policies` and
:func:`or_policies` return new policies and never touch their inputs.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from typed_policy.authoring.operators import and_, or_
from typed_policy.core.errors import InvalidRuleError, PolicyCompositionError, UnknownActionError
from typed_policy.core.expressions import ActionRule, Expr, Literal, as_expr, is_expr

logger = logging.getLogger(__name__)


def _check_rule(name: str, rule: Any) -> ActionRule:
    if is_expr(rule) or isinstance(rule, bool) or callable(rule):
        return rule
    raise InvalidRuleError(
        f"Action '{name}' has an invalid rule of type {type(rule).__name__}",
        details={"action": name, "type": type(rule).__name__},
    )


class Policy:
    """Named action rules for one subject type.

    Parameters
    ----------
    subject:
        Label of the resource type, e.g. ``"Post"``.
    actions:
        Mapping of action name to rule.  Copied on construction.
    """

    __slots__ = ("_subject", "_actions")

    def __init__(self, subject: str, actions: Mapping[str, ActionRule]) -> None:
        if not isinstance(subject, str) or not subject:
            raise InvalidRuleError("Policy subject must be a non-empty string")
        checked = {name: _check_rule(name, rule) for name, rule in actions.items()}
        self._subject = subject
        self._actions: Mapping[str, ActionRule] = MappingProxyType(checked)

    @property
    def subject(self) -> str:
        return self._subject

    @property
    def actions(self) -> Mapping[str, ActionRule]:
        """Read-only view of the action rules."""
        return self._actions

    def action(self, name: str) -> ActionRule:
        """Return the rule for *name*.

        Raises
        ------
        UnknownActionError
            If the policy does not define *name*.
        """
        try:
            return self._actions[name]
        except KeyError:
            raise UnknownActionError(
                f"Policy '{self._subject}' has no action '{name}'. "
                f"Defined actions: {', '.join(sorted(self._actions))}",
                details={"subject": self._subject, "action": name},
            ) from None

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def __iter__(self) -> Iterator[str]:
        return iter(self._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Policy):
            return self._subject == other._subject and dict(self._actions) == dict(other._actions)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Policy({self._subject!r}, actions={sorted(self._actions)!r})"


def policy(subject: str, actions: Mapping[str, ActionRule]) -> Policy:
    """Define a policy.  Convenience alias for :class:`Policy`."""
    return Policy(subject, actions)


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

def extend(
    base: Policy,
    *,
    actions: Mapping[str, ActionRule] | None = None,
    subject: str | None = None,
) -> Policy:
    """Extend *base* with additional actions.

    Actions present in both are combined with logical AND: booleans and
    functions are wrapped as expression nodes first, so every kind of
    rule participates.  New actions are added unchanged.
    """
    merged: dict[str, ActionRule] = dict(base.actions)
    for name, rule in (actions or {}).items():
        if name in merged:
            merged[name] = and_(merged[name], rule)
        else:
            merged[name] = rule
    return Policy(subject if subject is not None else base.subject, merged)


def _fold(policies: Iterable[Policy], combinator: str) -> Policy:
    items = list(policies)
    if not items:
        raise PolicyCompositionError(
            f"{combinator}_policies requires at least one policy",
        )
    if len(items) == 1:
        return items[0]

    names: dict[str, None] = {}
    for item in items:
        names.update(dict.fromkeys(item.actions))

    merged: dict[str, ActionRule] = {}
    for name in names:
        expressions: list[Expr] = []
        for item in items:
            if name not in item.actions:
                continue
            rule = item.actions[name]
            if isinstance(rule, bool):
                expressions.append(Literal(rule))
            elif is_expr(rule):
                expressions.append(as_expr(rule))
            else:
                logger.debug(
                    "Skipping function rule for action %r of policy %r in %s_policies",
                    name, item.subject, combinator,
                )
        if not expressions:
            continue
        if len(expressions) == 1:
            merged[name] = expressions[0]
        elif combinator == "and":
            merged[name] = and_(*expressions)
        else:
            merged[name] = or_(*expressions)
    return Policy(items[0].subject, merged)


def and_policies(policies: Iterable[Policy]) -> Policy:
    """Combine policies so every policy must allow an action.

    Only declarative rules (expressions and booleans) take part; function
    rules are left out of the fold, and an action defined only by
    functions is dropped.  The subject label is the first policy's.

    Raises
    ------
    PolicyCompositionError
        If *policies* is empty.
    """
    return _fold(policies, "and")


def or_policies(policies: Iterable[Policy]) -> Policy:
    """Combine policies so any policy may allow an action.

    Same scope rules as :func:`and_policies`.
    """
    return _fold(policies, "or")
