"""typed-policy engine configuration.

Defines the validated configuration model shared by the evaluator, the
compiler and the :class:`~typed_policy.engine.PolicyEngine` facade.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class EngineConfig(BaseModel):
    """Configuration for the policy interpreters.

    Every field carries a default, so ``EngineConfig()`` is a complete
    configuration.  Instances are frozen and may be shared freely
    between threads.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    max_function_depth: int = Field(
        default=16,
        ge=1,
        description=(
            "Maximum number of nested escape-hatch expansions along one "
            "path of a rule (a function returning an expression that "
            "contains another function counts twice)."
        ),
    )
    max_expression_nodes: int | None = Field(
        default=None,
        ge=1,
        description=(
            "Maximum number of expression nodes one evaluate/compile call "
            "may visit.  None disables the budget."
        ),
    )
    tenant_actor_namespace: str = Field(
        default="user",
        min_length=1,
        description=(
            "Actor sub-record searched first by tenant_scoped() before "
            "falling back to a top-level actor field."
        ),
    )
    regex_strategy: Literal["auto", "like", "native"] = Field(
        default="auto",
        description=(
            "How matches() compiles: 'like' translates to LIKE or fails, "
            "'native' always uses the backend regex operator, 'auto' "
            "prefers LIKE and falls back to the regex operator."
        ),
    )
    log_decisions: bool = Field(
        default=False,
        description="When True, PolicyEngine logs every decision at INFO.",
    )


DEFAULT_CONFIG = EngineConfig()
