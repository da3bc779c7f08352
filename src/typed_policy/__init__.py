"""typed-policy -- authorization rules that run in-process and in SQL.

One rule tree, two interpreters: the evaluator decides a single request
against in-memory records, the compiler turns the same rule into a
SQLAlchemy filter so the database returns only permitted rows.

Layers
------
1. Authoring (:mod:`typed_policy.authoring`) -- symbolic paths and operators
2. Policies (:mod:`typed_policy.policy`) -- named actions and composition
3. Evaluation (:mod:`typed_policy.evaluation`) -- in-process decisions
4. Compilation (:mod:`typed_policy.compilation`) -- SQLAlchemy predicates
5. Engine (:mod:`typed_policy.engine`) -- the application facade
"""
from __future__ import annotations

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Authoring
# ---------------------------------------------------------------------------
from typed_policy.authoring import (
    actor_proxy,
    and_,
    belongs_to_tenant,
    between,
    contains,
    count,
    ends_with,
    eq,
    exists,
    fn,
    get_path_info,
    get_table_name,
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
    normalize_path,
    normalize_value,
    not_,
    or_,
    scoped_proxy,
    starts_with,
    subject_proxy,
    tenant_scoped,
)

# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------
from typed_policy.compilation import (
    Compiler,
    compile_rule,
    map_table,
    referenced_columns,
    regex_to_like,
    render_predicate,
    table_mapping,
    validate_mapping,
)
from typed_policy.core.config import DEFAULT_CONFIG, EngineConfig
from typed_policy.core.errors import (
    AccessDenied,
    AuthoringError,
    DataShapeError,
    DeclarationError,
    ExpressionBudgetExceeded,
    FunctionDepthExceededError,
    InvalidExpressionError,
    InvalidOperandError,
    InvalidRuleError,
    MissingActorFieldError,
    PathResolutionError,
    PolicyCompositionError,
    TypedPolicyError,
    UncorrelatedPredicateError,
    UndeclaredColumnError,
    UndeclaredTableError,
    UnknownActionError,
    UnknownExpressionKindError,
    UnsupportedPatternError,
    error_from_code,
)
from typed_policy.core.expressions import ActionRule, Expr, as_expr, describe
from typed_policy.core.types import (
    ActorRef,
    ExprKind,
    ScopedSubjectRef,
    SubjectRef,
    TableRef,
)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
from typed_policy.engine import Decision, PolicyEngine

# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------
from typed_policy.evaluation import Evaluator, evaluate

# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------
from typed_policy.policy import Policy, and_policies, extend, or_policies, policy

__all__ = [
    # Meta
    "__version__",
    # Core types
    "ActionRule",
    "ActorRef",
    "Expr",
    "ExprKind",
    "ScopedSubjectRef",
    "SubjectRef",
    "TableRef",
    "as_expr",
    "describe",
    # Config
    "DEFAULT_CONFIG",
    "EngineConfig",
    # Error hierarchy
    "TypedPolicyError",
    "AuthoringError",
    "DeclarationError",
    "DataShapeError",
    "AccessDenied",
    "ExpressionBudgetExceeded",
    "FunctionDepthExceededError",
    "InvalidExpressionError",
    "InvalidOperandError",
    "InvalidRuleError",
    "MissingActorFieldError",
    "PathResolutionError",
    "PolicyCompositionError",
    "UncorrelatedPredicateError",
    "UndeclaredColumnError",
    "UndeclaredTableError",
    "UnknownActionError",
    "UnknownExpressionKindError",
    "UnsupportedPatternError",
    "error_from_code",
    # Authoring
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
    # Policies
    "Policy",
    "and_policies",
    "extend",
    "or_policies",
    "policy",
    # Evaluation
    "Evaluator",
    "evaluate",
    # Compilation
    "Compiler",
    "compile_rule",
    "map_table",
    "referenced_columns",
    "regex_to_like",
    "render_predicate",
    "table_mapping",
    "validate_mapping",
    # Engine
    "Decision",
    "PolicyEngine",
]
