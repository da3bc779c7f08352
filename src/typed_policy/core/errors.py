"""typed-policy error-code hierarchy.

Every failure the engine can raise is a concrete exception class carrying
a stable error code, a human-readable message, machine-readable details
and a suggested resolution.

Hierarchy
---------
::

    TypedPolicyError
    +-- AuthoringError      (TP-E1xx)
    +-- DeclarationError    (TP-E2xx)
    +-- DataShapeError      (TP-E3xx)
    +-- AccessDenied        (TP-E400)

Usage
-----
Raise concrete subclasses directly::

    raise UndeclaredTableError("No table mapping for 'comments'")

Catch by category::

    try:
        ...
    except DeclarationError:
        # handles UndeclaredTableError, UndeclaredColumnError, ...
        ...

Neither interpreter catches these errors: they always propagate to the
caller, which decides between "deny" and "surface to operator".
"""
from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class TypedPolicyError(Exception):
    """Base exception for all typed-policy errors.

    Attributes
    ----------
    code : str
        Error code, e.g. ``"TP-E200"``.
    message : str
        Human-readable description.  Never contains actor or subject data.
    details : dict[str, Any]
        Machine-readable context specific to the error instance.
    resolution : str
        Suggested action for the caller.
    """

    code: str = "TP-E000"
    message: str = "Unknown typed-policy error"
    resolution: str = ""

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        resolution: str | None = None,
    ) -> None:
        self.details: dict[str, Any] = details or {}
        if message is not None:
            self.message = message
        if resolution is not None:
            self.resolution = resolution
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error to a JSON-friendly payload."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["detail"] = self.details
        if self.resolution:
            payload["resolution"] = self.resolution
        return {"error": payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# ===================================================================
# Category base classes
# ===================================================================

class AuthoringError(TypedPolicyError):
    """TP-E1xx -- Programming mistakes in policy definitions.

    Not recoverable; raised at policy construction or first use.
    """

    code = "TP-E1XX"


class DeclarationError(TypedPolicyError):
    """TP-E2xx -- References outside the caller-declared table mapping.

    The primary security-relevant failure mode of the compiler.
    """

    code = "TP-E2XX"


class DataShapeError(TypedPolicyError):
    """TP-E3xx -- Actor or resource data does not have the expected shape."""

    code = "TP-E3XX"


# ===================================================================
# TP-E1xx  Authoring errors
# ===================================================================

class PathResolutionError(AuthoringError):
    """TP-E100 -- A value could not be normalised into a concrete reference."""

    code = "TP-E100"
    message = "Path could not be resolved to a table/column reference"
    resolution = (
        "Build paths through subject_proxy()/scoped_proxy() as "
        "'subject.<table>.<column>'; deeper nesting is not supported."
    )


class InvalidOperandError(AuthoringError):
    """TP-E101 -- An operator received an argument of an unsupported type."""

    code = "TP-E101"
    message = "Operator received an unsupported operand"
    resolution = (
        "Pass a subject path, an actor value or a primitive "
        "(str, int, float, bool, None, Decimal, date/time, UUID)."
    )


class InvalidExpressionError(AuthoringError):
    """TP-E102 -- An expression node was constructed with the wrong shape."""

    code = "TP-E102"
    message = "Expression node has an invalid shape"
    resolution = "Construct expressions through the operator functions."


class UncorrelatedPredicateError(AuthoringError):
    """TP-E103 -- A related-table predicate never references the outer row."""

    code = "TP-E103"
    message = "Related-table predicate is not correlated with the outer subject"
    resolution = (
        "Reference at least one outer subject path inside the predicate, "
        "e.g. eq(c.post_id, subject.post.id)."
    )


class UnknownExpressionKindError(AuthoringError):
    """TP-E104 -- An interpreter met a node it does not understand."""

    code = "TP-E104"
    message = "Unknown expression kind"
    resolution = (
        "Expressions must be built with the operator library; an unknown "
        "node indicates a corrupted or hand-built tree."
    )


class InvalidRuleError(AuthoringError):
    """TP-E105 -- An action rule or escape-hatch result is not bool or Expr."""

    code = "TP-E105"
    message = "Rule must be a boolean, an expression or a function of the actor"
    resolution = "Return True/False or an expression from escape-hatch functions."


class FunctionDepthExceededError(AuthoringError):
    """TP-E106 -- Escape-hatch functions expanded beyond the configured depth."""

    code = "TP-E106"
    message = "Escape-hatch function nesting exceeded the configured depth"
    resolution = (
        "Check for functions that keep returning further functions, or "
        "raise EngineConfig.max_function_depth."
    )


class ExpressionBudgetExceeded(AuthoringError):
    """TP-E107 -- An evaluate/compile call visited too many nodes."""

    code = "TP-E107"
    message = "Expression node budget exceeded"
    resolution = "Simplify the rule or raise EngineConfig.max_expression_nodes."


class PolicyCompositionError(AuthoringError):
    """TP-E108 -- Policies could not be composed."""

    code = "TP-E108"
    message = "Policy composition requires at least one policy"


class UnknownActionError(AuthoringError):
    """TP-E109 -- The requested action is not defined by the policy."""

    code = "TP-E109"
    message = "Action is not defined by the policy"
    resolution = "Use one of the action names declared in the policy."


# ===================================================================
# TP-E2xx  Declaration errors
# ===================================================================

class UndeclaredTableError(DeclarationError):
    """TP-E200 -- A rule references a table absent from the table mapping."""

    code = "TP-E200"
    message = "Table is not declared in the table mapping"
    resolution = "Add the table and its columns to the mapping passed to compile."


class UndeclaredColumnError(DeclarationError):
    """TP-E201 -- A rule references a column absent from the table mapping."""

    code = "TP-E201"
    message = "Column is not declared in the table mapping"
    resolution = "Declare the column under its table in the mapping passed to compile."


class UnsupportedPatternError(DeclarationError):
    """TP-E202 -- A regex pattern has no LIKE translation under the 'like' strategy."""

    code = "TP-E202"
    message = "Pattern cannot be translated to a LIKE expression"
    resolution = (
        "Simplify the pattern or use regex_strategy='auto' / 'native' "
        "to fall back to the backend regex operator."
    )


# ===================================================================
# TP-E3xx  Data-shape errors
# ===================================================================

class MissingActorFieldError(DataShapeError):
    """TP-E300 -- A field required from the actor is absent."""

    code = "TP-E300"
    message = "Missing required actor field"
    resolution = (
        "Populate the field on the actor, either under the tenant "
        "namespace (actor.user.<field>) or at the top level."
    )


# ===================================================================
# TP-E400  Access denied
# ===================================================================

class AccessDenied(TypedPolicyError):
    """TP-E400 -- The policy did not allow the requested action."""

    code = "TP-E400"
    message = "Access denied"


# ---------------------------------------------------------------------------
# Lookup helper
# ---------------------------------------------------------------------------

_CODE_MAP: dict[str, type[TypedPolicyError]] = {
    cls.code: cls
    for cls in [
        # E1xx
        PathResolutionError,
        InvalidOperandError,
        InvalidExpressionError,
        UncorrelatedPredicateError,
        UnknownExpressionKindError,
        InvalidRuleError,
        FunctionDepthExceededError,
        ExpressionBudgetExceeded,
        PolicyCompositionError,
        UnknownActionError,
        # E2xx
        UndeclaredTableError,
        UndeclaredColumnError,
        UnsupportedPatternError,
        # E3xx
        MissingActorFieldError,
        # E4xx
        AccessDenied,
    ]
}


def error_from_code(code: str, message: str | None = None) -> TypedPolicyError:
    """Instantiate the correct exception class for an error code.

    Raises
    ------
    KeyError
        If *code* is not a recognised error code.
    """
    cls = _CODE_MAP[code]
    return cls(message) if message else cls()
