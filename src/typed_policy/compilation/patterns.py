"""Translation of ``matches`` patterns to backend filter clauses.

Only a small regular-expression subset has an exact ``LIKE`` shape:

* literal characters, and backslash-escaped metacharacters (``\\.``);
* ``.`` (any one character) becomes ``_``;
* ``.*`` becomes ``%`` and ``.+`` becomes ``_%``;
* ``^`` / ``$`` anchors; an unanchored end gets a ``%``.

Everything else (character classes, groups, alternation, other
quantifiers, class escapes such as ``\\d``) has no translation and goes
to the backend regex operator, whose dialect may differ from Python's
:mod:`re`.

Known lossiness: ``.`` never matches a newline in Python regex, while
``_`` matches any character; ``$`` also matches before a trailing
newline in Python regex, while an anchored ``LIKE`` does not.

Regex flags
-----------
Flags always travel inline, as a leading ``(?ims)`` group, because
SQLite drops the ``flags`` argument of ``regexp_match``.  SQLite and
MySQL then read them like Python ``re``.  PostgreSQL embedded options
differ: its ``s`` is the default and ``m`` means newline-sensitive
matching, so ``.`` never crosses a newline there and ``^``/``$`` match
at line breaks.  Rules relying on ``m`` or ``s`` may filter differently
on PostgreSQL than they evaluate in Python.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import ColumnElement

from typed_policy.core.errors import UnsupportedPatternError
from typed_policy.core.expressions import Matches

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"

_METACHARS = frozenset(".^$*+?()[]{}|")
_LIKE_SPECIAL = frozenset("%_\\")


def _like_literal(char: str) -> str:
    if char in _LIKE_SPECIAL:
        return LIKE_ESCAPE + char
    return char


def _ends_with_anchor(pattern: str) -> bool:
    if not pattern.endswith("$"):
        return False
    backslashes = len(pattern[:-1]) - len(pattern[:-1].rstrip("\\"))
    return backslashes % 2 == 0


def regex_to_like(pattern: str) -> str | None:
    """Translate *pattern* to a ``LIKE`` pattern, or return ``None``.

    The result uses ``\\`` as its escape character.

    >>> regex_to_like("^admin.*")
    'admin%'
    >>> regex_to_like("a_b")
    '%a\\\\_b%'
    >>> regex_to_like("[0-9]+") is None
    True
    """
    anchored_start = pattern.startswith("^")
    anchored_end = _ends_with_anchor(pattern)
    body = pattern[1 if anchored_start else 0 : len(pattern) - (1 if anchored_end else 0)]

    out: list[str] = []
    i = 0
    while i < len(body):
        char = body[i]
        if char == "\\":
            if i + 1 >= len(body) or body[i + 1].isalnum():
                return None
            out.append(_like_literal(body[i + 1]))
            i += 2
            continue
        if char == ".":
            following = body[i + 1] if i + 1 < len(body) else ""
            if following == "*":
                out.append("%")
                i += 2
            elif following == "+":
                out.append("_%")
                i += 2
            else:
                out.append("_")
                i += 1
            continue
        if char in _METACHARS:
            return None
        out.append(_like_literal(char))
        i += 1

    prefix = "" if anchored_start else "%"
    suffix = "" if anchored_end else "%"
    return f"{prefix}{''.join(out)}{suffix}"


def inline_flags(pattern: str, flags: str) -> str:
    """Prefix *pattern* with an inline flag group such as ``(?im)``.

    >>> inline_flags("^a", "im")
    '(?im)^a'
    >>> inline_flags("^a", "")
    '^a'
    """
    if not flags:
        return pattern
    return f"(?{''.join(sorted(set(flags)))})" + pattern


def pattern_clause(column: Any, node: Matches, strategy: str) -> ColumnElement[bool]:
    """Build the filter clause for a ``matches`` node on *column*.

    Parameters
    ----------
    column:
        The resolved column handle.
    node:
        The ``matches`` expression.
    strategy:
        ``"auto"``, ``"like"`` or ``"native"``.

    Raises
    ------
    UnsupportedPatternError
        With the ``"like"`` strategy, when the pattern or its flags have
        no ``LIKE`` translation.
    """
    like = None
    if strategy != "native" and set(node.flags) <= {"i"}:
        like = regex_to_like(node.pattern)

    if like is not None:
        logger.debug("Compiling matches(%r) as LIKE", node.pattern)
        if "i" in node.flags:
            return column.ilike(like, escape=LIKE_ESCAPE)
        return column.like(like, escape=LIKE_ESCAPE)

    if strategy == "like":
        raise UnsupportedPatternError(
            f"Pattern {node.pattern!r} with flags {node.flags!r} has no LIKE translation",
            details={"pattern": node.pattern, "flags": node.flags},
        )

    logger.debug("Compiling matches(%r) with the backend regex operator", node.pattern)
    return column.regexp_match(inline_flags(node.pattern, node.flags))
