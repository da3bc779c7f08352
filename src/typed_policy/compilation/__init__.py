"""typed-policy compiler.

* **Compiler / compile_rule** -- turn a rule into a SQLAlchemy boolean
  clause over declared tables.
* **Table mappings** -- :func:`map_table`, :func:`table_mapping`,
  :func:`validate_mapping`, :func:`referenced_columns`.
* **Patterns** -- :func:`regex_to_like` and :func:`inline_flags` for ``matches``.
"""
from __future__ import annotations

from typed_policy.compilation.compiler import Compiler, compile_rule, render_predicate
from typed_policy.compilation.mapping import (
    TableMapping,
    from_clause_for,
    map_table,
    referenced_columns,
    resolve_column,
    resolve_table,
    table_mapping,
    validate_mapping,
)
from typed_policy.compilation.patterns import inline_flags, pattern_clause, regex_to_like

__all__ = [
    "Compiler",
    "TableMapping",
    "compile_rule",
    "from_clause_for",
    "inline_flags",
    "map_table",
    "pattern_clause",
    "referenced_columns",
    "regex_to_like",
    "render_predicate",
    "resolve_column",
    "resolve_table",
    "table_mapping",
    "validate_mapping",
]
