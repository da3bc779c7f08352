"""typed-policy evaluator.

* **Evaluator** -- walks a rule against a concrete actor and resources
  and returns ``bool``.
* **evaluate** -- one-off convenience wrapper.
"""
from __future__ import annotations

from typed_policy.evaluation.evaluator import Evaluator, evaluate

__all__ = [
    "Evaluator",
    "evaluate",
]
