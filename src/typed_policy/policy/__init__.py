"""typed-policy policy container.

* **Policy** -- immutable mapping of action names to rules for one
  subject type.
* **extend** -- add or AND-merge actions into a base policy.
* **and_policies / or_policies** -- fold several policies' declarative
  rules with AND / OR.
"""
from __future__ import annotations

from typed_policy.policy.container import Policy, and_policies, extend, or_policies, policy

__all__ = [
    "Policy",
    "and_policies",
    "extend",
    "or_policies",
    "policy",
]
