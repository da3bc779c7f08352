#!/usr/bin/env python3
"""typed-policy related records -- exists, has_many and tenancy.

Demonstrates:

1. Correlated predicates over a related table (``exists``, ``has_many``).
2. Tenant scoping from the actor's organisation.
3. Composing policies with ``extend`` and ``or_policies``.
4. Rejection of tables the caller did not declare.

Run:
    python examples/related_records.py
"""
from __future__ import annotations

import logging

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, insert, select

from typed_policy import (
    EngineConfig,
    Policy,
    PolicyEngine,
    UndeclaredTableError,
    actor_proxy,
    and_,
    describe,
    eq,
    exists,
    extend,
    has_many,
    map_table,
    or_policies,
    subject_proxy,
    tenant_scoped,
)

metadata = MetaData()
projects = Table(
    "projects",
    metadata,
    Column("id", String, primary_key=True),
    Column("org_id", String),
)
members = Table(
    "members",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("project_id", String),
    Column("user_id", String),
)

subject = subject_proxy()


def project_policy(actor) -> Policy:
    me = actor_proxy(actor)
    base = Policy(
        "Project",
        {
            "view": tenant_scoped(subject.project.org_id),
            "edit": exists(
                subject.members,
                lambda m: and_(eq(m.project_id, subject.project.id), eq(m.user_id, me.user.id)),
            ),
        },
    )
    # Editing additionally requires the project to be in the actor's org.
    return extend(base, actions={"edit": tenant_scoped(subject.project.org_id)})


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="    %(name)s: %(message)s")
    engine = PolicyEngine(EngineConfig(log_decisions=True))
    alice = {"user": {"id": "alice", "org_id": "acme"}}

    db = create_engine("sqlite://")
    metadata.create_all(db)
    with db.begin() as conn:
        conn.execute(insert(projects), [
            {"id": "apollo", "org_id": "acme"},
            {"id": "gemini", "org_id": "acme"},
            {"id": "vostok", "org_id": "roscosmos"},
        ])
        conn.execute(insert(members), [
            {"project_id": "apollo", "user_id": "alice"},
            {"project_id": "apollo", "user_id": "bob"},
            {"project_id": "vostok", "user_id": "alice"},
        ])

    tables = {"project": map_table(projects)}
    related = {"members": map_table(members)}
    policy = project_policy(alice)
    print(f"[1] edit rule: {describe(policy.action('edit'))}")

    # -- Step 1-2: scoped queries --------------------------------------------
    for action in ("view", "edit"):
        stmt = engine.authorize_select(
            select(projects.c.id), policy, action,
            actor=alice, tables=tables, related_tables=related,
        )
        with db.connect() as conn:
            print(f"[2] alice may {action}: {sorted(conn.execute(stmt).scalars())}")

    # -- Step 3: in-process decision with related rows ------------------------
    resources = {
        "project": {"id": "apollo", "org_id": "acme"},
        "members": [
            {"project_id": "apollo", "user_id": "alice"},
            {"project_id": "apollo", "user_id": "bob"},
        ],
    }
    allowed = engine.can(policy, "edit", actor=alice, resources=resources)
    print(f"[3] alice may edit apollo in-process: {allowed}")

    busy = Policy(
        "Project",
        {"view": has_many(subject.members, lambda m: eq(m.project_id, subject.project.id))},
    )
    combined = or_policies([policy, busy])
    print(f"[3] combined view rule: {describe(combined.action('view'))}")

    # -- Step 4: undeclared tables are rejected ------------------------------
    try:
        engine.scope(policy, "edit", actor=alice, tables=tables)
    except UndeclaredTableError as exc:
        print(f"[4] [{exc.code}] {exc.message}")


if __name__ == "__main__":
    main()
