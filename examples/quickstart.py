#!/usr/bin/env python3
"""typed-policy quickstart -- one rule, two interpreters.

Demonstrates the core workflow:

1. Author a policy with symbolic paths and operators.
2. Decide a single request in-process.
3. Compile the same action to a SQLAlchemy filter.
4. Run the filtered query against SQLite.

Run:
    python examples/quickstart.py
"""
from __future__ import annotations

from sqlalchemy import Boolean, Column, MetaData, String, Table, create_engine, insert, select

from typed_policy import (
    AccessDenied,
    Policy,
    PolicyEngine,
    actor_proxy,
    eq,
    map_table,
    or_,
    render_predicate,
    subject_proxy,
)

metadata = MetaData()
posts = Table(
    "posts",
    metadata,
    Column("id", String, primary_key=True),
    Column("owner_id", String),
    Column("published", Boolean, nullable=False),
)


def post_policy(actor) -> Policy:
    subject = subject_proxy({"post": ["id", "owner_id", "published"]})
    me = actor_proxy(actor)
    return Policy(
        "Post",
        {
            "read": or_(
                eq(subject.post.published, True),
                eq(subject.post.owner_id, me.user.id),
            ),
            "update": eq(subject.post.owner_id, me.user.id),
            "create": True,
        },
    )


def main() -> None:
    engine = PolicyEngine()
    alice = {"user": {"id": "alice"}}
    bob = {"user": {"id": "bob"}}
    draft = {"post": {"id": "p1", "owner_id": "alice", "published": False}}

    # -- Step 1-2: in-process decisions --------------------------------------
    print(f"[1] alice can read her draft: {engine.can(post_policy(alice), 'read', actor=alice, resources=draft)}")
    print(f"[2] bob can read alice's draft: {engine.can(post_policy(bob), 'read', actor=bob, resources=draft)}")
    try:
        engine.check(post_policy(bob), "update", actor=bob, resources=draft)
    except AccessDenied as exc:
        print(f"    check() raised [{exc.code}] {exc.message}")

    # -- Step 3: compile to a filter predicate -------------------------------
    tables = {"post": map_table(posts)}
    predicate = engine.scope(post_policy(bob), "read", actor=bob, tables=tables)
    print(f"[3] Compiled predicate: {render_predicate(predicate)}")

    # -- Step 4: run the scoped query ----------------------------------------
    db = create_engine("sqlite://")
    metadata.create_all(db)
    with db.begin() as conn:
        conn.execute(insert(posts), [
            {"id": "p1", "owner_id": "alice", "published": False},
            {"id": "p2", "owner_id": "alice", "published": True},
            {"id": "p3", "owner_id": "bob", "published": False},
        ])
    stmt = engine.authorize_select(select(posts.c.id), post_policy(bob), "read", actor=bob, tables=tables)
    with db.connect() as conn:
        visible = sorted(conn.execute(stmt).scalars())
    print(f"[4] Posts bob may read: {visible}")

    print("\nDone. The same rule decided one request and filtered a query.")


if __name__ == "__main__":
    main()
