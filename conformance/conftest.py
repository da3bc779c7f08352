"""Shared fixtures for typed-policy conformance tests.

Provides the SQLite schema used to execute compiled predicates next to
the evaluator, plus the table mappings and actors used across tests.
"""
from __future__ import annotations

import pytest
from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
)

from typed_policy.compilation.mapping import map_table

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
metadata = MetaData()

items = Table(
    "items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("owner_id", String, nullable=True),
    Column("editor_id", String, nullable=True),
    Column("org_id", String, nullable=True),
    Column("title", String, nullable=True),
    Column("body", String, nullable=True),
    Column("score", Integer, nullable=True),
    Column("rank", Integer, nullable=True),
)

notes = Table(
    "notes",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("item_id", Integer, nullable=True),
    Column("author_id", String, nullable=True),
    Column("weight", Integer, nullable=True),
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(scope="session")
def schema() -> dict[str, Table]:
    return {"item": items, "notes": notes}


@pytest.fixture(scope="session")
def tables() -> dict[str, dict]:
    return {"item": map_table(items)}


@pytest.fixture(scope="session")
def related_tables() -> dict[str, dict]:
    return {"notes": map_table(notes)}


@pytest.fixture(scope="session")
def sql_engine():
    """In-memory SQLite with case-sensitive LIKE, matching Python ``str`` semantics."""
    engine = create_engine("sqlite://")

    @event.listens_for(engine, "connect")
    def _case_sensitive_like(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA case_sensitive_like = ON")
        cursor.close()

    metadata.create_all(engine)
    yield engine
    engine.dispose()
