"""Tests for compilation to SQLAlchemy predicates.

Compiled predicates are executed against an in-memory SQLite database
and, where the rule is declarative, checked against the evaluator on
the same rows.

1. **Basics** -- literals, empty junctions, escape-hatch functions.
2. **Comparisons and null handling** -- two-valued results under ``not_``.
3. **Text and patterns** -- escaping, LIKE translation, native regex.
4. **Related tables** -- EXISTS and COUNT subqueries.
5. **Tenancy**.
6. **Declared tables** -- undeclared tables and columns always raise.
7. **Table mapping helpers** and SQL rendering.
"""
from __future__ import annotations

import pytest
from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    insert,
    select,
)
from sqlalchemy.dialects import sqlite
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from typed_policy.authoring.operators import (
    and_,
    belongs_to_tenant,
    between,
    contains,
    count,
    ends_with,
    eq,
    exists,
    fn,
    gt,
    has_many,
    in_array,
    is_not_null,
    is_null,
    lte,
    matches,
    neq,
    not_,
    or_,
    starts_with,
    tenant_scoped,
)
from typed_policy.authoring.paths import actor_proxy, scoped_proxy, subject_proxy
from typed_policy.compilation.compiler import Compiler, compile_rule, render_predicate
from typed_policy.compilation.mapping import (
    from_clause_for,
    map_table,
    referenced_columns,
    table_mapping,
    validate_mapping,
)
from typed_policy.core.config import EngineConfig
from typed_policy.core.errors import (
    MissingActorFieldError,
    PathResolutionError,
    UndeclaredColumnError,
    UndeclaredTableError,
    UnsupportedPatternError,
)
from typed_policy.evaluation.evaluator import evaluate

subject = subject_proxy()

metadata = MetaData()

posts = Table(
    "posts",
    metadata,
    Column("id", String, primary_key=True),
    Column("owner_id", String, nullable=True),
    Column("editor_id", String, nullable=True),
    Column("org_id", String, nullable=True),
    Column("title", String, nullable=True),
    Column("published", Boolean, nullable=False),
    Column("score", Integer, nullable=True),
)

comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("post_id", String, nullable=False),
    Column("author_id", String, nullable=True),
)

POSTS = [
    {"id": "p1", "owner_id": "u1", "editor_id": "u1", "org_id": "o1",
     "title": "Draft plan", "published": False, "score": 5},
    {"id": "p2", "owner_id": "u2", "editor_id": None, "org_id": "o1",
     "title": "Release 100%_done", "published": True, "score": None},
    {"id": "p3", "owner_id": None, "editor_id": None, "org_id": None,
     "title": None, "published": False, "score": 9},
    {"id": "p4", "owner_id": "u2", "editor_id": "u1", "org_id": "o2",
     "title": "draft notes", "published": True, "score": 1},
]

COMMENTS = [
    {"post_id": "p1", "author_id": "u2"},
    {"post_id": "p2", "author_id": "u1"},
    {"post_id": "p2", "author_id": "u2"},
    {"post_id": "p4", "author_id": None},
]

TABLES = {"post": map_table(posts)}
RELATED = {"comments": map_table(comments)}

ALICE = {"user": {"id": "u1", "org_id": "o1"}}
BOB = {"user": {"id": "u2", "org_id": "o2"}}


class Base(DeclarativeBase):
    pass


class Note(Base):
    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(primary_key=True)
    post_id: Mapped[str]
    body: Mapped[str]


@pytest.fixture(scope="module")
def db():
    engine = create_engine("sqlite://")

    @event.listens_for(engine, "connect")
    def _case_sensitive_like(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA case_sensitive_like = ON")
        cursor.close()

    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(insert(posts), POSTS)
        conn.execute(insert(comments), COMMENTS)
    yield engine
    engine.dispose()


def visible(db, rule, actor=ALICE, config: EngineConfig | None = None) -> set[str]:
    predicate = compile_rule(
        rule, actor=actor, tables=TABLES, related_tables=RELATED, config=config
    )
    with db.connect() as conn:
        return set(conn.execute(select(posts.c.id).where(predicate)).scalars())


def allowed(rule, actor=ALICE) -> set[str]:
    return {
        row["id"]
        for row in POSTS
        if evaluate(rule, actor=actor, resources={"post": row, "comments": COMMENTS})
    }


def agree(db, rule, actor=ALICE) -> set[str]:
    ids = visible(db, rule, actor)
    assert ids == allowed(rule, actor)
    return ids


ALL = {"p1", "p2", "p3", "p4"}


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

class TestBasics:
    def test_literals(self, db) -> None:
        assert agree(db, True) == ALL
        assert agree(db, False) == set()

    def test_empty_junctions(self, db) -> None:
        assert agree(db, and_()) == ALL
        assert agree(db, or_()) == set()
        assert agree(db, not_(or_())) == ALL

    def test_function_folded_at_compile_time(self, db) -> None:
        calls = []

        def own_posts(actor):
            calls.append(actor)
            return eq(subject.post.owner_id, actor["user"]["id"])

        assert agree(db, fn(own_posts), BOB) == {"p2", "p4"}
        calls.clear()
        compile_rule(own_posts, actor=BOB, tables=TABLES)
        assert calls == [BOB]

    def test_function_returning_bool(self, db) -> None:
        assert visible(db, lambda actor: actor["user"]["id"] == "u1") == ALL
        assert visible(db, lambda actor: False) == set()

    def test_owner_or_published(self, db) -> None:
        actor = actor_proxy(ALICE)
        rule = or_(
            eq(subject.post.published, True),
            eq(subject.post.owner_id, actor.user.id),
        )
        assert agree(db, rule) == {"p1", "p2", "p4"}


# ---------------------------------------------------------------------------
# Comparisons and null handling
# ---------------------------------------------------------------------------

class TestComparisons:
    def test_eq_none_is_null(self, db) -> None:
        assert agree(db, eq(subject.post.owner_id, None)) == {"p3"}
        assert agree(db, neq(subject.post.owner_id, None)) == {"p1", "p2", "p4"}

    def test_neq_includes_nulls(self, db) -> None:
        assert agree(db, neq(subject.post.owner_id, "u1")) == {"p2", "p3", "p4"}
        assert agree(db, not_(eq(subject.post.owner_id, "u1"))) == {"p2", "p3", "p4"}

    def test_path_to_path(self, db) -> None:
        rule = eq(subject.post.owner_id, subject.post.editor_id)
        assert agree(db, rule) == {"p1", "p3"}
        assert agree(db, not_(rule)) == {"p2", "p4"}

    def test_ordering_under_not(self, db) -> None:
        assert agree(db, gt(subject.post.score, 4)) == {"p1", "p3"}
        assert agree(db, not_(gt(subject.post.score, 4))) == {"p2", "p4"}
        assert agree(db, gt(subject.post.score, None)) == set()

    def test_path_ordering(self, db) -> None:
        assert agree(db, lte(subject.post.editor_id, subject.post.owner_id)) == {"p1", "p4"}

    def test_between(self, db) -> None:
        assert agree(db, between(subject.post.score, 1, 5)) == {"p1", "p4"}
        assert agree(db, not_(between(subject.post.score, 1, 5))) == {"p2", "p3"}

    def test_in_array(self, db) -> None:
        assert agree(db, in_array(subject.post.owner_id, ["u2", "u9"])) == {"p2", "p4"}
        assert agree(db, in_array(subject.post.owner_id, ["u2", None])) == {"p2", "p3", "p4"}
        assert agree(db, in_array(subject.post.owner_id, [])) == set()
        assert agree(db, not_(in_array(subject.post.owner_id, ["u2"]))) == {"p1", "p3"}

    def test_null_checks(self, db) -> None:
        assert agree(db, is_null(subject.post.title)) == {"p3"}
        assert agree(db, is_not_null(subject.post.score)) == {"p1", "p3", "p4"}


# ---------------------------------------------------------------------------
# Text and patterns
# ---------------------------------------------------------------------------

class TestText:
    def test_case_sensitive_prefix(self, db) -> None:
        assert agree(db, starts_with(subject.post.title, "Draft")) == {"p1"}
        assert agree(db, ends_with(subject.post.title, "notes")) == {"p4"}

    def test_wildcards_are_escaped(self, db) -> None:
        assert agree(db, contains(subject.post.title, "100%_")) == {"p2"}
        assert agree(db, contains(subject.post.title, "_")) == {"p2"}

    def test_negated_text_includes_nulls(self, db) -> None:
        assert agree(db, not_(contains(subject.post.title, "plan"))) == {"p2", "p3", "p4"}

    def test_matches_like(self, db) -> None:
        assert agree(db, matches(subject.post.title, "^Draft")) == {"p1"}
        assert agree(db, matches(subject.post.title, "^draft", "i")) == {"p1", "p4"}
        assert agree(db, matches(subject.post.title, "0%_d")) == {"p2"}
        assert agree(db, not_(matches(subject.post.title, "t.n"))) == {"p1", "p2", "p3"}

    def test_matches_native(self, db) -> None:
        rule = matches(subject.post.title, "^[dD]raft")
        assert agree(db, rule) == {"p1", "p4"}
        native = EngineConfig(regex_strategy="native")
        assert visible(db, matches(subject.post.title, "^Draft"), config=native) == {"p1"}

    def test_like_strategy_rejects_untranslatable(self) -> None:
        compiler = Compiler(EngineConfig(regex_strategy="like"))
        with pytest.raises(UnsupportedPatternError, match=r"\[0-9\]"):
            compiler.compile(matches(subject.post.title, "[0-9]+"), actor=ALICE, tables=TABLES)
        with pytest.raises(UnsupportedPatternError):
            compiler.compile(matches(subject.post.title, "a", "m"), actor=ALICE, tables=TABLES)

    def test_native_flags_travel_inline(self, db) -> None:
        assert agree(db, matches(subject.post.title, "^DRAFT", "im")) == {"p1", "p4"}
        assert agree(db, not_(matches(subject.post.title, "^DRAFT", "im"))) == {"p2", "p3"}
        assert agree(db, matches(subject.post.title, "plan$", "m")) == {"p1"}
        predicate = compile_rule(
            matches(subject.post.title, "^d", "sm"), actor=ALICE, tables=TABLES
        )
        params = predicate.compile(dialect=sqlite.dialect()).params
        assert "(?ms)^d" in params.values()

    def test_native_renders_regexp(self) -> None:
        predicate = compile_rule(
            matches(subject.post.title, "^[a-z]+$"), actor=ALICE, tables=TABLES
        )
        assert "REGEXP" in render_predicate(predicate, sqlite.dialect())


# ---------------------------------------------------------------------------
# Related tables
# ---------------------------------------------------------------------------

def comment_rule(c):
    return eq(c.post_id, subject.post.id)


class TestRelated:
    def test_exists(self, db) -> None:
        assert agree(db, exists(subject.comments, comment_rule)) == {"p1", "p2", "p4"}
        assert agree(db, not_(exists(subject.comments, comment_rule))) == {"p3"}

    def test_exists_with_actor_filter(self, db) -> None:
        actor = actor_proxy(ALICE)
        rule = exists(
            subject.comments,
            lambda c: and_(comment_rule(c), eq(c.author_id, actor.user.id)),
        )
        assert agree(db, rule) == {"p2"}

    def test_count(self, db) -> None:
        assert agree(db, count(subject.comments, comment_rule, min_count=2)) == {"p2"}
        assert agree(db, has_many(subject.comments, comment_rule)) == {"p2"}
        assert agree(db, count(subject.comments, comment_rule, min_count=0)) == ALL

    def test_renders_subqueries(self) -> None:
        exists_sql = render_predicate(
            compile_rule(exists(subject.comments, comment_rule), actor=ALICE,
                         tables=TABLES, related_tables=RELATED)
        )
        count_sql = render_predicate(
            compile_rule(has_many(subject.comments, comment_rule), actor=ALICE,
                         tables=TABLES, related_tables=RELATED)
        )
        assert "EXISTS" in exists_sql
        assert "count(*)" in count_sql

    def test_related_table_from_subject_mapping(self, db) -> None:
        tables = {**TABLES, **RELATED}
        predicate = compile_rule(exists(subject.comments, comment_rule), actor=ALICE, tables=tables)
        with db.connect() as conn:
            ids = set(conn.execute(select(posts.c.id).where(predicate)).scalars())
        assert ids == {"p1", "p2", "p4"}


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------

class TestTenancy:
    def test_tenant_scoped(self, db) -> None:
        rule = tenant_scoped(subject.post.org_id)
        assert agree(db, rule) == {"p1", "p2"}
        assert agree(db, rule, BOB) == {"p4"}
        assert agree(db, rule, {"user": {"org_id": None}}) == set()

    def test_missing_actor_field(self) -> None:
        with pytest.raises(MissingActorFieldError):
            compile_rule(tenant_scoped(subject.post.org_id), actor={}, tables=TABLES)

    def test_belongs_to_tenant(self, db) -> None:
        actor = actor_proxy(BOB)
        assert agree(db, belongs_to_tenant(actor.user.org_id, subject.post.org_id)) == {"p4"}
        nobody = actor_proxy({"org_id": None})
        assert agree(db, belongs_to_tenant(nobody.org_id, subject.post.org_id)) == set()


# ---------------------------------------------------------------------------
# Declared tables
# ---------------------------------------------------------------------------

class TestDeclarations:
    def test_undeclared_table(self) -> None:
        with pytest.raises(UndeclaredTableError, match="'user'") as exc:
            compile_rule(eq(subject.user.id, "u1"), actor=ALICE, tables=TABLES)
        assert exc.value.details["declared"] == ["post"]

    def test_undeclared_column(self) -> None:
        with pytest.raises(UndeclaredColumnError, match="'secret'") as exc:
            compile_rule(eq(subject.post.secret, 1), actor=ALICE, tables=TABLES)
        assert "owner_id" in exc.value.details["declared"]

    def test_column_whitelist(self) -> None:
        tables = {"post": map_table(posts, columns=["id", "owner_id"])}
        compile_rule(eq(subject.post.owner_id, "u1"), actor=ALICE, tables=tables)
        with pytest.raises(UndeclaredColumnError):
            compile_rule(eq(subject.post.title, "x"), actor=ALICE, tables=tables)

    def test_undeclared_related_table(self) -> None:
        rule = count(subject.comments, comment_rule, min_count=0)
        with pytest.raises(UndeclaredTableError, match="'comments'"):
            compile_rule(rule, actor=ALICE, tables=TABLES)

    def test_undeclared_inside_function(self) -> None:
        with pytest.raises(UndeclaredTableError):
            compile_rule(lambda actor: eq(subject.team.id, 1), actor=ALICE, tables=TABLES)

    def test_scoped_path_outside_related(self) -> None:
        rule = eq(scoped_proxy("comments").author_id, "u1")
        with pytest.raises(PathResolutionError, match="comments") as exc:
            compile_rule(rule, actor=ALICE, tables=TABLES, related_tables=RELATED)
        assert exc.value.details["open"] == []
        with pytest.raises(PathResolutionError):
            validate_mapping(rule, TABLES, RELATED)

    def test_scoped_path_of_unopened_table_inside_related(self) -> None:
        likes = scoped_proxy("likes")
        rule = exists(
            subject.comments,
            lambda c: and_(comment_rule(c), eq(likes.user_id, "u1")),
        )
        with pytest.raises(PathResolutionError, match="likes") as exc:
            compile_rule(rule, actor=ALICE, tables=TABLES, related_tables=RELATED)
        assert exc.value.details["open"] == ["comments"]

    def test_scoped_path_needs_related_declaration(self) -> None:
        rule = exists(subject.comments, lambda c: eq(c.editor_id, subject.post.id))
        with pytest.raises(UndeclaredColumnError):
            compile_rule(rule, actor=ALICE, tables=TABLES, related_tables=RELATED)


# ---------------------------------------------------------------------------
# Mapping helpers and rendering
# ---------------------------------------------------------------------------

class TestMapping:
    def test_map_core_table(self) -> None:
        assert set(map_table(posts)) == {
            "id", "owner_id", "editor_id", "org_id", "title", "published", "score",
        }

    def test_map_orm_class(self) -> None:
        columns = map_table(Note)
        assert set(columns) == {"id", "post_id", "body"}
        assert from_clause_for(columns).name == Note.__table__.name

    def test_whitelist_unknown_column(self) -> None:
        with pytest.raises(UndeclaredColumnError):
            map_table(posts, columns=["nope"])

    def test_unmappable_source(self) -> None:
        with pytest.raises(TypeError):
            map_table(42)

    def test_table_mapping(self) -> None:
        mapping = table_mapping(post=posts, notes=Note, extra={"id": posts.c.id})
        assert set(mapping) == {"post", "notes", "extra"}
        assert mapping["extra"]["id"] is posts.c.id

    def test_from_clause(self) -> None:
        assert from_clause_for(TABLES["post"]) is posts
        with pytest.raises(UndeclaredTableError):
            from_clause_for({})

    def test_referenced_columns(self) -> None:
        rule = and_(
            eq(subject.post.owner_id, "u1"),
            exists(subject.comments, comment_rule),
            fn(lambda actor: eq(subject.post.hidden, True)),
        )
        assert referenced_columns(rule) == {
            ("post", "owner_id"), ("comments", "post_id"), ("post", "id"),
        }

    def test_validate_mapping(self) -> None:
        rule = exists(subject.comments, comment_rule)
        validate_mapping(rule, TABLES, RELATED)
        with pytest.raises(UndeclaredTableError):
            validate_mapping(rule, TABLES)

    def test_render_uses_placeholders(self) -> None:
        predicate = compile_rule(eq(subject.post.owner_id, "secret-user"), actor=ALICE, tables=TABLES)
        text = render_predicate(predicate)
        assert "posts.owner_id" in text
        assert "secret-user" not in text
        assert "?" in render_predicate(predicate, sqlite.dialect())
