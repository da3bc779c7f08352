"""Conformance: the evaluator and the compiler decide identically.

Random rules over the full operator set are decided twice for random
data: once by the evaluator for every row, once by executing the
compiled predicate in SQLite.  The allowed row sets must be equal.

Strategies are kept to values both sides order the same way (ASCII
strings, small integers) and to patterns whose ``LIKE`` translation is
exact for newline-free text.  Multi-line ``body`` values only meet
patterns that go to the backend regex operator, where every flag
(``i``, ``m``, ``s``, ``x``) must survive compilation.
"""
from __future__ import annotations

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import delete, insert, select

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
    not_,
    or_,
    starts_with,
    tenant_scoped,
)
from typed_policy.authoring.paths import actor_proxy, scoped_proxy, subject_proxy
from typed_policy.compilation.compiler import compile_rule
from typed_policy.core.expressions import describe
from typed_policy.evaluation.evaluator import evaluate

subject = subject_proxy()
note = scoped_proxy("notes")

# ---------------------------------------------------------------------------
# Value strategies
# ---------------------------------------------------------------------------
USERS = st.sampled_from(["u1", "u2", "u3"])
ORGS = st.sampled_from(["o1", "o2"])
TEXT = st.text(alphabet="ab%_A", max_size=4)
BODY = st.text(alphabet="ab\nA ", max_size=5)
INTS = st.integers(min_value=-2, max_value=4)


def nullable(strategy):
    return st.none() | strategy


ITEM = st.fixed_dictionaries({
    "owner_id": nullable(USERS),
    "editor_id": nullable(USERS),
    "org_id": nullable(ORGS),
    "title": nullable(TEXT),
    "body": nullable(BODY),
    "score": nullable(INTS),
    "rank": nullable(INTS),
})

NOTE = st.fixed_dictionaries({
    "item_id": nullable(st.integers(min_value=0, max_value=4)),
    "author_id": nullable(USERS),
    "weight": nullable(INTS),
})

ACTOR = st.fixed_dictionaries({
    "user": st.fixed_dictionaries({"id": nullable(USERS), "org_id": nullable(ORGS)}),
})

STRING_COLUMNS = ("owner_id", "editor_id", "org_id")
INT_COLUMNS = ("score", "rank")
ORDERING = (gt, lt, gte, lte)
COMPARISONS = (eq, neq, *ORDERING)

PATTERNS = [
    ("^a", ""), ("b$", ""), ("a.b", ""), ("^a.*$", ""), ("%", ""), ("_", ""),
    ("A", ""), (".+", ""), ("^$", ""), ("a_", ""), (r"\.", ""),
    ("^a", "i"), ("A.", "i"), ("_$", "i"),
    ("[ab]A", ""), ("^(a|b)%", ""), ("A{2}", ""),
]

BODY_PATTERNS = [
    ("^b", "m"), ("a$", "m"), ("a.b", "s"), ("^a.b$", "ms"), ("^B", "im"),
    ("a b", "x"), ("A . b", "isx"), ("[ab]\n", ""), (r"^a\Z", ""),
]


def item(name: str):
    return getattr(subject.item, name)


# ---------------------------------------------------------------------------
# Rule strategies
# ---------------------------------------------------------------------------
@st.composite
def comparisons(draw):
    op = draw(st.sampled_from(COMPARISONS))
    if draw(st.booleans()):
        left = draw(st.sampled_from(STRING_COLUMNS))
        right = draw(nullable(USERS | ORGS) | st.sampled_from(STRING_COLUMNS).map(item))
    else:
        left = draw(st.sampled_from(INT_COLUMNS))
        right = draw(nullable(INTS) | st.sampled_from(INT_COLUMNS).map(item))
    return op(item(left), right)


@st.composite
def memberships(draw):
    if draw(st.booleans()):
        column, values = draw(st.sampled_from(STRING_COLUMNS)), nullable(USERS | ORGS)
    else:
        column, values = draw(st.sampled_from(INT_COLUMNS)), nullable(INTS)
    return in_array(item(column), draw(st.lists(values, max_size=3)))


@st.composite
def null_checks(draw):
    op = draw(st.sampled_from((is_null, is_not_null)))
    return op(item(draw(st.sampled_from((*STRING_COLUMNS, *INT_COLUMNS, "title")))))


@st.composite
def text_matches(draw):
    op = draw(st.sampled_from((starts_with, ends_with, contains)))
    return op(item("title"), draw(TEXT))


@st.composite
def ranges(draw):
    bound = nullable(INTS) | st.just(item("rank"))
    return between(item("score"), draw(bound), draw(bound))


patterns = st.sampled_from(PATTERNS).map(lambda p: matches(item("title"), *p))
body_patterns = st.sampled_from(BODY_PATTERNS).map(lambda p: matches(item("body"), *p))


def actor_rules(actor):
    a = actor_proxy(actor)
    return st.sampled_from([
        tenant_scoped(item("org_id")),
        belongs_to_tenant(a.user.org_id, item("org_id")),
        eq(item("owner_id"), a.user.id),
        neq(item("editor_id"), a.user.id),
    ])


def note_rules(actor):
    a = actor_proxy(actor)
    return st.one_of(
        nullable(USERS).map(lambda value: eq(note.author_id, value)),
        st.tuples(st.sampled_from(ORDERING), nullable(INTS)).map(
            lambda pair: pair[0](note.weight, pair[1])
        ),
        st.just(eq(note.author_id, a.user.id)),
        st.just(eq(note.author_id, item("owner_id"))),
        st.just(is_null(note.weight)),
    )


@st.composite
def related(draw, actor):
    inner = draw(st.lists(note_rules(actor), max_size=2))
    predicate = and_(eq(note.item_id, item("id")), *inner)
    kind = draw(st.sampled_from(("exists", "count", "has_many")))
    if kind == "exists":
        return exists(subject.notes, predicate)
    operator = count if kind == "count" else has_many
    return operator(subject.notes, predicate, min_count=draw(st.integers(0, 3)))


def rules(actor):
    leaves = st.one_of(
        comparisons(),
        memberships(),
        null_checks(),
        text_matches(),
        ranges(),
        patterns,
        body_patterns,
        actor_rules(actor),
        related(actor),
        st.booleans().map(literal),
    )
    return st.recursive(
        leaves,
        lambda children: st.one_of(
            children.map(not_),
            st.lists(children, max_size=3).map(lambda rs: and_(*rs)),
            st.lists(children, max_size=3).map(lambda rs: or_(*rs)),
            children.map(lambda r: fn(lambda _actor, r=r: r, "wrapped")),
        ),
        max_leaves=8,
    )


# ---------------------------------------------------------------------------
# Test
# ---------------------------------------------------------------------------
@settings(max_examples=300, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(data=st.data())
def test_evaluator_and_compiler_agree(data, sql_engine, schema, tables, related_tables) -> None:
    rows = [
        {"id": index, **row}
        for index, row in enumerate(data.draw(st.lists(ITEM, max_size=5), label="items"))
    ]
    note_rows = data.draw(st.lists(NOTE, max_size=6), label="notes")
    actor = data.draw(ACTOR, label="actor")
    rule = data.draw(rules(actor), label="rule")

    with sql_engine.begin() as conn:
        conn.execute(delete(schema["notes"]))
        conn.execute(delete(schema["item"]))
        if rows:
            conn.execute(insert(schema["item"]), rows)
        if note_rows:
            conn.execute(insert(schema["notes"]), note_rows)

    predicate = compile_rule(rule, actor=actor, tables=tables, related_tables=related_tables)
    with sql_engine.connect() as conn:
        compiled = set(conn.execute(select(schema["item"].c.id).where(predicate)).scalars())

    evaluated = {
        row["id"]
        for row in rows
        if evaluate(rule, actor=actor, resources={"item": row, "notes": note_rows})
    }
    assert compiled == evaluated, describe(rule)
