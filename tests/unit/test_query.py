"""
Unit tests for crate_docs/index/query.py
"""
from crate_docs.index.query import Occur, contains_sequence, parse_query


def _shape(query):
    return [(c.tokens, c.occur, c.field) for c in parse_query(query).clauses]


def test_plain_terms_are_optional():
    assert _shape("serialize json") == [
        (["serialize"], Occur.SHOULD, None),
        (["json"], Occur.SHOULD, None),
    ]


def test_plus_minus_prefixes():
    assert _shape("+spawn -blocking") == [
        (["spawn"], Occur.MUST, None),
        (["blocking"], Occur.MUST_NOT, None),
    ]


def test_and_makes_both_sides_required():
    assert _shape("spawn AND task") == [
        (["spawn"], Occur.MUST, None),
        (["task"], Occur.MUST, None),
    ]
    assert _shape("spawn && task") == _shape("spawn AND task")


def test_or_and_not():
    assert _shape("async OR await") == [
        (["async"], Occur.SHOULD, None),
        (["await"], Occur.SHOULD, None),
    ]
    assert _shape("NOT unsafe io") == [
        (["unsafe"], Occur.MUST_NOT, None),
        (["io"], Occur.SHOULD, None),
    ]


def test_phrases_and_fields():
    assert _shape('"read to string" name:File') == [
        (["read", "to", "string"], Occur.SHOULD, None),
        (["file"], Occur.SHOULD, "name"),
    ]
    assert _shape('docs:"hello world"') == [(["hello", "world"], Occur.SHOULD, "docs")]


def test_identifier_tokens_split():
    assert _shape("HashMap::new") == [(["hashmap", "new"], Occur.SHOULD, None)]


def test_malformed_input_is_sanitized():
    assert _shape('"unclosed phrase') == [(["unclosed", "phrase"], Occur.SHOULD, None)]
    assert _shape("AND OR NOT") == []
    assert parse_query("!!! ???").is_empty
    assert parse_query("-only").is_empty


def test_positive_tokens_exclude_negated():
    parsed = parse_query("+spawn task -blocking")
    assert parsed.positive_tokens == ["spawn", "task"]


def test_contains_sequence():
    assert contains_sequence(["a", "b", "c"], ["b", "c"])
    assert not contains_sequence(["a", "b", "c"], ["c", "b"])
    assert contains_sequence(["x"], ["x"])
    assert not contains_sequence(["x"], [])
