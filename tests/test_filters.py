import pytest

from compare_server.db.filters import (
    Contains,
    Equals,
    In,
    IsNull,
    LessThan,
    Like,
    NotEquals,
    apply_filters,
    as_filters,
    matches,
    parse_criteria,
    to_mongo_query,
)


def test_parse_criteria_translates_document_operators():
    filters = parse_criteria(
        {
            "user_id": "u1",
            "file_id": {"$in": ["a", "b"]},
            "status": {"$ne": "deleted"},
            "expires_at": None,
            "tags": {"$all": ["x"]},
        }
    )

    assert filters == [
        Equals("user_id", "u1"),
        In("file_id", ("a", "b")),
        NotEquals("status", "deleted"),
        IsNull("expires_at"),
        Contains("tags", ["x"]),
    ]


def test_parse_criteria_rejects_unknown_operator():
    with pytest.raises(ValueError):
        parse_criteria({"title": {"$where": "1 == 1"}})


def test_plain_dict_value_is_an_equality_match():
    assert parse_criteria({"prompt": {"text": "hi"}}) == [Equals("prompt", {"text": "hi"})]


def test_as_filters_passes_filter_lists_through():
    filters = [Equals("id", 1)]
    assert as_filters(filters) is filters
    assert as_filters(None) == []


def test_to_mongo_query_renders_every_variant():
    query = to_mongo_query(
        [
            Equals("user", "u1"),
            In("conversationId", ("c1", "c2")),
            NotEquals("isArchived", True),
            IsNull("expiredAt"),
            Like("title", "a.b"),
            Contains("tags", ["t1"]),
            Contains("metadata", {"embedded": True}),
        ]
    )

    assert query == {
        "user": "u1",
        "conversationId": {"$in": ["c1", "c2"]},
        "isArchived": {"$ne": True},
        "expiredAt": None,
        "title": {"$regex": r"a\.b", "$options": "i"},
        "tags": {"$all": ["t1"]},
        "metadata.embedded": True,
    }


def test_to_mongo_query_merges_range_operators_on_one_field():
    query = to_mongo_query(parse_criteria({"createdAt": {"$gte": 1, "$lt": 5}}))
    assert query == {"createdAt": {"$gte": 1, "$lt": 5}}


def test_matches_evaluates_filters_in_memory():
    doc = {"text": "Hello World", "isCreatedByUser": True, "meta": {"score": 3}, "tags": ["a", "b"]}

    assert matches(doc, [Like("text", "world"), Equals("isCreatedByUser", True)])
    assert matches(doc, [LessThan("meta.score", 5)])
    assert matches(doc, [Equals("tags", "a")])
    assert matches(doc, [Contains("tags", ["a", "b"])])
    assert not matches(doc, [Contains("tags", ["c"])])
    assert not matches(doc, [LessThan("missing", 5)])


class _Recorder:
    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        def record(*args):
            self.calls.append((name, *args))
            return self

        return record


def test_apply_filters_maps_variants_to_builder_methods():
    builder = _Recorder()
    apply_filters(builder, [Equals("a", 1), In("b", (1, 2)), IsNull("c"), Like("d", "x")])

    assert builder.calls == [
        ("eq", "a", 1),
        ("in_", "b", [1, 2]),
        ("is_", "c", None),
        ("ilike", "d", "%x%"),
    ]


def test_apply_filters_rejects_unknown_variant():
    with pytest.raises(TypeError):
        apply_filters(_Recorder(), [object()])
