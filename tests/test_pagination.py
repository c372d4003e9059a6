from datetime import datetime, timedelta

import pytest

from compare_server.db.adapter import TableAdapter
from compare_server.db.errors import DatabaseError, ErrorCode
from compare_server.db.pagination import build_page, cursor_operator, decode_cursor, mongo_cursor_query
from compare_server.models.mongo.conversation_model import MongoConversationStore
from compare_server.models.supabase.session_model import SupabaseSessionStore


def test_cursor_comparison_is_strict():
    assert cursor_operator("desc") == "lt"
    assert cursor_operator("asc") == "gt"
    assert mongo_cursor_query("updatedAt", "desc", 5) == {"updatedAt": {"$lt": 5}}
    assert mongo_cursor_query("updatedAt", "asc", None) == {}


def test_cursor_comparison_rejects_unknown_order():
    with pytest.raises(ValueError):
        cursor_operator("sideways")


def test_build_page_drops_lookahead_row_and_uses_last_kept_value():
    rows = [{"v": 5}, {"v": 4}, {"v": 3}]

    page = build_page(rows, 2, "v")

    assert page.items == [{"v": 5}, {"v": 4}]
    assert page.has_next_page is True
    assert page.next_cursor == 4


def test_build_page_without_overflow_has_no_cursor():
    page = build_page([{"v": 1}], 2, "v")
    assert page.has_next_page is False
    assert page.next_cursor is None
    assert page.to_dict() == {"items": [{"v": 1}], "nextCursor": None, "hasNextPage": False}


async def _walk(fetch):
    seen, cursor, pages = [], None, 0
    while True:
        page = await fetch(cursor)
        pages += 1
        seen.extend(page["items"])
        cursor = page["next"]
        if cursor is None:
            return seen, pages


@pytest.mark.parametrize("order", ["desc", "asc"])
async def test_adapter_paginate_is_complete_and_duplicate_free(db_client, order):
    seeded = db_client.seed("comparison_sessions", *({"user_id": "u1", "title": f"s{i}"} for i in range(7)))
    sessions = TableAdapter("comparison_sessions", db_client)

    async def fetch(cursor):
        page = await sessions.paginate(
            {"user_id": "u1"}, limit=3, cursor=cursor, sort_by="created_at", sort_order=order
        )
        return {"items": [r["id"] for r in page.items], "next": page.next_cursor}

    ids, pages = await _walk(fetch)

    expected = [r["id"] for r in seeded]
    if order == "desc":
        expected.reverse()
    assert ids == expected
    assert pages == 3


async def test_session_listing_pages_through_every_live_session(db_client, user_id):
    db_client.seed("profiles", {"id": user_id})
    seeded = db_client.seed("comparison_sessions", *({"user_id": user_id, "title": f"s{i}"} for i in range(5)))
    db_client.seed("comparison_sessions", {"user_id": user_id, "title": "expired", "expired_at": "2025-01-01T00:00:00+00:00"})
    db_client.seed("comparison_sessions", {"user_id": "someone-else", "title": "other"})
    store = SupabaseSessionStore(db_client)

    async def fetch(cursor):
        result = await store.get_convos_by_cursor(user_id, cursor=cursor, limit=2)
        return {"items": [c["conversationId"] for c in result["conversations"]], "next": result["nextCursor"]}

    ids, _ = await _walk(fetch)

    assert ids == [r["id"] for r in reversed(seeded)]


async def test_mongo_listing_pages_through_every_conversation(mongo_db, user_id):
    start = datetime(2025, 1, 1)
    mongo_db["conversations"].insert_many(
        [
            {"conversationId": f"c{i}", "user": user_id, "title": f"s{i}", "updatedAt": start + timedelta(minutes=i)}
            for i in range(5)
        ]
    )
    mongo_db["conversations"].insert_one(
        {"conversationId": "archived", "user": user_id, "isArchived": True, "updatedAt": start}
    )
    store = MongoConversationStore(mongo_db)

    async def fetch(cursor):
        result = await store.get_convos_by_cursor(user_id, cursor=cursor, limit=2)
        return {"items": [c["conversationId"] for c in result["conversations"]], "next": result["nextCursor"]}

    ids, _ = await _walk(fetch)

    assert ids == ["c4", "c3", "c2", "c1", "c0"]


def test_decode_cursor_treats_empty_values_as_the_first_page():
    assert decode_cursor(None, int) is None
    assert decode_cursor("start", int) is None
    assert decode_cursor("7", int) == 7


@pytest.mark.parametrize("backend", ["supabase", "mongo"])
async def test_listing_rejects_an_unreadable_cursor(db_client, mongo_db, user_id, backend):
    store = SupabaseSessionStore(db_client) if backend == "supabase" else MongoConversationStore(mongo_db)

    with pytest.raises(DatabaseError) as exc_info:
        await store.get_convos_by_cursor(user_id, cursor="not-a-date")

    assert exc_info.value.code is ErrorCode.DATABASE_ERROR
    assert "not-a-date" in exc_info.value.message
