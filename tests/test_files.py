import pytest
from postgrest.exceptions import APIError

from compare_server.models.mongo.file_model import MongoFileStore
from compare_server.models.supabase.file_model import SupabaseFileStore


@pytest.fixture
def files(db_client):
    return SupabaseFileStore(db_client, file_ttl_seconds=60)


@pytest.fixture
def mongo_files(mongo_db):
    return MongoFileStore(mongo_db, file_ttl_seconds=60)


@pytest.fixture(params=["supabase", "mongo"])
def any_files(request, files, mongo_files):
    return files if request.param == "supabase" else mongo_files


async def test_create_file_is_an_upsert_by_file_id(any_files, user_id):
    first = await any_files.create_file({"file_id": "f1", "user": user_id, "filename": "a.png", "bytes": 10})
    second = await any_files.create_file({"file_id": "f1", "user": user_id, "filename": "b.png", "bytes": 20})

    found = await any_files.get_files({"user": user_id})

    assert first["filename"] == "a.png"
    assert second["filename"] == "b.png"
    assert [f["file_id"] for f in found] == ["f1"]
    assert found[0]["bytes"] == 20


async def test_recreating_a_file_keeps_earlier_metadata(any_files, user_id):
    await any_files.create_file({"file_id": "f1", "user": user_id, "context": "message_attachment"})

    again = await any_files.create_file({"file_id": "f1", "user": user_id, "embedded": True})

    assert again["context"] == "message_attachment"
    assert again["embedded"] is True


async def test_ttl_is_set_on_create_and_cleared_when_claimed(any_files, user_id):
    created = await any_files.create_file(
        {"file_id": "f1", "user": user_id, "filename": "a.png", "temp_file_id": "tmp-1"}
    )
    permanent = await any_files.create_file({"file_id": "f2", "user": user_id, "filename": "b.png"}, disable_ttl=True)

    used = await any_files.update_file_usage("f1")

    assert created["expiresAt"] is not None
    assert created["temp_file_id"] == "tmp-1"
    assert permanent["expiresAt"] is None
    assert used["usage"] == 1
    assert used["expiresAt"] is None
    assert used["temp_file_id"] is None


async def test_update_file_merges_and_clears_expiry(any_files, user_id):
    await any_files.create_file({"file_id": "f1", "user": user_id, "filename": "a.png", "embedded": False})

    updated = await any_files.update_file({"file_id": "f1", "embedded": True, "filepath": "/uploads/a.png"})

    assert updated["embedded"] is True
    assert updated["filepath"] == "/uploads/a.png"
    assert updated["filename"] == "a.png"
    assert updated["expiresAt"] is None
    assert await any_files.update_file({"file_id": "missing", "filepath": "x"}) is None


async def test_update_file_usage_on_missing_file(any_files):
    assert await any_files.update_file_usage("missing") is None


async def test_tool_files_are_filtered_by_resource(any_files, user_id):
    await any_files.create_file({"file_id": "f1", "user": user_id, "filename": "a.txt", "embedded": True})
    await any_files.create_file({"file_id": "f2", "user": user_id, "filename": "b.py", "fileIdentifier": "sess/b.py"})
    await any_files.create_file({"file_id": "f3", "user": user_id, "filename": "c.png", "context": "avatar"})

    search = await any_files.get_tool_files_by_ids(["f1", "f2", "f3"], {"file_search"})
    code = await any_files.get_tool_files_by_ids(["f1", "f2", "f3"], {"execute_code"})
    everything = await any_files.get_tool_files_by_ids(["f1", "f2", "f3"])

    assert [f["file_id"] for f in search] == ["f1"]
    assert [f["file_id"] for f in code] == ["f2"]
    assert len(everything) == 3
    assert await any_files.get_tool_files_by_ids([]) == []


async def test_get_files_filters_on_metadata_fields(any_files, user_id):
    await any_files.create_file({"file_id": "f1", "user": user_id, "filename": "a.txt", "embedded": True})
    await any_files.create_file({"file_id": "f2", "user": user_id, "filename": "b.txt"})

    embedded = await any_files.get_files({"user": user_id, "embedded": True}, select="file_id")

    assert [f["file_id"] for f in embedded] == ["f1"]
    assert set(embedded[0]) <= {"file_id", "_id", "id"}


async def test_delete_files_by_user_takes_precedence(any_files, user_id):
    await any_files.create_file({"file_id": "f1", "user": user_id, "filename": "a"})
    await any_files.create_file({"file_id": "f2", "user": "other", "filename": "b"})

    assert await any_files.delete_files(["f2"], user=user_id) == {"deletedCount": 1}
    assert (await any_files.find_file_by_id("f2"))["file_id"] == "f2"
    assert (await any_files.delete_file("f2"))["file_id"] == "f2"
    assert await any_files.delete_file("f2") is None
    assert await any_files.delete_files([]) == {"deletedCount": 0}


async def test_delete_file_by_filter(any_files, user_id):
    await any_files.create_file({"file_id": "f1", "user": user_id, "filename": "a", "temp_file_id": "t1"})

    deleted = await any_files.delete_file_by_filter({"temp_file_id": "t1", "user": user_id})

    assert deleted["file_id"] == "f1"
    assert await any_files.find_file_by_id("f1") is None


async def test_batch_update_counts_successes_and_survives_failures(db_client, files, user_id):
    for file_id in ("f1", "f2", "f3"):
        await files.create_file({"file_id": file_id, "user": user_id, "filename": file_id})
    db_client.fail_when(
        lambda q: APIError({"message": "boom", "code": "XX000", "hint": None, "details": None})
        if q.operation == "update" and q.filter_value("file_id") == "f2"
        else None
    )

    count = await files.batch_update_files(
        [
            {"file_id": "f1", "filepath": "/new/f1"},
            {"file_id": "f2", "filepath": "/new/f2"},
            {"file_id": "missing", "filepath": "/new/x"},
        ]
    )

    assert count == 1
    assert (await files.find_file_by_id("f1"))["filepath"] == "/new/f1"
    assert await files.batch_update_files([]) == 0


async def test_batch_update_skips_malformed_entries(any_files, user_id):
    await any_files.create_file({"file_id": "f1", "user": user_id, "filename": "f1"})

    count = await any_files.batch_update_files([{"file_id": "f1", "filepath": "/new/f1"}, {"filepath": "/orphan"}])

    assert count == 1
    assert (await any_files.find_file_by_id("f1"))["filepath"] == "/new/f1"


async def test_mongo_batch_update_counts_matches(mongo_files, user_id):
    await mongo_files.create_file({"file_id": "f1", "user": user_id, "filename": "f1"})

    count = await mongo_files.batch_update_files(
        [{"file_id": "f1", "filepath": "/new/f1"}, {"file_id": "missing", "filepath": "/x"}]
    )

    assert count == 1
