import pytest

from compare_server.models.mongo.transaction_model import MongoTransactionStore
from compare_server.models.mongo.user_model import MongoUserStore
from compare_server.models.supabase.transaction_model import SupabaseTransactionStore
from compare_server.models.supabase.user_model import SupabaseUserStore

TRIAL = {"enabled": True, "startBalance": 1000}


@pytest.fixture(params=["supabase", "mongo"])
def stores(request, db_client, mongo_db):
    if request.param == "supabase":
        return SupabaseUserStore(db_client), SupabaseTransactionStore(db_client)
    return MongoUserStore(mongo_db), MongoTransactionStore(mongo_db)


async def _alice(users, user_id, balance_config=None):
    return await users.create_user(
        {"id": user_id, "name": "Alice", "username": "alice", "email": "alice@example.com"},
        balance_config,
    )


async def test_create_user_with_start_balance(stores, user_id):
    users, transactions = stores

    created = await _alice(users, user_id, TRIAL)
    balance = await transactions.get_balance(user_id)

    assert created["_id"] == user_id
    assert created["plan"] == "trial"
    assert created["preferences"] == {"language": "en", "theme": "auto"}
    assert created["comparisonsCount"] == 0
    assert balance["tokenCredits"] == 1000


async def test_create_user_without_balance_is_free_plan(stores, user_id):
    users, transactions = stores

    created = await _alice(users, user_id)

    assert created["plan"] == "free"
    assert await transactions.get_balance("someone-else") is None


async def test_relational_create_user_requires_auth_id(db_client):
    with pytest.raises(ValueError):
        await SupabaseUserStore(db_client).create_user({"email": "a@example.com"})


async def test_update_user_merges_dotted_preferences(stores, user_id):
    users, _ = stores
    await _alice(users, user_id)

    updated = await users.update_user(user_id, {"$set": {"preferences.theme": "dark", "name": "Alice B"}})

    assert updated["name"] == "Alice B"
    assert updated["preferences"] == {"language": "en", "theme": "dark"}


async def test_relational_update_ignores_auth_fields(db_client, user_id):
    users = SupabaseUserStore(db_client)
    await _alice(users, user_id)

    await users.update_user(user_id, {"password": "hunter2", "avatar": "a.png"})

    row = db_client.rows("profiles")[0]
    assert "password" not in row
    assert row["avatar"] == "a.png"


async def test_find_user_with_alternatives_and_field_selection(stores, user_id):
    users, _ = stores
    await _alice(users, user_id)

    found = await users.find_user({"$or": [{"email": "nobody@example.com"}, {"username": "alice"}]})
    selected = await users.find_user({"email": "alice@example.com"}, "username -password")

    assert found["email"] == "alice@example.com"
    assert selected["username"] == "alice"
    assert set(selected) <= {"username", "_id", "id"}
    assert await users.find_user({"email": "nobody@example.com"}) is None


async def test_lookup_counts_and_batches(stores, user_id):
    users, _ = stores
    await _alice(users, user_id, TRIAL)

    assert (await users.get_user_by_id(user_id, "email"))["email"] == "alice@example.com"
    assert await users.get_user_by_id("missing") is None
    assert await users.count_users({"plan": "trial"}) == 1
    assert [u["_id"] for u in await users.get_users_by_ids([user_id, "missing"])] == [user_id]
    assert await users.get_users_by_ids([]) == []


async def test_soft_delete_frees_identity_and_hides_from_search(stores, user_id):
    users, _ = stores
    await _alice(users, user_id)
    await users.create_user({"id": "bob", "name": "alan", "email": "alan@example.com"})

    assert [u["name"] for u in await users.search_users("AL")] == ["alan", "Alice"]

    assert await users.delete_user_by_id(user_id) is True
    deleted = await users.get_user_by_id(user_id)

    assert deleted["email"] == f"deleted_{user_id}@deleted.local"
    assert deleted["username"] is None
    assert deleted["deletedAt"] is not None
    assert [u["name"] for u in await users.search_users("al")] == ["alan"]
    assert await users.search_users("") == []


async def test_hard_delete_removes_the_user(stores, user_id):
    users, _ = stores
    await _alice(users, user_id)

    assert await users.delete_user_by_id(user_id, hard_delete=True) is True
    assert await users.get_user_by_id(user_id) is None
    assert await users.delete_user_by_id(user_id) is False


async def test_activity_and_comparison_counters(stores, user_id):
    users, _ = stores
    await _alice(users, user_id)

    assert await users.update_last_activity(user_id) is True
    assert await users.update_last_activity("missing") is False
    assert await users.increment_comparison_count(user_id) == 1
    assert await users.increment_comparison_count(user_id) == 2
    assert (await users.get_user_by_id(user_id))["lastActiveAt"] is not None


async def test_remaining_comparisons_follow_the_plan(db_client, user_id):
    users = SupabaseUserStore(db_client)
    await _alice(users, user_id, TRIAL)
    await users.increment_comparison_count(user_id)

    assert await users.get_remaining_comparisons(user_id) == 49
    assert await users.get_remaining_comparisons("missing") is None
