import mongomock
import pytest

from compare_server.config.config import BackendMode
from compare_server.db.errors import DatabaseError, ErrorCode, OperationNotImplementedError
from compare_server.models import router
from compare_server.models.interface import RequestContext
from compare_server.models.router import OPERATIONS, DataAccess, create_data_access


@pytest.fixture
def relational(db_client, supabase_config, user_id):
    db_client.seed("profiles", {"id": user_id})
    return create_data_access(supabase_config, db_client=db_client)


@pytest.fixture
def document(mongo_db, mongo_config):
    return create_data_access(mongo_config, mongo_db=mongo_db)


@pytest.fixture
def fresh_router():
    router.reset_data_access()
    yield
    router.reset_data_access()


def test_relational_mode_binds_every_operation(relational):
    assert relational.mode is BackendMode.SUPABASE
    assert set(relational.bindings) == set(OPERATIONS)
    assert all(relational.is_implemented(op) for op in OPERATIONS)


def test_document_mode_stubs_what_it_lacks(document):
    missing = [op for op in OPERATIONS if not document.is_implemented(op)]

    assert set(document.bindings) == set(OPERATIONS)
    assert missing == ["get_remaining_comparisons"]


async def test_unimplemented_operation_fails_loudly(document, user_id):
    with pytest.raises(OperationNotImplementedError) as exc_info:
        await document.get_remaining_comparisons(user_id)

    error = exc_info.value
    assert isinstance(error, DatabaseError)
    assert error.code is ErrorCode.NOT_IMPLEMENTED
    assert error.operation == "get_remaining_comparisons"
    assert error.mode == "mongodb"


def test_bindings_cannot_be_replaced(relational):
    with pytest.raises(AttributeError):
        relational.get_convo = lambda *args: None
    with pytest.raises(AttributeError):
        del relational.get_convo
    with pytest.raises(TypeError):
        relational.bindings["get_convo"] = lambda *args: None


def test_unknown_operation_is_an_attribute_error(relational):
    with pytest.raises(AttributeError):
        relational.drop_everything
    assert "get_convo" in dir(relational)


def test_missing_store_binds_stubs():
    access = DataAccess(BackendMode.SUPABASE, {})

    assert not any(access.is_implemented(op) for op in OPERATIONS)


@pytest.mark.parametrize("mode", ["relational", "document"])
async def test_legacy_calls_behave_the_same_in_both_modes(request, mode, user_id):
    access = request.getfixturevalue(mode)
    ctx = RequestContext(user_id=user_id)

    await access.save_convo(ctx, {"conversationId": "c1", "title": "Side by side"})
    await access.save_message(ctx, {"conversationId": "c1", "messageId": "m1", "text": "hello"})

    convo = await access.get_convo(user_id, "c1")
    messages = await access.get_messages({"conversationId": "c1"})

    assert convo["title"] == "Side by side"
    assert [m["text"] for m in messages] == ["hello"]
    assert await access.get_convo(user_id, "missing") is None


VOLATILE_FIELDS = ("_id", "id", "createdAt", "updatedAt")


def _comparable(doc):
    return {k: v for k, v in doc.items() if k not in VOLATILE_FIELDS}


async def test_both_modes_return_identical_documents(relational, document, user_id):
    ctx = RequestContext(user_id=user_id)
    convo = {
        "conversationId": "c1",
        "title": "Side by side",
        "endpoint": "openAI",
        "models": ["gpt-4o", "claude-3-5-sonnet"],
        "tags": ["code"],
        "category": "coding",
        "winner": "gpt-4o",
    }

    documents, listings = [], []
    for access in (relational, document):
        await access.save_convo(ctx, convo)
        documents.append(_comparable(await access.get_convo(user_id, "c1")))
        listed = await access.get_convos_by_cursor(user_id)
        listings.append([_comparable(item) for item in listed["conversations"]])

    assert documents[0] == documents[1]
    assert documents[0]["model"] == "gpt-4o"
    assert documents[0]["tags"] == ["code"]
    assert listings[0] == listings[1]
    assert listings[0][0]["conversationId"] == "c1"


async def test_connect_is_shared(relational, document):
    assert await relational.connect() is await relational.connect()
    assert relational.connection.connected
    assert await document.connect() is not None


def test_get_data_access_is_a_process_singleton(monkeypatch, fresh_router):
    monkeypatch.setenv("DB_MODE", "mongodb")
    monkeypatch.setenv("MONGO_URI", "mongodb://localhost:27017")
    monkeypatch.setattr(router, "_open_mongo_database", lambda config: mongomock.MongoClient()[config.mongo_db_name])

    first = router.get_data_access()

    assert router.get_data_access() is first
    assert first.mode is BackendMode.MONGODB

    router.reset_data_access()
    assert router.get_data_access() is not first
