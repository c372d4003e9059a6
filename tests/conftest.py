import asyncio
import inspect

import mongomock
import pytest

from compare_server.config.config import BackendMode, DataAccessConfig, RelationalProvider
from compare_server.models.interface import RequestContext

from .fakes import InMemoryDatabaseClient


def pytest_pyfunc_call(pyfuncitem):
    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    funcargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(test_func(**funcargs))
    finally:
        loop.close()
    return True


@pytest.fixture
def db_client():
    return InMemoryDatabaseClient()


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["compare_test"]


@pytest.fixture
def supabase_config():
    return DataAccessConfig(
        mode=BackendMode.SUPABASE,
        provider=RelationalProvider.SUPABASE,
        supabase_url="http://localhost:54321",
        supabase_service_key="service-key",
    )


@pytest.fixture
def mongo_config():
    return DataAccessConfig(mode=BackendMode.MONGODB, mongo_uri="mongodb://localhost:27017")


@pytest.fixture
def user_id():
    return "5b7c3c1e-2f34-4c59-9a39-0a3c1f7c2a11"


@pytest.fixture
def ctx(user_id):
    return RequestContext(user_id=user_id)
