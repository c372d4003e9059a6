import asyncio

from compare_server.db.connection import ConnectionManager, relational_connection
from compare_server.db.errors import DatabaseError, ErrorCode
from compare_server.services import client_manager


class Ping:
    def __init__(self, failures=0):
        self.calls = 0
        self.failures = failures

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.calls <= self.failures:
            raise ConnectionError("refused")


async def test_concurrent_connects_share_one_check():
    ping = Ping()
    manager = ConnectionManager("test", "handle", ping)

    handles = await asyncio.gather(*(manager.connect() for _ in range(5)))

    assert handles == ["handle"] * 5
    assert ping.calls == 1
    assert await manager.connect() == "handle"
    assert ping.calls == 1


async def test_failed_check_fails_every_waiter_then_retries():
    ping = Ping(failures=1)
    manager = ConnectionManager("test", "handle", ping)

    results = await asyncio.gather(*(manager.connect() for _ in range(3)), return_exceptions=True)

    assert ping.calls == 1
    assert all(isinstance(r, DatabaseError) for r in results)
    assert {r.code for r in results} == {ErrorCode.CONNECTION_ERROR}
    assert not manager.connected

    assert await manager.connect() == "handle"
    assert ping.calls == 2
    assert manager.connected


async def test_relational_connection_checks_profiles(db_client):
    manager = relational_connection(db_client)

    assert await manager.connect() is db_client


async def test_connect_db_uses_the_active_backend(monkeypatch, db_client, supabase_config):
    from compare_server.models import router

    access = router.create_data_access(supabase_config, db_client=db_client)
    monkeypatch.setattr(client_manager, "get_data_access", lambda: access)

    assert await client_manager.connect_db() is db_client
    assert access.connection.connected
