import pytest

from backstop import AdminClient
from backstop.cache import ResponseCache
from backstop.config import ClientSettings
from backstop.events import EventBus
from backstop.exceptions import ServerError
from backstop.transport import HttpxTransport
from tests.mocks.clock import FakeClock, RecordingSleep
from tests.mocks.transport import ScriptedTransport, json_response


def test_components_share_session_state(client: AdminClient):
    assert client.dispatcher.token_store is client.token_store
    assert client.dispatcher.event_bus is client.event_bus
    assert client.batch._dispatcher is client.dispatcher
    assert client.cache.ttl_ms == client.settings.cache_ttl_ms


def test_resource_services_are_memoised(client: AdminClient):
    assert client.resource("measures") is client.resource("measures")
    assert client.resource("categories").path == "/categories"


def test_default_transport_uses_settings():
    client = AdminClient(ClientSettings(base_url="http://admin.local/api"))

    assert isinstance(client.transport, HttpxTransport)
    assert client.transport.base_url == "http://admin.local/api"


def test_settings_default_to_environment():
    client = AdminClient(transport=ScriptedTransport())

    assert client.settings.base_url == "http://testserver/api"


@pytest.mark.asyncio
async def test_derive_shares_session_and_transport(client: AdminClient, transport: ScriptedTransport):
    client.token_store.issue("abc", ttl_ms=60_000)
    derived = client.derive(retry=client.settings.retry.without_retries())

    assert derived.transport is client.transport
    assert derived.token_store is client.token_store
    assert derived.cache is client.cache
    assert derived.event_bus is client.event_bus
    assert derived.settings.retry.max_retries == 0

    transport._outcomes = [json_response(503)]
    with pytest.raises(ServerError):
        await derived.dispatcher.get("/measures")
    assert transport.call_count == 1
    sent, _ = transport.calls[0]
    assert sent.headers["Authorization"] == "Bearer abc"


@pytest.mark.asyncio
async def test_derive_with_new_base_url_builds_transport(client: AdminClient):
    derived = client.derive(base_url="http://reports.local/api")

    assert isinstance(derived.transport, HttpxTransport)
    assert derived.transport is not client.transport

    await derived.aclose()
    assert derived.token_store is client.token_store


@pytest.mark.asyncio
async def test_derived_client_close_keeps_parent_session(client: AdminClient):
    client.token_store.issue("abc", ttl_ms=60_000)
    client.cache.set("measures_1", {"id": 1})

    async with client.derive(health_path="/status"):
        pass

    assert client.token_store.read() is not None
    assert len(client.cache) == 1


def test_reset_clears_token_and_cache(client: AdminClient):
    client.token_store.issue("abc", ttl_ms=60_000)
    client.cache.set("measures_1", {"id": 1})

    client.reset()

    assert client.token_store.read() is None
    assert len(client.cache) == 0


@pytest.mark.asyncio
async def test_context_manager_resets_owned_session(clock: FakeClock):
    transport = ScriptedTransport()
    async with AdminClient(
        ClientSettings(), transport=transport, clock=clock, sleep=RecordingSleep()
    ) as client:
        client.token_store.issue("abc", ttl_ms=60_000)
        await client.dispatcher.get("/measures")

    assert client.token_store.read() is None
    assert transport.call_count == 1


@pytest.mark.asyncio
async def test_derive_on_empty_cache_shares_invalidation(client: AdminClient):
    assert len(client.cache) == 0
    derived = client.derive(cache_ttl_ms=1_000)

    assert derived.cache is client.cache
    client.cache.set("categories_1", {"id": 1})
    await derived.resource("measures").create({"name": "kg"})

    assert len(client.cache) == 0


def test_explicit_empty_components_are_kept(transport: ScriptedTransport, clock: FakeClock):
    cache = ResponseCache(clock=clock)
    event_bus = EventBus()

    client = AdminClient(ClientSettings(), transport=transport, cache=cache, event_bus=event_bus)

    assert client.cache is cache
    assert client.event_bus is event_bus


def test_resource_path_conflict_is_rejected(client: AdminClient):
    service = client.resource("categories", path="/catalog/categories")

    assert client.resource("categories") is service
    assert client.resource("categories", path="/catalog/categories") is service
    with pytest.raises(ValueError):
        client.resource("categories", path="/categories")
