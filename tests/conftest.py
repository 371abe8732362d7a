import pytest
import structlog

from backstop.cache import ResponseCache
from backstop.client import AdminClient
from backstop.config import ClientSettings
from backstop.dispatcher import Dispatcher
from backstop.events import EventBus, EventEnvelope
from backstop.retry import RetryEngine
from backstop.tokens import MemorySessionStorage, TokenStore
from tests.mocks.clock import FakeClock, RecordingSleep
from tests.mocks.transport import ScriptedTransport


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.setenv("BACKSTOP_API_URL", "http://testserver/api")
    monkeypatch.delenv("BACKSTOP_MAX_RETRIES", raising=False)
    monkeypatch.delenv("BACKSTOP_RETRY_DELAY_MS", raising=False)
    monkeypatch.delenv("BACKSTOP_CACHE_TTL_MS", raising=False)


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def storage() -> MemorySessionStorage:
    return MemorySessionStorage()


@pytest.fixture
def token_store(storage: MemorySessionStorage, clock: FakeClock) -> TokenStore:
    return TokenStore(storage, clock=clock)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published(event_bus: EventBus) -> list[EventEnvelope]:
    """Every event published on ``event_bus``, in order."""
    events: list[EventEnvelope] = []
    event_bus.subscribe_all(events.append)
    return events


@pytest.fixture
def cache(clock: FakeClock) -> ResponseCache:
    return ResponseCache(clock=clock)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def dispatcher(
    transport: ScriptedTransport,
    token_store: TokenStore,
    event_bus: EventBus,
    sleep: RecordingSleep,
) -> Dispatcher:
    return Dispatcher(
        transport,
        token_store=token_store,
        event_bus=event_bus,
        retry_engine=RetryEngine(sleep=sleep),
    )


@pytest.fixture
def client(
    transport: ScriptedTransport,
    storage: MemorySessionStorage,
    clock: FakeClock,
    sleep: RecordingSleep,
) -> AdminClient:
    return AdminClient(
        ClientSettings(base_url="http://testserver/api"),
        transport=transport,
        storage=storage,
        clock=clock,
        sleep=sleep,
    )
