"""
Process-wide wiring of the resilience layer for one client session.
"""

from __future__ import annotations

import typing as t

import structlog

from backstop.batch import BatchExecutor
from backstop.cache import ResponseCache
from backstop.clock import Clock, Sleep, now_ms, sleep_ms
from backstop.config import ClientSettings
from backstop.dispatcher import Dispatcher
from backstop.events import EventBus
from backstop.retry import RetryEngine
from backstop.services.auth import AuthService
from backstop.services.resources import ResourceService
from backstop.timeouts import TimeoutPolicy
from backstop.tokens import SessionStorage, TokenStore
from backstop.transport import HttpxTransport, Transport

log = structlog.get_logger(__name__)


class AdminClient:
    """
    Own the token store, cache and event bus of a client session and the
    components built on them.

    The shared instances are created here once and handed to the components
    that need them. ``reset`` clears session state; ``aclose`` also releases
    the transport. The client is an async context manager.

    Parameters
    ----------
    settings : ClientSettings | None
        Configuration; ``ClientSettings.from_env()`` when omitted.
    transport : Transport | None
        HTTP primitive; an ``HttpxTransport`` on ``settings.base_url`` when omitted.
    storage : SessionStorage | None
        Session-scoped storage for the token.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        transport: Transport | None = None,
        storage: SessionStorage | None = None,
        clock: Clock = now_ms,
        sleep: Sleep = sleep_ms,
        token_store: TokenStore | None = None,
        cache: ResponseCache[t.Any] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.settings = settings or ClientSettings.from_env()
        self._owns_transport = transport is None
        self._owns_session = token_store is None and cache is None
        self.transport: Transport = transport if transport is not None else HttpxTransport(
            self.settings.base_url,
            default_headers=self.settings.default_headers,
        )
        self._clock = clock
        self._sleep = sleep
        self.token_store = token_store if token_store is not None else TokenStore(storage, clock=clock)
        self.cache: ResponseCache[t.Any] = (
            cache if cache is not None else ResponseCache(ttl_ms=self.settings.cache_ttl_ms, clock=clock)
        )
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.dispatcher = Dispatcher(
            self.transport,
            token_store=self.token_store,
            event_bus=self.event_bus,
            timeout_policy=TimeoutPolicy(self.settings.timeouts),
            retry_engine=RetryEngine(self.settings.retry, sleep=sleep),
            health_path=self.settings.health_path,
            health_timeout_ms=self.settings.health_timeout_ms,
        )
        self.batch = BatchExecutor(self.dispatcher)
        self.auth = AuthService(
            self.dispatcher,
            token_store=self.token_store,
            cache=self.cache,
            event_bus=self.event_bus,
            session_ttl_ms=self.settings.session_ttl_ms,
            inactivity_timeout_ms=self.settings.inactivity_timeout_ms,
            activity_throttle_ms=self.settings.activity_throttle_ms,
            clock=clock,
        )
        self._resources: dict[str, ResourceService] = {}
        log.debug(
            event="Initialized AdminClient",
            base_url=self.settings.base_url,
            max_retries=self.settings.retry.max_retries,
            cache_ttl_ms=self.settings.cache_ttl_ms,
        )

    def resource(self, name: str, *, path: str | None = None) -> ResourceService:
        """
        Return the memoised service for resource ``name``.

        Raises
        ------
        ValueError
            If ``path`` differs from the path the service was first built with.
        """
        service = self._resources.get(name)
        if service is None:
            service = ResourceService(self.dispatcher, self.cache, name, path=path)
            self._resources[name] = service
        elif path is not None and path != service.path:
            raise ValueError(f"resource {name!r} is already bound to {service.path!r}, not {path!r}")
        return service

    def derive(self, **overrides: t.Any) -> "AdminClient":
        """
        Build a client with altered settings sharing this client's session state.

        Parameters
        ----------
        **overrides : typing.Any
            ``ClientSettings`` fields to replace.

        Returns
        -------
        AdminClient
            Client sharing the token store, cache and event bus. It reuses
            this client's transport unless ``base_url`` or ``default_headers``
            changed.
        """
        settings = self.settings.model_copy(update=overrides)
        transport = None
        if "base_url" not in overrides and "default_headers" not in overrides:
            transport = self.transport
        return AdminClient(
            settings,
            transport=transport,
            clock=self._clock,
            sleep=self._sleep,
            token_store=self.token_store,
            cache=self.cache,
            event_bus=self.event_bus,
        )

    def reset(self) -> None:
        self.token_store.clear()
        self.cache.clear()
        log.debug(event="Client session state reset")

    async def aclose(self) -> None:
        if self._owns_session:
            self.reset()
        if self._owns_transport and isinstance(self.transport, HttpxTransport):
            await self.transport.aclose()

    async def __aenter__(self) -> "AdminClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        await self.aclose()
