"""
Typed publish/subscribe channel for authentication and transport failures.

The resilience layer never drives navigation or dialogs itself: terminal
failures are published here and the UI decides what to do with them.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass
from enum import StrEnum

import structlog

log = structlog.get_logger(__name__)


class EventKind(StrEnum):
    AUTH_LOGOUT = "auth_logout"
    ACCESS_DENIED = "access_denied"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class _Event:
    kind: t.ClassVar[EventKind]

    message: str

    @property
    def payload(self) -> dict[str, t.Any]:
        payload: dict[str, t.Any] = {"message": self.message}
        status = getattr(self, "status", None)
        if status is not None:
            payload["status"] = status
        will_retry = getattr(self, "will_retry", None)
        if will_retry is not None:
            payload["will_retry"] = will_retry
        return payload


@dataclass(frozen=True)
class AuthLogout(_Event):
    """Session is no longer valid; the UI should return to the login screen."""

    kind = EventKind.AUTH_LOGOUT

    message: str = "Session expired"
    status: int | None = 401
    reason: str = "token_expired"


@dataclass(frozen=True)
class AccessDenied(_Event):
    kind = EventKind.ACCESS_DENIED

    message: str = "Access denied"
    status: int | None = 403


@dataclass(frozen=True)
class NetworkFailure(_Event):
    kind = EventKind.NETWORK_ERROR

    message: str = "Connection error. Check your network."
    method: str | None = None
    path: str | None = None


@dataclass(frozen=True)
class ServerFailure(_Event):
    kind = EventKind.SERVER_ERROR

    message: str = "Server error"
    status: int | None = None
    will_retry: bool = False


EventEnvelope = AuthLogout | AccessDenied | NetworkFailure | ServerFailure
E = t.TypeVar("E", AuthLogout, AccessDenied, NetworkFailure, ServerFailure)
Handler = t.Callable[[E], None]
Unsubscribe = t.Callable[[], None]

EVENT_TYPES: dict[EventKind, type[EventEnvelope]] = {
    EventKind.AUTH_LOGOUT: AuthLogout,
    EventKind.ACCESS_DENIED: AccessDenied,
    EventKind.NETWORK_ERROR: NetworkFailure,
    EventKind.SERVER_ERROR: ServerFailure,
}


class EventBus:
    """
    Synchronous, fire-and-forget observer registry keyed by event class.

    Delivery goes to the handlers registered when ``publish`` is called. There
    is no queue and no replay for late subscribers. A failing handler is
    logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[EventEnvelope], list[t.Callable[[t.Any], None]]] = {}

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> Unsubscribe:
        """
        Register ``handler`` for events of ``event_type``.

        Parameters
        ----------
        event_type : type[E]
            One of ``AuthLogout``, ``AccessDenied``, ``NetworkFailure``, ``ServerFailure``.
        handler : typing.Callable[[E], None]
            Callback invoked with each published event of that type.

        Returns
        -------
        typing.Callable[[], None]
            Idempotent function removing the subscription.
        """
        if event_type not in EVENT_TYPES.values():
            raise TypeError(f"Unknown event type: {event_type!r}")
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: t.Callable[[EventEnvelope], None]) -> Unsubscribe:
        unsubscribers = [self.subscribe(event_type, handler) for event_type in EVENT_TYPES.values()]

        def unsubscribe() -> None:
            for remove in unsubscribers:
                remove()

        return unsubscribe

    def publish(self, event: EventEnvelope) -> int:
        """
        Deliver ``event`` to every current subscriber of its type.

        Parameters
        ----------
        event : EventEnvelope
            Event to deliver.

        Returns
        -------
        int
            Number of handlers that ran without raising.
        """
        handlers = list(self._handlers.get(type(event), ()))
        log.debug(event="Publishing event", kind=str(event.kind), handler_count=len(handlers))
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                log.exception(event="Event handler failed", kind=str(event.kind))
                continue
            delivered += 1
        return delivered

    def subscriber_count(self, event_type: type[EventEnvelope] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, ()))
        return sum(len(handlers) for handlers in self._handlers.values())

    def clear(self) -> None:
        self._handlers.clear()
