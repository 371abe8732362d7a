"""
Ordered request/response pipeline applied by the dispatcher.

Stages see requests in registration order and see responses and failures in
reverse order, so a stage registered first wraps every stage after it.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass

import httpx
import structlog

from backstop.events import AccessDenied, AuthLogout, EventBus, NetworkFailure, ServerFailure
from backstop.exceptions import (
    AccessDeniedError,
    AuthError,
    NetworkError,
    RequestError,
    ServerError,
)
from backstop.request import RequestDescriptor
from backstop.tokens import TokenStore

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FailureContext:
    """
    Terminal failure handed to the ``on_error`` stages.

    Parameters
    ----------
    descriptor : RequestDescriptor
        Request as it was sent, after ``on_request`` stages.
    error : RequestError
        Classified error about to be raised to the caller.
    attempts : int
        Number of transport attempts made.
    will_retry : bool
        Whether the retry policy would still retry this failure.
    """

    descriptor: RequestDescriptor
    error: RequestError
    attempts: int
    will_retry: bool = False


class Middleware:
    """
    Base stage; every hook is a no-op by default.
    """

    def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        return descriptor

    def on_response(self, descriptor: RequestDescriptor, response: httpx.Response) -> None:
        return None

    def on_error(self, failure: FailureContext) -> None:
        return None


class MiddlewarePipeline:
    def __init__(self, stages: t.Iterable[Middleware] = ()) -> None:
        self._stages: list[Middleware] = list(stages)

    @property
    def stages(self) -> tuple[Middleware, ...]:
        return tuple(self._stages)

    def use(self, stage: Middleware) -> None:
        self._stages.append(stage)

    def process_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        for stage in self._stages:
            descriptor = stage.on_request(descriptor)
        return descriptor

    def process_response(self, descriptor: RequestDescriptor, response: httpx.Response) -> None:
        for stage in reversed(self._stages):
            stage.on_response(descriptor, response)

    def process_error(self, failure: FailureContext) -> None:
        for stage in reversed(self._stages):
            stage.on_error(failure)


class AuthMiddleware(Middleware):
    """Attach the current session token to outgoing requests."""

    def __init__(self, token_store: TokenStore) -> None:
        self._token_store = token_store

    def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        return self._token_store.attach(descriptor)


class FailureReporter(Middleware):
    """
    Turn terminal failures into exactly one event on the bus.

    A 401 also clears the token store. Other 4xx failures are reported to the
    caller only.
    """

    def __init__(self, *, token_store: TokenStore, event_bus: EventBus) -> None:
        self._token_store = token_store
        self._event_bus = event_bus

    def on_error(self, failure: FailureContext) -> None:
        error = failure.error
        if isinstance(error, AuthError):
            log.warning(event="Session rejected by server, clearing token")
            self._token_store.clear()
            self._event_bus.publish(AuthLogout(message=error.message, status=error.status))
        elif isinstance(error, AccessDeniedError):
            log.warning(event="Access denied")
            self._event_bus.publish(AccessDenied(message=error.message, status=error.status))
        elif isinstance(error, NetworkError):
            self._event_bus.publish(
                NetworkFailure(
                    message=error.message,
                    method=failure.descriptor.method,
                    path=failure.descriptor.path,
                )
            )
        elif isinstance(error, ServerError):
            self._event_bus.publish(
                ServerFailure(
                    message=error.message,
                    status=error.status,
                    will_retry=failure.will_retry,
                )
            )


class RequestLogger(Middleware):
    def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        log.debug(event="Dispatching request", request=descriptor.describe())
        return descriptor

    def on_response(self, descriptor: RequestDescriptor, response: httpx.Response) -> None:
        log.debug(
            event="Response received",
            request=descriptor.describe(),
            status=response.status_code,
            elapsed_ms=_elapsed_ms(response=response),
        )

    def on_error(self, failure: FailureContext) -> None:
        log.error(
            event="Request failed",
            request=failure.descriptor.describe(),
            kind=str(failure.error.kind),
            status=failure.error.status,
            message=failure.error.message,
            attempts=failure.attempts,
        )


def _elapsed_ms(*, response: httpx.Response) -> float | None:
    try:
        return round(response.elapsed.total_seconds() * 1000, 1)
    except RuntimeError:
        # ``elapsed`` is only available once the response has been closed.
        return None
