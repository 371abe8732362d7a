"""
Single entry point for every network call made by the console.

Each request goes through the middleware pipeline (token attach first), gets
its timeout from the ``TimeoutPolicy`` and runs inside the ``RetryEngine``.
Terminal failures are classified, reported once on the ``EventBus`` and raised
to the caller.
"""

from __future__ import annotations

import time
import typing as t
import uuid
from dataclasses import dataclass

import httpx
import structlog

from backstop.cancellation import CancelToken
from backstop.events import EventBus
from backstop.exceptions import RequestCancelledError, ServerError, classify_error
from backstop.middleware import (
    AuthMiddleware,
    FailureContext,
    FailureReporter,
    Middleware,
    MiddlewarePipeline,
    RequestLogger,
)
from backstop.request import RequestDescriptor
from backstop.retry import RetryEngine
from backstop.timeouts import TimeoutPolicy
from backstop.tokens import TokenStore
from backstop.transport import Transport, decode_body
from backstop.utils.logging import logging_context

log = structlog.get_logger(__name__)

FailureType = t.Literal["timeout", "network", "http"]


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    status: int | None = None
    response_time_ms: float | None = None
    error: str | None = None
    failure_type: FailureType | None = None


class Dispatcher:
    """
    Compose token handling, timeouts and retries around a transport.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        token_store: TokenStore,
        event_bus: EventBus,
        timeout_policy: TimeoutPolicy | None = None,
        retry_engine: RetryEngine | None = None,
        middleware: t.Iterable[Middleware] = (),
        health_path: str = "/health",
        health_timeout_ms: int = 5_000,
    ) -> None:
        """
        Initialize the dispatcher.

        Parameters
        ----------
        transport : Transport
            Performs one HTTP exchange.
        token_store : TokenStore
            Session token source, cleared on 401.
        event_bus : EventBus
            Receives terminal failure events.
        timeout_policy : TimeoutPolicy | None, optional
            Timeout resolution; defaults to the standard category table.
        retry_engine : RetryEngine | None, optional
            Retry loop; defaults to the standard policy.
        middleware : typing.Iterable[Middleware], optional
            Extra stages appended after the built-in ones.
        health_path : str, optional
            Path probed by ``check_connection``.
        health_timeout_ms : int, optional
            Timeout of the health probe.
        """
        self._transport = transport
        self.token_store = token_store
        self.event_bus = event_bus
        self.timeout_policy = timeout_policy or TimeoutPolicy()
        self.retry_engine = retry_engine or RetryEngine()
        self.pipeline = MiddlewarePipeline(
            [
                RequestLogger(),
                AuthMiddleware(token_store),
                FailureReporter(token_store=token_store, event_bus=event_bus),
                *middleware,
            ]
        )
        self._health_path = health_path
        self._health_timeout_ms = health_timeout_ms

    def use(self, stage: Middleware) -> None:
        self.pipeline.use(stage)

    async def send(
        self,
        descriptor: RequestDescriptor,
        *,
        cancel: CancelToken | None = None,
        retry: bool = True,
    ) -> t.Any:
        """
        Dispatch ``descriptor`` and return the decoded response body.

        Parameters
        ----------
        descriptor : RequestDescriptor
            Request to send.
        cancel : CancelToken | None, optional
            Aborts the in-flight attempt and any pending backoff delay.
        retry : bool, optional
            ``False`` makes a single attempt.

        Returns
        -------
        typing.Any
            Decoded body of the successful response.

        Raises
        ------
        RequestError
            Classified terminal failure, after its event was published.
        """
        request_id = uuid.uuid4().hex[:8]
        with logging_context(request_id=request_id):
            if cancel is not None:
                cancel.raise_if_cancelled()
            prepared = self.pipeline.process_request(descriptor)
            timeout_ms = self.timeout_policy.resolve(prepared)
            policy = self.retry_engine.policy if retry else self.retry_engine.policy.without_retries()
            attempts = 0

            async def attempt() -> httpx.Response:
                nonlocal attempts
                attempts += 1
                return await self._transport(prepared, timeout_ms)

            try:
                response = await self.retry_engine.execute(
                    attempt,
                    policy,
                    cancel=cancel,
                    label=prepared.describe(),
                )
                body = _decode(response=response)
            except RequestCancelledError:
                log.info(event="Request cancelled", request=prepared.describe(), attempts=attempts)
                raise
            except Exception as error:
                classified = classify_error(error=error)
                self.pipeline.process_error(
                    FailureContext(
                        descriptor=prepared,
                        error=classified,
                        attempts=attempts,
                        will_retry=policy.should_retry(error, attempts - 1),
                    )
                )
                if classified is error:
                    raise
                raise classified from error

            self.pipeline.process_response(prepared, response)
            return body

    async def request(
        self,
        method: str,
        path: str,
        *,
        cancel: CancelToken | None = None,
        retry: bool = True,
        **fields: t.Any,
    ) -> t.Any:
        descriptor = RequestDescriptor.build(method, path, **fields)
        return await self.send(descriptor, cancel=cancel, retry=retry)

    async def get(self, path: str, **kwargs: t.Any) -> t.Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, body: t.Any = None, **kwargs: t.Any) -> t.Any:
        return await self.request("POST", path, body=body, **kwargs)

    async def put(self, path: str, body: t.Any = None, **kwargs: t.Any) -> t.Any:
        return await self.request("PUT", path, body=body, **kwargs)

    async def patch(self, path: str, body: t.Any = None, **kwargs: t.Any) -> t.Any:
        return await self.request("PATCH", path, body=body, **kwargs)

    async def delete(self, path: str, **kwargs: t.Any) -> t.Any:
        return await self.request("DELETE", path, **kwargs)

    async def check_connection(self) -> ConnectionStatus:
        """
        Probe the API health endpoint once, without retries or events.

        Returns
        -------
        ConnectionStatus
            Outcome of the probe.
        """
        descriptor = self.token_store.attach(
            RequestDescriptor(
                method="GET",
                path=self._health_path,
                explicit_timeout_ms=self._health_timeout_ms,
            )
        )
        started = time.perf_counter()
        try:
            response = await self._transport(descriptor, self.timeout_policy.resolve(descriptor))
        except httpx.TimeoutException as error:
            return ConnectionStatus(connected=False, error=str(error), failure_type="timeout")
        except httpx.HTTPStatusError as error:
            return ConnectionStatus(
                connected=False,
                status=error.response.status_code,
                error=str(error),
                failure_type="http",
            )
        except httpx.TransportError as error:
            return ConnectionStatus(connected=False, error=str(error), failure_type="network")
        return ConnectionStatus(
            connected=True,
            status=response.status_code,
            response_time_ms=round((time.perf_counter() - started) * 1000, 1),
        )


def _decode(*, response: httpx.Response) -> t.Any:
    try:
        return decode_body(response=response)
    except ValueError as error:
        raise ServerError("Invalid response from server", status=response.status_code) from error
