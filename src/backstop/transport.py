"""
Transport primitive performing one HTTP exchange per call.
"""

from __future__ import annotations

import typing as t

import httpx
import structlog

from backstop.request import RequestDescriptor

log = structlog.get_logger(__name__)


class Transport(t.Protocol):
    """
    One HTTP exchange for ``descriptor`` bounded by ``timeout_ms``.

    Implementations return the response for 2xx statuses, raise
    ``httpx.HTTPStatusError`` for any other status and raise
    ``httpx.TransportError`` (timeouts included) when no response arrived.
    """

    async def __call__(self, descriptor: RequestDescriptor, timeout_ms: int) -> httpx.Response: ...


class HttpxTransport:
    """
    ``Transport`` backed by a lazily created ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        default_headers: t.Mapping[str, str] | None = None,
        client_factory: t.Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        """
        Initialize the transport.

        Parameters
        ----------
        base_url : str
            API root every descriptor path is resolved against.
        default_headers : typing.Mapping[str, str] | None, optional
            Headers sent with every request.
        client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
            Builds the underlying client; tests inject a mock transport here.
        """
        self.base_url = base_url
        self._default_headers = dict(default_headers or {})
        self._client_factory: t.Callable[[], httpx.AsyncClient] = client_factory or (
            lambda: httpx.AsyncClient(base_url=self.base_url, headers=self._default_headers)
        )
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = self._client_factory()
        return self._client

    @staticmethod
    def _body_kwargs(*, body: t.Any) -> dict[str, t.Any]:
        if body is None:
            return {}
        if isinstance(body, (bytes, str)):
            return {"content": body}
        return {"json": body}

    async def __call__(self, descriptor: RequestDescriptor, timeout_ms: int) -> httpx.Response:
        client = self._get_client()
        response = await client.request(
            method=descriptor.method,
            url=descriptor.path,
            headers=descriptor.headers,
            params=descriptor.params,
            timeout=timeout_ms / 1000,
            **self._body_kwargs(body=descriptor.body),
        )
        response.raise_for_status()
        return response

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


def decode_body(*, response: httpx.Response) -> t.Any:
    """
    Decode a successful response body.

    Parameters
    ----------
    response : httpx.Response
        Successful response.

    Returns
    -------
    typing.Any
        Parsed JSON for JSON responses, text otherwise, ``None`` when empty.
    """
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        return response.json()
    return response.text
