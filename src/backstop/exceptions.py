"""
Classified errors raised by the request-resilience layer.
"""

from __future__ import annotations

import typing as t
from enum import StrEnum

import httpx


class ErrorKind(StrEnum):
    VALIDATION = "validation"
    AUTH = "auth"
    ACCESS_DENIED = "access_denied"
    CLIENT = "client"
    NETWORK = "network"
    SERVER = "server"
    CANCELLED = "cancelled"


class BackstopError(Exception):
    """
    Base class for every error raised by backstop.
    """


class RequestError(BackstopError):
    """
    Terminal, classified failure of a request.

    Parameters
    ----------
    message : str
        Human readable description, server-provided when available.
    status : int | None, optional
        HTTP status of the failing response, ``None`` when no response was received.
    """

    kind: t.ClassVar[ErrorKind]

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!s}, status={self.status}, message={self.message!r})"


class RequestValidationError(RequestError):
    """Raised before any I/O when a request or its arguments are invalid."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, errors: t.Sequence[str] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors)


class AuthError(RequestError):
    kind = ErrorKind.AUTH


class AccessDeniedError(RequestError):
    kind = ErrorKind.ACCESS_DENIED


class ClientError(RequestError):
    kind = ErrorKind.CLIENT


class NetworkError(RequestError):
    kind = ErrorKind.NETWORK


class ServerError(RequestError):
    kind = ErrorKind.SERVER


class RequestCancelledError(RequestError):
    kind = ErrorKind.CANCELLED


def response_status(*, error: BaseException) -> int | None:
    """
    Extract the HTTP status carried by a low-level failure.

    Parameters
    ----------
    error : BaseException
        Exception raised by a transport attempt.

    Returns
    -------
    int | None
        Status code when the failure carries a response, ``None`` otherwise.
    """
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, RequestError):
        return error.status
    return None


def is_network_failure(*, error: BaseException) -> bool:
    """
    Tell whether a failure happened without any response being received.

    Timeouts are network failures: ``httpx.TimeoutException`` is a
    ``httpx.TransportError``.
    """
    return isinstance(error, (httpx.TransportError, NetworkError))


def server_message(*, response: httpx.Response) -> str | None:
    """
    Read the ``message`` field of a JSON error body, if any.

    Parameters
    ----------
    response : httpx.Response
        Failing response.

    Returns
    -------
    str | None
        Server-provided message.
    """
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return None


_DEFAULT_MESSAGES: dict[type[RequestError], str] = {
    AuthError: "Session expired or invalid credentials",
    AccessDeniedError: "Access denied",
    ClientError: "Request rejected by the server",
    NetworkError: "Connection error. Check your network.",
    ServerError: "Server error",
}


def classify_error(*, error: BaseException) -> RequestError:
    """
    Map a low-level failure to its classified error.

    Parameters
    ----------
    error : BaseException
        Exception raised by the last transport attempt.

    Returns
    -------
    RequestError
        Classified error, with ``error`` attached as its cause.
    """
    if isinstance(error, RequestError):
        return error

    status = response_status(error=error)
    if status is None:
        if is_network_failure(error=error):
            classified: RequestError = NetworkError(
                _DEFAULT_MESSAGES[NetworkError], status=None
            )
        else:
            classified = ClientError(str(object=error) or type(error).__name__)
        classified.__cause__ = error
        return classified

    if status == 401:
        cls: type[RequestError] = AuthError
    elif status == 403:
        cls = AccessDeniedError
    elif status >= 500:
        cls = ServerError
    else:
        cls = ClientError

    message = None
    if isinstance(error, httpx.HTTPStatusError):
        message = server_message(response=error.response)
    classified = cls(message or _DEFAULT_MESSAGES[cls], status=status)
    classified.__cause__ = error
    return classified
