"""
Session token storage with local expiry checks.
"""

from __future__ import annotations

import json
import typing as t

import structlog
from pydantic import BaseModel, ConfigDict, NonNegativeInt, PositiveInt, ValidationError

from backstop.clock import Clock, now_ms
from backstop.request import RequestDescriptor

log = structlog.get_logger(__name__)

TOKEN_STORAGE_KEY = "authData"
IDENTITY_STORAGE_KEY = "user"
AUTHORIZATION_HEADER = "Authorization"


class SessionStorage(t.Protocol):
    """
    Session-scoped string key/value store, shaped like browser session storage.
    """

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemorySessionStorage:
    """In-process ``SessionStorage``; lives as long as the client session."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class SessionToken(BaseModel):
    """
    Short-lived credential.

    Parameters
    ----------
    value : str
        Bearer token.
    issued_at_ms : int
        Issuance time in epoch milliseconds.
    ttl_ms : int
        Lifetime in milliseconds.
    last_activity_ms : int | None
        Last recorded user activity, used for inactivity expiry.
    """

    model_config = ConfigDict(frozen=True)

    value: str
    issued_at_ms: NonNegativeInt
    ttl_ms: PositiveInt
    last_activity_ms: NonNegativeInt | None = None

    def is_expired(self, now: int) -> bool:
        return (now - self.issued_at_ms) > self.ttl_ms

    def idle_for(self, now: int) -> int:
        return now - (self.last_activity_ms or self.issued_at_ms)


class TokenStore:
    """
    Hold the current session token and inject it into outgoing requests.

    An expired token is never attached: it is purged from storage the first
    time a read detects the expiry.
    """

    def __init__(
        self,
        storage: SessionStorage | None = None,
        *,
        clock: Clock = now_ms,
        storage_key: str = TOKEN_STORAGE_KEY,
    ) -> None:
        self._storage: SessionStorage = storage if storage is not None else MemorySessionStorage()
        self._clock = clock
        self._storage_key = storage_key

    def _load(self) -> SessionToken | None:
        raw = self._storage.get_item(self._storage_key)
        if raw is None:
            return None
        try:
            return SessionToken.model_validate_json(raw)
        except ValidationError as error:
            log.warning(
                event="Discarding unreadable session data",
                storage_key=self._storage_key,
                error=str(object=error),
            )
            self.clear()
            return None

    def read(self) -> SessionToken | None:
        """
        Return the stored token when it is still valid.

        Returns
        -------
        SessionToken | None
            Valid token, or ``None`` when absent or expired. An expired token
            is removed from storage.
        """
        token = self._load()
        if token is None:
            return None
        if token.is_expired(self._clock()):
            log.info(
                event="Session token expired, purging",
                issued_at_ms=token.issued_at_ms,
                ttl_ms=token.ttl_ms,
            )
            self.clear()
            return None
        return token

    def save(self, token: SessionToken, *, user: dict[str, t.Any] | None = None) -> None:
        self._storage.set_item(self._storage_key, token.model_dump_json())
        if user is not None:
            self._storage.set_item(IDENTITY_STORAGE_KEY, json.dumps(user))
        log.debug(event="Session token stored", ttl_ms=token.ttl_ms, has_user=user is not None)

    def issue(
        self, value: str, *, ttl_ms: int, user: dict[str, t.Any] | None = None
    ) -> SessionToken:
        """
        Store a freshly issued token stamped with the current time.

        Parameters
        ----------
        value : str
            Bearer token returned by the server.
        ttl_ms : int
            Session lifetime in milliseconds.
        user : dict[str, typing.Any] | None, optional
            Identity record cached alongside the token.

        Returns
        -------
        SessionToken
            The stored token.
        """
        issued_at = self._clock()
        token = SessionToken(
            value=value, issued_at_ms=issued_at, ttl_ms=ttl_ms, last_activity_ms=issued_at
        )
        self.save(token, user=user)
        return token

    def touch(self) -> SessionToken | None:
        token = self.read()
        if token is None:
            return None
        touched = token.model_copy(update={"last_activity_ms": self._clock()})
        self._storage.set_item(self._storage_key, touched.model_dump_json())
        return touched

    def user(self) -> dict[str, t.Any] | None:
        if self.read() is None:
            return None
        raw = self._storage.get_item(IDENTITY_STORAGE_KEY)
        if raw is None:
            return None
        try:
            user = json.loads(raw)
        except json.JSONDecodeError:
            log.warning(event="Discarding unreadable identity data")
            self._storage.remove_item(IDENTITY_STORAGE_KEY)
            return None
        return user if isinstance(user, dict) else None

    def attach(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        """
        Add an ``Authorization`` header when a valid token exists.

        Parameters
        ----------
        descriptor : RequestDescriptor
            Outgoing request.

        Returns
        -------
        RequestDescriptor
            Copy carrying the bearer token, or ``descriptor`` itself when no
            valid token is available.
        """
        token = self.read()
        if token is None:
            return descriptor
        return descriptor.with_header(AUTHORIZATION_HEADER, f"Bearer {token.value}")

    def clear(self) -> None:
        self._storage.remove_item(self._storage_key)
        self._storage.remove_item(IDENTITY_STORAGE_KEY)
