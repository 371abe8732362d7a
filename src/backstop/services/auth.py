"""
Login, logout and session validity on top of the token store.
"""

from __future__ import annotations

import typing as t

import structlog

from backstop.cache import ResponseCache
from backstop.clock import Clock, now_ms
from backstop.config import INACTIVITY_TIMEOUT_MS, SESSION_TTL_MS
from backstop.dispatcher import Dispatcher
from backstop.events import AuthLogout, EventBus
from backstop.exceptions import RequestError, RequestValidationError, ServerError
from backstop.tokens import TokenStore

log = structlog.get_logger(__name__)

MAX_CREDENTIAL_LENGTH = 255


def validate_credentials(email: t.Any, password: t.Any) -> list[str]:
    errors: list[str] = []
    if not isinstance(email, str) or not email.strip():
        errors.append("email is required")
    elif len(email) > MAX_CREDENTIAL_LENGTH:
        errors.append("email is too long")
    if not isinstance(password, str) or not password.strip():
        errors.append("password is required")
    elif len(password) > MAX_CREDENTIAL_LENGTH:
        errors.append("password is too long")
    return errors


class AuthService:
    """
    Session lifecycle: login, logout, expiry and inactivity.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        token_store: TokenStore,
        cache: ResponseCache[t.Any],
        event_bus: EventBus,
        session_ttl_ms: int = SESSION_TTL_MS,
        inactivity_timeout_ms: int = INACTIVITY_TIMEOUT_MS,
        activity_throttle_ms: int = 30_000,
        clock: Clock = now_ms,
    ) -> None:
        self._dispatcher = dispatcher
        self._token_store = token_store
        self._cache = cache
        self._event_bus = event_bus
        self._session_ttl_ms = session_ttl_ms
        self._inactivity_timeout_ms = inactivity_timeout_ms
        self._activity_throttle_ms = activity_throttle_ms
        self._clock = clock

    async def login(self, email: str, password: str) -> t.Any:
        """
        Authenticate and store the issued session token.

        Parameters
        ----------
        email : str
            Account email.
        password : str
            Account password.

        Returns
        -------
        typing.Any
            Decoded login response.

        Raises
        ------
        RequestValidationError
            On missing or oversized credentials; nothing is sent.
        ServerError
            When the response carries no token or user.
        """
        errors = validate_credentials(email, password)
        if errors:
            raise RequestValidationError(", ".join(errors), errors=errors)

        response = await self._dispatcher.post(
            "/auth/login",
            {"email": email.strip(), "password": password.strip()},
        )
        data = response.get("data") if isinstance(response, dict) else None
        if not isinstance(data, dict) or not data.get("token") or not data.get("user"):
            raise ServerError("Invalid response from server")

        self._token_store.issue(data["token"], ttl_ms=self._session_ttl_ms, user=data["user"])
        log.info(event="Logged in", session_ttl_ms=self._session_ttl_ms)
        return response

    async def logout(self) -> None:
        """
        Notify the server, then drop the session and the read cache.

        A failing server call does not prevent the local logout.
        """
        try:
            await self._dispatcher.post("/auth/logout", retry=False)
        except RequestError as error:
            log.warning(event="Server logout failed", kind=str(error.kind), message=error.message)
        finally:
            self._token_store.clear()
            self._cache.clear()
            log.info(event="Logged out")

    def is_logged_in(self) -> bool:
        token = self._token_store.read()
        if token is None:
            return False
        if token.idle_for(self._clock()) > self._inactivity_timeout_ms:
            self.force_logout(reason="Session closed after inactivity")
            return False
        return True

    def touch(self) -> bool:
        """
        Record user activity, at most once per throttle window.

        Returns
        -------
        bool
            ``True`` when the activity timestamp was updated.
        """
        token = self._token_store.read()
        if token is None:
            return False
        if token.idle_for(self._clock()) < self._activity_throttle_ms:
            return False
        return self._token_store.touch() is not None

    def current_user(self) -> dict[str, t.Any] | None:
        return self._token_store.user()

    def force_logout(self, *, reason: str) -> None:
        log.info(event="Forced logout", reason=reason)
        self._token_store.clear()
        self._cache.clear()
        self._event_bus.publish(AuthLogout(message=reason, status=None, reason="forced"))
