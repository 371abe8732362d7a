"""
Client configuration, overridable at construction time or through the environment.
"""

import os
import typing as t

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from backstop.cache import DEFAULT_CACHE_TTL_MS
from backstop.retry import RetryPolicy
from backstop.timeouts import TimeoutTable

BASE_URL_ENV_VAR = "BACKSTOP_API_URL"
MAX_RETRIES_ENV_VAR = "BACKSTOP_MAX_RETRIES"
RETRY_DELAY_ENV_VAR = "BACKSTOP_RETRY_DELAY_MS"
CACHE_TTL_ENV_VAR = "BACKSTOP_CACHE_TTL_MS"

DEFAULT_BASE_URL = "http://localhost:5000/api"
SESSION_TTL_MS = 8 * 60 * 60 * 1000
INACTIVITY_TIMEOUT_MS = 10 * 60 * 1000


class ClientSettings(BaseModel):
    """
    Settings shared by every component of an ``AdminClient``.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = DEFAULT_BASE_URL
    default_headers: dict[str, str] = Field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )
    timeouts: TimeoutTable = Field(default_factory=TimeoutTable)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    cache_ttl_ms: PositiveInt = DEFAULT_CACHE_TTL_MS
    session_ttl_ms: PositiveInt = SESSION_TTL_MS
    inactivity_timeout_ms: PositiveInt = INACTIVITY_TIMEOUT_MS
    activity_throttle_ms: PositiveInt = 30_000
    health_path: str = "/health"
    health_timeout_ms: PositiveInt = 5_000

    @classmethod
    def from_env(cls, **overrides: t.Any) -> "ClientSettings":
        """
        Build settings from ``.env`` and process environment variables.

        Parameters
        ----------
        **overrides : typing.Any
            Explicit values, taking precedence over the environment.

        Returns
        -------
        ClientSettings
            Resolved settings.
        """
        load_dotenv()
        values: dict[str, t.Any] = {}
        base_url = os.getenv(BASE_URL_ENV_VAR)
        if base_url:
            values["base_url"] = base_url

        retry_updates: dict[str, t.Any] = {}
        max_retries = os.getenv(MAX_RETRIES_ENV_VAR)
        if max_retries:
            retry_updates["max_retries"] = int(max_retries)
        retry_delay = os.getenv(RETRY_DELAY_ENV_VAR)
        if retry_delay:
            retry_updates["base_delay_ms"] = float(retry_delay)
        if retry_updates:
            values["retry"] = RetryPolicy(**retry_updates)

        cache_ttl = os.getenv(CACHE_TTL_ENV_VAR)
        if cache_ttl:
            values["cache_ttl_ms"] = int(cache_ttl)

        values.update(overrides)
        return cls(**values)
