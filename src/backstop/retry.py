"""
Classify-then-backoff retry loop around a single logical request.
"""

from __future__ import annotations

import typing as t

import structlog
from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, NonNegativeInt

from backstop.cancellation import CancelToken, run_cancellable
from backstop.clock import Sleep, sleep_ms
from backstop.exceptions import RequestCancelledError, is_network_failure, response_status

log = structlog.get_logger(__name__)

T = t.TypeVar("T")

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class RetryPolicy(BaseModel):
    """
    Retry budget and backoff schedule.

    Parameters
    ----------
    max_retries : int
        Retries allowed after the first attempt.
    base_delay_ms : float
        Delay before the first retry.
    backoff_factor : float
        Multiplier applied to the delay for each further retry.
    retryable_statuses : frozenset[int]
        Response statuses worth retrying. Any 4xx is never retried, whatever
        this set contains.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: NonNegativeInt = 3
    base_delay_ms: NonNegativeFloat = 1_000
    backoff_factor: float = Field(default=2.0, ge=1.0)
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES

    def delay_for(self, attempt_index: int) -> float:
        return self.base_delay_ms * self.backoff_factor**attempt_index

    def should_retry(self, error: BaseException, attempt_index: int) -> bool:
        """
        Decide whether the failure of attempt ``attempt_index`` deserves another attempt.

        Parameters
        ----------
        error : BaseException
            Failure raised by the attempt.
        attempt_index : int
            Zero-based index of the failed attempt.

        Returns
        -------
        bool
            ``True`` for network failures and retryable statuses while the
            budget lasts.
        """
        if attempt_index >= self.max_retries:
            return False
        status = response_status(error=error)
        if status is None:
            return is_network_failure(error=error)
        # The 4xx rule runs first, so 408 and 429 are never retried even
        # though they sit in the default retryable set.
        if 400 <= status < 500:
            return False
        return status in self.retryable_statuses

    def without_retries(self) -> "RetryPolicy":
        return self.model_copy(update={"max_retries": 0})


class RetryEngine:
    """
    Run an attempt function, retrying transient failures with exponential backoff.

    The loop is iterative: one attempt counter and a single suspension point
    for the backoff delay. The engine neither caches nor publishes events.
    """

    def __init__(self, policy: RetryPolicy | None = None, *, sleep: Sleep = sleep_ms) -> None:
        """
        Initialize the engine.

        Parameters
        ----------
        policy : RetryPolicy | None, optional
            Default policy, used when ``execute`` receives none.
        sleep : typing.Callable[[float], typing.Awaitable[None]], optional
            Delay primitive taking milliseconds.
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def classify(
        self, error: BaseException, attempt_index: int, *, policy: RetryPolicy | None = None
    ) -> bool:
        return (policy or self.policy).should_retry(error, attempt_index)

    async def execute(
        self,
        attempt_fn: t.Callable[[], t.Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        cancel: CancelToken | None = None,
        label: str | None = None,
    ) -> T:
        """
        Run ``attempt_fn`` until it succeeds or fails terminally.

        Parameters
        ----------
        attempt_fn : typing.Callable[[], typing.Awaitable[T]]
            Factory producing one attempt.
        policy : RetryPolicy | None, optional
            Policy overriding the engine default.
        cancel : CancelToken | None, optional
            Aborts both the running attempt and a pending delay.
        label : str | None, optional
            Request description used in logs.

        Returns
        -------
        T
            Result of the first successful attempt.

        Raises
        ------
        Exception
            The last attempt's error once it is not retryable or the budget is spent.
        RequestCancelledError
            When ``cancel`` fires.
        """
        active_policy = policy or self.policy
        attempt_index = 0
        while True:
            try:
                return await run_cancellable(attempt_fn(), cancel=cancel)
            except RequestCancelledError:
                raise
            except Exception as error:
                if not self.classify(error, attempt_index, policy=active_policy):
                    log.debug(
                        event="Attempt failed terminally",
                        request=label,
                        attempt=attempt_index,
                        status=response_status(error=error),
                        error=type(error).__name__,
                    )
                    raise
                delay_ms = active_policy.delay_for(attempt_index)
                log.info(
                    event="Retry scheduled",
                    request=label,
                    retry=attempt_index + 1,
                    max_retries=active_policy.max_retries,
                    delay_ms=delay_ms,
                    status=response_status(error=error),
                    error=type(error).__name__,
                )
            await run_cancellable(self._sleep(delay_ms), cancel=cancel)
            attempt_index += 1
