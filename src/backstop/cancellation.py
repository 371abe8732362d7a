"""
Caller-driven cancellation of in-flight requests and pending backoff delays.
"""

from __future__ import annotations

import asyncio
import typing as t

import structlog

from backstop.exceptions import RequestCancelledError

log = structlog.get_logger(__name__)

T = t.TypeVar("T")

DEFAULT_CANCEL_REASON = "Request cancelled"


class CancelToken:
    """
    Cancellation signal shared between a caller and the requests it started.

    A single token may be handed to several ``send``/``run`` calls. Once
    cancelled, it stays cancelled.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = DEFAULT_CANCEL_REASON) -> None:
        """
        Signal cancellation to every operation observing this token.

        Parameters
        ----------
        reason : str, optional
            Message carried by the resulting ``RequestCancelledError``.
        """
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        log.debug(event="Cancellation requested", reason=reason)

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(self._reason or DEFAULT_CANCEL_REASON)


async def run_cancellable(awaitable: t.Awaitable[T], *, cancel: CancelToken | None) -> T:
    """
    Await ``awaitable`` unless ``cancel`` fires first.

    Parameters
    ----------
    awaitable : typing.Awaitable[T]
        Transport call or backoff delay.
    cancel : CancelToken | None
        Cancellation signal; ``None`` awaits directly.

    Returns
    -------
    T
        Result of ``awaitable``.

    Raises
    ------
    RequestCancelledError
        When the token is or becomes cancelled. The pending work is cancelled
        before raising.
    """
    if cancel is None:
        return await awaitable

    if cancel.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        cancel.raise_if_cancelled()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        waiter.cancel()
        raise

    if work in done:
        waiter.cancel()
        return work.result()

    work.cancel()
    # Let the aborted work unwind; its outcome is superseded by the cancellation.
    await asyncio.gather(work, return_exceptions=True)
    raise RequestCancelledError(cancel.reason or DEFAULT_CANCEL_REASON)
