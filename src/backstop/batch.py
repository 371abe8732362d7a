"""
Bounded-concurrency execution of many dispatcher calls.

Requests are cut into consecutive windows of ``concurrency`` items. A window
starts all of its items together and must settle completely before the next
window starts; this is fixed windowing, not a sliding pool.
"""

from __future__ import annotations

import asyncio
import typing as t
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

import structlog

from backstop.cancellation import CancelToken
from backstop.dispatcher import Dispatcher
from backstop.exceptions import RequestCancelledError
from backstop.request import RequestDescriptor

log = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 5

BatchRequest = RequestDescriptor | Mapping[str, t.Any]


@dataclass(frozen=True)
class BatchItem:
    """
    Outcome of one submitted request.

    Parameters
    ----------
    index : int
        Position of the request in the submitted sequence.
    result : typing.Any | None
        Decoded response body on success.
    error : Exception | None
        Failure otherwise.
    """

    index: int
    result: t.Any | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchError:
    index: int
    error: Exception


@dataclass
class BatchResult:
    """
    Aggregated batch outcome.

    ``results`` has one slot per submitted request, ``None`` where the request
    failed. ``errors`` lists failures tagged with their submission index, in
    index order within each window.
    """

    results: list[t.Any | None] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)

    def items(self) -> Iterator[BatchItem]:
        errors_by_index = {failure.index: failure.error for failure in self.errors}
        for index, result in enumerate(self.results):
            error = errors_by_index.get(index)
            yield BatchItem(index=index, result=None if error is not None else result, error=error)

    @property
    def succeeded(self) -> int:
        return len(self.results) - len(self.errors)

    @property
    def failed(self) -> int:
        return len(self.errors)


def _coerce(request: BatchRequest) -> RequestDescriptor:
    if isinstance(request, RequestDescriptor):
        return request
    fields = dict(request)
    return RequestDescriptor.build(fields.pop("method", "GET"), fields.pop("path", ""), **fields)


class BatchExecutor:
    """
    Run many requests through a ``Dispatcher`` with partial-failure semantics.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher

    async def run(
        self,
        requests: t.Iterable[BatchRequest],
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        fail_fast: bool = False,
        retry_failures: bool = True,
        cancel: CancelToken | None = None,
    ) -> BatchResult:
        """
        Dispatch ``requests`` in windows of ``concurrency`` items.

        Parameters
        ----------
        requests : typing.Iterable[BatchRequest]
            Descriptors, or mappings with descriptor fields. Every entry is
            validated before the first request is sent.
        concurrency : int, optional
            Window size.
        fail_fast : bool, optional
            Raise the first failure of a window, cancel the window's running
            siblings and never start the following windows.
        retry_failures : bool, optional
            Run each request with the dispatcher's retry policy; ``False``
            makes a single attempt per request.
        cancel : CancelToken | None, optional
            Cancels every in-flight request and pending backoff delay, and
            makes the whole run raise ``RequestCancelledError``.

        Returns
        -------
        BatchResult
            Results by submission index plus tagged errors.

        Raises
        ------
        ValueError
            If ``concurrency`` is lower than 1.
        RequestValidationError
            If an entry is not a valid request.
        RequestCancelledError
            When ``cancel`` fires; no partial result is returned.
        Exception
            With ``fail_fast``, the first failure observed.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        descriptors = [_coerce(request) for request in requests]
        outcome = BatchResult(results=[None] * len(descriptors))

        for start in range(0, len(descriptors), concurrency):
            if cancel is not None and cancel.cancelled:
                log.info(event="Batch cancelled", next_index=start, total=len(descriptors))
                cancel.raise_if_cancelled()
            window = descriptors[start : start + concurrency]
            log.debug(
                event="Starting batch window",
                first_index=start,
                size=len(window),
                total=len(descriptors),
            )
            settled = await self._run_window(
                window=window,
                offset=start,
                fail_fast=fail_fast,
                retry=retry_failures,
                cancel=cancel,
            )
            for item in settled:
                if item.error is not None:
                    outcome.errors.append(BatchError(index=item.index, error=item.error))
                else:
                    outcome.results[item.index] = item.result

        log.info(
            event="Batch finished",
            total=len(descriptors),
            succeeded=outcome.succeeded,
            failed=outcome.failed,
        )
        return outcome

    async def _settle(
        self,
        *,
        index: int,
        descriptor: RequestDescriptor,
        retry: bool,
        cancel: CancelToken | None,
    ) -> BatchItem:
        try:
            result = await self._dispatcher.send(descriptor, cancel=cancel, retry=retry)
        except RequestCancelledError:
            raise
        except Exception as error:
            return BatchItem(index=index, error=error)
        return BatchItem(index=index, result=result)

    async def _run_window(
        self,
        *,
        window: list[RequestDescriptor],
        offset: int,
        fail_fast: bool,
        retry: bool,
        cancel: CancelToken | None,
    ) -> list[BatchItem]:
        tasks = [
            asyncio.create_task(
                self._settle(index=offset + position, descriptor=descriptor, retry=retry, cancel=cancel),
                name=f"batch_item_{offset + position}",
            )
            for position, descriptor in enumerate(window)
        ]
        settled: list[BatchItem] = []
        pending: set[asyncio.Task[BatchItem]] = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # A cancelled item raises out of ``result()`` and aborts the window.
                for item in sorted((task.result() for task in done), key=lambda item: item.index):
                    if fail_fast and item.error is not None:
                        log.warning(
                            event="Batch aborted on failure",
                            index=item.index,
                            error=type(item.error).__name__,
                            cancelled_siblings=len(pending),
                        )
                        raise item.error
                    settled.append(item)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            for task in tasks:
                if task.done() and not task.cancelled():
                    task.exception()
        return sorted(settled, key=lambda item: item.index)
