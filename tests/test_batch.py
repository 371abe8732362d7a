import asyncio

import pytest

from backstop.batch import BatchExecutor, BatchResult
from backstop.cancellation import CancelToken
from backstop.dispatcher import Dispatcher
from backstop.events import EventBus, EventEnvelope
from backstop.exceptions import ClientError, RequestCancelledError, RequestValidationError, ServerError
from backstop.request import RequestDescriptor
from backstop.retry import RetryEngine
from backstop.tokens import TokenStore
from tests.mocks.clock import BlockingSleep
from tests.mocks.transport import ScriptedTransport, json_response


def item_requests(count: int) -> list[RequestDescriptor]:
    return [RequestDescriptor(method="GET", path=f"/items/{index}") for index in range(count)]


def item_responses(count: int) -> dict[str, list]:
    return {f"/items/{index}": [json_response(200, {"id": index})] for index in range(count)}


@pytest.fixture
def executor(dispatcher: Dispatcher) -> BatchExecutor:
    return BatchExecutor(dispatcher)


@pytest.mark.asyncio
async def test_results_follow_submission_order(executor: BatchExecutor, dispatcher: Dispatcher):
    transport = ScriptedTransport(by_path=item_responses(7), delays={"/items/1": 0.05})
    dispatcher._transport = transport

    outcome = await executor.run(item_requests(7), concurrency=3)

    assert outcome.results == [{"id": index} for index in range(7)]
    assert outcome.errors == []
    assert transport.completed.index("/items/0") < transport.completed.index("/items/1")


@pytest.mark.asyncio
async def test_windows_settle_before_next_window_starts(
    executor: BatchExecutor, dispatcher: Dispatcher
):
    transport = ScriptedTransport(by_path=item_responses(7), delays={"/items/1": 0.05})
    dispatcher._transport = transport

    await executor.run(item_requests(7), concurrency=3)

    timeline = transport.timeline
    last_end_of_first_window = max(
        timeline.index(("end", f"/items/{index}")) for index in range(3)
    )
    first_start_of_second_window = min(
        timeline.index(("start", f"/items/{index}")) for index in range(3, 6)
    )
    assert last_end_of_first_window < first_start_of_second_window
    assert timeline.index(("start", "/items/6")) > max(
        timeline.index(("end", f"/items/{index}")) for index in range(3, 6)
    )


@pytest.mark.asyncio
async def test_partial_failures_are_tagged_with_index(
    executor: BatchExecutor, dispatcher: Dispatcher
):
    responses = item_responses(5)
    responses["/items/2"] = [json_response(404, {"message": "Not found"})]
    dispatcher._transport = ScriptedTransport(by_path=responses)

    outcome = await executor.run(item_requests(5), concurrency=2)

    assert outcome.results == [{"id": 0}, {"id": 1}, None, {"id": 3}, {"id": 4}]
    assert [failure.index for failure in outcome.errors] == [2]
    assert isinstance(outcome.errors[0].error, ClientError)
    assert (outcome.succeeded, outcome.failed) == (4, 1)
    assert [item.ok for item in outcome.items()] == [True, True, False, True, True]


@pytest.mark.asyncio
async def test_retry_failures_false_makes_single_attempt(
    executor: BatchExecutor, dispatcher: Dispatcher
):
    responses = item_responses(3)
    responses["/items/1"] = [json_response(503), json_response(200, {"id": 1})]
    transport = ScriptedTransport(by_path=responses)
    dispatcher._transport = transport

    outcome = await executor.run(item_requests(3), retry_failures=False)

    assert transport.paths().count("/items/1") == 1
    assert isinstance(outcome.errors[0].error, ServerError)
    assert outcome.errors[0].index == 1


@pytest.mark.asyncio
async def test_retry_failures_uses_dispatcher_policy(
    executor: BatchExecutor, dispatcher: Dispatcher
):
    responses = item_responses(3)
    responses["/items/1"] = [json_response(503), json_response(200, {"id": 1})]
    transport = ScriptedTransport(by_path=responses)
    dispatcher._transport = transport

    outcome = await executor.run(item_requests(3))

    assert transport.paths().count("/items/1") == 2
    assert outcome.results[1] == {"id": 1}
    assert outcome.failed == 0


@pytest.mark.asyncio
async def test_fail_fast_raises_and_skips_later_windows(
    executor: BatchExecutor, dispatcher: Dispatcher
):
    responses = item_responses(6)
    responses["/items/0"] = [json_response(500, {"message": "boom"})]
    transport = ScriptedTransport(by_path=responses, delays={"/items/1": 5})
    dispatcher._transport = transport

    with pytest.raises(ServerError) as exc_info:
        await executor.run(item_requests(6), concurrency=2, fail_fast=True, retry_failures=False)

    assert exc_info.value.message == "boom"
    assert sorted(transport.started) == ["/items/0", "/items/1"]
    assert "/items/1" not in transport.completed


@pytest.mark.asyncio
async def test_fail_fast_without_failures_returns_all_results(
    executor: BatchExecutor, dispatcher: Dispatcher
):
    dispatcher._transport = ScriptedTransport(by_path=item_responses(4))

    outcome = await executor.run(item_requests(4), concurrency=3, fail_fast=True)

    assert outcome.results == [{"id": index} for index in range(4)]


@pytest.mark.asyncio
async def test_invalid_entry_rejects_batch_before_io(
    executor: BatchExecutor, transport: ScriptedTransport
):
    requests = [
        {"method": "get", "path": "/items/0"},
        {"method": "TRACE", "path": "/items/1"},
    ]

    with pytest.raises(RequestValidationError):
        await executor.run(requests)

    assert transport.call_count == 0


@pytest.mark.asyncio
async def test_mapping_entries_are_accepted(executor: BatchExecutor, transport: ScriptedTransport):
    outcome = await executor.run(
        [
            {"method": "post", "path": "/measures", "body": {"name": "kg"}},
            {"path": "/measures"},
        ]
    )

    assert [(d.method, d.path, d.body) for d, _ in transport.calls] == [
        ("POST", "/measures", {"name": "kg"}),
        ("GET", "/measures", None),
    ]
    assert outcome.succeeded == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency", [0, -1])
async def test_concurrency_must_be_positive(executor: BatchExecutor, concurrency: int):
    with pytest.raises(ValueError):
        await executor.run(item_requests(2), concurrency=concurrency)


@pytest.mark.asyncio
async def test_empty_batch(executor: BatchExecutor, transport: ScriptedTransport):
    outcome = await executor.run([])

    assert outcome == BatchResult()
    assert transport.call_count == 0


@pytest.mark.asyncio
async def test_cancelled_token_rejects_batch(
    executor: BatchExecutor, transport: ScriptedTransport
):
    token = CancelToken()
    token.cancel("page closed")

    with pytest.raises(RequestCancelledError) as exc_info:
        await executor.run(item_requests(3), cancel=token)

    assert exc_info.value.message == "page closed"
    assert transport.call_count == 0


@pytest.mark.asyncio
async def test_cancel_mid_batch_rejects_and_skips_later_windows(
    executor: BatchExecutor, dispatcher: Dispatcher
):
    transport = ScriptedTransport(
        by_path=item_responses(4), delays={f"/items/{index}": 5 for index in range(4)}
    )
    dispatcher._transport = transport
    token = CancelToken()

    pending = asyncio.create_task(executor.run(item_requests(4), concurrency=2, cancel=token))
    while len(transport.started) < 2:
        await asyncio.sleep(0)
    token.cancel()

    with pytest.raises(RequestCancelledError):
        await pending

    assert transport.completed == []
    assert sorted(transport.started) == ["/items/0", "/items/1"]


@pytest.mark.asyncio
async def test_cancel_during_backoff_rejects_batch(
    token_store: TokenStore, event_bus: EventBus, published: list[EventEnvelope]
):
    blocking_sleep = BlockingSleep()
    responses = item_responses(2)
    responses["/items/0"] = [json_response(503)]
    transport = ScriptedTransport(by_path=responses)
    dispatcher = Dispatcher(
        transport,
        token_store=token_store,
        event_bus=event_bus,
        retry_engine=RetryEngine(sleep=blocking_sleep),
    )
    token = CancelToken()

    pending = asyncio.create_task(BatchExecutor(dispatcher).run(item_requests(2), cancel=token))
    await blocking_sleep.entered.wait()
    token.cancel()

    with pytest.raises(RequestCancelledError):
        await pending

    assert blocking_sleep.aborted
    assert transport.paths().count("/items/0") == 1
    assert published == []
