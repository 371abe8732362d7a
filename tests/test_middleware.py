import httpx

from backstop.events import EventBus, EventEnvelope, NetworkFailure, ServerFailure
from backstop.exceptions import ClientError, NetworkError, ServerError
from backstop.middleware import FailureContext, FailureReporter, Middleware, MiddlewarePipeline
from backstop.request import RequestDescriptor
from backstop.tokens import TokenStore

DESCRIPTOR = RequestDescriptor(method="DELETE", path="/measures/4")


class Recorder(Middleware):
    def __init__(self, name: str, calls: list[str]) -> None:
        self.name = name
        self.calls = calls

    def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        self.calls.append(f"request:{self.name}")
        return descriptor.with_header(f"X-{self.name}", "1")

    def on_response(self, descriptor: RequestDescriptor, response: httpx.Response) -> None:
        self.calls.append(f"response:{self.name}")

    def on_error(self, failure: FailureContext) -> None:
        self.calls.append(f"error:{self.name}")


def test_pipeline_order():
    calls: list[str] = []
    pipeline = MiddlewarePipeline([Recorder("a", calls)])
    pipeline.use(Recorder("b", calls))

    prepared = pipeline.process_request(DESCRIPTOR)
    pipeline.process_response(prepared, httpx.Response(200))
    pipeline.process_error(FailureContext(descriptor=prepared, error=ClientError("x"), attempts=1))

    assert calls == [
        "request:a",
        "request:b",
        "response:b",
        "response:a",
        "error:b",
        "error:a",
    ]
    assert prepared.headers == {"X-a": "1", "X-b": "1"}
    assert DESCRIPTOR.headers == {}
    assert len(pipeline.stages) == 2


def test_failure_reporter_events(token_store: TokenStore, event_bus: EventBus, published: list[EventEnvelope]):
    reporter = FailureReporter(token_store=token_store, event_bus=event_bus)

    reporter.on_error(FailureContext(descriptor=DESCRIPTOR, error=NetworkError("offline"), attempts=4))
    reporter.on_error(
        FailureContext(
            descriptor=DESCRIPTOR,
            error=ServerError("busy", status=503),
            attempts=1,
            will_retry=True,
        )
    )
    reporter.on_error(
        FailureContext(descriptor=DESCRIPTOR, error=ClientError("gone", status=404), attempts=1)
    )

    assert published == [
        NetworkFailure(message="offline", method="DELETE", path="/measures/4"),
        ServerFailure(message="busy", status=503, will_retry=True),
    ]
