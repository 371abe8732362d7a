import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from backstop.cli.callbacks import method_callback, requests_file_callback
from backstop.client import AdminClient
from backstop.config import ClientSettings
from backstop.events import EventEnvelope
from backstop.exceptions import RequestError
from backstop.request import RequestDescriptor
from backstop.timeouts import TimeoutPolicy
from backstop.utils.files import read_jsonl_file
from backstop.utils.logging import setup_logging

app = typer.Typer(no_args_is_help=True)
console = Console()


def build_client(base_url: str | None) -> AdminClient:
    overrides = {"base_url": base_url} if base_url else {}
    return AdminClient(ClientSettings.from_env(**overrides))


def print_event(event: EventEnvelope):
    console.print(f"[yellow]event[/yellow] {event.kind}: {event.payload}")


def print_error(error: RequestError):
    values = "\n".join(
        [
            f"Kind: [red]{error.kind}[/red]",
            f"Status: {error.status if error.status is not None else '-'}",
            f"Message: {error.message}",
        ]
    )
    console.print(Panel(values, title="Request failed", expand=False, highlight=True))


def print_body(body: Any):
    if isinstance(body, (dict, list)):
        console.print_json(data=body)
    elif body is None:
        console.print("[dim]<empty body>[/dim]")
    else:
        console.print(body)


BaseUrlOption = Annotated[
    str | None,
    typer.Option("--base-url", "-u", help="API base URL, defaults to $BACKSTOP_API_URL"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]


@app.callback()
def main(verbose: VerboseOption = False):
    """Request-resilience layer for the admin console API"""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


@app.command(name="timeout")
def show_timeout(
    method: Annotated[str, typer.Argument(help="HTTP method", callback=method_callback)],
    path: Annotated[str, typer.Argument(help="Request path, e.g. /reports/export")],
):
    """Show the timeout a request would run with"""
    descriptor = RequestDescriptor(method=method, path=path)
    policy = TimeoutPolicy(ClientSettings.from_env().timeouts)
    category = policy.categorize(descriptor)
    console.print(f"{descriptor.describe()} -> {category} ({policy.resolve(descriptor)} ms)")


@app.command(name="ping")
def ping(base_url: BaseUrlOption = None):
    """Check that the API answers on its health endpoint"""

    async def run():
        async with build_client(base_url) as client:
            return await client.dispatcher.check_connection()

    status = asyncio.run(run())
    if status.connected:
        console.print(f"[green]connected[/green] status={status.status} time={status.response_time_ms}ms")
        return
    console.print(f"[red]unreachable[/red] ({status.failure_type}) {status.error or ''}")
    raise typer.Exit(1)


@app.command(name="request")
def send_request(
    method: Annotated[str, typer.Argument(help="HTTP method", callback=method_callback)],
    path: Annotated[str, typer.Argument(help="Request path")],
    data: Annotated[
        str | None,
        typer.Option("--data", "-d", help="JSON request body"),
    ] = None,
    retry: Annotated[
        bool,
        typer.Option("--retry/--no-retry", help="Retry transient failures"),
    ] = True,
    base_url: BaseUrlOption = None,
):
    """Send one request through the resilience layer"""
    try:
        body = json.loads(data) if data else None
    except json.JSONDecodeError as error:
        raise typer.BadParameter(message=f"invalid JSON body: {error}", param_hint="--data")

    async def run():
        async with build_client(base_url) as client:
            client.event_bus.subscribe_all(print_event)
            return await client.dispatcher.request(method, path, body=body, retry=retry)

    try:
        result = asyncio.run(run())
    except RequestError as error:
        print_error(error)
        raise typer.Exit(1)
    print_body(result)


@app.command(name="batch")
def run_batch(
    file_path: Annotated[
        Path,
        typer.Argument(help="JSONL file, one request per line", callback=requests_file_callback),
    ],
    concurrency: Annotated[
        int,
        typer.Option("--concurrency", "-c", min=1, help="Requests per window"),
    ] = 5,
    fail_fast: Annotated[
        bool,
        typer.Option("--fail-fast", help="Stop at the first failure"),
    ] = False,
    retry: Annotated[
        bool,
        typer.Option("--retry/--no-retry", help="Retry transient failures"),
    ] = True,
    base_url: BaseUrlOption = None,
):
    """Run a file of requests in bounded-concurrency windows"""
    requests = read_jsonl_file(file_path)

    async def run():
        async with build_client(base_url) as client:
            return await client.batch.run(
                requests,
                concurrency=concurrency,
                fail_fast=fail_fast,
                retry_failures=retry,
            )

    try:
        outcome = asyncio.run(run())
    except RequestError as error:
        print_error(error)
        raise typer.Exit(1)

    table = Table("Index", "Request", "Outcome", title="Batch results")
    for item, request in zip(outcome.items(), requests):
        label = f"{str(request.get('method', 'GET')).upper()} {request.get('path', '')}"
        if item.ok:
            table.add_row(str(item.index), label, "[green]ok[/green]")
        else:
            table.add_row(str(item.index), label, f"[red]{item.error}[/red]")
    console.print(table)
    console.print(f"{outcome.succeeded} succeeded, {outcome.failed} failed")
    if outcome.failed:
        raise typer.Exit(1)
