from pathlib import Path

import typer

from backstop.cli.enums import HttpMethod


def method_callback(ctx: typer.Context, value: str):
    if ctx.resilient_parsing:
        return
    normalized = value.upper()
    if normalized not in HttpMethod.__members__.values():
        raise typer.BadParameter(
            message=f"'{value}' is not a supported method, supported methods are: {', '.join(HttpMethod.__members__.values())}",
            param_hint="METHOD",
        )
    return normalized


def requests_file_callback(ctx: typer.Context, value: Path):
    if ctx.resilient_parsing:
        return
    if value.is_dir():
        problem = "is a directory"
    elif not value.is_file():
        problem = "does not exist"
    else:
        return value
    raise typer.BadParameter(
        message=f"requests file '{value.as_posix()}' {problem}",
        param_hint="FILE_PATH",
    )
