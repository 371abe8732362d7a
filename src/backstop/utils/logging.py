import logging
import sys
import typing as t
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager

import structlog

_DROP_LOG_FIELDS = frozenset(
    {
        "authorization",
        "body",
        "data",
        "headers",
        "json",
        "password",
        "payload",
        "token",
    }
)


def drop_sensitive_fields(
    logger: t.Any, method_name: str, event_dict: MutableMapping[str, t.Any]
) -> MutableMapping[str, t.Any]:
    """
    Remove credentials and bulky request data from a log event.

    Parameters
    ----------
    logger : typing.Any
        Wrapped logger (unused).
    method_name : str
        Log method name (unused).
    event_dict : collections.abc.MutableMapping[str, typing.Any]
        Event being rendered.

    Returns
    -------
    collections.abc.MutableMapping[str, typing.Any]
        Event without the dropped fields.
    """
    for key in [key for key in event_dict if key.lower() in _DROP_LOG_FIELDS]:
        del event_dict[key]
    return event_dict


def setup_logging(level: int = logging.DEBUG, *, colors: bool = True) -> None:
    """
    Render backstop logs to stderr, dropping events below ``level``.

    Parameters
    ----------
    level : int, optional
        Lowest stdlib level that is rendered.
    colors : bool, optional
        Colorize the console output.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # Critical for context vars
            structlog.processors.add_log_level,
            drop_sensitive_fields,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )


@contextmanager
def logging_context(**context: t.Any) -> Iterator[dict[str, t.Any]]:
    """
    Bind ``context`` to every log event emitted inside the block.

    Keys already bound by an enclosing block keep their outer value, and
    ``None`` values are not bound. Yields the context in effect.
    """
    outer = structlog.contextvars.get_contextvars()
    added = {key: value for key, value in context.items() if key not in outer and value is not None}
    with structlog.contextvars.bound_contextvars(**added):
        yield {**outer, **added}
