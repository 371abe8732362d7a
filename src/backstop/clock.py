"""
Time sources shared by token, cache and retry components.
"""

import asyncio
import time
import typing as t

Clock = t.Callable[[], int]
Sleep = t.Callable[[float], t.Awaitable[None]]


def now_ms() -> int:
    """Return wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


async def sleep_ms(delay_ms: float) -> None:
    """Suspend the current task for ``delay_ms`` milliseconds."""
    await asyncio.sleep(delay_ms / 1000)
