import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import ProbeTimeoutError
from .logger import log

T = TypeVar("T")


async def poll(
    attempt: Callable[[int], Awaitable[Optional[T]]],
    max_attempts: int,
    interval: float,
    what: str = "condition",
) -> T:
    """
    Call `attempt(i)` until it returns something other than None.

    Sleeps `interval` between attempts, not after the last one. Exceptions
    raised by `attempt` propagate immediately.

    Raises ProbeTimeoutError once `max_attempts` attempts returned None.
    """
    for i in range(max_attempts):
        result = await attempt(i)
        if result is not None:
            return result
        if i + 1 < max_attempts:
            await asyncio.sleep(interval)
    log("WARN", "poll_exhausted", f"Gave up waiting for {what}", attempts=max_attempts, interval=interval)
    raise ProbeTimeoutError(f"{what} not ready after {max_attempts} attempts ({interval * max_attempts:.2f}s)")


async def run_periodic(
    interval: float,
    fn: Callable[[], Awaitable[None]],
    on_error: Optional[Callable[[Exception], Awaitable[None]]] = None,
):
    """
    Run `fn` every `interval` seconds until cancelled.

    A failing run is handed to `on_error` and the loop keeps its cadence.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await fn()
        except Exception as e:
            if on_error is None:
                log("WARN", "periodic_error", "Periodic task failed", error=str(e))
            else:
                await on_error(e)
