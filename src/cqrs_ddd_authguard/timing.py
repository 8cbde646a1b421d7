"""Minimum response time padding.

Success and failure paths are padded to the same floor so response latency
does not reveal whether an account, factor or code exists.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class MinimumDuration:
    """Async context manager that delays exit until ``seconds`` have elapsed.

    The delay is applied whether the block returns or raises; the exception,
    if any, propagates after the padding.

    Example:
        ```python
        async with MinimumDuration(0.15):
            result = await orchestrator_step()
        ```
    """

    def __init__(
        self,
        seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.seconds = seconds
        self._clock = clock
        self._sleep = sleep
        self._start: float | None = None

    @property
    def elapsed(self) -> float:
        """Seconds since the block was entered."""
        if self._start is None:
            return 0.0
        return self._clock() - self._start

    async def __aenter__(self) -> MinimumDuration:
        self._start = self._clock()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if exc_type is asyncio.CancelledError:
            return
        remaining = self.seconds - self.elapsed
        if remaining > 0:
            await self._sleep(remaining)


__all__: list[str] = ["MinimumDuration"]
