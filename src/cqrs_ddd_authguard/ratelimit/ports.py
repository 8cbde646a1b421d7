"""Counter store port for the sliding-window rate limiter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class WindowSnapshot:
    """State of one (tier, identifier) window after a hit or a peek.

    Attributes:
        admitted: Whether the hit was counted (for a peek: whether the next
            hit would be).
        count: Entries inside the window, the admitted hit included.
        oldest: Timestamp (epoch seconds) of the oldest entry, if any.
    """

    admitted: bool
    count: int
    oldest: float | None = None


@runtime_checkable
class ISlidingWindowStore(Protocol):
    """Protocol for shared sliding-window counters.

    ``hit`` MUST be atomic per key: two concurrent hits at the last free
    slot never both report ``admitted``. Implementations raise
    ``CounterStoreError`` on backend failure.
    """

    async def hit(
        self, key: str, limit: int, window_seconds: float, now: float
    ) -> WindowSnapshot:
        """Drop entries at or before ``now - window``, then record ``now`` if
        fewer than ``limit`` remain."""
        ...

    async def peek(
        self, key: str, limit: int, window_seconds: float, now: float
    ) -> WindowSnapshot:
        """Report the window without recording anything."""
        ...

    async def reset(self, key: str) -> None:
        """Clear every entry for ``key``."""
        ...

    async def ping(self) -> bool:
        """Return True when the backend answers."""
        ...


__all__: list[str] = ["WindowSnapshot", "ISlidingWindowStore"]
