"""In-memory sliding-window store for tests and single-process development."""

from __future__ import annotations

import bisect

from .ports import ISlidingWindowStore, WindowSnapshot


class InMemorySlidingWindowStore(ISlidingWindowStore):
    """Sorted timestamp lists per key.

    Each ``hit`` runs without awaiting, so it is atomic within one event loop.
    Entries are pruned lazily on access; keys whose newest entry has left
    its window are swept at most once every ``sweep_interval`` seconds, the
    way Redis expires idle window keys.
    """

    def __init__(self, *, sweep_interval: float = 60.0) -> None:
        self._entries: dict[str, list[float]] = {}
        self._windows: dict[str, float] = {}
        self._sweep_interval = sweep_interval
        self._last_sweep: float | None = None

    def key_count(self) -> int:
        """Number of keys currently tracked."""
        return len(self._entries)

    def _prune(self, key: str, window_seconds: float, now: float) -> list[float]:
        entries = self._entries.pop(key, [])
        cutoff = bisect.bisect_right(entries, now - window_seconds)
        if cutoff:
            del entries[:cutoff]
        return entries

    def _sweep(self, now: float) -> None:
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        expired = [
            key
            for key, entries in self._entries.items()
            if not entries or entries[-1] <= now - self._windows[key]
        ]
        for key in expired:
            del self._entries[key]
            del self._windows[key]

    async def hit(
        self, key: str, limit: int, window_seconds: float, now: float
    ) -> WindowSnapshot:
        self._sweep(now)
        entries = self._prune(key, window_seconds, now)
        admitted = len(entries) < limit
        if admitted:
            bisect.insort(entries, now)
        if entries:
            self._entries[key] = entries
            self._windows[key] = window_seconds
        else:
            self._windows.pop(key, None)
        return WindowSnapshot(
            admitted=admitted,
            count=len(entries),
            oldest=entries[0] if entries else None,
        )

    async def peek(
        self, key: str, limit: int, window_seconds: float, now: float
    ) -> WindowSnapshot:
        entries = [t for t in self._entries.get(key, []) if t > now - window_seconds]
        return WindowSnapshot(
            admitted=len(entries) < limit,
            count=len(entries),
            oldest=entries[0] if entries else None,
        )

    async def reset(self, key: str) -> None:
        self._entries.pop(key, None)
        self._windows.pop(key, None)

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._windows.clear()


__all__: list[str] = ["InMemorySlidingWindowStore"]
