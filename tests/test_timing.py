"""Tests for minimum response time padding."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from cqrs_ddd_authguard.timing import MinimumDuration


class StepClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestMinimumDuration:
    @pytest.mark.asyncio
    async def test_pads_fast_block(self, sleep: Any) -> None:
        clock = StepClock()

        async with MinimumDuration(0.15, clock=clock, sleep=sleep):
            clock.now += 0.05

        assert sleep.calls == [pytest.approx(0.10)]

    @pytest.mark.asyncio
    async def test_slow_block_not_padded(self, sleep: Any) -> None:
        clock = StepClock()

        async with MinimumDuration(0.15, clock=clock, sleep=sleep):
            clock.now += 0.2

        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_pads_before_exception_propagates(self, sleep: Any) -> None:
        clock = StepClock()

        with pytest.raises(RuntimeError, match="boom"):
            async with MinimumDuration(0.15, clock=clock, sleep=sleep):
                raise RuntimeError("boom")

        assert sleep.calls == [pytest.approx(0.15)]

    @pytest.mark.asyncio
    async def test_cancellation_not_padded(self, sleep: Any) -> None:
        with pytest.raises(asyncio.CancelledError):
            async with MinimumDuration(0.15, clock=StepClock(), sleep=sleep):
                raise asyncio.CancelledError

        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_elapsed(self) -> None:
        clock = StepClock()
        floor = MinimumDuration(0.0, clock=clock)
        assert floor.elapsed == 0.0

        async with floor:
            clock.now += 1.5
            assert floor.elapsed == 1.5

    @pytest.mark.asyncio
    async def test_real_sleep(self) -> None:
        loop = asyncio.get_running_loop()
        start = loop.time()

        async with MinimumDuration(0.05):
            pass

        assert loop.time() - start >= 0.04
