"""Redis sliding-window store.

One sorted set per (tier, identifier) key; member scores are hit times in
milliseconds. Pruning, counting and recording run in a single Lua script,
so admission is atomic across every process sharing the Redis instance.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

from ..exceptions import CounterStoreError
from .ports import ISlidingWindowStore, WindowSnapshot

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("cqrs_ddd.authguard.redis")

# KEYS: [window_key]
# ARGV: [now_ms, window_ms, limit, member]
_HIT_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

-- Entries at or before now - window have left the window
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)

local count = redis.call('ZCARD', key)
local admitted = 0
if count < limit then
    redis.call('ZADD', key, now, ARGV[4])
    count = count + 1
    admitted = 1
end
redis.call('PEXPIRE', key, window)

local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = -1
if oldest[2] then
    oldest_score = tonumber(oldest[2])
end
return {admitted, count, oldest_score}
"""

# KEYS: [window_key]
# ARGV: [now_ms, window_ms]
_PEEK_SCRIPT = """
local key = KEYS[1]
local floor = '(' .. (tonumber(ARGV[1]) - tonumber(ARGV[2]))

local count = redis.call('ZCOUNT', key, floor, '+inf')
local oldest = redis.call(
    'ZRANGEBYSCORE', key, floor, '+inf', 'WITHSCORES', 'LIMIT', 0, 1
)
local oldest_score = -1
if oldest[2] then
    oldest_score = tonumber(oldest[2])
end
return {count, oldest_score}
"""


def _to_int(value: Any) -> int:
    if isinstance(value, bytes):
        value = value.decode()
    return int(value)


def _oldest(raw: Any) -> float | None:
    score = _to_int(raw)
    return None if score < 0 else score / 1000


class RedisSlidingWindowStore(ISlidingWindowStore):
    """Sliding-window counters backed by ``redis.asyncio``.

    Example:
        ```python
        from redis.asyncio import Redis

        store = RedisSlidingWindowStore(Redis.from_url("redis://localhost:6379"))
        guard = AbuseGuard(store)
        ```
    """

    def __init__(self, redis: Redis) -> None:  # type: ignore[type-arg]
        """
        Args:
            redis: An initialized redis.asyncio.Redis client.
        """
        self._redis = redis

    async def hit(
        self, key: str, limit: int, window_seconds: float, now: float
    ) -> WindowSnapshot:
        now_ms = int(now * 1000)
        member = f"{now_ms}:{uuid.uuid4().hex}"
        try:
            admitted, count, oldest = await self._redis.eval(  # type: ignore[misc]
                _HIT_SCRIPT,
                1,
                key,
                str(now_ms),
                str(int(window_seconds * 1000)),
                str(limit),
                member,
            )
        except RedisError as exc:
            raise CounterStoreError(f"Sliding-window hit failed: {exc}") from exc
        return WindowSnapshot(
            admitted=_to_int(admitted) == 1,
            count=_to_int(count),
            oldest=_oldest(oldest),
        )

    async def peek(
        self, key: str, limit: int, window_seconds: float, now: float
    ) -> WindowSnapshot:
        try:
            count, oldest = await self._redis.eval(  # type: ignore[misc]
                _PEEK_SCRIPT,
                1,
                key,
                str(int(now * 1000)),
                str(int(window_seconds * 1000)),
            )
        except RedisError as exc:
            raise CounterStoreError(f"Sliding-window peek failed: {exc}") from exc
        count = _to_int(count)
        return WindowSnapshot(
            admitted=count < limit, count=count, oldest=_oldest(oldest)
        )

    async def reset(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            raise CounterStoreError(f"Sliding-window reset failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())  # type: ignore[misc]
        except RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False


__all__: list[str] = ["RedisSlidingWindowStore"]
