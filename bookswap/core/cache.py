"""
キャッシュ層 (Cache Layer)

単一エンティティとリストのスナップショットを JSON 文字列として保持する。
すべての値に TTL を付け、期限切れの値は返さない。

キャッシュの障害は致命的にしない:
実装は障害を CacheDegraded として送出し、リポジトリ側でログに記録して
ストアからの読み込みにフォールバックする。
"""

import asyncio
import fnmatch
import json
import logging
import time
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .errors import CacheDegraded

logger = logging.getLogger(__name__)


# ── TTL (秒) ─────────────────────────────────────
# いずれも上限値。書き込み時はこれより早く無効化される。

ENTITY_TTL = 15 * 60
VOLATILE_LIST_TTL = 5 * 60
FILTER_LIST_TTL = 10 * 60
TOP_RATED_TTL = 15 * 60
NEW_ARRIVALS_TTL = 30 * 60
RECOMMEND_TTL = 30 * 60


class Cache(Protocol):
    async def get(self, key: str) -> dict | None: ...

    async def set(self, key: str, snapshot: dict, ttl: float) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def get_list(self, key: str) -> list[dict] | None: ...

    async def set_list(self, key: str, snapshots: list[dict], ttl: float) -> None: ...

    async def delete_list(self, *keys: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def close(self) -> None: ...


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


def _loads(raw: str | bytes, key: str, expected: type) -> Any:
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise CacheDegraded(f"corrupt cache entry {key}: {e}") from e
    if not isinstance(value, expected):
        raise CacheDegraded(f"unexpected cache entry type for {key}")
    return value


# ── Redis 実装 ───────────────────────────────────


class RedisCache:
    """redis.asyncio を使うキャッシュ。値は SET key value EX ttl で書き込む。"""

    def __init__(self, client: aioredis.Redis, timeout: float = 2.0) -> None:
        self.client = client
        self.timeout = timeout

    @classmethod
    def from_url(cls, url: str, timeout: float = 2.0) -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=True), timeout=timeout)

    async def get(self, key: str) -> dict | None:
        raw = await self._call("get", self.client.get(key))
        if raw is None:
            return None
        return _loads(raw, key, dict)

    async def set(self, key: str, snapshot: dict, ttl: float) -> None:
        await self._call("set", self.client.set(key, _dumps(snapshot), ex=int(ttl)))
        logger.debug("Cached %s (ttl=%ss)", key, int(ttl))

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._call("delete", self.client.delete(*keys))
            logger.debug("Invalidated %s", ", ".join(keys))

    async def get_list(self, key: str) -> list[dict] | None:
        raw = await self._call("get", self.client.get(key))
        if raw is None:
            return None
        # null が入っていたらミス扱い
        return _loads(raw, key, (list, type(None)))

    async def set_list(self, key: str, snapshots: list[dict], ttl: float) -> None:
        await self._call("set", self.client.set(key, _dumps(snapshots), ex=int(ttl)))
        logger.debug("Cached list %s (%d items, ttl=%ss)", key, len(snapshots), int(ttl))

    async def delete_list(self, *keys: str) -> None:
        await self.delete(*keys)

    async def delete_pattern(self, pattern: str) -> int:
        keys = await self._call("keys", self.client.keys(pattern))
        if not keys:
            return 0
        deleted = await self._call("delete", self.client.delete(*keys))
        logger.debug("Invalidated %d keys matching %s", deleted, pattern)
        return deleted

    async def close(self) -> None:
        await self.client.aclose()

    async def _call(self, op: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheDegraded(f"redis {op} failed: {e}") from e


# ── インメモリ実装 ───────────────────────────────


class MemoryCache:
    """
    プロセス内 TTL キャッシュ（テスト・ローカル開発用）。

    Redis 実装と同じく値を JSON 文字列で保持するので、
    取り出したスナップショットを変更してもキャッシュには影響しない。
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self.available = True

    async def get(self, key: str) -> dict | None:
        raw = self._read(key)
        return None if raw is None else _loads(raw, key, dict)

    async def set(self, key: str, snapshot: dict, ttl: float) -> None:
        self._write(key, _dumps(snapshot), ttl)

    async def delete(self, *keys: str) -> None:
        self._check()
        for key in keys:
            self._data.pop(key, None)

    async def get_list(self, key: str) -> list[dict] | None:
        raw = self._read(key)
        if raw is None or raw == "null":
            return None
        return _loads(raw, key, list)

    async def set_list(self, key: str, snapshots: list[dict], ttl: float) -> None:
        self._write(key, _dumps(snapshots), ttl)

    async def delete_list(self, *keys: str) -> None:
        await self.delete(*keys)

    async def delete_pattern(self, pattern: str) -> int:
        self._check()
        matched = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
        for key in matched:
            del self._data[key]
        return len(matched)

    async def close(self) -> None:
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        entry = self._data.get(key)
        return entry is not None and entry[1] > self._clock()

    def _read(self, key: str) -> str | None:
        self._check()
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return raw

    def _write(self, key: str, raw: str, ttl: float) -> None:
        self._check()
        self._data[key] = (raw, self._clock() + ttl)

    def _check(self) -> None:
        if not self.available:
            raise CacheDegraded("memory cache unavailable")
