"""
イベントバス (Event Bus)

サブジェクト単位の Pub/Sub。

- publish はバスに渡した時点で戻る（配送確認はない）
- 購読者がいない間に発行されたメッセージは失われる
- ハンドラの失敗で再配送はしない
- 同一サブジェクト・同一発行元のメッセージは、購読者ごとに発行順で配送する

購読ごとに FIFO キューとワーカータスクを 1 つ持ち、ハンドラはそのワーカー上で
実行される。受信ループがハンドラの完了を待って止まることはない。

注意: Redis Pub/Sub は fire-and-forget 方式。
サービスがダウンしている間のイベントは失われる。
"""

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .errors import BusDegraded

logger = logging.getLogger(__name__)

Handler = Callable[[str, str], Awaitable[None]]


class EventBus(Protocol):
    async def publish(self, subject: str, payload: str) -> None: ...

    async def subscribe(self, subject: str, handler: Handler) -> "Subscription": ...

    async def close(self) -> None: ...


class Subscription:
    """1 つの (サブジェクト, ハンドラ) の組。メッセージを順番に 1 件ずつ処理する。"""

    def __init__(self, bus: "_BaseBus", subject: str, handler: Handler) -> None:
        self.bus = bus
        self.subject = subject
        self.handler = handler
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())

    def deliver(self, payload: str) -> None:
        self._queue.put_nowait(payload)

    async def drain(self, timeout: float | None = None) -> None:
        """キューに溜まったメッセージの処理が終わるまで待つ。"""
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def unsubscribe(self) -> None:
        await self.bus._remove(self)
        await self._stop()

    async def _stop(self) -> None:
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self.handler(self.subject, payload)
            except Exception:
                logger.exception("Handler failed for %s", self.subject)
            finally:
                self._queue.task_done()


class _BaseBus:
    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)

    def _dispatch(self, subject: str, payload: str) -> int:
        subs = self._subscriptions.get(subject, ())
        for sub in subs:
            sub.deliver(payload)
        return len(subs)

    async def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.subject, [])
        if sub in subs:
            subs.remove(sub)

    async def drain(self, timeout: float | None = 5.0) -> None:
        """全購読のキューが空になるまで待つ（シャットダウン時・テスト用）。"""
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                try:
                    await sub.drain(timeout)
                except asyncio.TimeoutError:
                    logger.warning("Timed out draining handlers for %s", sub.subject)

    async def _stop_all(self) -> None:
        await self.drain()
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                await sub._stop()
        self._subscriptions.clear()


# ── インメモリ実装 ───────────────────────────────


class MemoryEventBus(_BaseBus):
    """プロセス内バス（テスト・ローカル開発用）。available=False で障害を模擬できる。"""

    def __init__(self) -> None:
        super().__init__()
        self.available = True
        self._closed = False

    async def publish(self, subject: str, payload: str) -> None:
        if self._closed or not self.available:
            raise BusDegraded(f"memory bus unavailable, dropped {subject}")
        self._dispatch(subject, payload)

    async def subscribe(self, subject: str, handler: Handler) -> Subscription:
        sub = Subscription(self, subject, handler)
        self._subscriptions[subject].append(sub)
        return sub

    async def close(self) -> None:
        self._closed = True
        await self._stop_all()


# ── Redis 実装 ───────────────────────────────────


class RedisEventBus(_BaseBus):
    """
    Redis Pub/Sub を使うバス。サブジェクトはそのままチャネル名になる。

    最初の subscribe で受信ループをバックグラウンドタスクとして開始し、
    受信したメッセージを購読ごとのキューに振り分ける。
    """

    def __init__(self, client: aioredis.Redis, timeout: float = 2.0) -> None:
        super().__init__()
        self.client = client
        self.timeout = timeout
        self._pubsub = client.pubsub()
        self._reader: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    @classmethod
    def from_url(cls, url: str, timeout: float = 2.0) -> "RedisEventBus":
        return cls(aioredis.from_url(url, decode_responses=True), timeout=timeout)

    async def publish(self, subject: str, payload: str) -> None:
        try:
            await asyncio.wait_for(
                self.client.publish(subject, payload), timeout=self.timeout
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise BusDegraded(f"publish to {subject} failed: {e}") from e

    async def subscribe(self, subject: str, handler: Handler) -> Subscription:
        if subject not in self._subscriptions:
            try:
                await self._pubsub.subscribe(subject)
            except (RedisError, OSError) as e:
                raise BusDegraded(f"subscribe to {subject} failed: {e}") from e
            logger.info("Subscribed to %s channel", subject)
        sub = Subscription(self, subject, handler)
        self._subscriptions[subject].append(sub)
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())
        return sub

    async def _remove(self, sub: Subscription) -> None:
        await super()._remove(sub)
        if not self._subscriptions.get(sub.subject):
            self._subscriptions.pop(sub.subject, None)
            await self._pubsub.unsubscribe(sub.subject)

    async def _read_loop(self) -> None:
        """shutdown_event がセットされるまでメッセージを受信し続ける。"""
        while not self._shutdown_event.is_set():
            if not self._pubsub.subscribed:
                await asyncio.sleep(0.1)
                continue
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except (RedisError, OSError) as e:
                logger.warning("Bus receive failed, retrying: %s", e)
                await asyncio.sleep(1.0)
                continue
            if message and message["type"] == "message":
                self._dispatch(message["channel"], message["data"])
            else:
                await asyncio.sleep(0.01)

    async def close(self) -> None:
        self._shutdown_event.set()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        await self._stop_all()
        try:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Error while closing bus subscription: %s", e)
        await self.client.aclose()
