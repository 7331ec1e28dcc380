"""
デタッチドタスク

呼び出し元が完了を待たないベストエフォートの処理（キャッシュ投入など）を管理する。

- 各タスクは呼び出し元とは独立したタイムアウトを持つ
- 失敗はログに記録するだけで、呼び出し元には伝播しない
- キーごとに追跡し、同じキーの無効化が走ったら実行中のタスクをキャンセルできる
- シャットダウン時は drain() で残りのタスクを待つ
"""

import asyncio
import fnmatch
import inspect
import logging
from collections import defaultdict
from typing import Awaitable

logger = logging.getLogger(__name__)


class DetachedTasks:
    def __init__(self, timeout: float = 2.0) -> None:
        self.timeout = timeout
        self._tasks: set[asyncio.Task] = set()
        self._by_key: dict[str, set[asyncio.Task]] = defaultdict(set)

    def spawn(self, coro: Awaitable, key: str | None = None) -> asyncio.Task:
        """コルーチンをバックグラウンドで実行する。"""
        task = asyncio.ensure_future(self._run(coro, key))
        self._tasks.add(task)
        if key is not None:
            self._by_key[key].add(task)
        task.add_done_callback(lambda t: self._forget(t, key, coro))
        return task

    def cancel(self, *keys: str) -> int:
        """指定キーの未完了タスクをキャンセルし、その件数を返す。"""
        cancelled = 0
        for key in keys:
            for task in list(self._by_key.get(key, ())):
                if not task.done():
                    task.cancel()
                    cancelled += 1
        return cancelled

    def cancel_matching(self, pattern: str) -> int:
        """glob パターンに一致するキーの未完了タスクをキャンセルする。"""
        keys = [k for k in self._by_key if fnmatch.fnmatchcase(k, pattern)]
        return self.cancel(*keys)

    async def drain(self, timeout: float | None = None) -> None:
        """未完了のタスクがすべて終わるまで待つ。"""
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return
        done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning("Cancelled %d detached tasks on drain", len(still_pending))

    def __len__(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def _run(self, coro: Awaitable, key: str | None) -> None:
        try:
            await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.CancelledError:
            logger.debug("Detached task cancelled: %s", key)
            raise
        except asyncio.TimeoutError:
            logger.warning("Detached task timed out after %.1fs: %s", self.timeout, key)
        except Exception:
            logger.exception("Detached task failed: %s", key)

    def _forget(self, task: asyncio.Task, key: str | None, coro: Awaitable) -> None:
        self._tasks.discard(task)
        # 開始前にキャンセルされたタスクのコルーチンは閉じておく
        if task.cancelled() and inspect.iscoroutine(coro):
            coro.close()
        if key is not None:
            bucket = self._by_key.get(key)
            if bucket is not None:
                bucket.discard(task)
                if not bucket:
                    del self._by_key[key]
