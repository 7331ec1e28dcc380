"""
プロセスのランタイム資源

ストア・キャッシュ・バスのクライアントはプロセスにつき 1 つずつ、
起動時に生成してシャットダウン時に解放する。

解放の順序:
  1. 残っているデタッチドタスク（キャッシュ投入）を待つ
  2. バスを閉じる（購読ハンドラの処理中のメッセージは待つ）
  3. サービス固有の資源 (on_close で登録したもの)
  4. キャッシュ → ストアの順に閉じる
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import uvicorn
from fastapi import FastAPI

from .bus import EventBus, MemoryEventBus, RedisEventBus
from .cache import Cache, MemoryCache, RedisCache
from .config import Settings, is_memory_uri
from .emitter import EventEmitter
from .logs import configure_logging
from .sql_store import SqlDatabase
from .store import Database, MemoryDatabase
from .tasks import DetachedTasks

logger = logging.getLogger(__name__)


@dataclass
class ServiceRuntime:
    service: str
    database: Database
    cache: Cache
    bus: EventBus
    tasks: DetachedTasks = field(default_factory=DetachedTasks)
    settings: Settings = field(default_factory=Settings)
    emitter: EventEmitter = field(init=False)
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.emitter = EventEmitter(self.bus, self.service)

    @classmethod
    def connect(cls, settings: Settings, service: str) -> "ServiceRuntime":
        """設定の URI から各クライアントを生成する。memory:// はインメモリ実装。"""
        if is_memory_uri(settings.database_url):
            database: Database = MemoryDatabase()
        else:
            database = SqlDatabase.from_url(settings.database_url)

        if is_memory_uri(settings.redis_url):
            cache: Cache = MemoryCache()
        else:
            cache = RedisCache.from_url(settings.redis_url, timeout=settings.cache_timeout)

        if is_memory_uri(settings.bus_url):
            bus: EventBus = MemoryEventBus()
        else:
            bus = RedisEventBus.from_url(settings.bus_url, timeout=settings.cache_timeout)

        logger.info("Starting %s with %r", service, settings)
        return cls(
            service=service,
            database=database,
            cache=cache,
            bus=bus,
            tasks=DetachedTasks(timeout=settings.cache_timeout),
            settings=settings,
        )

    @classmethod
    def in_memory(cls, service: str) -> "ServiceRuntime":
        return cls(
            service=service,
            database=MemoryDatabase(),
            cache=MemoryCache(),
            bus=MemoryEventBus(),
        )

    def on_close(self, closer: Callable[[], Awaitable[None]]) -> None:
        """サービス固有の資源（HTTP クライアントなど）の解放処理を登録する。"""
        self.closers.append(closer)

    async def close(self) -> None:
        """各段階の失敗はログに残し、残りの資源の解放を続ける。"""
        steps: list[tuple[str, Callable[[], Awaitable[None]]]] = [
            ("detached tasks", lambda: self.tasks.drain(timeout=self.tasks.timeout)),
            ("bus", self.bus.close),
        ]
        steps += [(getattr(c, "__name__", "closer"), c) for c in reversed(self.closers)]
        steps += [("cache", self.cache.close), ("store", self.database.close)]

        for name, step in steps:
            try:
                await step()
            except Exception:
                logger.exception("Failed to close %s for %s", name, self.service)
        logger.info("%s stopped", self.service)


def service_lifespan(
    service: str,
    setup: Callable[[FastAPI, ServiceRuntime], Awaitable[None]],
    runtime: ServiceRuntime | None = None,
):
    """
    FastAPI の lifespan を作る。

    起動時: ランタイムを生成（テストでは注入されたものを使う）→ setup でリポジトリ等を
    app.state に登録 → テーブル作成。終了時: ランタイムを閉じる。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt = runtime or ServiceRuntime.connect(Settings.from_env(), service)
        app.state.runtime = rt
        await setup(app, rt)
        await rt.database.migrate()
        try:
            yield
        finally:
            await rt.close()

    return lifespan


def serve(app: FastAPI) -> None:
    """コンソールスクリプトのエントリーポイントから呼ばれる。"""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)
