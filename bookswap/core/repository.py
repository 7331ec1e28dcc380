"""
キャッシュ付きリポジトリ (Cache-Aside)

ビジネスロジックが触る唯一の永続化の窓口。ストア (正) とキャッシュを組み合わせる。

読み取り:
  1. キャッシュを引く → ヒットすればそのまま返す
  2. ミス（または壊れたエントリ）ならストアを読む
  3. 見つかればデタッチドタスクでキャッシュに投入して返す（投入の完了は待たない）

書き込み:
  1. ストアに書き込み、更新後の値(post-image)を受け取る
  2. 成功したら、影響するキー（エンティティ自身 + 所属するリスト）を無効化してから返す
  3. 失敗したらキャッシュには触れず、例外をそのまま伝播する

サービスごとの違いはキーの命名と TTL、無効化するリストの集合だけなので、
各サービスはこのクラスを継承して list_keys() と invalidation_patterns を定義する。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

from .cache import ENTITY_TTL, Cache
from .errors import CacheDegraded, InvalidTransition, NotFound
from .store import Collection
from .tasks import DetachedTasks

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class CachedRepository(Generic[M]):
    model: type[M]
    entity_prefix: str
    entity_ttl: float = ENTITY_TTL
    # 書き込みのたびにプレフィックスごと消すリスト（例: books:recommend:*）
    invalidation_patterns: tuple[str, ...] = ()
    touch: str | None = None

    def __init__(self, collection: Collection, cache: Cache, tasks: DetachedTasks) -> None:
        self.collection = collection
        self.cache = cache
        self.tasks = tasks

    # ── キー ─────────────────────────────────────

    def key(self, entity_id: str) -> str:
        return f"{self.entity_prefix}:{entity_id}"

    def list_keys(self, entity: M) -> list[str]:
        """entity が所属するリストのキャッシュキー。サブクラスで定義する。"""
        return []

    def affected_keys(self, *images: M) -> list[str]:
        keys: list[str] = []
        for entity in images:
            keys.append(self.key(entity.id))
            keys.extend(self.list_keys(entity))
        return list(dict.fromkeys(keys))

    # ── 読み取り ─────────────────────────────────

    async def get(self, entity_id: str) -> M:
        key = self.key(entity_id)
        snapshot = await self._cache_read(self.cache.get, key)
        if snapshot is not None:
            try:
                entity = self.model.model_validate(snapshot)
                logger.debug("Cache hit %s", key)
                return entity
            except ValidationError:
                logger.warning("Discarding undecodable cache entry %s", key)
        logger.debug("Cache miss %s", key)

        doc = await self.collection.find_one(entity_id)
        if doc is None:
            raise NotFound(f"{self.entity_prefix} {entity_id} not found")
        self.tasks.spawn(self._populate(key, doc, self.entity_ttl), key=key)
        return self.model.model_validate(doc)

    async def fetch(self, entity_id: str) -> M:
        """キャッシュを通さずストアから読む（状態遷移の事前チェック用）。"""
        doc = await self.collection.find_one(entity_id)
        if doc is None:
            raise NotFound(f"{self.entity_prefix} {entity_id} not found")
        return self.model.model_validate(doc)

    async def cached_list(
        self,
        key: str,
        loader: Callable[[], Awaitable[list[dict]]],
        ttl: float,
    ) -> list[M]:
        """リストの読み取り。空リストも正当なキャッシュ値として扱う。"""
        snapshots = await self._cache_read(self.cache.get_list, key)
        if snapshots is not None:
            try:
                entities = [self.model.model_validate(s) for s in snapshots]
                logger.debug("Cache hit %s (%d items)", key, len(entities))
                return entities
            except ValidationError:
                logger.warning("Discarding undecodable cache entry %s", key)
        logger.debug("Cache miss %s", key)

        docs = await loader()
        self.tasks.spawn(self._populate_list(key, docs, ttl), key=key)
        return [self.model.model_validate(d) for d in docs]

    # ── 書き込み ─────────────────────────────────

    async def create(self, doc: dict[str, Any]) -> M:
        stored = await self.collection.insert(doc)
        entity = self.model.model_validate(stored)
        await self.invalidate(self.affected_keys(entity))
        return entity

    async def update(
        self,
        entity_id: str,
        *,
        set_fields: dict[str, Any] | None = None,
        push: dict[str, Any] | None = None,
        pull: dict[str, Any] | None = None,
        expect: dict[str, Any] | None = None,
    ) -> M:
        """
        find-and-modify で更新し、post-image を返す。

        expect を満たさない（状態遷移が許されない）場合は InvalidTransition。
        更新前の値が所属していたリストも無効化するため、先に現在値を読む。
        """
        current = await self.collection.find_one(entity_id)
        if current is None:
            raise NotFound(f"{self.entity_prefix} {entity_id} not found")

        post = await self.collection.find_one_and_update(
            entity_id,
            set_fields=set_fields,
            push=push,
            pull=pull,
            expect=expect,
            touch=self.touch,
        )
        if post is None:
            latest = await self.collection.find_one(entity_id)
            if latest is None:
                raise NotFound(f"{self.entity_prefix} {entity_id} not found")
            found = ", ".join(f"{k}={latest.get(k)!r}" for k in expect or {})
            raise InvalidTransition(
                f"{self.entity_prefix} {entity_id} has {found}; cannot be modified"
            )

        pre_image = self.model.model_validate(current)
        post_image = self.model.model_validate(post)
        await self.invalidate(self.affected_keys(pre_image, post_image))
        return post_image

    async def delete(self, entity_id: str) -> M:
        """削除した値 (pre-image) を返す。存在しなければ NotFound。"""
        removed = await self.collection.delete_one(entity_id)
        if removed is None:
            raise NotFound(f"{self.entity_prefix} {entity_id} not found")
        entity = self.model.model_validate(removed)
        await self.invalidate(self.affected_keys(entity))
        return entity

    # ── 無効化 ───────────────────────────────────

    async def invalidate(self, keys: Iterable[str]) -> None:
        """
        キーを無効化する。

        同じキーへの投入タスクが走っていれば先にキャンセルする（古い値で上書きさせない）。
        呼び出し元がキャンセルされても無効化は最後まで実行する。
        """
        keys = list(dict.fromkeys(keys))
        self.tasks.cancel(*keys)
        for pattern in self.invalidation_patterns:
            self.tasks.cancel_matching(pattern)
        await asyncio.shield(self._invalidate(keys, self.invalidation_patterns))

    async def _invalidate(self, keys: list[str], patterns: tuple[str, ...]) -> None:
        try:
            if keys:
                await self.cache.delete(*keys)
            for pattern in patterns:
                await self.cache.delete_pattern(pattern)
        except CacheDegraded as e:
            logger.warning("Cache invalidation degraded (%s): %s", ", ".join(keys), e)

    # ── 内部ヘルパー ─────────────────────────────

    async def _cache_read(self, read, key: str):
        try:
            return await read(key)
        except CacheDegraded as e:
            logger.warning("Cache read degraded for %s: %s", key, e)
            return None

    async def _populate(self, key: str, doc: dict, ttl: float) -> None:
        try:
            await self.cache.set(key, doc, ttl)
        except CacheDegraded as e:
            logger.warning("Cache populate degraded for %s: %s", key, e)

    async def _populate_list(self, key: str, docs: list[dict], ttl: float) -> None:
        try:
            await self.cache.set_list(key, docs, ttl)
        except CacheDegraded as e:
            logger.warning("Cache populate degraded for %s: %s", key, e)
