"""
ストア層 (Store Layer)

サービスごとの正となるドキュメントストア。
コレクション単位で以下の操作を提供する:

- find_one / find / search        : 読み取り
- insert                          : ID を採番して保存したレコードを返す
- find_one_and_update             : 更新「後」のレコード(post-image)を返す
                                    $set / $push / $pull 相当と条件付き更新
- delete_one                      : 削除したレコードを返す（存在しなければ None、エラーにはしない）

本番は sql_store.SqlDatabase (PostgreSQL JSONB)、
テストとローカル開発はこのモジュールの MemoryDatabase を使う。
"""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from .errors import Conflict
from .ids import new_id


class Collection(Protocol):
    name: str

    async def find_one(self, doc_id: str) -> dict | None: ...

    async def find(
        self,
        where: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]: ...

    async def search(
        self, term: str, fields: tuple[str, ...], limit: int | None = None
    ) -> list[dict]: ...

    async def insert(self, doc: dict) -> dict: ...

    async def find_one_and_update(
        self,
        doc_id: str,
        *,
        set_fields: dict[str, Any] | None = None,
        push: dict[str, Any] | None = None,
        pull: dict[str, Any] | None = None,
        expect: dict[str, Any] | None = None,
        touch: str | None = None,
    ) -> dict | None: ...

    async def delete_one(self, doc_id: str) -> dict | None: ...


class Database(Protocol):
    def collection(
        self, name: str, unique: tuple[tuple[str, ...], ...] = ()
    ) -> Collection: ...

    async def migrate(self) -> None: ...

    async def close(self) -> None: ...


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def next_timestamp(previous: str | None) -> str:
    """
    updated_at 用のタイムスタンプ。

    時計が巻き戻っても同一レコードへの連続書き込みで必ず単調増加するよう、
    前回値より 1 マイクロ秒以上進める。
    """
    now = datetime.now(timezone.utc)
    if previous:
        prev = datetime.fromisoformat(previous)
        if prev.tzinfo is None:
            prev = prev.replace(tzinfo=timezone.utc)
        if now <= prev:
            now = prev + timedelta(microseconds=1)
    return now.isoformat()


# ── インメモリ実装 ───────────────────────────────


class MemoryCollection:
    """
    辞書ベースのコレクション。

    挿入順を保持し、一意制約・条件付き更新・post-image の返却など
    SQL 実装と同じ契約を満たす。返す値は常にディープコピー。
    """

    def __init__(self, name: str, unique: tuple[tuple[str, ...], ...] = ()) -> None:
        self.name = name
        self.unique = unique
        self._docs: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def find_one(self, doc_id: str) -> dict | None:
        doc = self._docs.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find(
        self,
        where: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        docs = [d for d in self._docs.values() if _matches(d, where)]
        if order_by is not None:
            docs.sort(key=lambda d: d.get(order_by) or 0, reverse=descending)
        elif descending:
            docs.reverse()
        if limit is not None:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def search(
        self, term: str, fields: tuple[str, ...], limit: int | None = None
    ) -> list[dict]:
        needle = term.lower()
        docs = [
            d
            for d in self._docs.values()
            if any(needle in str(d.get(f) or "").lower() for f in fields)
        ]
        if limit is not None:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def insert(self, doc: dict) -> dict:
        async with self._lock:
            stored = copy.deepcopy(doc)
            stored.setdefault("id", new_id())
            if stored["id"] in self._docs:
                raise Conflict(f"duplicate id in {self.name}: {stored['id']}")
            self._check_unique(stored)
            self._docs[stored["id"]] = stored
            return copy.deepcopy(stored)

    async def find_one_and_update(
        self,
        doc_id: str,
        *,
        set_fields: dict[str, Any] | None = None,
        push: dict[str, Any] | None = None,
        pull: dict[str, Any] | None = None,
        expect: dict[str, Any] | None = None,
        touch: str | None = None,
    ) -> dict | None:
        async with self._lock:
            current = self._docs.get(doc_id)
            if current is None or not _matches(current, expect):
                return None
            updated = copy.deepcopy(current)
            updated.update(copy.deepcopy(set_fields or {}))
            for field, value in (push or {}).items():
                updated[field] = list(updated.get(field) or []) + [value]
            for field, value in (pull or {}).items():
                updated[field] = [v for v in updated.get(field) or [] if v != value]
            if touch:
                updated[touch] = next_timestamp(current.get(touch))
            self._check_unique(updated)
            self._docs[doc_id] = updated
            return copy.deepcopy(updated)

    async def delete_one(self, doc_id: str) -> dict | None:
        async with self._lock:
            return self._docs.pop(doc_id, None)

    def __len__(self) -> int:
        return len(self._docs)

    def _check_unique(self, doc: dict) -> None:
        for fields in self.unique:
            values = tuple(doc.get(f) for f in fields)
            for other in self._docs.values():
                if other["id"] == doc["id"]:
                    continue
                if tuple(other.get(f) for f in fields) == values:
                    raise Conflict(
                        f"duplicate {'/'.join(fields)} in {self.name}: "
                        f"{'/'.join(str(v) for v in values)}"
                    )


class MemoryDatabase:
    def __init__(self) -> None:
        self._collections: dict[str, MemoryCollection] = {}

    def collection(
        self, name: str, unique: tuple[tuple[str, ...], ...] = ()
    ) -> MemoryCollection:
        if name not in self._collections:
            self._collections[name] = MemoryCollection(name, unique)
        return self._collections[name]

    async def migrate(self) -> None:
        return None

    async def close(self) -> None:
        return None


def _matches(doc: dict, where: dict[str, Any] | None) -> bool:
    if not where:
        return True
    return all(doc.get(field) == value for field, value in where.items())
