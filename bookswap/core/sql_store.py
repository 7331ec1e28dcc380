"""
ストア層 — PostgreSQL 実装

コレクションごとに (seq, id, doc JSONB) のテーブルを 1 つ持つ
ドキュメントストア。SQLAlchemy の asyncio エンジン経由で text() SQL を発行する。

- find-and-modify は UPDATE ... RETURNING doc の 1 文で行い、更新後の値を返す
- $set / $push / $pull は JSONB 式の合成で表現する
- expect は WHERE 条件になるので、状態遷移は条件付き更新として原子的に行われる
- 一意制約は起動時 (migrate) に式インデックスとして作成する
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .errors import Conflict, InvalidArgument, StoreUnavailable
from .ids import new_id

logger = logging.getLogger(__name__)

_IDENT = re.compile(r"^[a-z_][a-z0-9_]*$")


def _ident(name: str) -> str:
    """テーブル名・フィールド名はコード由来だが、SQL に埋め込む前に必ず検証する。"""
    if not _IDENT.match(name):
        raise InvalidArgument(f"invalid identifier: {name!r}")
    return name


def _load(raw: Any) -> dict:
    return json.loads(raw) if isinstance(raw, (str, bytes)) else raw


class SqlCollection:
    def __init__(
        self,
        db: "SqlDatabase",
        name: str,
        unique: tuple[tuple[str, ...], ...] = (),
    ) -> None:
        self.db = db
        self.name = _ident(name)
        self.unique = tuple(tuple(_ident(f) for f in fields) for fields in unique)

    async def find_one(self, doc_id: str) -> dict | None:
        row = await self._fetchone(
            f"SELECT doc FROM {self.name} WHERE id = :id", {"id": doc_id}
        )
        return _load(row.doc) if row else None

    async def find(
        self,
        where: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        clauses, params = self._where(where)
        direction = "DESC" if descending else "ASC"
        if order_by is None:
            order = f"seq {direction}"
        else:
            # 並び替えは数値フィールドのみ（rating など）
            order = (
                f"CAST(doc->>'{_ident(order_by)}' AS DOUBLE PRECISION) "
                f"{direction} NULLS LAST, seq ASC"
            )
        sql = f"SELECT doc FROM {self.name}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        rows = await self._fetchall(sql, params)
        return [_load(r.doc) for r in rows]

    async def search(
        self, term: str, fields: tuple[str, ...], limit: int | None = None
    ) -> list[dict]:
        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        params: dict[str, Any] = {"q": f"%{escaped}%"}
        ors = " OR ".join(f"doc->>'{_ident(f)}' ILIKE :q ESCAPE '\\'" for f in fields)
        sql = f"SELECT doc FROM {self.name} WHERE ({ors}) ORDER BY seq ASC"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        rows = await self._fetchall(sql, params)
        return [_load(r.doc) for r in rows]

    async def insert(self, doc: dict) -> dict:
        stored = dict(doc)
        stored.setdefault("id", new_id())
        row = await self._fetchone(
            f"""
            INSERT INTO {self.name} (id, doc)
            VALUES (:id, CAST(:doc AS JSONB))
            RETURNING doc
            """,
            {"id": stored["id"], "doc": json.dumps(stored, default=str)},
            write=True,
        )
        return _load(row.doc)

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
        expr = "doc"
        params: dict[str, Any] = {"id": doc_id}

        if set_fields:
            expr = f"({expr} || CAST(:set_fields AS JSONB))"
            params["set_fields"] = json.dumps(set_fields, default=str)

        for i, (field, value) in enumerate((push or {}).items()):
            f = _ident(field)
            expr = (
                f"jsonb_set({expr}, '{{{f}}}', "
                f"COALESCE({expr}->'{f}', '[]'::jsonb) "
                f"|| jsonb_build_array(CAST(:push_{i} AS JSONB)))"
            )
            params[f"push_{i}"] = json.dumps(value, default=str)

        for i, (field, value) in enumerate((pull or {}).items()):
            f = _ident(field)
            expr = (
                f"jsonb_set({expr}, '{{{f}}}', COALESCE(("
                f"SELECT jsonb_agg(e.value ORDER BY e.n) "
                f"FROM jsonb_array_elements(COALESCE({expr}->'{f}', '[]'::jsonb)) "
                f"WITH ORDINALITY AS e(value, n) "
                f"WHERE e.value <> CAST(:pull_{i} AS JSONB)), '[]'::jsonb))"
            )
            params[f"pull_{i}"] = json.dumps(value, default=str)

        if touch:
            f = _ident(touch)
            # 前回値より必ず進める（単調増加）
            expr = (
                f"jsonb_set({expr}, '{{{f}}}', to_jsonb(GREATEST("
                f"CAST(:now AS TIMESTAMPTZ), "
                f"COALESCE(CAST(doc->>'{f}' AS TIMESTAMPTZ), CAST(:now AS TIMESTAMPTZ)) "
                f"+ INTERVAL '1 microsecond')))"
            )
            params["now"] = datetime.now(timezone.utc)

        clauses, where_params = self._where(expect, prefix="e")
        params.update(where_params)
        sql = f"UPDATE {self.name} SET doc = {expr} WHERE id = :id"
        if clauses:
            sql += " AND " + " AND ".join(clauses)
        sql += " RETURNING doc"

        row = await self._fetchone(sql, params, write=True)
        return _load(row.doc) if row else None

    async def delete_one(self, doc_id: str) -> dict | None:
        row = await self._fetchone(
            f"DELETE FROM {self.name} WHERE id = :id RETURNING doc",
            {"id": doc_id},
            write=True,
        )
        return _load(row.doc) if row else None

    # ── 内部ヘルパー ─────────────────────────────

    def _where(
        self, where: dict[str, Any] | None, prefix: str = "w"
    ) -> tuple[list[str], dict[str, Any]]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        for i, (field, value) in enumerate((where or {}).items()):
            clauses.append(f"doc->>'{_ident(field)}' = :{prefix}{i}")
            params[f"{prefix}{i}"] = str(value)
        return clauses, params

    async def _fetchone(self, sql: str, params: dict, write: bool = False):
        async with self.db.session() as session:
            try:
                result = await session.execute(text(sql), params)
                row = result.fetchone()
                if write:
                    await session.commit()
                return row
            except IntegrityError as e:
                await session.rollback()
                raise Conflict(f"unique constraint violated in {self.name}") from e
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                raise StoreUnavailable(f"{self.name}: {e}") from e

    async def _fetchall(self, sql: str, params: dict):
        async with self.db.session() as session:
            try:
                result = await session.execute(text(sql), params)
                return result.fetchall()
            except (SQLAlchemyError, OSError) as e:
                raise StoreUnavailable(f"{self.name}: {e}") from e


class SqlDatabase:
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        self._collections: dict[str, SqlCollection] = {}

    @classmethod
    def from_url(cls, url: str) -> "SqlDatabase":
        return cls(create_async_engine(url, echo=False, pool_pre_ping=True))

    def collection(
        self, name: str, unique: tuple[tuple[str, ...], ...] = ()
    ) -> SqlCollection:
        if name not in self._collections:
            self._collections[name] = SqlCollection(self, name, unique)
        return self._collections[name]

    async def migrate(self) -> None:
        """登録済みコレクションのテーブルと一意インデックスを作成する。"""
        try:
            async with self.engine.begin() as conn:
                for coll in self._collections.values():
                    await conn.execute(
                        text(f"""
                            CREATE TABLE IF NOT EXISTS {coll.name} (
                                seq BIGSERIAL,
                                id TEXT PRIMARY KEY,
                                doc JSONB NOT NULL
                            )
                        """)
                    )
                    for fields in coll.unique:
                        index = f"{coll.name}_{'_'.join(fields)}_key"
                        columns = ", ".join(f"(doc->>'{f}')" for f in fields)
                        await conn.execute(
                            text(
                                f"CREATE UNIQUE INDEX IF NOT EXISTS {index} "
                                f"ON {coll.name} ({columns})"
                            )
                        )
                    logger.info("Ensured collection %s", coll.name)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"migration failed: {e}") from e

    async def close(self) -> None:
        await self.engine.dispose()
