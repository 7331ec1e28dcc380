"""
Unit tests for SqlCollection statement building and error translation.

A fake session stands in for the SQLAlchemy AsyncSession, so no PostgreSQL
server is needed.
"""

import json
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from bookswap.core.errors import Conflict, InvalidArgument, StoreUnavailable
from bookswap.core.sql_store import SqlCollection


class FakeResult:
    def __init__(self, rows):
        self.rows = rows

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return self.rows


class FakeSession:
    """Records statements and either returns canned rows or raises."""

    def __init__(self, rows=(), error=None):
        self.rows = list(rows)
        self.error = error
        self.statements = []
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, statement, params):
        self.statements.append((str(statement), params))
        if self.error is not None:
            raise self.error
        return FakeResult(self.rows)

    async def commit(self):
        self.committed = True

    async def rollback(self):
        self.rolled_back = True


class FakeDatabase:
    def __init__(self, session):
        self._session = session

    def session(self):
        return self._session


def row(doc):
    return SimpleNamespace(doc=json.dumps(doc))


class TestSqlCollection:
    """Tests for SqlCollection against a fake session."""

    @pytest.mark.asyncio
    async def test_insert_commits_and_returns_document(self):
        session = FakeSession(rows=[row({"id": "a" * 24, "title": "Emma"})])
        books = SqlCollection(FakeDatabase(session), "books")

        doc = await books.insert({"id": "a" * 24, "title": "Emma"})

        assert doc == {"id": "a" * 24, "title": "Emma"}
        assert session.committed
        sql, params = session.statements[0]
        assert "INSERT INTO books" in sql
        assert json.loads(params["doc"])["title"] == "Emma"

    @pytest.mark.asyncio
    async def test_conditional_update_puts_expect_in_where(self):
        session = FakeSession(rows=[])
        offers = SqlCollection(FakeDatabase(session), "exchange_offers")

        result = await offers.find_one_and_update(
            "b" * 24, set_fields={"status": "ACCEPTED"}, expect={"status": "PENDING"}
        )

        assert result is None
        sql, params = session.statements[0]
        assert "WHERE id = :id AND doc->>'status' = :e0" in sql
        assert sql.rstrip().endswith("RETURNING doc")
        assert params["e0"] == "PENDING"

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_conflict(self):
        session = FakeSession(error=IntegrityError("INSERT", {}, Exception("duplicate key")))
        users = SqlCollection(FakeDatabase(session), "users", unique=(("email",),))

        with pytest.raises(Conflict):
            await users.insert({"email": "ada@example.com"})
        assert session.rolled_back
        assert not session.committed

    @pytest.mark.asyncio
    async def test_operational_error_becomes_store_unavailable(self):
        session = FakeSession(error=OperationalError("UPDATE", {}, Exception("server closed")))
        orders = SqlCollection(FakeDatabase(session), "orders")

        with pytest.raises(StoreUnavailable):
            await orders.delete_one("c" * 24)
        assert session.rolled_back

    @pytest.mark.asyncio
    async def test_read_errors_become_store_unavailable(self):
        orders = SqlCollection(FakeDatabase(FakeSession(error=OSError("refused"))), "orders")

        with pytest.raises(StoreUnavailable):
            await orders.find({"user_id": "u"})

    def test_identifiers_are_validated(self):
        with pytest.raises(InvalidArgument):
            SqlCollection(FakeDatabase(FakeSession()), "books; DROP TABLE users")
