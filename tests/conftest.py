"""
Shared pytest fixtures and test doubles.

Everything runs against the in-memory store, cache and bus, so no test needs
PostgreSQL, Redis or an SMTP server.
"""

import asyncio
import json

import pytest
import pytest_asyncio

from bookswap.core.errors import DownstreamUnavailable
from bookswap.core.runtime import ServiceRuntime


def hex_id(n: int) -> str:
    """Deterministic 24-char hex id for readable tests."""
    return f"{n:024x}"


# =============================================================================
# Test doubles
# =============================================================================


class RecordingSink:
    """E-mail sink that keeps every message instead of sending it."""

    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail

    async def send(self, message):
        if self.fail:
            raise DownstreamUnavailable("smtp down")
        self.messages.append(message)


class FakeUserDirectory:
    """Stands in for the accounts service lookup used by the notifier."""

    def __init__(self, users=None, fail: bool = False):
        self.users = dict(users or {})
        self.fail = fail
        self.calls = []

    async def get_user(self, user_id):
        self.calls.append(user_id)
        if self.fail:
            raise DownstreamUnavailable("user service down")
        if user_id not in self.users:
            raise DownstreamUnavailable(f"user lookup {user_id} returned 404")
        return {"id": user_id, "name": "", "email": self.users[user_id], "password": ""}


class FakeLibraryClient:
    """In-process library used by the settlement saga."""

    def __init__(self, owned=(), fail_on=(), hang_on=()):
        self.owned = set(owned)
        self.fail_on = set(fail_on)
        # calls in hang_on block forever, so tests can cancel mid-settlement
        self.hang_on = set(hang_on)
        self.hanging = asyncio.Event()
        self.calls = []

    async def _maybe_hang(self, call):
        if call in self.hang_on:
            self.hanging.set()
            await asyncio.Event().wait()

    async def assign(self, user_id, book_id):
        self.calls.append(("assign", user_id, book_id))
        await self._maybe_hang(("assign", user_id, book_id))
        if ("assign", user_id, book_id) in self.fail_on:
            raise DownstreamUnavailable("library assign failed")
        self.owned.add((user_id, book_id))

    async def unassign(self, user_id, book_id):
        self.calls.append(("unassign", user_id, book_id))
        await self._maybe_hang(("unassign", user_id, book_id))
        if ("unassign", user_id, book_id) in self.fail_on:
            raise DownstreamUnavailable("library unassign failed")
        if (user_id, book_id) not in self.owned:
            raise DownstreamUnavailable("library unassign rejected (404)")
        self.owned.remove((user_id, book_id))


# =============================================================================
# Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def runtime():
    """Fresh in-memory runtime, closed after the test."""
    rt = ServiceRuntime.in_memory("test-service")
    yield rt
    await rt.close()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def record_events():
    """
    Subscribe a recorder to the given subjects.

    Returns a list that fills with (subject, decoded payload) tuples;
    call ``await bus.drain()`` before asserting on it.
    """

    async def _record(bus, *subjects):
        received = []

        async def handler(subject, payload):
            received.append((subject, json.loads(payload)))

        for subject in subjects:
            await bus.subscribe(subject, handler)
        return received

    return _record
