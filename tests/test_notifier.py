"""
Tests for the notification orchestrator.

Tests cover:
- Welcome e-mail from user.created without a user lookup
- Recipient lookup for every other subject
- Each dropped(reason) terminal state
- Wiring through the bus subscription
"""

import httpx
import pytest

from bookswap.core.bus import MemoryEventBus
from bookswap.core.emitter import EventEmitter
from bookswap.core.errors import DownstreamUnavailable
from bookswap.core.events import (
    BookCreated,
    EntryUpdated,
    ExchangeAccepted,
    ExchangeCreated,
    OrderCreated,
    UserCreated,
)
from bookswap.core.subjects import Subjects
from bookswap.notification.messages import RECIPIENT_FIELDS, TEMPLATES, compose
from bookswap.notification.notifier import Notifier
from bookswap.notification.subscriber import subscribe_all
from bookswap.notification.user_client import HttpUserDirectory

from .conftest import FakeUserDirectory, RecordingSink, hex_id

OWNER = hex_id(1)
COUNTERPARTY = hex_id(2)


class TestNotifier:
    """Tests for Notifier.handle."""

    @pytest.fixture
    def users(self):
        return FakeUserDirectory({OWNER: "owner@example.org", COUNTERPARTY: "cp@example.org"})

    @pytest.fixture
    def notifier(self, users, sink):
        return Notifier(users, sink)

    @pytest.mark.asyncio
    async def test_welcome_uses_carried_email(self, notifier, users, sink):
        """user.created is delivered to the e-mail in the event, with no lookup."""
        payload = UserCreated(
            id="a" * 24, name="Ada", email="ada@example.org"
        ).model_dump_json()

        outcome = await notifier.handle(Subjects.USER_CREATED, payload)

        assert outcome.state == "delivered"
        assert len(sink.messages) == 1
        assert sink.messages[0].to == "ada@example.org"
        assert "Ada" in sink.messages[0].body
        assert users.calls == []

    @pytest.mark.asyncio
    async def test_exchange_created_goes_to_counterparty(self, notifier, users, sink):
        payload = ExchangeCreated(
            offer_id=hex_id(9), owner_id=OWNER, counterparty_id=COUNTERPARTY
        ).model_dump_json()

        await notifier.handle(Subjects.EXCHANGE_CREATED, payload)

        assert users.calls == [COUNTERPARTY]
        assert sink.messages[0].to == "cp@example.org"
        assert hex_id(9) in sink.messages[0].body

    @pytest.mark.asyncio
    async def test_exchange_accepted_goes_to_owner(self, notifier, sink):
        payload = ExchangeAccepted(
            offer_id=hex_id(9), owner_id=OWNER, requester_id=COUNTERPARTY
        ).model_dump_json()

        await notifier.handle(Subjects.EXCHANGE_ACCEPTED, payload)

        assert sink.messages[0].to == "owner@example.org"

    @pytest.mark.asyncio
    async def test_lookup_failure_never_reaches_sink(self, sink):
        """When the user lookup fails the sink is not invoked."""
        notifier = Notifier(FakeUserDirectory(fail=True), sink)
        payload = OrderCreated(
            order_id=hex_id(5), user_id=OWNER, book_ids=[hex_id(6)]
        ).model_dump_json()

        outcome = await notifier.handle(Subjects.ORDER_CREATED, payload)

        assert outcome.state == "dropped"
        assert outcome.reason == "lookup_failed"
        assert sink.messages == []

    @pytest.mark.asyncio
    async def test_book_created_has_no_recipient(self, notifier, users, sink):
        payload = BookCreated(id=hex_id(3), title="Dune", author="Herbert").model_dump_json()

        outcome = await notifier.handle(Subjects.BOOK_CREATED, payload)

        assert outcome.reason == "no_recipient"
        assert users.calls == []
        assert sink.messages == []

    @pytest.mark.asyncio
    async def test_malformed_payload_is_parse_error(self, notifier, sink):
        outcome = await notifier.handle(Subjects.ORDER_CREATED, "{not json")

        assert outcome.reason == "parse_error"
        assert sink.messages == []

    @pytest.mark.asyncio
    async def test_send_failure_is_dropped(self, users):
        notifier = Notifier(users, RecordingSink(fail=True))
        payload = UserCreated(id="a" * 24, name="Ada", email="ada@example.org").model_dump_json()

        outcome = await notifier.handle(Subjects.USER_CREATED, payload)

        assert outcome.reason == "send_failed"

    @pytest.mark.asyncio
    async def test_unexpected_error_never_escapes(self, sink):
        class BrokenDirectory:
            async def get_user(self, user_id):
                raise RuntimeError("bug")

        notifier = Notifier(BrokenDirectory(), sink)
        payload = OrderCreated(order_id="o", user_id=OWNER, book_ids=[]).model_dump_json()

        outcome = await notifier.handle(Subjects.ORDER_CREATED, payload)

        assert outcome.reason == "internal_error"

    @pytest.mark.asyncio
    async def test_stats_count_outcomes(self, notifier):
        await notifier.handle(Subjects.USER_CREATED, "{}")
        await notifier.handle(
            Subjects.USER_CREATED,
            UserCreated(id="a" * 24, name="Ada", email="ada@example.org").model_dump_json(),
        )

        assert notifier.snapshot() == {
            "received": 2,
            "dropped": 1,
            "dropped:parse_error": 1,
            "delivered": 1,
        }

    @pytest.mark.asyncio
    async def test_library_update_mentions_new_book(self, notifier, sink):
        payload = EntryUpdated(id=hex_id(7), user_id=OWNER, book_id=hex_id(8)).model_dump_json()

        await notifier.handle(Subjects.LIBRARY_ENTRY_UPDATED, payload)

        assert sink.messages[0].to == "owner@example.org"
        assert hex_id(8) in sink.messages[0].body


class TestMessages:
    """Tests for recipient and template tables."""

    def test_every_subject_except_book_created_has_a_template(self):
        missing = set(Subjects.ALL) - set(TEMPLATES)
        assert missing == {Subjects.BOOK_CREATED}

    def test_only_user_created_and_book_created_lack_recipient_field(self):
        missing = set(Subjects.ALL) - set(RECIPIENT_FIELDS)
        assert missing == {Subjects.USER_CREATED, Subjects.BOOK_CREATED}

    def test_compose_without_template(self):
        event = BookCreated(id="x", title="Dune", author="Herbert")
        assert compose(Subjects.BOOK_CREATED, event, "a@b") is None


class TestSubscription:
    """End-to-end: emitter → bus → notifier → sink."""

    @pytest.mark.asyncio
    async def test_user_created_flows_to_sink(self, sink):
        bus = MemoryEventBus()
        users = FakeUserDirectory()
        await subscribe_all(bus, Notifier(users, sink))

        await EventEmitter(bus, "user-service").emit(
            Subjects.USER_CREATED,
            UserCreated(id="a" * 24, name="Ada", email="ada@example.org"),
        )
        await bus.drain()

        assert [m.to for m in sink.messages] == ["ada@example.org"]
        assert users.calls == []
        await bus.close()


class TestHttpUserDirectory:
    """Tests for the accounts lookup client."""

    @staticmethod
    def directory(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpUserDirectory("http://users.local/", client), client

    @pytest.mark.asyncio
    async def test_returns_user(self):
        def handler(request):
            assert request.url.path == f"/users/{OWNER}"
            return httpx.Response(200, json={"id": OWNER, "name": "O", "email": "o@x", "password": ""})

        directory, client = self.directory(handler)
        user = await directory.get_user(OWNER)

        assert user["email"] == "o@x"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_not_found_is_downstream_unavailable(self):
        directory, client = self.directory(lambda request: httpx.Response(404, json={}))

        with pytest.raises(DownstreamUnavailable, match="404"):
            await directory.get_user(OWNER)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_is_downstream_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        directory, client = self.directory(handler)

        with pytest.raises(DownstreamUnavailable):
            await directory.get_user(OWNER)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_email_is_downstream_unavailable(self):
        directory, client = self.directory(
            lambda request: httpx.Response(200, json={"id": OWNER, "email": ""})
        )

        with pytest.raises(DownstreamUnavailable):
            await directory.get_user(OWNER)
        await client.aclose()
