"""
Tests for the order service, including the order → notification fan-out.
"""

import pytest
from fastapi.testclient import TestClient

from bookswap.core.errors import Conflict, InvalidArgument, InvalidTransition
from bookswap.core.runtime import ServiceRuntime
from bookswap.core.subjects import Subjects
from bookswap.notification.notifier import Notifier
from bookswap.notification.subscriber import subscribe_all
from bookswap.order import commands, queries
from bookswap.order.main import create_app
from bookswap.order.models import CreateOrderRequest, OrderStatus, UpdateOrderRequest
from bookswap.order.repository import OrderRepository

from .conftest import FakeUserDirectory, hex_id

U1 = hex_id(1)
B1 = hex_id(11)
B2 = hex_id(12)
B3 = hex_id(13)


class TestOrderCommands:
    """Tests for order commands and queries."""

    @pytest.fixture
    def repo(self, runtime):
        return OrderRepository(runtime.database, runtime.cache, runtime.tasks)

    @pytest.mark.asyncio
    async def test_create_fans_out_to_notification(self, repo, runtime, record_events, sink):
        """Creating an order emits orders.created and mails the user."""
        received = await record_events(runtime.bus, Subjects.ORDER_CREATED)
        await subscribe_all(runtime.bus, Notifier(FakeUserDirectory({U1: "u1@x"}), sink))

        order = await commands.create_order(
            repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[B1, B2])
        )
        await runtime.bus.drain()

        assert order.status is OrderStatus.CREATED
        assert received == [
            ("orders.created", {"order_id": order.id, "user_id": U1, "book_ids": [B1, B2]})
        ]
        assert len(sink.messages) == 1
        assert sink.messages[0].to == "u1@x"
        assert order.id in sink.messages[0].body

    @pytest.mark.asyncio
    async def test_bus_outage_is_not_fatal(self, repo, runtime, record_events, caplog):
        received = await record_events(runtime.bus, Subjects.ORDER_CREATED)
        runtime.bus.available = False

        order = await commands.create_order(
            repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[B1])
        )
        await runtime.bus.drain()

        assert (await queries.get_order(repo, order.id)) == order
        assert received == []
        assert "Failed to publish orders.created" in caplog.text

    @pytest.mark.asyncio
    async def test_single_terminal_transition(self, repo, runtime):
        order = await commands.create_order(
            repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[B1])
        )
        cancelled = await commands.cancel_order(repo, order.id)
        assert cancelled.status is OrderStatus.CANCELLED

        with pytest.raises(InvalidTransition):
            await commands.return_order(repo, runtime.emitter, order.id)
        with pytest.raises(InvalidTransition):
            await commands.cancel_order(repo, order.id)
        with pytest.raises(InvalidTransition):
            await commands.add_book(repo, order.id, B2)

    @pytest.mark.asyncio
    async def test_return_emits_order_completed(self, repo, runtime, record_events):
        received = await record_events(runtime.bus, Subjects.ORDER_COMPLETED)
        order = await commands.create_order(
            repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[B1])
        )

        returned = await commands.return_order(repo, runtime.emitter, order.id)
        await runtime.bus.drain()

        assert returned.status is OrderStatus.RETURNED
        assert received == [
            ("order.completed", {"order_id": order.id, "user_id": U1, "book_ids": [B1]})
        ]

    @pytest.mark.asyncio
    async def test_delete_emits_pre_image(self, repo, runtime, record_events):
        received = await record_events(runtime.bus, Subjects.ORDER_DELETED)
        order = await commands.create_order(
            repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[B1, B2])
        )

        await commands.delete_order(repo, runtime.emitter, order.id)
        await runtime.bus.drain()

        assert received == [
            ("order.deleted", {"order_id": order.id, "user_id": U1, "book_ids": [B1, B2]})
        ]
        assert await queries.list_by_user(repo, U1) == []

    @pytest.mark.asyncio
    async def test_updated_at_strictly_increases(self, repo, runtime):
        order = await commands.create_order(
            repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[B1])
        )

        stamps = [order.updated_at]
        stamps.append((await commands.add_book(repo, order.id, B2)).updated_at)
        stamps.append((await commands.remove_book(repo, order.id, B1)).updated_at)
        stamps.append(
            (await commands.update_order(repo, order.id, UpdateOrderRequest(book_ids=[B3]))).updated_at
        )
        stamps.append((await commands.cancel_order(repo, order.id)).updated_at)

        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    @pytest.mark.asyncio
    async def test_book_list_edits(self, repo, runtime):
        order = await commands.create_order(
            repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[B1])
        )

        with pytest.raises(Conflict):
            await commands.add_book(repo, order.id, B1)
        with pytest.raises(InvalidArgument):
            await commands.remove_book(repo, order.id, B1)
        with pytest.raises(InvalidArgument):
            await commands.remove_book(repo, order.id, B2)
        with pytest.raises(InvalidArgument):
            await commands.update_order(repo, order.id, UpdateOrderRequest(book_ids=[]))

    @pytest.mark.asyncio
    async def test_empty_order_is_rejected(self, repo, runtime):
        with pytest.raises(InvalidArgument):
            await commands.create_order(
                repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[])
            )

    @pytest.mark.asyncio
    async def test_status_lists_follow_transitions(self, repo, runtime):
        order = await commands.create_order(
            repo, runtime.emitter, CreateOrderRequest(user_id=U1, book_ids=[B1])
        )
        assert [o.id for o in await queries.list_by_status(repo, "created")] == [order.id]
        assert await queries.list_by_status(repo, "Returned") == []
        await runtime.tasks.drain()

        await commands.return_order(repo, runtime.emitter, order.id)

        assert await queries.list_by_status(repo, "created") == []
        assert [o.id for o in await queries.list_by_status(repo, "RETURNED")] == [order.id]

    @pytest.mark.asyncio
    async def test_unknown_status_is_invalid(self, repo):
        with pytest.raises(InvalidArgument):
            await queries.list_by_status(repo, "Shipped")


class TestOrderRoutes:
    """HTTP route tests with TestClient."""

    @pytest.fixture
    def client(self):
        with TestClient(create_app(ServiceRuntime.in_memory("order-service"))) as client:
            yield client

    def test_lifecycle(self, client):
        resp = client.post("/orders", json={"user_id": U1, "book_ids": [B1]})
        assert resp.status_code == 201
        order_id = resp.json()["id"]
        assert resp.json()["status"] == "Created"

        assert client.post(f"/orders/{order_id}/books", json={"book_id": B2}).status_code == 200
        assert client.post(f"/orders/{order_id}/cancel").json()["status"] == "Cancelled"
        assert client.post(f"/orders/{order_id}/return").status_code == 409

    def test_user_orders(self, client):
        order_id = client.post("/orders", json={"user_id": U1, "book_ids": [B1]}).json()["id"]

        assert [o["id"] for o in client.get(f"/orders/user/{U1}").json()] == [order_id]
        assert client.get("/orders", params={"status": "Created"}).json()[0]["id"] == order_id

    def test_delete_unknown_is_404(self, client):
        assert client.delete("/orders/" + "0" * 24).status_code == 404
