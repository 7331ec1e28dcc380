"""
Tests for the edge router, with upstream services replaced by httpx.MockTransport.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from bookswap.core.config import Settings
from bookswap.gateway.main import create_app, upstreams

SETTINGS = Settings(
    book_service_url="http://book:8001",
    user_service_url="http://user:8002/",
    library_service_url="http://library:8003",
)


class RecordingUpstream:
    """Mock transport handler that echoes what it received."""

    def __init__(self):
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(
            200,
            json={"method": request.method, "url": str(request.url)},
            headers={"x-upstream": "yes"},
        )


class TestUpstreams:
    def test_prefixes_map_to_service_mounts(self):
        table = upstreams(SETTINGS)

        assert table["books"] == "http://book:8001/books"
        assert table["users"] == "http://user:8002/users"
        assert table["libraries"] == "http://library:8003/library"
        assert set(table) == {"books", "users", "libraries", "exchange", "orders", "notifications"}


class TestGateway:
    """Tests for request forwarding."""

    @pytest.fixture
    def upstream(self):
        return RecordingUpstream()

    @pytest.fixture
    def client(self, upstream):
        app = create_app(SETTINGS, transport=httpx.MockTransport(upstream))
        with TestClient(app) as client:
            yield client

    def test_strips_prefix_and_keeps_query(self, client, upstream):
        resp = client.get("/books/genre/sci-fi", params={"page": "2"})

        assert resp.status_code == 200
        assert resp.json()["url"] == "http://book:8001/books/genre/sci-fi?page=2"
        assert resp.headers["x-upstream"] == "yes"

    def test_bare_prefix(self, client):
        assert client.get("/users").json()["url"] == "http://user:8002/users"

    def test_forwards_method_body_and_headers(self, client, upstream):
        client.post(
            "/libraries/assign",
            json={"user_id": "u", "book_id": "b"},
            headers={"x-request-id": "abc"},
        )

        sent = upstream.requests[0]
        assert sent.method == "POST"
        assert sent.url.path == "/library/assign"
        assert json.loads(sent.content) == {"user_id": "u", "book_id": "b"}
        assert sent.headers["x-request-id"] == "abc"
        assert sent.headers["host"] == "library:8003"

    def test_repeated_headers_are_kept(self):
        upstream = RecordingUpstream()

        def with_cookies(request):
            upstream(request)
            return httpx.Response(
                200, headers=[("set-cookie", "a=1"), ("set-cookie", "b=2")], json={}
            )

        app = create_app(SETTINGS, transport=httpx.MockTransport(with_cookies))
        with TestClient(app) as client:
            resp = client.get("/books", headers=[("x-tag", "one"), ("x-tag", "two")])

        assert upstream.requests[0].headers.get_list("x-tag") == ["one", "two"]
        assert resp.headers.get_list("set-cookie") == ["a=1", "b=2"]

    def test_upstream_status_is_passed_through(self):
        app = create_app(
            SETTINGS,
            transport=httpx.MockTransport(
                lambda request: httpx.Response(404, json={"detail": "book x not found"})
            ),
        )
        with TestClient(app) as client:
            resp = client.get("/books/" + "0" * 24)

        assert resp.status_code == 404
        assert resp.json() == {"detail": "book x not found"}

    def test_unknown_prefix_is_404(self, client, upstream):
        assert client.get("/payments/1").status_code == 404
        assert upstream.requests == []

    def test_upstream_failure_is_502(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        app = create_app(SETTINGS, transport=httpx.MockTransport(refuse))
        with TestClient(app) as client:
            resp = client.get("/orders")

        assert resp.status_code == 502

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"
