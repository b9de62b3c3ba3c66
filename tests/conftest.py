"""Shared test fixtures."""

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest
import pytest_asyncio

from couchops.client import CouchClient
from couchops.models.settings import ClientSettings, Credentials

BASE_URL = "http://couch.test"

Handler = Callable[[httpx.Request], httpx.Response]


def raw_path(request: httpx.Request) -> str:
    """Request path exactly as sent, percent-escapes intact, without the query."""
    return request.url.raw_path.decode("ascii").split("?", 1)[0]


class FakeCouch:
    """Routes requests to canned handlers and records everything it receives.

    Routes are keyed on ``(method, raw path)``; unknown routes answer 404 the
    way CouchDB does.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], Handler] = {}

    def route(self, method: str, path: str, handler: Handler) -> None:
        self._routes[(method, path)] = handler

    def reply(self, method: str, path: str, status: int = 200, body: object = None) -> None:
        self.route(method, path, lambda request: httpx.Response(status, json=body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get((request.method, raw_path(request)))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found", "reason": "missing"})
        return handler(request)

    @property
    def last_json(self) -> object:
        return json.loads(self.requests[-1].content)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def make_client(fake: FakeCouch, **settings: object) -> CouchClient:
    """Client whose async and sync transports both go to ``fake``."""
    transport = httpx.MockTransport(fake.handler)
    return CouchClient(
        ClientSettings(base_url=BASE_URL, **settings),
        http_client=httpx.AsyncClient(transport=transport),
        sync_http_client=httpx.Client(transport=transport),
    )


@pytest.fixture
def fake_couch():
    """In-process stand-in for a CouchDB server."""
    return FakeCouch()


@pytest.fixture
def settings():
    """Settings with credentials and no client-side deadline."""
    return ClientSettings(
        base_url=BASE_URL,
        credentials=Credentials(username="admin", password="s3cret"),
        timeout=None,
    )


@pytest_asyncio.fixture
async def client(fake_couch):
    """Client backed by the fake server."""
    couch = make_client(fake_couch, timeout=None)
    yield couch
    await couch.close()


@pytest_asyncio.fixture
async def db(client):
    """The ``testdb`` database on the fake server."""
    return client.database("testdb")
