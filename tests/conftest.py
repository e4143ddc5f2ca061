"""Shared fixtures: settings, an in-memory file server and event recording."""

import asyncio
from typing import Any, Callable

import httpx
import pytest

from filetasks_mcp.client import ApiClient
from filetasks_mcp.config import Settings
from filetasks_mcp.events import Event, EventBus


class FakeServer:
    """Answers API requests from a route table and records every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Callable] = {}

    def route(self, method: str, path: str, status: int = 200, json: Any = None) -> None:
        self.routes[(method, path)] = lambda request: httpx.Response(status, json=json)

    def handler(self, method: str, path: str, func: Callable) -> None:
        self.routes[(method, path)] = func

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        func = self.routes.get((request.method, request.url.path))
        if func is None:
            return httpx.Response(404, json={"code": False, "message": "not found"})
        result = func(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result


class EventRecorder:
    def __init__(self, bus: EventBus):
        self.events: list[Event] = []
        bus.subscribe(Event, self.events.append)

    def of(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        base_url="http://files.test",
        session="session-cookie",
        poll_interval=0,
        push_enabled=False,
    )


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def transport(server) -> httpx.MockTransport:
    return httpx.MockTransport(server)


@pytest.fixture
async def client(settings, transport):
    api = ApiClient(settings, transport=transport)
    yield api
    await api.close()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)
