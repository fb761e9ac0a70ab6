"""Pytest configuration and shared fixtures."""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import pytest
from starlette.datastructures import Address
from starlette.websockets import WebSocketState

from session_relay.api.ws.broker import BrokerMessage
from session_relay.api.ws.connection import ClientConnection
from session_relay.api.ws.registry import SessionRegistry
from session_relay.core.config import Settings
from session_relay.core.exceptions import BrokerConnectionError, SubscriptionError


# =============================================================================
# Fake WebSocket
# =============================================================================


class FakeWebSocket:
    """In-memory stand-in for a Starlette WebSocket.

    Inbound messages are queued with push_text/push_bytes/push_disconnect;
    everything sent is recorded in ``sent``.
    """

    def __init__(
        self,
        send_error: Exception | None = None,
        send_delay: float = 0.0,
    ) -> None:
        self.client = Address("127.0.0.1", 50000)
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str | bytes] = []
        self.close_calls: list[tuple[int, str]] = []
        self.send_error = send_error
        self.send_delay = send_delay
        self._inbound: asyncio.Queue[dict[str, Any] | Exception] = asyncio.Queue()

    def push_text(self, text: str) -> None:
        self._inbound.put_nowait({"type": "websocket.receive", "text": text})

    def push_json(self, data: Any) -> None:
        self.push_text(json.dumps(data))

    def push_bytes(self, data: bytes) -> None:
        self._inbound.put_nowait({"type": "websocket.receive", "bytes": data})

    def push_disconnect(self, code: int = 1000) -> None:
        self._inbound.put_nowait({"type": "websocket.disconnect", "code": code})

    def push_error(self, error: Exception) -> None:
        self._inbound.put_nowait(error)

    async def receive(self) -> dict[str, Any]:
        message = await self._inbound.get()
        if isinstance(message, Exception):
            raise message
        if message["type"] == "websocket.disconnect":
            self.client_state = WebSocketState.DISCONNECTED
        return message

    async def _send(self, payload: str | bytes) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(payload)

    async def send_text(self, data: str) -> None:
        await self._send(data)

    async def send_bytes(self, data: bytes) -> None:
        await self._send(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_calls.append((code, reason or ""))
        self.application_state = WebSocketState.DISCONNECTED


# =============================================================================
# Fake Broker
# =============================================================================

_END = object()


class FakeSubscription:
    """Subscription fed from an asyncio.Queue."""

    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def put(self, topic: str, payload: str | bytes) -> None:
        self._queue.put_nowait(BrokerMessage(topic=topic, payload=payload))

    def end(self) -> None:
        self._queue.put_nowait(_END)

    def fail(self, error: Exception | None = None) -> None:
        self._queue.put_nowait(error or BrokerConnectionError("connection reset"))

    async def __aiter__(self) -> AsyncIterator[BrokerMessage]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True


class FakeBroker:
    """Broker whose subscriptions are FakeSubscription objects.

    ``subscribe_failures`` makes the next N subscribe_pattern calls fail.
    """

    def __init__(self, ping_error: Exception | None = None, subscribe_failures: int = 0) -> None:
        self.ping_error = ping_error
        self.subscribe_failures = subscribe_failures
        self.subscriptions: list[FakeSubscription] = []
        self.closed = False
        self.subscribed = asyncio.Event()

    @property
    def current(self) -> FakeSubscription:
        return self.subscriptions[-1]

    async def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def subscribe_pattern(self, pattern: str) -> FakeSubscription:
        if self.subscribe_failures > 0:
            self.subscribe_failures -= 1
            raise SubscriptionError(pattern, f"Failed to create subscription for {pattern}")
        subscription = FakeSubscription(pattern)
        self.subscriptions.append(subscription)
        self.subscribed.set()
        return subscription

    async def publish(self, topic: str, payload: str | bytes) -> None:
        self.current.put(topic, payload)

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def registry() -> SessionRegistry:
    """Create an empty session registry."""
    return SessionRegistry()


@pytest.fixture
def broker() -> FakeBroker:
    """Create a fake broker that accepts subscriptions."""
    return FakeBroker()


@pytest.fixture
def make_connection():
    """Factory for ClientConnection objects over FakeWebSockets."""

    def _make(**kwargs: Any) -> ClientConnection:
        return ClientConnection(FakeWebSocket(**kwargs))

    return _make


@pytest.fixture
def settings() -> Settings:
    """Settings with short timeouts for tests."""
    return Settings(
        _env_file=None,
        listen_addr=":8081",
        redis_addr="127.0.0.1:6379",
        delivery_timeout=0.5,
        resubscribe_max_attempts=3,
        resubscribe_initial_delay=0.01,
        resubscribe_max_delay=0.02,
    )
