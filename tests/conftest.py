"""Shared fakes for runner tests."""

import asyncio
from typing import Any

import pytest

from bottlecap_runner.backend import BackendError
from bottlecap_runner.events import RecordingEventSink
from bottlecap_runner.protocol import (
    ChatMessage,
    ChatOptions,
    Usage,
    decode_client_message,
    encode_server_message,
)
from bottlecap_runner.session import CancelSignal, RunnerSession


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection.

    Frames pushed with ``feed`` come out of ``recv`` in order; exceptions
    pushed the same way are raised from ``recv`` instead.
    """

    def __init__(self, block_time: float = 0):
        self.block_time = block_time
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[str] = []
        self.send_error: BaseException | None = None
        self.closed = False

    async def recv(self) -> Any:
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, message: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        if self.block_time > 0:
            await asyncio.sleep(self.block_time)
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True

    def feed(self, frame: Any) -> None:
        self.incoming.put_nowait(frame)

    def feed_message(self, message) -> None:
        self.feed(encode_server_message(message))

    def sent_messages(self) -> list:
        return [decode_client_message(text) for text in self.sent]


class FakeBackend:
    """Scripted Ollama client."""

    def __init__(self):
        self.models: list[str] = ["llama3.2:latest", "mistral:7b"]
        self.list_error: BackendError | None = None
        self.content = "Hello from Ollama"
        self.usage = Usage(input_tokens=10, output_tokens=5)
        self.chat_error: Exception | None = None
        self.reachable = True
        self.calls: list[tuple[str, list[ChatMessage], ChatOptions]] = []
        # When set, chat_completion waits on it before answering
        self.gate: asyncio.Event | None = None

    async def probe(self) -> bool:
        return self.reachable

    async def list_models(self) -> list[str]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.models)

    async def chat_completion(self, model, messages, options=None):
        self.calls.append((model, list(messages), options))
        if self.gate is not None:
            await self.gate.wait()
        if self.chat_error is not None:
            raise self.chat_error
        return self.content, self.usage


class SocketFactory:
    """Connector that hands out a fresh FakeWebSocket per connection."""

    def __init__(self):
        self.sockets: list[FakeWebSocket] = []
        self.urls: list[str] = []
        self.error: BaseException | None = None
        self.on_connect = None

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.on_connect is not None:
            self.on_connect(url)
        if self.error is not None:
            raise self.error
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def connector() -> SocketFactory:
    return SocketFactory()


@pytest.fixture
def make_session(backend, sink, connector):
    """Build a RunnerSession wired to the fakes."""

    def _make(**kwargs) -> RunnerSession:
        params = {
            "url": "wss://runners.test/party/main",
            "token": "bc_runner_test",
            "backend": backend,
            "sink": sink,
            "cancel": CancelSignal(),
            "connector": connector,
            "device_name": "test-box",
            "send_timeout": 1.0,
        }
        params.update(kwargs)
        return RunnerSession(**params)

    return _make
