"""Shared pytest fixtures: recorded exchange frames and a scripted fake websocket"""

import json
from collections import deque
from pathlib import Path

import pytest
from websockets.exceptions import ConnectionClosedOK

from ftx_stream.utils.config import FtxConfig, StreamConfig

FIXTURES = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> dict:
    with open(FIXTURES / name) as f:
        return json.load(f)


class FakeWebSocket:
    """Plays back scripted frames, records what the client sends, then closes"""

    def __init__(self, frames=()):
        self.frames = deque(json.dumps(f) if isinstance(f, dict) else f for f in frames)
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        if self.closed or not self.frames:
            self.closed = True
            raise ConnectionClosedOK(None, None)
        return self.frames.popleft()

    async def close(self):
        self.closed = True

    def ops(self, op):
        return [msg for msg in self.sent if msg.get("op") == op]


class FakeExchange:
    """Connect factory handing out one scripted socket per connection attempt"""

    def __init__(self, *scripts):
        self.sockets = [FakeWebSocket(frames) for frames in scripts]
        self.urls = []

    async def connect(self, url, **kwargs):
        if len(self.urls) >= len(self.sockets):
            raise OSError("no more scripted connections")
        self.urls.append(url)
        return self.sockets[len(self.urls) - 1]


@pytest.fixture
def book_fixture():
    return load_fixture("ftx_orderbook_btc_perp.json")


@pytest.fixture
def deep_book_fixture():
    return load_fixture("ftx_orderbook_deep_eth_perp.json")


@pytest.fixture
def stream_config():
    return StreamConfig(ping_interval=3600, receive_timeout=5, reconnect_delay=0, max_reconnect_attempts=1)


@pytest.fixture
def anonymous_config():
    return FtxConfig()


@pytest.fixture
def authenticated_config():
    return FtxConfig(api_key="key", secret_key="secret", subaccount="mm")
