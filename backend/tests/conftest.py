"""
Pytest configuration and fixtures.
"""

import os
import socketserver
import sys
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.settings import get_settings


REDIS_ENV_VARS = [
    "REDIS_URL",
    "REDIS_ID",
    "REDIS_DRIVER",
    "REDIS_NETWORK_TIMEOUT",
    "REDIS_RECONNECT_ATTEMPTS",
    "REDIS_SIZE",
    "REDIS_POOL_TIMEOUT",
    "REDIS_SENTINELS",
    "REDIS_MASTER_NAME",
    "REDIS_ROLE",
    "REDIS_NAMESPACE",
]


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch, tmp_path):
    """Isolate every test from the environment and any local .env file."""
    for name in REDIS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sync_redis():
    """Stand-in for a sync redis-py client."""
    client = MagicMock()
    client.execute_command.return_value = "OK"
    return client


@pytest.fixture
def async_redis():
    """Stand-in for an asyncio redis-py client."""
    client = MagicMock()
    client.execute_command = AsyncMock(return_value="OK")
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def sentinel_options():
    return {
        "sentinels": [
            {"host": "sentinel-1", "port": 26379},
            "sentinel-2:26380",
        ],
        "master_name": "mymaster",
        "url": "redis://ignored:6379/0",
    }


def bulk(text: str) -> bytes:
    """RESP bulk string reply."""
    data = text.encode()
    return b"$%d\r\n%s\r\n" % (len(data), data)


class _RESPHandler(socketserver.StreamRequestHandler):
    def handle(self):
        server = self.server
        server.connections += 1
        connection_number = server.connections

        while True:
            command = self._read_command()
            if command is None:
                return
            name = command[0].upper()
            if name == server.drop_first and connection_number == 1:
                # hang up without replying
                return
            server.commands.append(command)
            reply = server.replies.get(name, b"+OK\r\n")
            if isinstance(reply, str):
                reply = bulk(reply)
            self.wfile.write(reply)
            self.wfile.flush()

    def _read_command(self):
        header = self.rfile.readline()
        if not header:
            return None
        args = []
        for _ in range(int(header[1:])):
            length = int(self.rfile.readline()[1:])
            args.append(self.rfile.read(length + 2)[:-2].decode())
        return args


class FakeRedisServer(socketserver.ThreadingTCPServer):
    """
    Minimal RESP server on a local port. Records every command it answers,
    replies from ``replies`` (str values are sent as bulk strings, ``+OK``
    otherwise) and can drop the first connection when it sees ``drop_first``.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, replies=None, drop_first=None):
        super().__init__(("127.0.0.1", 0), _RESPHandler)
        self.replies = {"PING": b"+PONG\r\n", **(replies or {})}
        self.drop_first = drop_first
        self.commands = []
        self.connections = 0

    @property
    def port(self) -> int:
        return self.server_address[1]


@pytest.fixture
def fake_redis_server():
    """Start throwaway RESP servers; all are shut down after the test."""
    servers = []

    def start(**kwargs):
        server = FakeRedisServer(**kwargs)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()
