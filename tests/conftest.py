"""Pytest fixtures for TouchPPP tests."""

import asyncio
import socket

import pytest
from unittest.mock import AsyncMock, MagicMock

from touchppp.config import Address, ModemConfig


@pytest.fixture
def modem_config():
    """Config for a test listener on an ephemeral loopback port, echo off."""
    return ModemConfig(
        listen=Address("127.0.0.1", 0),
        echo=False,
        connect_timeout=2.0,
        log_target="console",
        escape_detection=True,
    )


@pytest.fixture
def mock_writer():
    """Mock asyncio.StreamWriter for the device side."""
    mock = MagicMock()
    mock.write.return_value = None
    mock.drain = AsyncMock()
    mock.wait_closed = AsyncMock()
    mock.get_extra_info.return_value = ("127.0.0.1", 50000)
    return mock


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def sample_config_yaml(tmp_path):
    """Create a sample config.yaml file for testing."""
    config_content = """
modem:
  listen: "6400"
  connect: "ppp.example.net:2323"
  connect_timeout: 5
  idle_timeout: 600
  echo: false
  identity: "Test Modem"
  carrier_rate: 33600
  connect_rate: 115200
  log_target: "test.log"
  log_level: "DEBUG"
  phonebook:
    "1-800-613-8199": "127.0.0.1:2323"
    5551212: "[::1]:2324"
"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(config_content)
    return str(config_file)


class FakeBackend:
    """Loopback TCP server standing in for the PPP service."""

    def __init__(self):
        self.connections = asyncio.Queue()
        self.writers = []
        self.server = None
        self.port = None

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    @property
    def address(self):
        return Address("127.0.0.1", self.port)

    async def _handle(self, reader, writer):
        self.writers.append(writer)
        await self.connections.put((reader, writer))

    async def accept(self, timeout=5.0):
        return await asyncio.wait_for(self.connections.get(), timeout)

    def close(self):
        self.server.close()
        for writer in self.writers:
            writer.close()


@pytest.fixture
def fake_backend():
    """Factory for a FakeBackend; call ``await fake_backend()`` inside the event loop."""
    return lambda: FakeBackend().start()
