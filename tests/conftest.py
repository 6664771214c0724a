"""Pytest configuration for pyiobroker tests."""

import pytest

from fake_transport import FakeTransport
from pyiobroker import Connection, ConnectionConfig


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "network: test opens local sockets")


@pytest.fixture
def transport():
    """Create a fake transport."""
    return FakeTransport()


@pytest.fixture
async def make_connection(transport):
    """Create started connections on the fake transport."""
    connections = []

    async def _make(**kwargs):
        kwargs.setdefault("bootstrap_retry_interval", 0.2)
        conn = Connection(ConnectionConfig(**kwargs), transport=transport)
        await conn.start()
        connections.append(conn)
        return conn

    yield _make

    for conn in connections:
        await conn.stop()


@pytest.fixture
async def connection(make_connection):
    """Create a started web connection (not yet connected)."""
    return await make_connection()


@pytest.fixture
async def ready_connection(connection, transport):
    """Create a web connection that reached READY."""
    transport.open_session()
    await connection.wait_until_ready(timeout=1)
    return connection


@pytest.fixture
async def admin_connection(make_connection, transport):
    """Create an admin connection that reached READY."""
    conn = await make_connection(role="admin")
    transport.open_session()
    await conn.wait_until_ready(timeout=1)
    return conn
