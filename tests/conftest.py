"""
Shared fixtures for tunnel tests.

The SSH session is replaced by FakeSSHConnection, whose forwarding channels
are plain TCP connections made from the test process. Everything below the
session (listener, forwarder, lifecycle) runs for real against local echo
servers.
"""

import asyncio
import socket
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, List, Optional, Tuple

import asyncssh
import pytest

from bastion_forward.core.interfaces.tunnel import TunnelSpec
from bastion_forward.infrastructure.ssh.connection import ConnectionManager


class FakeSSHConnection:
    """Stands in for asyncssh.SSHClientConnection."""

    def __init__(self) -> None:
        self.opened: List[Tuple[str, int]] = []
        self.close_calls = 0
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def open_connection(self, host: str, port: int) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        self.opened.append((host, port))
        return await asyncio.open_connection(host, port)

    def close(self) -> None:
        self.close_calls += 1
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()


class FakeConnectionManager(ConnectionManager):
    """Connection manager returning a prepared connection without dialing."""

    def __init__(self, connection: Any, gate: Optional[asyncio.Event] = None) -> None:
        super().__init__()
        self.connection = connection
        self.gate = gate
        self.calls = 0
        self.client_key: Optional[asyncssh.SSHKey] = None

    async def connect(self, spec: TunnelSpec, client_key: asyncssh.SSHKey) -> Any:
        self.calls += 1
        self.client_key = client_key
        if self.gate is not None:
            await self.gate.wait()
        return self.connection


async def _echo(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    try:
        while True:
            data = await reader.read(65536)
            if not data:
                break
            writer.write(data)
            await writer.drain()
    except ConnectionError:
        pass
    finally:
        writer.close()


@pytest.fixture(scope="session")
def client_key() -> asyncssh.SSHKey:
    """A freshly generated private key."""
    return asyncssh.generate_private_key('ssh-ed25519')


@pytest.fixture
def key_file(tmp_path: Path, client_key: asyncssh.SSHKey) -> str:
    """Path to an unencrypted OpenSSH private key file."""
    path = tmp_path / "id_ed25519"
    client_key.write_private_key(str(path))
    return str(path)


@pytest.fixture
async def echo_server() -> AsyncGenerator[Tuple[str, int], None]:
    """A local TCP echo server, yields (host, port)."""
    server = await asyncio.start_server(_echo, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    yield "127.0.0.1", port

    server.close()
    await asyncio.wait_for(server.wait_closed(), timeout=5)


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def fake_connection() -> FakeSSHConnection:
    return FakeSSHConnection()


@pytest.fixture
async def fake_manager(fake_connection: FakeSSHConnection) -> FakeConnectionManager:
    return FakeConnectionManager(fake_connection)


@pytest.fixture
def make_spec(key_file: str) -> Callable[..., TunnelSpec]:
    """Factory for tunnel specs pointing at a local destination port."""

    def _make(destination_port: int, **overrides: Any) -> TunnelSpec:
        values: dict = {
            "bastion_host": "bastion.example.com",
            "username": "deploy",
            "key_file": key_file,
            "destination_host": "127.0.0.1",
            "destination_port": destination_port,
            "grace_period": 2.0,
            "channel_open_timeout": 2.0,
        }
        values.update(overrides)
        return TunnelSpec(**values)

    return _make
