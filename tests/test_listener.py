"""
Tests for the local listener.
"""

import asyncio
import socket

import pytest

from bastion_forward.core.exceptions import ListenError
from bastion_forward.infrastructure.ssh.listener import LocalListener


class RecordingHandler:
    """Connection handler that holds each connection until released."""

    def __init__(self):
        self.calls = 0
        self.cancelled = 0
        self.release = asyncio.Event()
        self.accepted = asyncio.Event()

    async def __call__(self, reader, writer):
        self.calls += 1
        self.accepted.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            writer.close()


@pytest.fixture
async def handler():
    return RecordingHandler()


@pytest.fixture
async def listener(handler):
    listener = LocalListener("127.0.0.1", 0, handler)
    yield listener
    await listener.close()
    await listener.drain(1.0)
    await listener.wait_closed(1.0)


class TestLocalListener:
    """Test cases for LocalListener."""

    async def test_listen_assigns_port(self, listener):
        host, port = await listener.listen()

        assert host == "127.0.0.1"
        assert port > 0
        assert listener.bound_address == (host, port)
        assert not listener.is_serving()

    async def test_serve_requires_bind(self, listener):
        with pytest.raises(RuntimeError):
            await listener.serve()

    async def test_accept_loop_requires_bind(self, listener):
        with pytest.raises(RuntimeError):
            await listener._accept_loop()

    async def test_accepts_connections(self, listener, handler):
        host, port = await listener.listen()
        await listener.serve()
        assert listener.is_serving()

        reader, writer = await asyncio.open_connection(host, port)
        await asyncio.wait_for(handler.accepted.wait(), timeout=1.0)

        assert handler.calls == 1
        assert len(listener.connection_tasks) == 1

        handler.release.set()
        assert await asyncio.wait_for(reader.read(), timeout=1.0) == b""
        writer.close()

    async def test_handler_tasks_are_independent(self, listener, handler):
        host, port = await listener.listen()
        await listener.serve()

        clients = [await asyncio.open_connection(host, port) for _ in range(3)]
        for _ in range(50):
            if handler.calls == 3:
                break
            await asyncio.sleep(0.01)

        assert handler.calls == 3
        assert len(listener.connection_tasks) == 3

        for _, writer in clients:
            writer.close()

    async def test_close_refuses_new_connections(self, listener):
        host, port = await listener.listen()
        await listener.serve()

        await listener.close()
        await listener.wait_closed(1.0)

        assert not listener.is_serving()
        with pytest.raises(OSError):
            await asyncio.open_connection(host, port)

    async def test_close_is_idempotent(self, listener):
        await listener.listen()
        await listener.serve()

        await listener.close()
        await listener.close()

    async def test_drain_cancels_connections(self, listener, handler):
        host, port = await listener.listen()
        await listener.serve()

        reader, writer = await asyncio.open_connection(host, port)
        await asyncio.wait_for(handler.accepted.wait(), timeout=1.0)

        await listener.close()
        pending = await listener.drain(1.0)

        assert pending == 0
        assert handler.cancelled == 1
        assert listener.connection_tasks == set()
        assert await asyncio.wait_for(reader.read(), timeout=1.0) == b""
        writer.close()

    async def test_close_does_not_wait_for_open_connections(self, listener, handler):
        host, port = await listener.listen()
        await listener.serve()

        reader, writer = await asyncio.open_connection(host, port)
        await asyncio.wait_for(handler.accepted.wait(), timeout=1.0)

        await asyncio.wait_for(listener.close(), timeout=1.0)
        assert not listener.is_serving()
        assert len(listener.connection_tasks) == 1

        assert await listener.drain(1.0) == 0
        await asyncio.wait_for(listener.wait_closed(1.0), timeout=2.0)

        assert await asyncio.wait_for(reader.read(), timeout=1.0) == b""
        writer.close()

    async def test_wait_closed_reaps_accept_loop(self, listener):
        await listener.listen()
        accept_task = await listener.serve()

        await listener.close()
        await listener.wait_closed(1.0)

        assert accept_task.done()

    async def test_drain_without_connections(self, listener):
        await listener.listen()
        assert await listener.drain(0.1) == 0

    async def test_port_in_use(self, handler):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen()
            port = sock.getsockname()[1]

            listener = LocalListener("127.0.0.1", port, handler)
            with pytest.raises(ListenError) as exc_info:
                await listener.listen()

        assert exc_info.value.port == port
        assert isinstance(exc_info.value.__cause__, OSError)
