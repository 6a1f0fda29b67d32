"""
Local TCP listener for the tunnel.

Binds a loopback socket, exposes the bound address as soon as the bind
succeeds and runs the accept loop as its own task. Every accepted connection
is handed to the connection handler in a new task so accepts never wait on
forwarding.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set, Tuple

from ...core.exceptions import ListenError

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


class LocalListener:
    """Loopback listener with a tracked set of per-connection tasks."""

    def __init__(self, host: str, port: int, handler: ConnectionHandler):
        """
        Initialize listener.

        Args:
            host: Local address to bind
            port: Local port, 0 for an OS-assigned port
            handler: Coroutine run for every accepted connection
        """
        self._host = host
        self._port = port
        self._handler = handler

        self._server: Optional[asyncio.AbstractServer] = None
        self._bound_address: Optional[Tuple[str, int]] = None
        self._accept_task: Optional[asyncio.Task[None]] = None
        self._connections: Set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def bound_address(self) -> Optional[Tuple[str, int]]:
        """(host, port) once bound, None before."""
        return self._bound_address

    @property
    def connection_tasks(self) -> Set[asyncio.Task[None]]:
        """Tasks of connections that are still being handled."""
        return set(self._connections)

    def is_serving(self) -> bool:
        return (not self._closed and self._accept_task is not None
                and not self._accept_task.done())

    async def listen(self) -> Tuple[str, int]:
        """
        Bind the listening socket without accepting yet.

        Returns:
            The bound (host, port)

        Raises:
            ListenError: If the address cannot be bound
        """
        try:
            self._server = await asyncio.start_server(
                self._on_connect, self._host, self._port, start_serving=False
            )
        except OSError as e:
            raise ListenError(self._host, self._port, e.strerror or str(e)) from e

        sockname = self._server.sockets[0].getsockname()
        self._bound_address = (sockname[0], sockname[1])

        logger.info(
            f"Listening on {self._bound_address[0]}:{self._bound_address[1]}",
            extra={"event": "listener.bound", "host": self._bound_address[0],
                   "port": self._bound_address[1]}
        )
        return self._bound_address

    async def serve(self) -> "asyncio.Task[None]":
        """
        Start listening and run the accept loop task.

        Connections are queued by the kernel from the moment this returns.
        """
        if self._server is None:
            raise RuntimeError("Listener is not bound")
        if self._accept_task is None:
            await self._server.start_serving()
            self._accept_task = asyncio.create_task(self._accept_loop())
        return self._accept_task

    async def close(self) -> None:
        """
        Stop accepting new connections. In-flight connections are untouched.

        Does not wait for the accept loop: on newer Pythons a cancelled
        ``serve_forever()`` only returns once every accepted connection is
        gone, so the loop is reaped by ``wait_closed()`` after ``drain()``.
        """
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.close()

        if self._accept_task is not None and not self._accept_task.done():
            self._accept_task.cancel()

    async def drain(self, grace_period: float) -> int:
        """
        Cancel in-flight connection tasks and wait for them to finish.

        Args:
            grace_period: Maximum time to wait in seconds

        Returns:
            Number of tasks still running after the grace period
        """
        tasks = self.connection_tasks
        if not tasks:
            return 0

        for task in tasks:
            task.cancel()

        _, pending = await asyncio.wait(tasks, timeout=grace_period)
        if pending:
            logger.warning(f"{len(pending)} connection(s) did not close within {grace_period}s")
        return len(pending)

    async def wait_closed(self, timeout: float) -> None:
        """Wait for the accept loop to end and the server to release its resources."""
        if self._server is None:
            return
        try:
            await asyncio.wait_for(self._wait_closed(self._server), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Listener did not close within {timeout}s")
            # a second cancel interrupts serve_forever()'s own wait_closed()
            if self._accept_task is not None and not self._accept_task.done():
                self._accept_task.cancel()

    async def _wait_closed(self, server: asyncio.AbstractServer) -> None:
        if self._accept_task is not None:
            await asyncio.wait({self._accept_task})
        await server.wait_closed()

    async def _accept_loop(self) -> None:
        """Run the accept loop until the listener is closed."""
        server = self._server
        if server is None:
            raise RuntimeError("Listener is not bound")
        try:
            await server.serve_forever()
        except asyncio.CancelledError:
            if not self._closed:
                raise
        except Exception as e:
            logger.error(
                f"Accept loop stopped: {e}",
                extra={"event": "listener.error", "error": str(e)}
            )
        finally:
            logger.info(
                "Listener closed",
                extra={"event": "listener.closed", "port": self._bound_address[1]
                       if self._bound_address else None}
            )

    async def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Hand an accepted connection to the handler in its own task."""
        if self._closed:
            writer.close()
            return

        task = asyncio.create_task(self._handler(reader, writer))
        self._connections.add(task)
        task.add_done_callback(self._connections.discard)
