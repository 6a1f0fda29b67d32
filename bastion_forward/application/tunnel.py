"""
Tunnel lifecycle controller.

Composes the credential loader, connection manager, local listener and
connection forwarder into a single handle. ``start()`` returns once the
local port is bound and accepting; ``stop()`` closes the listener, drains
forwarded connections within the grace period and closes the SSH session.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

import asyncssh

from ..core.exceptions import TunnelError, TunnelStateError
from ..core.interfaces.tunnel import ITunnel, STATE_TRANSITIONS, TunnelSpec, TunnelState
from ..infrastructure.ssh.connection import ConnectionManager
from ..infrastructure.ssh.credentials import load_private_key
from ..infrastructure.ssh.forwarder import ConnectionForwarder
from ..infrastructure.ssh.listener import LocalListener

logger = logging.getLogger(__name__)

KeyLoader = Callable[[str, Optional[str]], asyncssh.SSHKey]


class TunnelHandle(ITunnel):
    """
    Handle for one SSH tunnel.

    A handle is started at most once. States only move forward:
    created -> connecting -> listening -> draining -> stopped, with failed
    reachable from connecting or listening.
    """

    def __init__(
        self,
        spec: TunnelSpec,
        connection_manager: Optional[ConnectionManager] = None,
        key_loader: KeyLoader = load_private_key
    ):
        """
        Initialize tunnel handle.

        Args:
            spec: Tunnel description
            connection_manager: SSH connection manager (default: ConnectionManager())
            key_loader: Function turning the key file into a credential
        """
        self._spec = spec
        self._connection_manager = connection_manager or ConnectionManager()
        self._key_loader = key_loader
        self._forwarder = ConnectionForwarder(
            spec.destination_host,
            spec.destination_port,
            channel_open_timeout=spec.channel_open_timeout
        )

        self._state = TunnelState.CREATED
        self._connection: Optional[asyncssh.SSHClientConnection] = None
        self._listener: Optional[LocalListener] = None
        self._local_address: Optional[Tuple[str, int]] = None
        self._start_task: Optional[asyncio.Task[Any]] = None
        self._supervisor_task: Optional[asyncio.Task[None]] = None
        self._teardown_task: Optional[asyncio.Task[None]] = None
        self._closed: Optional[asyncio.Event] = None
        self._failure: Optional[BaseException] = None
        self._started_at: Optional[float] = None

    @property
    def spec(self) -> TunnelSpec:
        return self._spec

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def failure(self) -> Optional[BaseException]:
        """Error that moved the tunnel to the failed state, if any."""
        return self._failure

    @property
    def local_address(self) -> Tuple[str, int]:
        """Bound (host, port). Only valid once the tunnel is listening."""
        if self._local_address is None:
            raise TunnelStateError(f"Tunnel is not listening (state: {self._state.value})")
        return self._local_address

    @property
    def local_port(self) -> int:
        return self.local_address[1]

    @property
    def connection(self) -> Optional[asyncssh.SSHClientConnection]:
        """The shared SSH session, None before it is established."""
        return self._connection

    async def start(self) -> None:
        """
        Connect to the bastion and bind the local listener.

        Returns once the tunnel is listening. Cancelling the calling task
        aborts the dial and leaves the handle stopped.

        Raises:
            TunnelStateError: If the handle was already started
            KeyLoadError: If the private key cannot be loaded
            DialError: If the SSH session cannot be established
            ListenError: If the local port cannot be bound
        """
        if self._state != TunnelState.CREATED:
            raise TunnelStateError(f"Tunnel already started (state: {self._state.value})")

        self._set_state(TunnelState.CONNECTING)
        self._closed = asyncio.Event()
        self._start_task = asyncio.current_task()

        try:
            client_key = self._key_loader(self._spec.key_file, self._spec.key_passphrase)
            self._connection = await self._connection_manager.connect(self._spec, client_key)

            self._listener = LocalListener(
                self._spec.local_host, self._spec.local_port, self._handle_connection
            )
            self._local_address = await self._listener.listen()
            await self._listener.serve()

        except asyncio.CancelledError:
            logger.info("Tunnel start cancelled")
            self._start_task = None
            try:
                await self._abort_setup()
            finally:
                self._set_state(TunnelState.STOPPED)
                self._closed.set()
            raise

        except Exception as e:
            logger.error(
                f"Tunnel to {self._spec.destination} via {self._spec.bastion} failed to start: {e}",
                extra={"event": "tunnel.failed", "error": str(e)}
            )
            # stop() from here on only waits for the abort below
            self._start_task = None
            self._failure = e
            try:
                await self._abort_setup()
            finally:
                self._set_state(TunnelState.FAILED)
                self._closed.set()
            raise

        finally:
            self._start_task = None

        self._started_at = time.time()
        self._set_state(TunnelState.LISTENING)
        self._supervisor_task = asyncio.create_task(self._supervise())

        logger.info(
            f"Tunnel ready: {self._local_address[0]}:{self._local_address[1]} -> "
            f"{self._spec.destination} via {self._spec.username}@{self._spec.bastion}"
        )

    async def stop(self) -> None:
        """
        Stop the tunnel. Safe to call repeatedly and concurrently.

        Closes the listener, cancels in-flight connections waiting at most the
        grace period for them, then closes the SSH session.
        """
        if self._state == TunnelState.CREATED:
            self._set_state(TunnelState.STOPPED)
            return

        if self._state == TunnelState.CONNECTING:
            if self._start_task is not None:
                self._start_task.cancel()
            if self._closed is not None:
                await self._closed.wait()
            return

        if self._teardown_task is None:
            if self._state != TunnelState.LISTENING:
                return
            self._teardown_task = asyncio.create_task(self._teardown(TunnelState.STOPPED))

        await asyncio.shield(self._teardown_task)

    async def serve_forever(self) -> None:
        """
        Wait until the tunnel is stopped or fails.

        Cancelling the waiting task stops the tunnel.

        Raises:
            TunnelError: If the SSH session was lost
        """
        if self._closed is None:
            raise TunnelStateError("Tunnel has not been started")

        try:
            await self._closed.wait()
        except asyncio.CancelledError:
            await self.stop()
            raise

        if self._state == TunnelState.FAILED and self._failure is not None:
            raise self._failure

    async def check_health(self) -> Dict[str, Any]:
        """Perform health check."""
        stats = self._forwarder.get_stats()
        return {
            "healthy": self._state == TunnelState.LISTENING,
            "status": self._state.value,
            "details": {
                "bastion": self._spec.bastion,
                "destination": self._spec.destination,
                "local_address": (
                    f"{self._local_address[0]}:{self._local_address[1]}"
                    if self._local_address else None
                ),
                "uptime": time.time() - self._started_at if self._started_at else 0.0,
                "last_error": str(self._failure) if self._failure else None,
                **stats,
            }
        }

    async def __aenter__(self) -> "TunnelHandle":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Listener callback for every accepted local connection."""
        if self._connection is None:
            writer.close()
            return
        await self._forwarder.forward(reader, writer, self._connection)

    async def _supervise(self) -> None:
        """Tear the tunnel down if the SSH session goes away on its own."""
        connection = self._connection
        if connection is None:
            return
        await connection.wait_closed()

        if self._state == TunnelState.LISTENING and self._teardown_task is None:
            self._failure = TunnelError(f"SSH session to {self._spec.bastion} closed unexpectedly")
            logger.error(
                str(self._failure),
                extra={"event": "tunnel.failed", "error": str(self._failure)}
            )
            self._teardown_task = asyncio.create_task(self._teardown(TunnelState.FAILED))

    async def _teardown(self, final_state: TunnelState) -> None:
        """Close listener, then connections, then the session."""
        grace_period = self._spec.grace_period
        if final_state == TunnelState.STOPPED:
            self._set_state(TunnelState.DRAINING)

        try:
            if self._listener is not None:
                await self._listener.close()
                await self._listener.drain(grace_period)

            current = asyncio.current_task()
            if self._supervisor_task is not None and self._supervisor_task is not current:
                self._supervisor_task.cancel()

            await self._close_connection(grace_period)

            if self._listener is not None:
                await self._listener.wait_closed(grace_period)
        finally:
            self._set_state(final_state)
            if self._closed is not None:
                self._closed.set()

    async def _abort_setup(self) -> None:
        """Release whatever a failed start() acquired."""
        if self._listener is not None:
            await self._listener.close()
            await self._listener.wait_closed(self._spec.grace_period)
        await self._close_connection(self._spec.grace_period)

    async def _close_connection(self, timeout: float) -> None:
        if self._connection is None:
            return
        self._connection.close()
        try:
            await asyncio.wait_for(self._connection.wait_closed(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"SSH session to {self._spec.bastion} did not close within {timeout}s")

    def _set_state(self, state: TunnelState) -> None:
        old_state = self._state
        if state not in STATE_TRANSITIONS[old_state]:
            raise TunnelStateError(f"Invalid transition {old_state.value} -> {state.value}")

        self._state = state
        logger.debug(
            f"Tunnel state changed: {old_state.value} -> {state.value}",
            extra={"event": "tunnel.state", "old_state": old_state.value, "state": state.value}
        )


async def start_tunnel(spec: TunnelSpec, **kwargs: Any) -> TunnelHandle:
    """
    Create and start a tunnel.

    Args:
        spec: Tunnel description
        **kwargs: Extra TunnelHandle arguments

    Returns:
        A listening TunnelHandle
    """
    handle = TunnelHandle(spec, **kwargs)
    await handle.start()
    return handle


@asynccontextmanager
async def open_tunnel(spec: TunnelSpec, **kwargs: Any) -> AsyncIterator[TunnelHandle]:
    """Run a tunnel for the duration of an ``async with`` block."""
    handle = await start_tunnel(spec, **kwargs)
    try:
        yield handle
    finally:
        await handle.stop()
