"""
Per-connection forwarding through the SSH session.

Each accepted local connection gets a direct-tcpip channel to the
destination and two byte pumps copying data opaquely in both directions.
Failures stay local to the connection: they are logged and never raised
to the tunnel.
"""

import asyncio
import itertools
import logging
import time
from typing import Any, Dict, List, Optional

import asyncssh

from ...core.exceptions import ForwardError
from ...core.interfaces.tunnel import ForwardedConnection

logger = logging.getLogger(__name__)

CHANNEL_ERRORS = (asyncssh.Error, OSError, asyncio.TimeoutError)


def _format_peer(peer: Any) -> str:
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


class ConnectionForwarder:
    """
    Forwards local connections to a fixed destination.

    One instance serves all connections of a tunnel; per-connection state
    lives in the ForwardedConnection record owned by each forward() call.
    """

    def __init__(
        self,
        destination_host: str,
        destination_port: int,
        channel_open_timeout: float = 10.0,
        buffer_size: int = 65536
    ):
        """
        Initialize forwarder.

        Args:
            destination_host: Destination host as resolved by the bastion
            destination_port: Destination port
            channel_open_timeout: Timeout for opening the SSH channel in seconds
            buffer_size: Maximum bytes copied per read
        """
        self._destination_host = destination_host
        self._destination_port = destination_port
        self._channel_open_timeout = channel_open_timeout
        self._buffer_size = buffer_size

        self._ids = itertools.count(1)
        self._active: Dict[int, ForwardedConnection] = {}
        self._total_connections = 0
        self._failed_connections = 0

    @property
    def destination(self) -> str:
        return f"{self._destination_host}:{self._destination_port}"

    @property
    def active_connections(self) -> List[ForwardedConnection]:
        return list(self._active.values())

    def get_stats(self) -> Dict[str, int]:
        """Connection counters."""
        return {
            "active_connections": len(self._active),
            "total_connections": self._total_connections,
            "failed_connections": self._failed_connections,
        }

    async def forward(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        connection: asyncssh.SSHClientConnection
    ) -> ForwardedConnection:
        """
        Forward one local connection until either side closes.

        Args:
            reader: Local connection reader
            writer: Local connection writer
            connection: Shared SSH session used to open the channel

        Returns:
            The connection record with final byte counters
        """
        record = ForwardedConnection(
            connection_id=next(self._ids),
            peer=_format_peer(writer.get_extra_info('peername')),
            destination=self.destination
        )
        self._active[record.connection_id] = record
        self._total_connections += 1

        logger.info(
            f"Connection {record.connection_id} from {record.peer} -> {record.destination}",
            extra={"event": "connection.open", "connection_id": record.connection_id,
                   "peer": record.peer, "destination": record.destination}
        )

        try:
            try:
                channel_reader, channel_writer = await asyncio.wait_for(
                    connection.open_connection(self._destination_host, self._destination_port),
                    timeout=self._channel_open_timeout
                )
            except CHANNEL_ERRORS as e:
                self._failed_connections += 1
                self._log_error(record, ForwardError(record.destination, str(e) or e.__class__.__name__))
                return record

            try:
                error = await self._pump_both(reader, writer, channel_reader, channel_writer, record)
            finally:
                channel_writer.close()

            if error is not None:
                self._failed_connections += 1
                self._log_error(record, ForwardError(record.destination, str(error)))

        finally:
            await self._close_local(writer)
            record.closed_at = time.time()
            self._active.pop(record.connection_id, None)

            logger.info(
                f"Connection {record.connection_id} closed "
                f"(sent {record.bytes_sent} bytes, received {record.bytes_received} bytes)",
                extra={"event": "connection.close", "connection_id": record.connection_id,
                       "bytes_sent": record.bytes_sent, "bytes_received": record.bytes_received}
            )

        return record

    async def _pump_both(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        channel_reader: Any,
        channel_writer: Any,
        record: ForwardedConnection
    ) -> Optional[BaseException]:
        """Run both directions until one ends; return the error that ended it, if any."""
        upstream = asyncio.create_task(self._pump(reader, channel_writer, record, "bytes_sent"))
        downstream = asyncio.create_task(self._pump(channel_reader, writer, record, "bytes_received"))
        pumps = {upstream, downstream}

        try:
            done, _ = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                return task.exception()
        return None

    async def _pump(self, source: Any, sink: Any, record: ForwardedConnection, counter: str) -> None:
        """Copy bytes from source to sink until end of stream."""
        while True:
            data = await source.read(self._buffer_size)
            if not data:
                break
            sink.write(data)
            await sink.drain()
            setattr(record, counter, getattr(record, counter) + len(data))

    async def _close_local(self, writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, asyncssh.Error):
            pass

    def _log_error(self, record: ForwardedConnection, error: ForwardError) -> None:
        logger.error(
            f"Connection {record.connection_id}: {error}",
            extra={"event": "connection.error", "connection_id": record.connection_id,
                   "destination": record.destination, "error": str(error)}
        )
