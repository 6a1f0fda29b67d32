"""
Exception hierarchy for the tunnel.

Setup-phase errors (KeyLoadError, DialError, ListenError) are raised from
TunnelHandle.start(). ForwardError is only ever logged by the forwarder that
hit it. Cancellation is never wrapped: asyncio.CancelledError propagates as is.
"""

from typing import Optional


class TunnelError(Exception):
    """Base class for all tunnel errors."""


class KeyLoadError(TunnelError):
    """The private key file could not be turned into a credential."""

    UNREADABLE = "unreadable"
    UNPARSABLE = "unparsable"

    def __init__(self, path: str, reason: str, detail: str = "") -> None:
        self.path = path
        self.reason = reason
        self.detail = detail
        message = f"Private key {path} is {reason}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DialError(TunnelError):
    """SSH session establishment failed or ran out of attempts."""

    def __init__(
        self,
        host: str,
        port: int,
        attempts: int,
        last_error: Optional[BaseException] = None
    ) -> None:
        self.host = host
        self.port = port
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Could not establish SSH session to {host}:{port} "
            f"after {attempts} attempt(s): {last_error}"
        )


class ListenError(TunnelError):
    """The local listener could not be bound."""

    def __init__(self, host: str, port: int, detail: str = "") -> None:
        self.host = host
        self.port = port
        super().__init__(f"Cannot listen on {host}:{port}: {detail}")


class ForwardError(TunnelError):
    """A single forwarded connection failed."""

    def __init__(self, destination: str, detail: str = "") -> None:
        self.destination = destination
        super().__init__(f"Forwarding to {destination} failed: {detail}")


class TunnelStateError(TunnelError):
    """Operation not allowed in the tunnel's current lifecycle state."""
