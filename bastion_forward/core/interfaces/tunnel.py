"""
Tunnel interfaces and data structures.

This module defines the contracts shared by the SSH tunnel components:
the immutable tunnel description supplied by callers, lifecycle states,
host key verification policies, retry policy and per-connection records.
"""

import time
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple

from .lifecycle import IStartable, IStoppable, IHealthCheckable


class TunnelState(Enum):
    """Tunnel lifecycle states."""
    CREATED = "created"
    CONNECTING = "connecting"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"
    FAILED = "failed"


# Allowed transitions; everything else is a programming error.
STATE_TRANSITIONS = {
    TunnelState.CREATED: {TunnelState.CONNECTING, TunnelState.STOPPED},
    TunnelState.CONNECTING: {
        TunnelState.LISTENING, TunnelState.FAILED, TunnelState.STOPPED
    },
    TunnelState.LISTENING: {TunnelState.DRAINING, TunnelState.FAILED},
    TunnelState.DRAINING: {TunnelState.STOPPED},
    TunnelState.STOPPED: set(),
    TunnelState.FAILED: set(),
}


class HostKeyPolicy(Enum):
    """How the bastion's host key is verified."""
    KNOWN_HOSTS = "known_hosts"
    PINNED = "pinned"
    ACCEPT_ANY = "accept_any"


def split_host_port(address: str, default_port: Optional[int] = None) -> Tuple[str, int]:
    """
    Split a ``host:port`` string.

    IPv6 literals must be bracketed (``[::1]:5432``).

    Args:
        address: Address string
        default_port: Port used when the address carries none

    Returns:
        (host, port) tuple

    Raises:
        ValueError: If the address is empty or the port is missing or invalid
    """
    address = address.strip()
    if not address:
        raise ValueError("Address must not be empty")

    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep:
            raise ValueError(f"Unterminated IPv6 literal in {address!r}")
        port_str = rest[1:] if rest.startswith(":") else ""
    elif address.count(":") == 1:
        host, _, port_str = address.partition(":")
    else:
        host, port_str = address, ""

    if not host:
        raise ValueError(f"Missing host in {address!r}")

    if not port_str:
        if default_port is None:
            raise ValueError(f"Missing port in {address!r}")
        return host, default_port

    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in {address!r}") from None

    if not (1 <= port <= 65535):
        raise ValueError(f"Port must be between 1 and 65535, got {port}")

    return host, port


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for SSH dial attempts."""
    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 5.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must not be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")

    def delay(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


@dataclass(frozen=True)
class TunnelSpec:
    """
    Immutable description of a tunnel.

    Owned by the caller; the tunnel never mutates it.
    """
    bastion_host: str
    username: str
    key_file: str
    destination_host: str
    destination_port: int
    bastion_port: int = 22
    key_passphrase: Optional[str] = None
    local_host: str = "127.0.0.1"
    local_port: int = 0
    connect_timeout: float = 10.0
    host_key_policy: HostKeyPolicy = HostKeyPolicy.KNOWN_HOSTS
    known_hosts_file: Optional[str] = None
    host_key_fingerprint: Optional[str] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    channel_open_timeout: float = 10.0
    grace_period: float = 5.0
    keepalive_interval: float = 30.0

    def __post_init__(self) -> None:
        """Type and range validation."""
        if isinstance(self.host_key_policy, str):
            object.__setattr__(self, "host_key_policy", HostKeyPolicy(self.host_key_policy))

        for name in ("bastion_host", "username", "key_file", "destination_host", "local_host"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} must be a non-empty string")

        ports = [
            ("bastion_port", self.bastion_port, 1),
            ("destination_port", self.destination_port, 1),
            ("local_port", self.local_port, 0),
        ]
        for name, port, lowest in ports:
            if not isinstance(port, int) or isinstance(port, bool) or not (lowest <= port <= 65535):
                raise ValueError(f"{name} must be between {lowest} and 65535, got {port!r}")

        timeouts = [
            ("connect_timeout", self.connect_timeout),
            ("channel_open_timeout", self.channel_open_timeout),
            ("grace_period", self.grace_period),
        ]
        for name, timeout in timeouts:
            if timeout <= 0:
                raise ValueError(f"{name} must be positive, got {timeout}")

        if self.host_key_policy == HostKeyPolicy.PINNED and not self.host_key_fingerprint:
            raise ValueError("host_key_fingerprint is required with the pinned host key policy")

    @property
    def bastion(self) -> str:
        return f"{self.bastion_host}:{self.bastion_port}"

    @property
    def destination(self) -> str:
        return f"{self.destination_host}:{self.destination_port}"

    @classmethod
    def from_addresses(
        cls,
        bastion: str,
        destination: str,
        key_file: str,
        username: Optional[str] = None,
        **kwargs: Any
    ) -> "TunnelSpec":
        """
        Build a spec from ``[user@]host[:port]`` and ``host:port`` strings.

        Args:
            bastion: Bastion address, optionally prefixed with ``user@``
            destination: Destination address as seen from the bastion
            key_file: Private key file path
            username: Bastion user, required when ``bastion`` has no ``user@``
            **kwargs: Remaining TunnelSpec fields

        Returns:
            TunnelSpec instance
        """
        if "@" in bastion:
            bastion_user, _, bastion = bastion.rpartition("@")
            username = username or bastion_user

        bastion_host, bastion_port = split_host_port(bastion, default_port=22)
        destination_host, destination_port = split_host_port(destination)

        return cls(
            bastion_host=bastion_host,
            bastion_port=bastion_port,
            username=username or "",
            key_file=key_file,
            destination_host=destination_host,
            destination_port=destination_port,
            **kwargs
        )


@dataclass
class ForwardedConnection:
    """One local connection being forwarded through the tunnel."""
    connection_id: int
    peer: str
    destination: str
    bytes_sent: int = 0
    bytes_received: int = 0
    opened_at: float = field(default_factory=time.time)
    closed_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.closed_at is None


class ITunnel(IStartable, IStoppable, IHealthCheckable):
    """
    Interface for a single SSH tunnel.

    ``start()`` returns once the local listener is bound; ``local_port``
    is valid from then on.
    """

    @property
    @abstractmethod
    def state(self) -> TunnelState:
        """Current lifecycle state."""
        pass

    @property
    @abstractmethod
    def local_port(self) -> int:
        """Bound local port. Only valid once the tunnel is listening."""
        pass

    @abstractmethod
    async def serve_forever(self) -> None:
        """Wait until the tunnel ends, stopping it if the wait is cancelled."""
        pass
