"""
Core module containing the tunnel's domain types, interfaces and errors.

This module is independent of the SSH transport and of any configuration
source.
"""

from .interfaces.lifecycle import IStartable, IStoppable, IHealthCheckable
from .interfaces.tunnel import (
    ITunnel, TunnelSpec, TunnelState, HostKeyPolicy, RetryPolicy, ForwardedConnection
)
from .exceptions import (
    TunnelError, KeyLoadError, DialError, ListenError, ForwardError, TunnelStateError
)

__all__ = [
    "IStartable",
    "IStoppable",
    "IHealthCheckable",
    "ITunnel",
    "TunnelSpec",
    "TunnelState",
    "HostKeyPolicy",
    "RetryPolicy",
    "ForwardedConnection",
    "TunnelError",
    "KeyLoadError",
    "DialError",
    "ListenError",
    "ForwardError",
    "TunnelStateError",
]
