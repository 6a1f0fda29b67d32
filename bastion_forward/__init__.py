"""
Bastion Forward - SSH-tunneled TCP forwarding through a bastion host.

This package binds a local TCP port and forwards every connection made to it
through an authenticated SSH session to a destination that is only
reachable from the bastion, such as a private Postgres instance.
"""

__version__ = "0.1.0"

# Public API exports
from .core.interfaces.tunnel import (
    TunnelSpec, TunnelState, HostKeyPolicy, RetryPolicy, ForwardedConnection
)
from .core.exceptions import (
    TunnelError, KeyLoadError, DialError, ListenError, ForwardError, TunnelStateError
)
from .infrastructure.ssh.credentials import load_private_key
from .application.tunnel import TunnelHandle, start_tunnel, open_tunnel

__all__ = [
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
    "load_private_key",
    "TunnelHandle",
    "start_tunnel",
    "open_tunnel",
]
