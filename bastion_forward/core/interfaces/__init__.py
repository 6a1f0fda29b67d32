"""
Core interfaces defining the contracts for the tunnel components.

These interfaces provide the foundation for dependency inversion and enable
loose coupling between components.
"""

from .lifecycle import IStartable, IStoppable, IHealthCheckable
from .tunnel import (
    ITunnel, TunnelSpec, TunnelState, HostKeyPolicy, RetryPolicy,
    ForwardedConnection, split_host_port
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
    "split_host_port",
]
