"""
SSH tunnel building blocks.

This module provides the credential loader, SSH connection manager,
local listener and per-connection forwarder used by the tunnel.
"""

from .credentials import load_private_key
from .connection import ConnectionManager
from .listener import LocalListener
from .forwarder import ConnectionForwarder

__all__ = [
    "load_private_key",
    "ConnectionManager",
    "LocalListener",
    "ConnectionForwarder",
]
