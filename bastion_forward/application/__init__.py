"""
Application layer: the tunnel lifecycle controller.
"""

from .tunnel import TunnelHandle, start_tunnel, open_tunnel

__all__ = [
    "TunnelHandle",
    "start_tunnel",
    "open_tunnel",
]
