"""
Infrastructure layer containing external dependencies and I/O operations.

This layer handles the SSH transport, local sockets, configuration and
logging.
"""

from .config.loader import ConfigLoader
from .logging.setup import setup_logging

__all__ = [
    "ConfigLoader",
    "setup_logging",
]
