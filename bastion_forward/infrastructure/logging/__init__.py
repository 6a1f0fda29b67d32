"""
Logging infrastructure.

This module provides centralized logging configuration for the command
line entry point.
"""

from .setup import setup_logging, InterceptHandler

__all__ = [
    "setup_logging",
    "InterceptHandler",
]
