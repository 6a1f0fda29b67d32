"""
Configuration management infrastructure.

This module provides configuration models and loading from files and
environment variables.
"""

from .models import ApplicationConfig, TunnelConfig, LoggingConfig
from .loader import ConfigLoader

__all__ = [
    "ApplicationConfig",
    "TunnelConfig",
    "LoggingConfig",
    "ConfigLoader",
]
