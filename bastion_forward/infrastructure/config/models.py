"""
Configuration models and data structures.

This module defines the configuration models used by the command line
entry point. Configuration is always passed explicitly; nothing here is
process-wide state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ...core.interfaces.tunnel import HostKeyPolicy, RetryPolicy, TunnelSpec

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


@dataclass
class TunnelConfig:
    """SSH tunnel configuration."""
    bastion_address: str = ""
    username: str = ""
    private_key_file: str = ""
    key_passphrase: Optional[str] = None
    destination: str = ""
    local_host: str = "127.0.0.1"
    local_port: int = 0
    host_key_policy: str = HostKeyPolicy.KNOWN_HOSTS.value
    known_hosts_file: Optional[str] = None
    host_key_fingerprint: Optional[str] = None
    connect_timeout: float = 10.0
    retry_attempts: int = 3
    retry_initial_delay: float = 0.5
    retry_max_delay: float = 5.0
    channel_open_timeout: float = 10.0
    grace_period: float = 5.0
    keepalive_interval: float = 30.0

    def to_spec(self) -> TunnelSpec:
        """
        Build the immutable tunnel spec.

        Raises:
            ValueError: If required values are missing or invalid
        """
        return TunnelSpec.from_addresses(
            bastion=self.bastion_address,
            destination=self.destination,
            key_file=self.private_key_file,
            username=self.username or None,
            key_passphrase=self.key_passphrase,
            local_host=self.local_host,
            local_port=self.local_port,
            connect_timeout=self.connect_timeout,
            host_key_policy=HostKeyPolicy(self.host_key_policy),
            known_hosts_file=self.known_hosts_file,
            host_key_fingerprint=self.host_key_fingerprint,
            retry=RetryPolicy(
                max_attempts=self.retry_attempts,
                initial_delay=self.retry_initial_delay,
                max_delay=self.retry_max_delay
            ),
            channel_open_timeout=self.channel_open_timeout,
            grace_period=self.grace_period,
            keepalive_interval=self.keepalive_interval
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_directory: str = "logs"
    max_file_size: str = "10 MB"
    backup_count: int = 5
    console_enabled: bool = True
    file_enabled: bool = False


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    name: str = "Bastion Forward"
    version: str = "0.1.0"
    debug: bool = False

    tunnel: TunnelConfig = field(default_factory=TunnelConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    config_file_path: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_ports()
        self._validate_timeouts()
        self._validate_choices()

    def _validate_ports(self) -> None:
        """Validate port numbers."""
        if not (0 <= self.tunnel.local_port <= 65535):
            raise ValueError(
                f"Local port must be between 0 and 65535, got {self.tunnel.local_port}")

    def _validate_timeouts(self) -> None:
        """Validate timeout values."""
        timeouts = [
            ("Connect timeout", self.tunnel.connect_timeout),
            ("Channel open timeout", self.tunnel.channel_open_timeout),
            ("Grace period", self.tunnel.grace_period),
        ]

        for name, timeout in timeouts:
            if timeout <= 0:
                raise ValueError(f"{name} must be positive, got {timeout}")

        if self.tunnel.retry_attempts < 1:
            raise ValueError(
                f"Retry attempts must be at least 1, got {self.tunnel.retry_attempts}")

    def _validate_choices(self) -> None:
        """Validate enumerated values."""
        policies = [policy.value for policy in HostKeyPolicy]
        if self.tunnel.host_key_policy not in policies:
            raise ValueError(
                f"Host key policy must be one of {policies}, got {self.tunnel.host_key_policy!r}")

        if self.logging.level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.logging.level}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        result: Dict[str, Any] = {}

        for field_name, field_value in self.__dict__.items():
            if hasattr(field_value, '__dict__'):
                result[field_name] = dict(field_value.__dict__)
            else:
                result[field_name] = field_value

        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplicationConfig':
        """Create configuration from dictionary."""
        tunnel_config = TunnelConfig(**data.get('tunnel', {}))
        logging_config = LoggingConfig(**data.get('logging', {}))

        return cls(
            name=data.get('name', 'Bastion Forward'),
            version=data.get('version', '0.1.0'),
            debug=data.get('debug', False),
            tunnel=tunnel_config,
            logging=logging_config,
            config_file_path=data.get('config_file_path')
        )
