"""
SSH connection management for the tunnel.

This module dials and authenticates the SSH session to the bastion host,
applying the configured host key policy and retrying transient failures
with bounded exponential backoff.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Dict, Optional, Tuple

import asyncssh

from ...core.exceptions import DialError
from ...core.interfaces.tunnel import HostKeyPolicy, TunnelSpec

logger = logging.getLogger(__name__)

# Failures that another attempt cannot fix.
NON_RETRYABLE_ERRORS = (
    asyncssh.HostKeyNotVerifiable,
    asyncssh.PermissionDenied,
)

RETRYABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncssh.Error,
)


def normalize_fingerprint(fingerprint: str) -> str:
    """Return a SHA256 fingerprint in asyncssh's ``SHA256:<base64>`` form."""
    fingerprint = fingerprint.strip().rstrip("=")
    if fingerprint.upper().startswith("SHA256:"):
        fingerprint = fingerprint[len("SHA256:"):]
    return f"SHA256:{fingerprint}"


class PinnedHostKeyClient(asyncssh.SSHClient):
    """Accepts only the server host key with the pinned SHA256 fingerprint."""

    def __init__(self, fingerprint: str):
        self._fingerprint = normalize_fingerprint(fingerprint)

    def validate_host_public_key(self, host: str, addr: Optional[Tuple[str, int]], port: int,
                                 key: asyncssh.SSHKey) -> bool:
        actual = key.get_fingerprint('sha256')
        if actual != self._fingerprint:
            logger.error(
                f"Host key fingerprint {actual} for {host}:{port} does not match pinned {self._fingerprint}",
                extra={"event": "dial.hostkey_mismatch", "bastion": f"{host}:{port}"}
            )
            return False
        return True


class ConnectionManager:
    """
    SSH connection manager.

    Produces authenticated asyncssh client connections. The returned
    connection is shared by all forwarders of a tunnel; asyncssh allows
    channels to be opened on it concurrently from any task on the loop.
    """

    def __init__(self, client_version: str = "Bastion_Forward_1.0"):
        """
        Initialize connection manager.

        Args:
            client_version: SSH client software version announced to the server
        """
        self._client_version = client_version

    def build_connect_kwargs(self, spec: TunnelSpec, client_key: asyncssh.SSHKey) -> Dict[str, Any]:
        """Convert a tunnel spec to asyncssh connection kwargs."""
        kwargs: Dict[str, Any] = {
            'host': spec.bastion_host,
            'port': spec.bastion_port,
            'username': spec.username,
            'client_keys': [client_key],
            'client_version': self._client_version,
            'preferred_auth': 'publickey',
            'agent_path': None,
            'keepalive_interval': spec.keepalive_interval or None,
        }

        if spec.host_key_policy == HostKeyPolicy.KNOWN_HOSTS:
            if spec.known_hosts_file:
                kwargs['known_hosts'] = spec.known_hosts_file
        elif spec.host_key_policy == HostKeyPolicy.PINNED:
            # No trusted keys, so asyncssh asks the client during key exchange
            kwargs['known_hosts'] = ([], [], [])
            kwargs['client_factory'] = partial(PinnedHostKeyClient, spec.host_key_fingerprint or "")
        else:
            kwargs['known_hosts'] = None

        return kwargs

    async def connect(self, spec: TunnelSpec, client_key: asyncssh.SSHKey) -> asyncssh.SSHClientConnection:
        """
        Establish an authenticated SSH session to the bastion.

        Cancelling the calling task aborts the in-flight attempt or backoff
        sleep immediately.

        Args:
            spec: Tunnel description
            client_key: Private key used for public key authentication

        Returns:
            Connected asyncssh client connection

        Raises:
            DialError: If attempts are exhausted or the failure is not transient
        """
        policy = spec.retry
        kwargs = self.build_connect_kwargs(spec, client_key)
        last_error: BaseException = RuntimeError("no attempt made")

        if spec.host_key_policy == HostKeyPolicy.ACCEPT_ANY:
            logger.warning(
                f"Host key verification disabled for {spec.bastion} (accept_any policy)",
                extra={"event": "dial.insecure", "bastion": spec.bastion}
            )

        for attempt in range(1, policy.max_attempts + 1):
            logger.info(
                f"Connecting to {spec.username}@{spec.bastion} "
                f"(attempt {attempt}/{policy.max_attempts})",
                extra={"event": "dial.attempt", "bastion": spec.bastion, "attempt": attempt}
            )

            try:
                connection = await asyncio.wait_for(
                    asyncssh.connect(**kwargs),
                    timeout=spec.connect_timeout
                )
                await self._verify_host_key(spec, connection)

            except NON_RETRYABLE_ERRORS as e:
                logger.error(
                    f"SSH connection to {spec.bastion} rejected: {e}",
                    extra={"event": "dial.failure", "bastion": spec.bastion,
                           "attempt": attempt, "retryable": False}
                )
                raise DialError(spec.bastion_host, spec.bastion_port, attempt, e) from e

            except RETRYABLE_ERRORS as e:
                last_error = e
                detail = str(e) or e.__class__.__name__
                logger.warning(
                    f"SSH connection attempt {attempt}/{policy.max_attempts} "
                    f"to {spec.bastion} failed: {detail}",
                    extra={"event": "dial.failure", "bastion": spec.bastion,
                           "attempt": attempt, "retryable": True}
                )

            except Exception as e:
                logger.error(
                    f"SSH connection to {spec.bastion} failed unexpectedly: {e!r}",
                    extra={"event": "dial.failure", "bastion": spec.bastion,
                           "attempt": attempt, "retryable": False}
                )
                raise DialError(spec.bastion_host, spec.bastion_port, attempt, e) from e

            else:
                logger.info(
                    f"SSH session established to {spec.bastion}",
                    extra={"event": "dial.success", "bastion": spec.bastion, "attempt": attempt}
                )
                return connection

            if attempt < policy.max_attempts:
                await asyncio.sleep(policy.delay(attempt))

        raise DialError(
            spec.bastion_host, spec.bastion_port, policy.max_attempts, last_error
        ) from last_error

    async def _verify_host_key(self, spec: TunnelSpec, connection: asyncssh.SSHClientConnection) -> None:
        """Confirm the negotiated host key matches the pinned fingerprint."""
        if spec.host_key_policy != HostKeyPolicy.PINNED:
            return

        expected = normalize_fingerprint(spec.host_key_fingerprint or "")
        server_key = connection.get_server_host_key()
        actual = server_key.get_fingerprint('sha256') if server_key else None

        if actual != expected:
            connection.close()
            await connection.wait_closed()
            raise asyncssh.HostKeyNotVerifiable(
                f"Host key fingerprint {actual} does not match pinned {expected}"
            )
