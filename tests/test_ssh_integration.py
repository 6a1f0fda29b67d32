"""
End-to-end tests against an in-process asyncssh server.

Unlike the other suites nothing is faked here: the real ConnectionManager
dials a local SSH server that authenticates the test key and serves
direct-tcpip channels to a local echo server.
"""

import asyncio

import asyncssh
import pytest

from bastion_forward.application.tunnel import TunnelHandle, open_tunnel
from bastion_forward.core.exceptions import DialError
from bastion_forward.core.interfaces.tunnel import HostKeyPolicy, RetryPolicy, TunnelState


class ForwardingServer(asyncssh.SSHServer):
    """Allows every direct-tcpip request, like a permissive bastion."""

    def connection_requested(self, dest_host, dest_port, orig_host, orig_port):
        return True


@pytest.fixture(scope="module")
def host_key():
    return asyncssh.generate_private_key('ssh-ed25519')


@pytest.fixture
async def ssh_server(host_key, client_key):
    authorized = asyncssh.import_authorized_keys(client_key.export_public_key().decode())
    server = await asyncssh.listen(
        '127.0.0.1', 0,
        server_factory=ForwardingServer,
        server_host_keys=[host_key],
        authorized_client_keys=authorized,
    )

    yield server.get_port()

    server.close()
    await asyncio.wait_for(server.wait_closed(), timeout=5)


@pytest.fixture
def make_ssh_spec(make_spec, ssh_server, host_key):
    """Specs dialing the in-process server with the pinned host key."""

    def _make(destination_port, **overrides):
        values = {
            "bastion_host": "127.0.0.1",
            "bastion_port": ssh_server,
            "host_key_policy": HostKeyPolicy.PINNED,
            "host_key_fingerprint": host_key.get_fingerprint('sha256'),
            "connect_timeout": 5.0,
            "retry": RetryPolicy(max_attempts=2, initial_delay=0.01, max_delay=0.01),
        }
        values.update(overrides)
        return make_spec(destination_port, **values)

    return _make


class TestSSHIntegration:
    """Test cases for a tunnel through a real SSH session."""

    async def test_traffic_through_tunnel(self, make_ssh_spec, echo_server):
        async with open_tunnel(make_ssh_spec(echo_server[1])) as handle:
            assert handle.state == TunnelState.LISTENING

            reader, writer = await asyncio.open_connection("127.0.0.1", handle.local_port)
            writer.write(b"ping")
            await writer.drain()
            assert await asyncio.wait_for(reader.readexactly(4), timeout=5.0) == b"ping"
            writer.close()

            health = await handle.check_health()
            assert health["details"]["total_connections"] >= 1

        assert handle.state == TunnelState.STOPPED

    async def test_pinned_mismatch_rejected_during_handshake(self, make_ssh_spec, echo_server):
        other = asyncssh.generate_private_key('ssh-ed25519')
        handle = TunnelHandle(make_ssh_spec(
            echo_server[1], host_key_fingerprint=other.get_fingerprint('sha256')))

        with pytest.raises(DialError) as exc_info:
            await handle.start()

        assert isinstance(exc_info.value.__cause__, asyncssh.HostKeyNotVerifiable)
        assert exc_info.value.attempts == 1
        assert handle.state == TunnelState.FAILED
        assert handle.connection is None

    async def test_unauthorized_key_not_retried(self, make_ssh_spec, echo_server, tmp_path):
        stranger = asyncssh.generate_private_key('ssh-ed25519')
        key_path = tmp_path / "id_stranger"
        stranger.write_private_key(str(key_path))
        handle = TunnelHandle(make_ssh_spec(echo_server[1], key_file=str(key_path)))

        with pytest.raises(DialError) as exc_info:
            await handle.start()

        assert isinstance(exc_info.value.__cause__, asyncssh.PermissionDenied)
        assert exc_info.value.attempts == 1

    async def test_refused_destination_keeps_listening(self, make_ssh_spec, closed_port):
        async with open_tunnel(make_ssh_spec(closed_port)) as handle:
            reader, writer = await asyncio.open_connection("127.0.0.1", handle.local_port)
            assert await asyncio.wait_for(reader.read(), timeout=5.0) == b""
            writer.close()

            health = await handle.check_health()
            assert handle.state == TunnelState.LISTENING
            assert health["details"]["failed_connections"] == 1

    async def test_stop_with_open_client(self, make_ssh_spec, echo_server):
        handle = TunnelHandle(make_ssh_spec(echo_server[1]))
        await handle.start()

        reader, writer = await asyncio.open_connection("127.0.0.1", handle.local_port)
        writer.write(b"x")
        await writer.drain()
        await asyncio.wait_for(reader.readexactly(1), timeout=5.0)

        await asyncio.wait_for(handle.stop(), timeout=handle.spec.grace_period + 3.0)

        assert handle.state == TunnelState.STOPPED
        assert await asyncio.wait_for(reader.read(), timeout=2.0) == b""
        writer.close()
