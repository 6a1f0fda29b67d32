"""
Tests for lifecycle interfaces.
"""

from typing import Any, Dict

import pytest

from bastion_forward.application.tunnel import TunnelHandle
from bastion_forward.core.interfaces.lifecycle import IHealthCheckable, IStartable, IStoppable
from bastion_forward.core.interfaces.tunnel import ITunnel


class MockComponent(IStartable, IStoppable, IHealthCheckable):
    """Minimal implementation of all lifecycle interfaces."""

    def __init__(self) -> None:
        self.started = False
        self.stop_calls = 0

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self.started = False

    async def check_health(self) -> Dict[str, Any]:
        return {
            'healthy': self.started,
            'status': 'running' if self.started else 'stopped',
            'details': {}
        }


class TestLifecycleInterfaces:
    """Test cases for the lifecycle interfaces."""

    @pytest.mark.parametrize("interface", [IStartable, IStoppable, IHealthCheckable, ITunnel])
    def test_interfaces_are_abstract(self, interface) -> None:
        with pytest.raises(TypeError):
            interface()

    async def test_component_lifecycle(self) -> None:
        component = MockComponent()

        await component.start()
        health = await component.check_health()
        assert health == {'healthy': True, 'status': 'running', 'details': {}}

        await component.stop()
        await component.stop()
        assert component.stop_calls == 2
        assert (await component.check_health())['healthy'] is False

    def test_tunnel_handle_implements_interfaces(self) -> None:
        assert issubclass(TunnelHandle, ITunnel)
        for interface in (IStartable, IStoppable, IHealthCheckable):
            assert issubclass(TunnelHandle, interface)
