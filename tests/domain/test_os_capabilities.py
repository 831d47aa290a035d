"""Tests for capability membership of OS bindings."""

from fakes import FakeBinding, FirewallBinding, ReservableBinding
from vigil.domain.ports.os_capabilities import (
    Capability,
    OSBinding,
    capabilities_of,
    supports,
)


class TestCapabilities:
    def test_base_binding_is_an_os_binding_without_capabilities(self):
        binding = FakeBinding()
        assert isinstance(binding, OSBinding)
        assert capabilities_of(binding) == frozenset()

    def test_firewall_binding(self):
        binding = FirewallBinding()
        assert supports(binding, Capability.ENABLE_FIREWALL_PORT)
        assert supports(binding, Capability.DISABLE_FIREWALL_PORT)
        assert supports(binding, Capability.GET_FIREWALL_CONFIGURATION)
        assert not supports(binding, Capability.GRANT_ACCESS)

    def test_reservable_binding(self):
        capabilities = capabilities_of(ReservableBinding())
        assert Capability.GRANT_ACCESS in capabilities
        assert Capability.POST_RESERVE in capabilities
        assert Capability.GET_PORT_CONNECTION_INFO in capabilities
        assert Capability.CHECK_CONNECTION_ON_PORT not in capabilities
        assert Capability.SET_STATIC_PUBLIC_ADDRESS not in capabilities
