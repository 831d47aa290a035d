"""Tests for the connect method provisioner."""

from unittest.mock import AsyncMock

import pytest

from fakes import FakeBinding, FakeNatHost, FirewallBinding, ReservableBinding, SSH
from vigil.application.use_cases.apply_connect_methods import (
    ConnectMethodProvisioner,
    parse_ignored_remote_ips,
)
from vigil.domain.entities.connect_method import ConnectMethod, ConnectMethodPort
from vigil.domain.ports.os_capabilities import PortConnection
from vigil.domain.value_objects.firewall import FirewallRule, NatForward

NAT_SSH = ConnectMethod(
    id=2, name="ssh-nat", ports=(ConnectMethodPort("tcp", 22, nat_public_port=50022),)
)
RDP = ConnectMethod(
    id=3,
    name="rdp",
    ports=(ConnectMethodPort("tcp", 3389), ConnectMethodPort("udp", 3389)),
    service_name="xrdp",
    startup_script="/usr/local/bin/start-xrdp.sh",
)


class TestApply:
    @pytest.mark.asyncio
    async def test_opens_ports_scoped_to_remote_subnet(self):
        binding = FirewallBinding(services=("sshd",))
        provisioner = ConnectMethodProvisioner(binding, "10.0.0.5")
        assert await provisioner.apply(1, [SSH], "192.168.1.77")
        assert binding.rules == {FirewallRule("tcp", 22, "192.168.1.0/24")}
        assert binding.started == ["sshd"]

    @pytest.mark.asyncio
    async def test_reapplying_is_a_no_op(self):
        binding = FirewallBinding(services=("sshd",))
        provisioner = ConnectMethodProvisioner(binding, "10.0.0.5")
        assert await provisioner.apply(1, [SSH, RDP], "192.168.1.77")
        first = set(binding.rules)
        assert await provisioner.apply(1, [SSH, RDP], "192.168.1.77")
        assert binding.rules == first
        assert len(first) == 3

    @pytest.mark.asyncio
    async def test_no_remote_ip_is_unrestricted(self):
        binding = FirewallBinding()
        provisioner = ConnectMethodProvisioner(binding)
        assert await provisioner.apply(1, [SSH], None)
        assert binding.rules == {FirewallRule("tcp", 22)}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("remote_ip", ["client.example.edu", "2001:db8::7"])
    async def test_non_ipv4_remote_ip_fails(self, remote_ip):
        binding = FirewallBinding(services=("sshd",))
        provisioner = ConnectMethodProvisioner(binding, "10.0.0.5")
        assert not await provisioner.apply(1, [SSH], remote_ip)
        assert binding.rules == set()
        assert binding.started == []

    @pytest.mark.asyncio
    async def test_binding_error_fails(self):
        binding = FirewallBinding(services=("sshd",))
        binding.service_exists = AsyncMock(side_effect=OSError("connection reset"))
        provisioner = ConnectMethodProvisioner(binding, "10.0.0.5")
        assert not await provisioner.apply(1, [SSH], "192.168.1.77")

    @pytest.mark.asyncio
    async def test_nat_host_error_fails(self):
        nat_host = FakeNatHost()
        nat_host.configure_nat = AsyncMock(side_effect=RuntimeError("xtables lock"))
        provisioner = ConnectMethodProvisioner(FirewallBinding(), "10.0.0.5")
        assert not await provisioner.apply(7, [NAT_SSH], "192.168.1.77", nat_host=nat_host)

    @pytest.mark.asyncio
    async def test_refresh_with_non_ipv4_remote_ip_fails(self):
        binding = FirewallBinding()
        provisioner = ConnectMethodProvisioner(binding)
        assert not await provisioner.refresh_firewall([SSH], "client.example.edu")
        assert binding.rules == set()

    @pytest.mark.asyncio
    async def test_missing_service_falls_back_to_startup_script(self):
        binding = FirewallBinding(files=(RDP.startup_script,))
        provisioner = ConnectMethodProvisioner(binding)
        assert await provisioner.apply(1, [RDP], "192.168.1.77")
        assert binding.commands == [RDP.startup_script]
        assert binding.started == []

    @pytest.mark.asyncio
    async def test_missing_startup_script_is_not_fatal(self):
        binding = FirewallBinding()
        provisioner = ConnectMethodProvisioner(binding)
        assert await provisioner.apply(1, [RDP], "192.168.1.77")
        assert binding.commands == []

    @pytest.mark.asyncio
    async def test_disabled_method_is_closed(self):
        binding = FirewallBinding(services=("sshd",))
        binding.rules.add(FirewallRule("tcp", 22, "192.168.1.0/24"))
        disabled = ConnectMethod(
            id=1, name="ssh", ports=SSH.ports, service_name="sshd", disabled=True
        )
        provisioner = ConnectMethodProvisioner(binding)
        assert await provisioner.apply(1, [disabled], "192.168.1.77")
        assert binding.rules == set()
        assert binding.stopped == ["sshd"]

    @pytest.mark.asyncio
    async def test_terminal_request_state_closes_methods(self):
        binding = FirewallBinding()
        binding.rules.add(FirewallRule("tcp", 22, "192.168.1.0/24"))
        provisioner = ConnectMethodProvisioner(binding)
        assert await provisioner.apply(1, [SSH], "192.168.1.77", request_state="deleted")
        assert binding.rules == set()

    @pytest.mark.asyncio
    async def test_binding_without_firewall_is_a_configuration_fault(self):
        provisioner = ConnectMethodProvisioner(FakeBinding())
        assert not await provisioner.apply(1, [SSH], "192.168.1.77")

    @pytest.mark.asyncio
    async def test_firewall_failure_stops_processing(self):
        binding = FirewallBinding()
        binding.firewall_ok = False
        provisioner = ConnectMethodProvisioner(binding)
        assert not await provisioner.apply(1, [SSH, RDP], "192.168.1.77")
        assert binding.enable_calls == 1


class TestNatForwarding:
    @pytest.mark.asyncio
    async def test_forwards_public_port_to_private_ip(self):
        binding = FirewallBinding()
        nat_host = FakeNatHost()
        provisioner = ConnectMethodProvisioner(binding, "10.0.0.5")
        assert await provisioner.apply(7, [NAT_SSH], "192.168.1.77", nat_host=nat_host)
        assert nat_host.configured == {7}
        assert nat_host.forwards == {NatForward("tcp", 50022, "10.0.0.5", 22, 7)}

    @pytest.mark.asyncio
    async def test_forwarding_is_idempotent(self):
        nat_host = FakeNatHost()
        provisioner = ConnectMethodProvisioner(FirewallBinding(), "10.0.0.5")
        await provisioner.apply(7, [NAT_SSH], "192.168.1.77", nat_host=nat_host)
        await provisioner.apply(7, [NAT_SSH], "192.168.1.77", nat_host=nat_host)
        assert len(nat_host.forwards) == 1

    @pytest.mark.asyncio
    async def test_nat_host_without_nat_port_fails(self):
        provisioner = ConnectMethodProvisioner(FirewallBinding(), "10.0.0.5")
        assert not await provisioner.apply(7, [SSH], "192.168.1.77", nat_host=FakeNatHost())

    @pytest.mark.asyncio
    async def test_nat_port_without_nat_host_fails(self):
        provisioner = ConnectMethodProvisioner(FirewallBinding(), "10.0.0.5")
        assert not await provisioner.apply(7, [NAT_SSH], "192.168.1.77")

    @pytest.mark.asyncio
    async def test_nat_configuration_failure(self):
        nat_host = FakeNatHost()
        nat_host.configure_ok = False
        binding = FirewallBinding()
        provisioner = ConnectMethodProvisioner(binding, "10.0.0.5")
        assert not await provisioner.apply(7, [NAT_SSH], "192.168.1.77", nat_host=nat_host)
        assert binding.rules == set()

    @pytest.mark.asyncio
    async def test_unknown_private_ip_fails(self):
        provisioner = ConnectMethodProvisioner(FirewallBinding(), "10.9.9.9")
        assert not await provisioner.apply(7, [NAT_SSH], "192.168.1.77", nat_host=FakeNatHost())

    @pytest.mark.asyncio
    async def test_teardown_removes_only_this_reservation(self):
        nat_host = FakeNatHost()
        provisioner = ConnectMethodProvisioner(FirewallBinding(), "10.0.0.5")
        await provisioner.apply(7, [NAT_SSH], "192.168.1.77", nat_host=nat_host)
        await provisioner.apply(8, [NAT_SSH], "192.168.1.78", nat_host=nat_host)
        assert await provisioner.teardown_nat(7, nat_host)
        assert nat_host.configured == {8}
        assert [f.reservation_id for f in nat_host.forwards] == [8]


class TestRefreshFirewall:
    @pytest.mark.asyncio
    async def test_reopens_for_new_remote_ip(self):
        binding = FirewallBinding()
        provisioner = ConnectMethodProvisioner(binding)
        assert await provisioner.refresh_firewall([SSH], "172.16.5.5")
        assert FirewallRule("tcp", 22, "172.16.5.0/24") in binding.rules

    @pytest.mark.asyncio
    async def test_binding_without_firewall_has_nothing_to_refresh(self):
        assert await ConnectMethodProvisioner(FakeBinding()).refresh_firewall([SSH], "1.2.3.4")


class TestConnectedRemoteIps:
    def test_parse_ignored_remote_ips(self):
        patterns = parse_ignored_remote_ips(r"10\.1\..*, 152.1.9.9;  bad[")
        assert [p.pattern for p in patterns] == [r"10\.1\..*", "152.1.9.9"]

    def test_parse_empty(self):
        assert parse_ignored_remote_ips(None) == []

    @pytest.mark.asyncio
    async def test_filters_and_deduplicates(self):
        binding = ReservableBinding()
        binding.connections = [
            PortConnection("tcp", 22, "192.168.1.77"),
            PortConnection("tcp", 22, "10.0.0.1"),
            PortConnection("tcp", 22, "10.1.4.4"),
            PortConnection("tcp", 8080, "172.16.0.9"),
            PortConnection("udp", 22, "172.16.0.10"),
            PortConnection("tcp", 22, "192.168.1.77"),
            PortConnection("tcp", 22, "172.16.0.11"),
        ]
        provisioner = ConnectMethodProvisioner(binding)
        remote_ips = await provisioner.connected_remote_ips(
            [SSH], parse_ignored_remote_ips(r"10\.1\..*"), ("10.0.0.1",)
        )
        assert remote_ips == ["192.168.1.77", "172.16.0.11"]

    @pytest.mark.asyncio
    async def test_wildcard_protocol_matches_any_connection(self):
        binding = ReservableBinding()
        binding.connections = [PortConnection("udp", 5901, "192.168.1.77")]
        method = ConnectMethod(id=4, name="vnc", ports=(ConnectMethodPort("*", 5901),))
        provisioner = ConnectMethodProvisioner(binding)
        assert await provisioner.connected_remote_ips([method]) == ["192.168.1.77"]

    @pytest.mark.asyncio
    async def test_binding_without_listing_returns_none(self):
        provisioner = ConnectMethodProvisioner(FirewallBinding())
        assert await provisioner.connected_remote_ips([SSH]) is None
