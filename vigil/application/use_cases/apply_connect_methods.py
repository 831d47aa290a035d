"""
Apply Connect Methods Use Case

Architectural Intent:
- Makes a node reachable for a reservation according to its connect methods
- Opens or closes firewall ports scoped to the client's /24 (or anywhere)
- Forwards NAT public ports through a shared NAT host to the node's private IP
- Reports which remote addresses are connected to the declared ports

Design Decisions:
- Methods are processed in id order; the first error stops processing and
  leaves earlier changes in place for the caller to retry or escalate
- Idempotency is the adapters' job: re-applying a rule must be a no-op
- Missing firewall capabilities or a missing NAT host are configuration
  faults, logged critical
"""

import logging
import re
from typing import Iterable, Optional

from vigil.domain.entities.connect_method import ConnectMethod
from vigil.domain.entities.reservation import TERMINAL_REQUEST_STATES
from vigil.domain.ports.nat_host_port import NatHostPort
from vigil.domain.ports.os_capabilities import Capability, OSBinding, supports
from vigil.domain.services.interface_classifier import (
    InterfaceRole,
    NetworkConfigurationError,
    NetworkInterfaceClassifier,
)
from vigil.domain.value_objects.firewall import FirewallRule, NatForward, protocol_matches
from vigil.domain.value_objects.network_configuration import remote_ip_scope

logger = logging.getLogger(__name__)

_IGNORED_SPLIT_RE = re.compile(r"[,; ]+")


def parse_ignored_remote_ips(value: Optional[str]) -> list[re.Pattern]:
    """Comma, semicolon or space separated regular expressions."""
    patterns = []
    for item in _IGNORED_SPLIT_RE.split(value or ""):
        if not item:
            continue
        try:
            patterns.append(re.compile(item))
        except re.error as e:
            logger.warning("Ignoring invalid remote IP pattern %r: %s", item, e)
    return patterns


class ConnectMethodProvisioner:
    def __init__(
        self,
        binding: OSBinding,
        private_ip: Optional[str] = None,
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
    ):
        self.binding = binding
        self.private_ip = private_ip
        self.log = log or logger

    async def apply(
        self,
        reservation_id: int,
        connect_methods: Iterable[ConnectMethod],
        remote_ip: Optional[str],
        nat_host: Optional[NatHostPort] = None,
        request_state: str = "reserved",
        overwrite: bool = False,
    ) -> bool:
        try:
            scope = remote_ip_scope(remote_ip)
        except ValueError:
            self.log.critical(
                "Remote IP %r of reservation %s is not an IPv4 address",
                remote_ip, reservation_id,
            )
            return False
        try:
            return await self._apply(
                reservation_id, connect_methods, scope, nat_host, request_state, overwrite
            )
        except Exception as e:
            self.log.critical(
                "Applying connect methods on %s raised: %s", self.binding.node_name, e
            )
            return False

    async def _apply(
        self,
        reservation_id: int,
        connect_methods: Iterable[ConnectMethod],
        scope: str,
        nat_host: Optional[NatHostPort],
        request_state: str,
        overwrite: bool,
    ) -> bool:
        node = self.binding.node_name

        nat_private_ip = None
        if nat_host is not None:
            if not await nat_host.configure_nat(reservation_id):
                self.log.critical(
                    "Unable to configure NAT on %s for reservation %s",
                    nat_host.hostname, reservation_id,
                )
                return False
            nat_private_ip = await self._resolve_private_ip()
            if nat_private_ip is None:
                return False

        for method in sorted(connect_methods, key=lambda m: m.id):
            if method.disabled or request_state in TERMINAL_REQUEST_STATES:
                if not await self._close_method(method, scope):
                    return False
                continue

            await self._start_method(method)

            for port in method.ports:
                rule = FirewallRule(port.protocol, port.port, scope)
                if not await self._enable_rule(rule, overwrite):
                    self.log.error(
                        "Failed to open %s on %s for connect method %s",
                        rule, node, method.name,
                    )
                    return False

                if port.nat_public_port is None:
                    if nat_host is not None:
                        self.log.critical(
                            "%s is behind NAT host %s but connect method %s "
                            "declares no NAT port for %s/%s",
                            node, nat_host.hostname, method.name,
                            port.protocol, port.port,
                        )
                        return False
                    continue

                if nat_host is None:
                    self.log.critical(
                        "Connect method %s requires a NAT forward but no NAT host "
                        "is available for %s",
                        method.name, node,
                    )
                    return False

                forward = NatForward(
                    protocol=port.protocol,
                    public_port=port.nat_public_port,
                    private_ip=nat_private_ip,
                    private_port=port.port,
                    reservation_id=reservation_id,
                )
                if not await nat_host.add_nat_port_forward(forward):
                    self.log.error(
                        "Failed to add NAT forward %s on %s", forward, nat_host.hostname
                    )
                    return False
                self.log.info("Forwarding %s on %s", forward, nat_host.hostname)

        self.log.info("Connect methods applied on %s for %s", node, scope)
        return True

    async def _resolve_private_ip(self) -> Optional[str]:
        try:
            configuration = await self.binding.get_network_configuration()
            classifier = NetworkInterfaceClassifier(configuration, self.private_ip)
            return classifier.get_ip_address(InterfaceRole.PRIVATE)
        except NetworkConfigurationError as e:
            self.log.critical(
                "Unable to determine private IP of %s for NAT forwarding: %s",
                self.binding.node_name, e,
            )
            return None

    async def _start_method(self, method: ConnectMethod) -> None:
        node = self.binding.node_name
        if method.service_name:
            if await self.binding.service_exists(method.service_name):
                if not await self.binding.start_service(method.service_name):
                    self.log.warning(
                        "Service %s for connect method %s could not be confirmed "
                        "started on %s",
                        method.service_name, method.name, node,
                    )
                return
            self.log.warning(
                "Service %s for connect method %s does not exist on %s",
                method.service_name, method.name, node,
            )

        if not method.startup_script:
            return
        if not await self.binding.file_exists(method.startup_script):
            self.log.warning(
                "Startup script %s for connect method %s does not exist on %s",
                method.startup_script, method.name, node,
            )
            return
        result = await self.binding.execute(method.startup_script)
        if result is None or not result.ok:
            self.log.warning(
                "Startup script %s failed on %s: %s",
                method.startup_script, node,
                result.output if result else "no response",
            )

    async def _close_method(self, method: ConnectMethod, scope: str) -> bool:
        node = self.binding.node_name
        if method.service_name and await self.binding.service_exists(method.service_name):
            if not await self.binding.stop_service(method.service_name):
                self.log.warning(
                    "Unable to stop service %s on %s", method.service_name, node
                )

        if method.ports and not supports(self.binding, Capability.DISABLE_FIREWALL_PORT):
            self.log.critical("%s cannot close firewall ports", node)
            return False

        for port in method.ports:
            rule = FirewallRule(port.protocol, port.port, scope)
            if not await self.binding.disable_firewall_port(
                rule.protocol, rule.port, rule.scope
            ):
                self.log.error(
                    "Failed to close %s on %s for connect method %s",
                    rule, node, method.name,
                )
                return False
        self.log.info("Closed connect method %s on %s", method.name, node)
        return True

    async def _enable_rule(self, rule: FirewallRule, overwrite: bool) -> bool:
        if not supports(self.binding, Capability.ENABLE_FIREWALL_PORT):
            self.log.critical("%s cannot open firewall ports", self.binding.node_name)
            return False
        return await self.binding.enable_firewall_port(
            rule.protocol, rule.port, rule.scope, overwrite
        )

    async def refresh_firewall(
        self, connect_methods: Iterable[ConnectMethod], remote_ip: Optional[str]
    ) -> bool:
        """Re-opens every declared port of the enabled methods for the current remote IP."""
        if not supports(self.binding, Capability.ENABLE_FIREWALL_PORT):
            self.log.debug(
                "%s does not manage its firewall, nothing to refresh",
                self.binding.node_name,
            )
            return True

        try:
            scope = remote_ip_scope(remote_ip)
        except ValueError:
            self.log.warning("Not refreshing firewall for non-IPv4 remote IP %r", remote_ip)
            return False
        success = True
        for method in sorted(connect_methods, key=lambda m: m.id):
            if method.disabled:
                continue
            for port in method.ports:
                rule = FirewallRule(port.protocol, port.port, scope)
                if not await self._enable_rule(rule, overwrite=False):
                    self.log.warning("Unable to refresh %s on %s", rule, self.binding.node_name)
                    success = False
        return success

    async def connected_remote_ips(
        self,
        connect_methods: Iterable[ConnectMethod],
        ignored_patterns: Iterable[re.Pattern] = (),
        management_ips: Iterable[str] = (),
    ) -> Optional[list[str]]:
        """
        Remote addresses with an established connection to any declared port,
        excluding the management node and ignored addresses. None if the
        binding cannot list connections.
        """
        if not supports(self.binding, Capability.GET_PORT_CONNECTION_INFO):
            self.log.critical(
                "%s cannot report port connections", self.binding.node_name
            )
            return None

        connections = await self.binding.get_port_connection_info()
        if connections is None:
            return None

        ignored = list(ignored_patterns)
        management = set(management_ips)
        declared = [
            port
            for method in connect_methods
            if not method.disabled
            for port in method.ports
        ]

        remote_ips: list[str] = []
        for connection in connections:
            if connection.remote_ip in management:
                continue
            if any(p.search(connection.remote_ip) for p in ignored):
                self.log.debug("Ignoring connection from %s", connection.remote_ip)
                continue
            if not any(
                port.port == connection.port
                and protocol_matches(port.protocol, connection.protocol)
                for port in declared
            ):
                continue
            if connection.remote_ip not in remote_ips:
                remote_ips.append(connection.remote_ip)
        return remote_ips

    async def teardown_nat(self, reservation_id: int, nat_host: NatHostPort) -> bool:
        """Removes the reservation's forwards from the NAT host."""
        try:
            removed = await nat_host.remove_nat_port_forwards(reservation_id)
        except Exception as e:
            self.log.warning(
                "Removing NAT forwards of reservation %s on %s raised: %s",
                reservation_id, nat_host.hostname, e,
            )
            return False
        if not removed:
            self.log.warning(
                "Unable to remove NAT forwards of reservation %s on %s",
                reservation_id, nat_host.hostname,
            )
        return removed
