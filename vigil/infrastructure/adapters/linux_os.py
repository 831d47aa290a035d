"""
Linux OS Binding

Architectural Intent:
- Concrete OSBinding for Linux nodes, driven entirely over the RemoteExecutor
- Implements every optional capability except the per-port connection check;
  connections are listed with ss instead
- Firewall operations delegate to IptablesFirewall

Design Decisions:
- Network configuration is read with `ip -o addr/link` and `ip route` and
  cached until a refresh is requested
- Stage scripts come from <source dir>/Scripts/<stage>/ in directory order;
  numerically prefixed scripts run first in numeric order, the rest alphabetically
- Services are managed through systemctl

Security:
- Interpolated values are quoted with shlex.quote; logins are validated first
- The reservation password reaches chpasswd through a copied 0600 file,
  never through a command line
"""

import ipaddress
import logging
import os
import re
import shlex
import tempfile
from typing import Optional, Union

from vigil.domain.entities.reservation import ReservationContext
from vigil.domain.ports.os_capabilities import PortConnection
from vigil.domain.ports.remote_executor_port import RemoteExecutorPort
from vigil.domain.services.interface_classifier import (
    InterfaceRole,
    NetworkConfigurationError,
    NetworkInterfaceClassifier,
)
from vigil.domain.value_objects.command_result import CommandResult
from vigil.domain.value_objects.firewall import FirewallRule
from vigil.domain.value_objects.network_configuration import (
    InterfaceConfig,
    NetworkConfiguration,
)
from vigil.infrastructure.adapters.iptables_firewall import IptablesFirewall

logger = logging.getLogger(__name__)

SCRIPT_STAGES = ("pre_capture", "post_load", "post_reserve")
SSHD_CONFIG = "/etc/ssh/sshd_config"
CREDENTIALS_PATH = "/root/.vigil-credentials-{reservation_id}"

_SCRIPT_NUMBER_RE = re.compile(r"^(\d+)")
_LOGIN_RE = re.compile(r"^[a-z_][a-z0-9_.-]*$", re.IGNORECASE)


def _interface_name(token: str) -> str:
    return token.rstrip(":").split("@", 1)[0]


def prefix_to_netmask(prefix: Union[int, str]) -> str:
    return str(ipaddress.IPv4Network(f"0.0.0.0/{prefix}").netmask)


def netmask_to_prefix(netmask: str) -> int:
    return ipaddress.IPv4Network(f"0.0.0.0/{netmask}").prefixlen


def parse_ip_addr(lines: list[str]) -> dict[str, dict[str, str]]:
    """`ip -o addr show` -> {interface: {ip: netmask}}, IPv4 only."""
    addresses: dict[str, dict[str, str]] = {}
    for line in lines:
        tokens = line.split()
        if len(tokens) < 4 or tokens[2] != "inet":
            continue
        ip, _, prefix = tokens[3].partition("/")
        addresses.setdefault(_interface_name(tokens[1]), {})[ip] = prefix_to_netmask(
            prefix or 32
        )
    return addresses


def parse_ip_link(lines: list[str]) -> dict[str, tuple[str, Optional[str]]]:
    """`ip -o link show` -> {interface: (link kind, MAC)}."""
    links: dict[str, tuple[str, Optional[str]]] = {}
    for line in lines:
        tokens = line.replace("\\", " ").split()
        if len(tokens) < 2:
            continue
        name = _interface_name(tokens[1])
        kind, mac = "", None
        for index, token in enumerate(tokens):
            if token.startswith("link/"):
                kind = token
                if index + 1 < len(tokens) and ":" in tokens[index + 1]:
                    mac = tokens[index + 1]
                break
        links[name] = (kind, mac)
    return links


def parse_default_routes(lines: list[str]) -> dict[str, str]:
    """`ip route show default` -> {interface: gateway}."""
    gateways: dict[str, str] = {}
    for line in lines:
        tokens = line.split()
        if "via" not in tokens or "dev" not in tokens:
            continue
        via, dev = tokens.index("via"), tokens.index("dev")
        if via + 1 < len(tokens) and dev + 1 < len(tokens):
            gateways.setdefault(tokens[dev + 1], tokens[via + 1])
    return gateways


def build_network_configuration(
    addr_lines: list[str], link_lines: list[str], route_lines: list[str]
) -> NetworkConfiguration:
    addresses = parse_ip_addr(addr_lines)
    links = parse_ip_link(link_lines)
    gateways = parse_default_routes(route_lines)

    configuration = {}
    for name in sorted(set(links) | set(addresses)):
        kind, mac = links.get(name, ("", None))
        configuration[name] = InterfaceConfig(
            name=name,
            ip_addresses=addresses.get(name, {}),
            default_gateway=gateways.get(name),
            physical_address=mac,
            description=kind,
        )
    return configuration


def _strip_address(endpoint: str) -> tuple[str, int]:
    host, _, port = endpoint.rpartition(":")
    host = host.strip("[]")
    if host.startswith("::ffff:"):
        host = host[len("::ffff:"):]
    return host.split("%", 1)[0], int(port)


def parse_established_connections(lines: list[str]) -> list[PortConnection]:
    """`ss -Htun state established` -> connections to local ports."""
    connections = []
    for line in lines:
        tokens = line.split()
        if len(tokens) < 5:
            continue
        try:
            _, local_port = _strip_address(tokens[3])
            remote_ip, _ = _strip_address(tokens[4])
        except ValueError:
            logger.debug("Skipping unparseable ss line: %s", line)
            continue
        connections.append(PortConnection(tokens[0].lower(), local_port, remote_ip))
    return connections


def script_sort_key(path: str) -> tuple:
    name = path.rsplit("/", 1)[-1]
    match = _SCRIPT_NUMBER_RE.match(name)
    if match:
        return (0, int(match.group(1)), name.lower())
    return (1, 0, name.lower())


class LinuxOSBinding:
    """Controls one Linux node for one reservation."""

    def __init__(
        self,
        executor: RemoteExecutorPort,
        context: ReservationContext,
        firewall: IptablesFirewall,
        source_configuration_directories: tuple[str, ...] = (),
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
    ):
        self.executor = executor
        self.context = context
        self.firewall = firewall
        self._source_configuration_directories = tuple(source_configuration_directories)
        self.log = log or logger
        self._network_configuration: Optional[NetworkConfiguration] = None

    @property
    def node_name(self) -> str:
        return self.context.computer.node_name

    @property
    def source_configuration_directories(self) -> tuple[str, ...]:
        return self._source_configuration_directories

    async def execute(
        self, command: str, timeout_seconds: int = 60, max_attempts: int = 3
    ) -> Optional[CommandResult]:
        return await self.executor.execute(
            self.node_name, command, timeout_seconds=timeout_seconds,
            max_attempts=max_attempts,
        )

    async def _succeeds(self, command: str, timeout_seconds: int = 60) -> bool:
        result = await self.execute(command, timeout_seconds=timeout_seconds)
        return result is not None and result.ok

    # Services and files

    async def service_exists(self, service_name: str) -> bool:
        unit = f"{service_name}.service"
        result = await self.execute(
            f"systemctl list-unit-files --no-legend {shlex.quote(unit)}"
        )
        if result is None or not result.ok:
            return False
        return any(line.split()[:1] == [unit] for line in result.output_lines)

    async def start_service(self, service_name: str) -> bool:
        if await self._succeeds(f"systemctl start {shlex.quote(service_name)}"):
            self.log.info("Started %s on %s", service_name, self.node_name)
            return True
        return False

    async def stop_service(self, service_name: str) -> bool:
        if await self._succeeds(f"systemctl stop {shlex.quote(service_name)}"):
            self.log.info("Stopped %s on %s", service_name, self.node_name)
            return True
        return False

    async def file_exists(self, path: str) -> bool:
        return await self._succeeds(f"test -e {shlex.quote(path)}")

    # Network

    async def get_network_configuration(
        self, refresh: bool = False
    ) -> NetworkConfiguration:
        if self._network_configuration is not None and not refresh:
            return self._network_configuration

        outputs = []
        for command in ("ip -o addr show", "ip -o link show", "ip route show default"):
            result = await self.execute(command)
            if result is None or not result.ok:
                raise NetworkConfigurationError(
                    f"Unable to read network configuration of {self.node_name}: {command}"
                )
            outputs.append(list(result.output_lines))

        self._network_configuration = build_network_configuration(*outputs)
        self.log.debug(
            "Network configuration of %s: %s",
            self.node_name, ", ".join(self._network_configuration),
        )
        return self._network_configuration

    async def network_interfaces(self, refresh: bool = False) -> NetworkInterfaceClassifier:
        configuration = await self.get_network_configuration(refresh=refresh)
        return NetworkInterfaceClassifier(configuration, self.context.computer.private_ip)

    async def get_public_ip_address(self) -> Optional[str]:
        try:
            classifier = await self.network_interfaces()
            return classifier.get_ip_address(InterfaceRole.PUBLIC)
        except NetworkConfigurationError as e:
            self.log.warning("Unable to determine public IP of %s: %s", self.node_name, e)
            return None

    async def set_static_public_address(self) -> bool:
        management_node = self.context.management_node
        public_ip = self.context.computer.public_ip
        if not (public_ip and management_node.public_netmask and management_node.public_gateway):
            self.log.error(
                "Static public address of %s needs an IP, netmask and gateway",
                self.node_name,
            )
            return False

        try:
            classifier = await self.network_interfaces()
            interface = classifier.get_interface_name(InterfaceRole.PUBLIC)
        except NetworkConfigurationError as e:
            self.log.error("Unable to set static public IP on %s: %s", self.node_name, e)
            return False

        address = f"{public_ip}/{netmask_to_prefix(management_node.public_netmask)}"
        commands = []
        # An interface shared with the private address keeps its other addresses
        if not classifier.configuration[interface].has_address(self.context.computer.private_ip):
            commands.append(f"ip addr flush dev {shlex.quote(interface)} scope global")
        commands += [
            f"ip addr replace {shlex.quote(address)} dev {shlex.quote(interface)}",
            f"ip route replace default via {shlex.quote(management_node.public_gateway)} "
            f"dev {shlex.quote(interface)}",
        ]
        if management_node.public_dns_servers:
            resolv = "".join(f"nameserver {ip}\n" for ip in management_node.public_dns_servers)
            commands.append(f"printf %s {shlex.quote(resolv)} > /etc/resolv.conf")

        for command in commands:
            if not await self._succeeds(command):
                self.log.error("Failed on %s: %s", self.node_name, command)
                return False

        await self.get_network_configuration(refresh=True)
        self.log.info("Set static public IP %s on %s (%s)", address, self.node_name, interface)
        return True

    async def update_public_hostname(self) -> bool:
        computer = self.context.computer
        hostname = computer.hostname
        if computer.public_ip:
            result = await self.execute(f"getent hosts {shlex.quote(computer.public_ip)}")
            if result is not None and result.ok and result.output_lines:
                tokens = result.output_lines[0].split()
                if len(tokens) > 1:
                    hostname = tokens[1]

        if not await self._succeeds(f"hostnamectl set-hostname {shlex.quote(hostname)}"):
            self.log.warning("Unable to set hostname of %s to %s", self.node_name, hostname)
            return False
        self.log.info("Hostname of %s set to %s", self.node_name, hostname)
        return True

    async def get_port_connection_info(self) -> Optional[list[PortConnection]]:
        result = await self.execute("ss -Htun state established")
        if result is None or not result.ok:
            self.log.warning("Unable to list connections on %s", self.node_name)
            return None
        return parse_established_connections(list(result.output_lines))

    # Firewall

    async def enable_firewall_port(
        self,
        protocol: str,
        port: Union[int, str],
        scope: str = "0.0.0.0/0",
        overwrite: bool = False,
    ) -> bool:
        return await self.firewall.enable_port(FirewallRule(protocol, port, scope), overwrite)

    async def disable_firewall_port(
        self, protocol: str, port: Union[int, str], scope: Optional[str] = None
    ) -> bool:
        rule = FirewallRule(protocol, port, scope or "0.0.0.0/0")
        return await self.firewall.disable_port(rule, any_scope=scope is None)

    async def get_firewall_configuration(self) -> Optional[list[str]]:
        return await self.firewall.list_rules()

    # Reservation

    async def grant_access(self) -> bool:
        login = self.context.user.login
        password = self.context.reservation.password
        if not password:
            self.log.error("Reservation %s has no password", self.context.reservation_id)
            return False

        if not _LOGIN_RE.match(login):
            self.log.error("Refusing to create user with login %r", login)
            return False

        user = shlex.quote(login)
        if not await self._succeeds(f"id {user} || useradd -m {user}"):
            self.log.error("Unable to create user %s on %s", login, self.node_name)
            return False

        if not await self._set_password(login, password):
            self.log.error("Unable to set password of %s on %s", login, self.node_name)
            return False

        allow = (
            f"grep -qE '^AllowUsers' {SSHD_CONFIG} && "
            f"{{ grep -qE '^AllowUsers.*[[:space:]]{login}([[:space:]]|$)' {SSHD_CONFIG} || "
            f"sed -i -E 's/^(AllowUsers.*)$/\\1 {login}/' {SSHD_CONFIG}; }} || true"
        )
        if not await self._succeeds(allow):
            self.log.error("Unable to allow %s in sshd on %s", login, self.node_name)
            return False

        if not await self._succeeds("systemctl reload sshd || systemctl reload ssh"):
            self.log.warning("Unable to reload sshd on %s", self.node_name)
            return False

        self.log.info("Granted access to %s on %s", login, self.node_name)
        return True

    async def _set_password(self, login: str, password: str) -> bool:
        remote_path = CREDENTIALS_PATH.format(reservation_id=self.context.reservation_id)
        fd, local_path = tempfile.mkstemp(prefix=f"{self.context.computer.short_name}.credentials.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{login}:{password}\n")
            if not await self.executor.copy_file_to(self.node_name, local_path, remote_path):
                return False
        finally:
            os.unlink(local_path)
        path = shlex.quote(remote_path)
        return await self._succeeds(
            f"chmod 600 {path} && chpasswd < {path}; status=$?; rm -f {path}; test $status -eq 0"
        )

    async def post_reserve(self) -> bool:
        return await self.run_scripts("post_reserve")

    async def get_script_paths(self, stage: str) -> list[str]:
        paths: list[str] = []
        for directory in self.source_configuration_directories:
            stage_dir = f"{directory.rstrip('/')}/Scripts/{stage}"
            result = await self.execute(
                f"find {shlex.quote(stage_dir)} -maxdepth 1 -type f 2>/dev/null || true"
            )
            if result is None:
                continue
            paths.extend(line for line in result.output_lines if line.strip())
        return sorted(paths, key=script_sort_key)

    async def run_scripts(self, stage: str) -> bool:
        if stage not in SCRIPT_STAGES:
            self.log.warning("Invalid script stage: %s", stage)
            return False

        failed = []
        for path in await self.get_script_paths(stage):
            self.log.debug("Running %s on %s", path, self.node_name)
            command = f"chmod +x {shlex.quote(path)} && {shlex.quote(path)}"
            if not await self._succeeds(command, timeout_seconds=300):
                failed.append(path)

        if failed:
            self.log.critical(
                "Failed to run %s scripts on %s: %s", stage, self.node_name, ", ".join(failed)
            )
            return False
        return True
