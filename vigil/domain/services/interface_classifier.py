"""
Network Interface Classifier

Architectural Intent:
- Pure domain service deciding which interface of a node is private and which is public
- Operates only on a NetworkConfiguration snapshot; no I/O
- Accessors index the snapshot by the resolved interface name and fail explicitly

Design Decisions:
- Private interface: the one whose address set contains the known private IP
- Public interface: elimination by name/description, then a pairwise fold over
  the remaining candidates in sorted name order
- Pairwise criteria in priority order: not assigned the private IP, assigned a
  globally routable address, has a default gateway; a full tie keeps the later interface
- Resolved names are cached until refresh() installs a new snapshot
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from vigil.domain.value_objects.network_configuration import (
    InterfaceConfig,
    NetworkConfiguration,
    is_public_address,
    is_valid_address,
)

logger = logging.getLogger(__name__)

_IGNORED_NAME_RE = re.compile(r"^(lo|sit\d)$", re.IGNORECASE)
_IGNORED_NAME_FRAGMENT_RE = re.compile(
    r"(loopback|vmnet|afs|tunnel|6to4|isatap|teredo)", re.IGNORECASE
)
_IGNORED_DESCRIPTION_RE = re.compile(
    r"(loopback|virtual|afs|tunnel|pseudo|6to4|isatap|teredo)", re.IGNORECASE
)


class NetworkConfigurationError(ValueError):
    """Raised when an interface or one of its fields cannot be determined."""


class InterfaceRole(Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class InterfaceClassification:
    private_interface: Optional[str]
    public_interface: Optional[str]


def is_ignored_interface(interface: InterfaceConfig) -> bool:
    """Loopback, tunnel and virtual-adapter interfaces never carry public traffic."""
    if _IGNORED_NAME_RE.match(interface.name):
        return True
    if _IGNORED_NAME_FRAGMENT_RE.search(interface.name):
        return True
    return bool(_IGNORED_DESCRIPTION_RE.search(interface.description or ""))


def find_private_interface(
    configuration: NetworkConfiguration, private_ip: Optional[str]
) -> Optional[str]:
    if not private_ip:
        return None
    for name in sorted(configuration):
        if configuration[name].has_address(private_ip):
            return name
    return None


def _is_public_candidate(interface: InterfaceConfig, private_ip: Optional[str]) -> bool:
    if not interface.has_address(private_ip):
        return True
    # A private-IP interface still qualifies if it carries a second usable address
    return any(ip != private_ip for ip in interface.valid_addresses())


def _pairwise_criteria(
    private_ip: Optional[str],
) -> list[Callable[[InterfaceConfig], bool]]:
    return [
        lambda iface: not iface.has_address(private_ip),
        lambda iface: any(is_public_address(ip) for ip in iface.ip_addresses),
        lambda iface: bool(iface.default_gateway),
    ]


def _prefer(
    current: InterfaceConfig,
    challenger: InterfaceConfig,
    private_ip: Optional[str],
) -> InterfaceConfig:
    for criterion in _pairwise_criteria(private_ip):
        current_ok, challenger_ok = criterion(current), criterion(challenger)
        if current_ok != challenger_ok:
            return current if current_ok else challenger
    return challenger


def find_public_interface(
    configuration: NetworkConfiguration, private_ip: Optional[str]
) -> Optional[str]:
    chosen: Optional[InterfaceConfig] = None
    for name in sorted(configuration):
        interface = configuration[name]
        if is_ignored_interface(interface):
            logger.debug("Ignoring interface %s (%s)", name, interface.description)
            continue
        if not _is_public_candidate(interface, private_ip):
            logger.debug("Interface %s only carries the private address", name)
            continue
        chosen = interface if chosen is None else _prefer(chosen, interface, private_ip)
    return chosen.name if chosen else None


def classify_interfaces(
    configuration: NetworkConfiguration, private_ip: Optional[str]
) -> InterfaceClassification:
    return InterfaceClassification(
        private_interface=find_private_interface(configuration, private_ip),
        public_interface=find_public_interface(configuration, private_ip),
    )


class NetworkInterfaceClassifier:
    """
    Classifies a node's interfaces and exposes addressing for each role.
    """

    def __init__(
        self, configuration: NetworkConfiguration, private_ip: Optional[str]
    ) -> None:
        self._configuration = dict(configuration)
        self._private_ip = private_ip
        self._classification: Optional[InterfaceClassification] = None

    @property
    def configuration(self) -> NetworkConfiguration:
        return self._configuration

    def refresh(
        self,
        configuration: NetworkConfiguration,
        private_ip: Optional[str] = None,
    ) -> None:
        self._configuration = dict(configuration)
        if private_ip is not None:
            self._private_ip = private_ip
        self._classification = None

    def classify(self) -> InterfaceClassification:
        if self._classification is None:
            self._classification = classify_interfaces(
                self._configuration, self._private_ip
            )
            logger.debug(
                "Classified interfaces: private=%s public=%s",
                self._classification.private_interface,
                self._classification.public_interface,
            )
        return self._classification

    def get_interface_name(self, role: "InterfaceRole | str") -> str:
        role = InterfaceRole(role)
        classification = self.classify()
        name = (
            classification.public_interface
            if role is InterfaceRole.PUBLIC
            else classification.private_interface
        )
        if name is None:
            raise NetworkConfigurationError(
                f"Unable to determine the {role.value} interface"
            )
        return name

    def _interface(self, role: "InterfaceRole | str") -> InterfaceConfig:
        return self._configuration[self.get_interface_name(role)]

    def get_ip_address(self, role: "InterfaceRole | str") -> str:
        interface = self._interface(role)
        role = InterfaceRole(role)
        if role is InterfaceRole.PRIVATE and interface.has_address(self._private_ip):
            return self._private_ip
        for ip in interface.valid_addresses():
            if role is InterfaceRole.PUBLIC and ip == self._private_ip:
                continue
            return ip
        raise NetworkConfigurationError(
            f"No usable {role.value} IP address on interface {interface.name}"
        )

    def get_subnet_mask(self, role: "InterfaceRole | str") -> str:
        interface = self._interface(role)
        mask = interface.ip_addresses.get(self.get_ip_address(role))
        if not mask:
            raise NetworkConfigurationError(
                f"No subnet mask for interface {interface.name}"
            )
        return mask

    def get_default_gateway(self, role: "InterfaceRole | str") -> str:
        interface = self._interface(role)
        if not interface.default_gateway:
            raise NetworkConfigurationError(
                f"No default gateway on interface {interface.name}"
            )
        return interface.default_gateway

    def get_mac_address(self, role: "InterfaceRole | str") -> str:
        interface = self._interface(role)
        if not interface.physical_address:
            raise NetworkConfigurationError(
                f"No physical address on interface {interface.name}"
            )
        return interface.physical_address
