"""
Network Configuration Value Objects

Architectural Intent:
- Immutable snapshot of a node's interfaces as reported by the OS binding
- Interface name -> addresses (IP -> subnet mask), gateway, MAC, description
- Address helpers shared by the classifier and the firewall scoping code
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Mapping, Optional


@dataclass(frozen=True)
class InterfaceConfig:
    """
    Value Object describing one network interface on a node.
    """
    name: str
    ip_addresses: Mapping[str, str] = field(default_factory=dict)
    default_gateway: Optional[str] = None
    physical_address: Optional[str] = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Interface name cannot be empty")

    def has_address(self, ip: Optional[str]) -> bool:
        return bool(ip) and ip in self.ip_addresses

    def valid_addresses(self) -> list[str]:
        """Addresses in reported order, skipping link-local and unspecified ones."""
        return [ip for ip in self.ip_addresses if is_valid_address(ip)]


NetworkConfiguration = Mapping[str, InterfaceConfig]


def is_valid_address(ip: str) -> bool:
    """False for 0.0.0.0 and 169.254.x.x, which never identify a usable interface."""
    return bool(ip) and ip != "0.0.0.0" and not ip.startswith("169.254")


def is_public_address(ip: str) -> bool:
    """True for a globally routable address."""
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False


def remote_ip_scope(remote_ip: Optional[str]) -> str:
    """
    Narrows a client address to the /24 it sits in.
    Absent, "any" or "0" means unrestricted (0.0.0.0/0). Anything other than
    an IPv4 address raises ValueError; the firewall is IPv4 only.
    """
    if not remote_ip or remote_ip.lower() == "any" or remote_ip == "0":
        return "0.0.0.0/0"
    address = ipaddress.IPv4Address(remote_ip)
    return str(ipaddress.IPv4Network(f"{address}/24", strict=False))
