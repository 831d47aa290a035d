"""
Computer Entity

Architectural Intent:
- The machine being controlled for a reservation
- Public/private addresses are mutable and may be rediscovered
- The name used to reach the node depends on the computer type
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ComputerType(Enum):
    BLADE = "blade"
    LAB = "lab"
    VIRTUAL_MACHINE = "virtualmachine"


@dataclass
class ComputerNode:
    id: int
    hostname: str
    type: ComputerType
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None
    state: str = "reserved"
    nat_host: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.hostname:
            raise ValueError("Computer hostname cannot be empty")
        if not isinstance(self.type, ComputerType):
            self.type = ComputerType(self.type)

    @property
    def short_name(self) -> str:
        return self.hostname.split(".", 1)[0]

    @property
    def node_name(self) -> str:
        """Blades and virtual machines are addressed by short name, lab machines by FQDN."""
        if self.type is ComputerType.LAB:
            return self.hostname
        return self.short_name

    @property
    def behind_nat(self) -> bool:
        return bool(self.nat_host)
