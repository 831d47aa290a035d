"""
Reachability Port

Architectural Intent:
- Network-level checks run from the management node
- ICMP reachability and TCP port checks used as fast readiness pre-filters
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class ReachabilityPort(Protocol):
    async def is_pingable(self, host: str) -> bool: ...

    async def is_port_open(self, host: str, port: int, timeout: float = 3.0) -> bool: ...
