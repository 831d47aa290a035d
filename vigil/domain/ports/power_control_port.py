"""
Power Control Port

Architectural Intent:
- Hard power cycle of a node, used to escalate a failed reboot wait
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class PowerControlPort(Protocol):
    async def power_reset(self, node: str) -> bool: ...
