"""
Power Control Adapter

Architectural Intent:
- Infrastructure adapter implementing PowerControlPort with a site-defined
  command (for example an ipmitool invocation), run on the management node

Security:
- The command template is split with shlex and run without a shell
"""

import asyncio
import logging
import shlex
import subprocess

from vigil.domain.ports.power_control_port import PowerControlPort

logger = logging.getLogger(__name__)


class CommandPowerControl(PowerControlPort):
    def __init__(self, reset_command: str, timeout_seconds: int = 120):
        """
        Args:
            reset_command: Command template; "{node}" is replaced by the node name
            timeout_seconds: Upper bound for the command to finish
        """
        self._reset_command = reset_command
        self._timeout_seconds = timeout_seconds

    async def power_reset(self, node: str) -> bool:
        if not self._reset_command:
            logger.critical("No power reset command configured, cannot reset %s", node)
            return False
        argv = shlex.split(self._reset_command.format(node=node))

        def _reset() -> bool:
            try:
                result = subprocess.run(
                    argv,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout_seconds,
                )
            except (FileNotFoundError, subprocess.TimeoutExpired) as e:
                logger.error("Power reset of %s failed: %s", node, e)
                return False
            if result.returncode != 0:
                logger.error(
                    "Power reset of %s exited %d: %s",
                    node, result.returncode, result.stderr.strip(),
                )
                return False
            return True

        reset = await asyncio.get_event_loop().run_in_executor(None, _reset)
        if reset:
            logger.warning("Power reset issued for %s", node)
        return reset
