"""
Network Reachability Adapter

Architectural Intent:
- Infrastructure adapter implementing ReachabilityPort from the management node
- ICMP via the system ping binary, TCP via an asyncio connection attempt
"""

import asyncio
import logging
import subprocess

from vigil.domain.ports.reachability_port import ReachabilityPort

logger = logging.getLogger(__name__)


class NetworkReachabilityAdapter(ReachabilityPort):
    def __init__(self, ping_timeout_seconds: int = 1, ping_count: int = 1):
        self._ping_timeout_seconds = ping_timeout_seconds
        self._ping_count = ping_count

    async def is_pingable(self, host: str) -> bool:
        def _ping() -> bool:
            try:
                result = subprocess.run(
                    [
                        "ping",
                        "-c", str(self._ping_count),
                        "-W", str(self._ping_timeout_seconds),
                        host,
                    ],
                    capture_output=True,
                    text=True,
                    timeout=self._ping_timeout_seconds * self._ping_count + 5,
                )
                return result.returncode == 0
            except FileNotFoundError:
                logger.error("'ping' not found, unable to ping %s", host)
                return False
            except subprocess.TimeoutExpired:
                return False

        pingable = await asyncio.get_event_loop().run_in_executor(None, _ping)
        logger.debug("%s is %spingable", host, "" if pingable else "not ")
        return pingable

    async def is_port_open(self, host: str, port: int, timeout: float = 3.0) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True
