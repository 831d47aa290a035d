"""
Update Cluster Use Case

Architectural Intent:
- Tells every node of a cluster request who its peers are
- Writes a parent=/child= descriptor, opens the node firewall to every peer
  and copies the descriptor to each member

Design Decisions:
- The parent is the member with the lowest reservation id
- Concurrent writers are tolerated: the last copy wins
"""

import logging
import os
import tempfile
from typing import Optional

from vigil.domain.entities.reservation import ClusterMember, ReservationContext
from vigil.domain.ports.os_capabilities import Capability, OSBinding, supports
from vigil.domain.ports.remote_executor_port import RemoteExecutorPort
from vigil.domain.value_objects.firewall import ANY_PORT

logger = logging.getLogger(__name__)

REMOTE_PATHS = {
    "linux": "/etc/cluster_info",
    "windows": "C:/cluster_info",
}


def build_cluster_descriptor(members: tuple[ClusterMember, ...]) -> str:
    if not members:
        return ""
    parent_id = min(m.reservation_id for m in members)
    lines = []
    for member in sorted(members, key=lambda m: m.reservation_id):
        role = "parent" if member.reservation_id == parent_id else "child"
        lines.append(f"{role}={member.public_ip or ''}")
    return "\n".join(lines) + "\n"


class ClusterUpdater:
    def __init__(
        self,
        executor: RemoteExecutorPort,
        binding: OSBinding,
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
        temp_dir: Optional[str] = None,
    ):
        self.executor = executor
        self.binding = binding
        self.log = log or logger
        self.temp_dir = temp_dir

    async def update(self, context: ReservationContext) -> bool:
        members = context.request.members
        missing = [m.hostname for m in members if not m.public_ip]
        if missing:
            self.log.critical("Cluster members without a public IP: %s", ", ".join(missing))
            return False

        if not await self._open_firewall(context):
            return False

        remote_path = REMOTE_PATHS.get(context.image.os_type.lower(), REMOTE_PATHS["linux"])
        fd, local_path = tempfile.mkstemp(
            prefix=f"{context.computer.short_name}.cluster_info.", dir=self.temp_dir
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(build_cluster_descriptor(members))
            success = True
            for member in members:
                if not await self.executor.copy_file_to(member.hostname, local_path, remote_path):
                    self.log.warning(
                        "Unable to copy cluster descriptor to %s", member.hostname
                    )
                    success = False
        finally:
            os.unlink(local_path)

        if success:
            self.log.info(
                "Cluster descriptor for request %s pushed to %d node(s)",
                context.request.id, len(members),
            )
        return success

    async def _open_firewall(self, context: ReservationContext) -> bool:
        peers = context.cluster_peers
        if not peers:
            return True
        if not supports(self.binding, Capability.ENABLE_FIREWALL_PORT):
            self.log.critical(
                "%s cannot open its firewall to cluster peers", self.binding.node_name
            )
            return False
        for peer in peers:
            if not await self.binding.enable_firewall_port(
                "tcp", ANY_PORT, f"{peer.public_ip}/32"
            ):
                self.log.error("Unable to open firewall to cluster peer %s", peer.public_ip)
                return False
        return True
