"""
Update Public Address Use Case

Architectural Intent:
- Keeps the stored public IP of a node in line with the node itself
- DHCP sites read the address from the node; static sites push it to the node
- Server requests may pin a fixed public IP, remembered so it can be restored
"""

import logging
from typing import Optional

from vigil.domain.entities.reservation import ReservationContext
from vigil.domain.ports.os_capabilities import Capability, OSBinding, supports
from vigil.domain.ports.reachability_port import ReachabilityPort
from vigil.domain.ports.reservation_store_port import ReservationStorePort

logger = logging.getLogger(__name__)


def original_ip_variable(server_request_id: int) -> str:
    return f"originalIPaddr_{server_request_id}"


class PublicAddressUpdater:
    def __init__(
        self,
        store: ReservationStorePort,
        binding: OSBinding,
        reachability: ReachabilityPort,
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
    ):
        self.store = store
        self.binding = binding
        self.reachability = reachability
        self.log = log or logger

    async def update_public_ip_address(self, context: ReservationContext) -> bool:
        mode = context.management_node.public_ip_configuration.lower()
        computer = context.computer

        if mode.startswith("dhcp"):
            if not supports(self.binding, Capability.GET_PUBLIC_IP_ADDRESS):
                self.log.critical("%s cannot report its public IP", computer.node_name)
                return False
            public_ip = await self.binding.get_public_ip_address()
            if not public_ip:
                self.log.warning("Unable to read public IP of %s", computer.node_name)
                return False
            if public_ip != computer.public_ip:
                self.log.info(
                    "Public IP of %s changed: %s -> %s",
                    computer.node_name, computer.public_ip, public_ip,
                )
                if not self.store.update_computer_public_ip(computer.id, public_ip):
                    self.log.warning("Unable to store public IP of %s", computer.node_name)
                    return False
                computer.public_ip = public_ip
            return True

        if mode.startswith("static"):
            if not supports(self.binding, Capability.SET_STATIC_PUBLIC_ADDRESS):
                self.log.critical(
                    "%s cannot set a static public IP", computer.node_name
                )
                return False
            return await self.binding.set_static_public_address()

        self.log.debug("Public IP mode %r needs no update", mode)
        return True

    async def confirm_fixed_ip_is_available(self, context: ReservationContext, ip: str) -> bool:
        if self.store.is_public_ip_assigned(ip, context.computer.id):
            self.log.warning("Fixed IP %s is assigned to another computer", ip)
            return False
        if await self.reachability.is_pingable(ip):
            self.log.warning("Fixed IP %s answers ping, it is in use", ip)
            return False
        return True

    async def set_fixed_ip(self, context: ReservationContext) -> bool:
        server_request = context.request.server_request
        computer = context.computer
        if server_request is None or not server_request.fixed_ip:
            return True
        fixed_ip = server_request.fixed_ip
        if fixed_ip == computer.public_ip:
            self.log.debug("%s already uses fixed IP %s", computer.node_name, fixed_ip)
            return True

        if not await self.confirm_fixed_ip_is_available(context, fixed_ip):
            return False
        if not supports(self.binding, Capability.SET_STATIC_PUBLIC_ADDRESS):
            self.log.critical("%s cannot set a static public IP", computer.node_name)
            return False

        if computer.public_ip:
            self.store.set_variable(
                original_ip_variable(server_request.id), computer.public_ip
            )
        previous_ip = computer.public_ip
        computer.public_ip = fixed_ip
        if not await self.binding.set_static_public_address():
            computer.public_ip = previous_ip
            self.log.error("Unable to set fixed IP %s on %s", fixed_ip, computer.node_name)
            return False

        await self.binding.get_network_configuration(refresh=True)
        if not self.store.update_computer_public_ip(computer.id, fixed_ip):
            self.log.warning("Unable to store fixed IP of %s", computer.node_name)
        if supports(self.binding, Capability.UPDATE_PUBLIC_HOSTNAME):
            if not await self.binding.update_public_hostname():
                self.log.warning("Unable to update hostname of %s", computer.node_name)

        self.log.info("%s now uses fixed IP %s", computer.node_name, fixed_ip)
        return True
