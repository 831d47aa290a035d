"""
iptables Adapters

Architectural Intent:
- IptablesFirewall opens/closes ports in a node's INPUT chain
- IptablesNatHost keeps per-reservation DNAT chains on a shared NAT host
- Both drive iptables through the RemoteExecutor on the target machine

Design Decisions:
- Every add is preceded by an iptables -C check, so re-applying a rule is a no-op
- Every call passes -w so concurrent writers wait for the xtables lock
- Rules we own carry the "vigil" comment; forwards live in chain
  vigil-<reservation id> so reservations sharing a NAT host never touch
  each other's rules
"""

import logging
import shlex
from typing import Optional, Union

from vigil.domain.ports.nat_host_port import NatHostPort
from vigil.domain.ports.remote_executor_port import RemoteExecutorPort
from vigil.domain.value_objects.command_result import CommandResult
from vigil.domain.value_objects.firewall import ANY_PORT, FirewallRule, NatForward

logger = logging.getLogger(__name__)

RULE_COMMENT = "vigil"
NAT_JUMP_CHAIN = "PREROUTING"


class IptablesRunner:
    """Runs iptables for one table on one machine."""

    def __init__(
        self,
        executor: RemoteExecutorPort,
        node: str,
        table: str = "filter",
        timeout_seconds: int = 30,
    ):
        self.executor = executor
        self.node = node
        self.table = table
        self.timeout_seconds = timeout_seconds

    async def run(self, *args: str) -> Optional[CommandResult]:
        argv = ["iptables", "-w"]
        if self.table != "filter":
            argv += ["-t", self.table]
        argv += list(args)
        return await self.executor.execute(
            self.node, shlex.join(argv), timeout_seconds=self.timeout_seconds
        )

    async def succeeds(self, *args: str) -> Optional[bool]:
        """True/False on exit status, None when the command could not run."""
        result = await self.run(*args)
        if result is None:
            return None
        return result.ok

    async def ensure(self, check_args: list[str], add_args: list[str]) -> bool:
        present = await self.succeeds(*check_args)
        if present is None:
            return False
        if present:
            return True
        result = await self.run(*add_args)
        if result is None or not result.ok:
            logger.error(
                "iptables %s failed on %s: %s",
                " ".join(add_args), self.node, result.output if result else "no response",
            )
            return False
        return True


def _rule_specs(rule: FirewallRule) -> list[list[str]]:
    protocols = [rule.protocol]
    if rule.protocol == "all" and rule.port != ANY_PORT:
        protocols = ["tcp", "udp"]

    specs = []
    for protocol in protocols:
        spec = ["-p", protocol]
        if rule.port != ANY_PORT:
            spec += ["--dport", str(rule.port)]
        if not rule.unrestricted:
            spec += ["-s", rule.scope]
        spec += ["-m", "comment", "--comment", RULE_COMMENT, "-j", "ACCEPT"]
        specs.append(spec)
    return specs


def _listed_rule_matches(line: str, chain: str, protocol: str, port: Union[int, str]) -> bool:
    tokens = line.split()
    if tokens[:2] != ["-A", chain] or RULE_COMMENT not in tokens:
        return False
    if protocol != "all" and f"-p {protocol}" not in line:
        return False
    if port == ANY_PORT:
        return "--dport" not in tokens
    return f"--dport {port}" in line


class IptablesFirewall:
    def __init__(self, runner: IptablesRunner, chain: str = "INPUT"):
        self.runner = runner
        self.chain = chain

    async def list_rules(self) -> Optional[list[str]]:
        result = await self.runner.run("-S", self.chain)
        if result is None or not result.ok:
            return None
        return list(result.output_lines)

    async def enable_port(self, rule: FirewallRule, overwrite: bool = False) -> bool:
        if overwrite and not await self._delete_matching(
            rule.protocol, rule.port, keep_scope=rule.scope
        ):
            return False
        for spec in _rule_specs(rule):
            if not await self.runner.ensure(
                ["-C", self.chain, *spec], ["-I", self.chain, *spec]
            ):
                return False
        logger.info("Opened %s on %s", rule, self.runner.node)
        return True

    async def disable_port(self, rule: FirewallRule, any_scope: bool = False) -> bool:
        if any_scope:
            return await self._delete_matching(rule.protocol, rule.port)
        for spec in _rule_specs(rule):
            present = await self.runner.succeeds("-C", self.chain, *spec)
            if present is None:
                return False
            if present and not await self.runner.succeeds("-D", self.chain, *spec):
                logger.error("Unable to remove %s on %s", rule, self.runner.node)
                return False
        logger.info("Closed %s on %s", rule, self.runner.node)
        return True

    async def _delete_matching(
        self,
        protocol: str,
        port: Union[int, str],
        keep_scope: Optional[str] = None,
    ) -> bool:
        rules = await self.list_rules()
        if rules is None:
            return False
        for line in rules:
            if not _listed_rule_matches(line, self.chain, protocol, port):
                continue
            if keep_scope and (
                f"-s {keep_scope}" in line
                or (keep_scope == "0.0.0.0/0" and " -s " not in line)
            ):
                continue
            tokens = shlex.split(line)[2:]
            if not await self.runner.succeeds("-D", self.chain, *tokens):
                logger.error("Unable to remove rule on %s: %s", self.runner.node, line)
                return False
        return True


def nat_chain_name(reservation_id: int) -> str:
    return f"vigil-{reservation_id}"


class IptablesNatHost(NatHostPort):
    def __init__(self, runner: IptablesRunner):
        self.runner = runner

    @property
    def hostname(self) -> str:
        return self.runner.node

    async def configure_nat(self, reservation_id: int) -> bool:
        chain = nat_chain_name(reservation_id)
        exists = await self.runner.succeeds("-n", "-L", chain)
        if exists is None:
            return False
        if not exists:
            result = await self.runner.run("-N", chain)
            # A concurrent worker may have created it in the meantime
            if result is None or (
                not result.ok and not await self.runner.succeeds("-n", "-L", chain)
            ):
                logger.error("Unable to create NAT chain %s on %s", chain, self.hostname)
                return False
        jump = ["-j", chain]
        return await self.runner.ensure(
            ["-C", NAT_JUMP_CHAIN, *jump], ["-A", NAT_JUMP_CHAIN, *jump]
        )

    async def add_nat_port_forward(self, forward: NatForward) -> bool:
        chain = nat_chain_name(forward.reservation_id)
        protocols = ["tcp", "udp"] if forward.protocol == "all" else [forward.protocol]
        for protocol in protocols:
            spec = [
                "-p", protocol,
                "--dport", str(forward.public_port),
                "-j", "DNAT",
                "--to-destination", f"{forward.private_ip}:{forward.private_port}",
            ]
            if not await self.runner.ensure(["-C", chain, *spec], ["-A", chain, *spec]):
                return False
        return True

    async def remove_nat_port_forwards(self, reservation_id: int) -> bool:
        chain = nat_chain_name(reservation_id)
        exists = await self.runner.succeeds("-n", "-L", chain)
        if exists is None:
            return False
        if not exists:
            return True
        while await self.runner.succeeds("-C", NAT_JUMP_CHAIN, "-j", chain):
            if not await self.runner.succeeds("-D", NAT_JUMP_CHAIN, "-j", chain):
                return False
        if not await self.runner.succeeds("-F", chain):
            return False
        removed = bool(await self.runner.succeeds("-X", chain))
        if removed:
            logger.info("Removed NAT forwards for reservation %s on %s", reservation_id, self.hostname)
        return removed
