"""
Fabric Remote Executor

Architectural Intent:
- Infrastructure adapter implementing RemoteExecutorPort via Fabric/SSH
- Keeps at most one reusable Connection per node, owned by this instance
- Blocking Fabric calls run on the default thread pool

Design Decisions:
- Every command is followed by a sentinel echoing the shell exit status;
  no sentinel within the timeout is a failed attempt, not a failed command
- A failed attempt closes and forgets the cached session before the next try
- A server that demands password authentication when none is configured is a
  configuration fault: logged critical and never retried

Security:
- SSH connections use connect_timeout, allow_agent, look_for_keys
- Commands are passed through unchanged; callers quote their arguments
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional

from fabric import Connection
from invoke.exceptions import CommandTimedOut
from paramiko.ssh_exception import BadAuthenticationType, SSHException

from vigil.domain.ports.metrics_port import MetricsPort
from vigil.domain.ports.remote_executor_port import RemoteExecutorPort
from vigil.domain.value_objects.command_result import CommandResult

logger = logging.getLogger(__name__)

_SENTINEL = "exitstatus:"
_SENTINEL_RE = re.compile(r"exitstatus:(\d+)")


class PasswordAuthenticationRequired(Exception):
    """The node only offers password authentication and no password is configured."""

    def __init__(self, node: str) -> None:
        super().__init__(f"{node} requires password authentication")
        self.node = node


def parse_sentinel_output(stdout: str) -> Optional[CommandResult]:
    """Splits raw output at the last exit-status sentinel; None if it never appeared."""
    matches = list(_SENTINEL_RE.finditer(stdout or ""))
    if not matches:
        return None
    match = matches[-1]
    output = stdout[: match.start()].strip()
    lines = tuple(line.replace("\r", "") for line in output.split("\n")) if output else ()
    return CommandResult(exit_status=int(match.group(1)), output_lines=lines)


class FabricRemoteExecutor(RemoteExecutorPort):
    """Adapter implementing RemoteExecutorPort via Fabric/SSH."""

    def __init__(
        self,
        user: str = "root",
        port: int = 22,
        identity_files: tuple[str, ...] = (),
        password: str = "",
        connect_timeout: int = 30,
        attempt_delay_seconds: float = 5.0,
        metrics: Optional[MetricsPort] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._user = user
        self._port = port
        self._identity_files = tuple(identity_files)
        self._password = password
        self._connect_timeout = connect_timeout
        self._attempt_delay_seconds = attempt_delay_seconds
        self._metrics = metrics
        self._sleep = sleep
        self._sessions: dict[str, Connection] = {}

    @property
    def cached_nodes(self) -> list[str]:
        return sorted(self._sessions)

    def _get_connection(self, node: str) -> Connection:
        connect_kwargs = {
            "allow_agent": True,
            "look_for_keys": True,
        }
        if self._identity_files:
            connect_kwargs["key_filename"] = list(self._identity_files)
        if self._password:
            connect_kwargs["password"] = self._password
        return Connection(
            host=node,
            user=self._user,
            port=self._port,
            connect_timeout=self._connect_timeout,
            connect_kwargs=connect_kwargs,
        )

    def _open_session(self, node: str) -> Connection:
        session = self._sessions.get(node)
        if session is not None:
            return session

        conn = self._get_connection(node)
        try:
            conn.open()
        except BadAuthenticationType as e:
            conn.close()
            if "password" in (e.allowed_types or []) and not self._password:
                raise PasswordAuthenticationRequired(node) from e
            raise
        except SSHException as e:
            conn.close()
            if "No authentication methods available" in str(e) and not self._password:
                raise PasswordAuthenticationRequired(node) from e
            raise
        return conn

    def _run_once(self, node: str, command: str, timeout_seconds: int) -> Optional[CommandResult]:
        # Cached up front; execute() discards it again if the attempt fails
        conn = self._sessions[node] = self._open_session(node)
        result = conn.run(
            f"{command} 2>&1 ; echo {_SENTINEL}$?",
            hide=True,
            warn=True,
            pty=False,
            timeout=timeout_seconds,
        )
        return parse_sentinel_output(result.stdout)

    def _discard(self, node: str) -> None:
        session = self._sessions.pop(node, None)
        if session is None:
            return
        try:
            session.close()
        except Exception as e:
            logger.debug("Closing session to %s failed: %s", node, e)

    async def execute(
        self,
        node: str,
        command: str,
        timeout_seconds: int = 60,
        max_attempts: int = 3,
    ) -> Optional[CommandResult]:
        max_attempts = max(max_attempts, 1)
        loop = asyncio.get_event_loop()

        for attempt in range(1, max_attempts + 1):
            try:
                result = await loop.run_in_executor(
                    None, self._run_once, node, command, timeout_seconds
                )
            except PasswordAuthenticationRequired as e:
                logger.critical(
                    "Unable to run command on %s: %s and no password is configured",
                    node,
                    e,
                )
                self._discard(node)
                self._record_attempts(node, attempt, False)
                return None
            except CommandTimedOut:
                logger.warning(
                    "Attempt %d/%d: command on %s timed out after %ss: %s",
                    attempt, max_attempts, node, timeout_seconds, command,
                )
            except Exception as e:
                logger.warning(
                    "Attempt %d/%d: unable to run command on %s: %s",
                    attempt, max_attempts, node, e,
                )
            else:
                if result is not None:
                    logger.debug(
                        "Ran command on %s (exit status %d): %s",
                        node, result.exit_status, command,
                    )
                    self._record_attempts(node, attempt, True)
                    return result
                logger.warning(
                    "Attempt %d/%d: exit status sentinel missing from output on %s",
                    attempt, max_attempts, node,
                )

            self._discard(node)
            if attempt < max_attempts:
                await self._sleep(self._attempt_delay_seconds)

        logger.error(
            "Failed to run command on %s after %d attempts: %s",
            node, max_attempts, command,
        )
        self._record_attempts(node, max_attempts, False)
        return None

    async def copy_file_to(self, node: str, local_path: str, remote_path: str) -> bool:
        def _put() -> None:
            conn = self._sessions[node] = self._open_session(node)
            conn.put(local_path, remote=remote_path)

        try:
            await asyncio.get_event_loop().run_in_executor(None, _put)
            logger.debug("Copied %s to %s:%s", local_path, node, remote_path)
            return True
        except Exception as e:
            logger.warning("Failed to copy %s to %s:%s: %s", local_path, node, remote_path, e)
            self._discard(node)
            return False

    async def close(self) -> None:
        for node in list(self._sessions):
            self._discard(node)

    def _record_attempts(self, node: str, attempts: int, success: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_command_attempts(node, attempts, success)
