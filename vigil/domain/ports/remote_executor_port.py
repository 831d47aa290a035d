"""
Remote Executor Port

Architectural Intent:
- Port interface for executing commands on a named remote node
- Defines the retrying, session-pooling execution contract
- Implemented by adapters (Fabric/SSH)
"""

from abc import ABC, abstractmethod
from typing import Optional
from vigil.domain.value_objects.command_result import CommandResult


class RemoteExecutorPort(ABC):
    """
    Port interface for executing commands on remote nodes.
    """

    @abstractmethod
    async def execute(
        self,
        node: str,
        command: str,
        timeout_seconds: int = 60,
        max_attempts: int = 3,
    ) -> Optional[CommandResult]:
        """
        Runs a command on a node, retrying transport failures.
        Returns None once every attempt failed or the session could not
        be created; a non-zero exit status is still a result.
        """
        pass

    @abstractmethod
    async def copy_file_to(self, node: str, local_path: str, remote_path: str) -> bool:
        """
        Copies a local file to a path on the node.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Closes every pooled session.
        """
        pass
