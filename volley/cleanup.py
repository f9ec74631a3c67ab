"""
Cleanup of leftover units.

Safe to call at any time and any number of times: finding nothing to remove
is not an error.
"""
import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from volley.errors import CleanupError
from volley.executors.ecs_executor import EcsExecutor

logger = logging.getLogger(__name__)

NO_SUCH_CONTAINER = "No such container"


@dataclass
class CleanupResult:
    """What a cleanup pass removed."""
    removed_containers: List[str] = field(default_factory=list)
    stopped_tasks: List[str] = field(default_factory=list)
    compose_down: bool = False


class CleanupManager:
    """
    Removes leftover unit containers by name prefix.

    Also brings down any compose-managed unit set (best-effort) and, when a
    remote executor is supplied, stops running cluster tasks started by volley.
    """

    def __init__(
        self,
        container_prefix: str,
        compose_command: str = "docker-compose",
        docker_binary: str = "docker",
        remote_executor: Optional[EcsExecutor] = None
    ):
        self.container_prefix = container_prefix
        self.compose_command = compose_command
        self.docker_binary = docker_binary
        self.remote_executor = remote_executor

    def cleanup(self) -> CleanupResult:
        """
        Remove every leftover unit.

        Returns:
            CleanupResult

        Raises:
            CleanupError: If a removal command fails for a reason other than "nothing to remove"
        """
        result = CleanupResult()
        result.compose_down = self._compose_down()

        container_ids = self._list_containers()
        if container_ids:
            self._remove_containers(container_ids)
            result.removed_containers = container_ids
            logger.info("Removed %d container(s)", len(container_ids))
        else:
            logger.info("No leftover %s-* containers", self.container_prefix)

        if self.remote_executor is not None:
            try:
                result.stopped_tasks = self.remote_executor.stop_started_tasks()
            except (ClientError, BotoCoreError) as e:
                raise CleanupError(f"Failed to stop remote tasks: {e}") from e
            logger.info("Stopped %d remote task(s)", len(result.stopped_tasks))

        return result

    def _compose_down(self) -> bool:
        cmd = shlex.split(self.compose_command) + ["down"]
        try:
            completed = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            logger.debug("Skipping compose down: %s", e)
            return False
        if completed.returncode != 0:
            logger.debug("compose down exited %d: %s", completed.returncode, completed.stderr.strip())
            return False
        return True

    def _list_containers(self) -> List[str]:
        """IDs of all containers (any state) named <prefix>-*."""
        cmd = [
            self.docker_binary, "ps", "-a",
            "--filter", f"name={self.container_prefix}-",
            "--format", "{{.ID}} {{.Names}}"
        ]
        try:
            completed = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            logger.warning("Cannot list containers: %s", e)
            return []
        if completed.returncode != 0:
            logger.warning("docker ps failed: %s", completed.stderr.strip())
            return []

        ids = []
        for line in completed.stdout.splitlines():
            parts = line.split()
            if len(parts) < 2:
                continue
            container_id, name = parts[0], parts[1]
            # The name filter is a substring match
            if name.lstrip("/").startswith(f"{self.container_prefix}-"):
                ids.append(container_id)
        return ids

    def _remove_containers(self, container_ids: List[str]):
        cmd = [self.docker_binary, "rm", "-f"] + container_ids
        try:
            completed = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise CleanupError(f"Failed to run docker rm: {e}") from e

        if completed.returncode == 0:
            return

        # Containers removed concurrently (e.g. --rm finishing) are fine
        errors = [
            line for line in completed.stderr.splitlines()
            if line.strip() and NO_SUCH_CONTAINER not in line
        ]
        if errors:
            raise CleanupError(f"docker rm failed: {'; '.join(errors)}")
