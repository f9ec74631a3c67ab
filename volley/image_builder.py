"""
Unit image build and compose collaborators.

These only shell out to docker; the image contents (browsers, dependencies,
wallet cache) are defined by the Dockerfile.
"""
import logging
import shlex
import subprocess
from typing import List

from volley.config import LauncherConfig
from volley.errors import BuildError

logger = logging.getLogger(__name__)


class ImageBuilder:
    """Builds the runnable unit image from a repository URL and branch."""

    def __init__(self, config: LauncherConfig, docker_binary: str = "docker"):
        self.config = config
        self.docker_binary = docker_binary

    def build_command(self, context: str = ".") -> List[str]:
        return [
            self.docker_binary, "build",
            "--no-cache",
            "--build-arg", f"REPO_URL={self.config.repo_url}",
            "--build-arg", f"BRANCH={self.config.branch}",
            "-f", self.config.dockerfile,
            "-t", self.config.local_image,
            context
        ]

    def build(self, context: str = ".") -> str:
        """
        Build the image.

        Returns:
            Image reference (name:tag)

        Raises:
            BuildError: If docker is missing or the build fails
        """
        cmd = self.build_command(context)
        logger.info("Building %s from %s@%s", self.config.local_image, self.config.repo_url, self.config.branch)
        try:
            completed = subprocess.run(cmd)
        except OSError as e:
            raise BuildError(f"Failed to run docker build: {e}") from e

        if completed.returncode != 0:
            raise BuildError(f"docker build exited with code {completed.returncode}")

        return self.config.local_image

    def compose_up(self) -> int:
        """
        Run the compose-managed unit set in the foreground.

        Returns:
            Exit code of the compose command

        Raises:
            BuildError: If the compose command cannot be started
        """
        cmd = shlex.split(self.config.compose_command) + ["up", "--build"]
        try:
            return subprocess.run(cmd).returncode
        except OSError as e:
            raise BuildError(f"Failed to run {cmd[0]}: {e}") from e
