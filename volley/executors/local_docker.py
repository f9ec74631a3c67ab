"""
Local docker executor - runs each unit as its own container on this host.
"""
import logging
import os
import signal
import subprocess
from typing import List, Optional

from volley.artifacts.allocator import UnitPaths
from volley.errors import LaunchError
from volley.executors.base import Executor, Handle
from volley.job_template import JobTemplate

logger = logging.getLogger(__name__)

CONTAINER_RESULTS_DIR = "/app/playwright/test-results"
CONTAINER_REPORT_DIR = "/app/playwright/playwright-report"
UNIT_LOG_NAME = "container.log"


class LocalContainerHandle(Handle):
    """Handle over the `docker run` client process of one unit."""

    def __init__(self, name: str, process: subprocess.Popen, log_file=None, own_session: bool = True):
        self.name = name
        self.process = process
        self.log_file = log_file
        self.own_session = own_session

    @property
    def handle_id(self) -> str:
        return self.name

    def wait(self) -> Optional[int]:
        """Wait for `docker run --rm` to exit; its exit code is the container's."""
        try:
            return self.process.wait()
        finally:
            if self.log_file is not None:
                self.log_file.close()

    def terminate(self):
        """Forward SIGTERM to the unit's process group (docker proxies it to the container)."""
        if self.process.poll() is not None:
            return
        try:
            if self.own_session:
                os.killpg(self.process.pid, signal.SIGTERM)
            else:
                self.process.terminate()
        except ProcessLookupError:
            pass


class LocalDockerExecutor(Executor):
    """
    Executor that starts one `docker run` per unit.

    Each container gets the unit's two artifact directories bind-mounted
    (raw results and HTML report) and a shared-memory allocation large enough
    for headed Chromium.
    """

    mode = "local"

    def __init__(self, container_prefix: str = "playwright-test", docker_binary: str = "docker"):
        """
        Initialize local executor.

        Args:
            container_prefix: Name prefix shared by every unit container (used by cleanup)
            docker_binary: docker CLI to invoke
        """
        self.container_prefix = container_prefix
        self.docker_binary = docker_binary
        self.run_id = "run"

    def bind_run(self, run_id: str):
        """Scope container names to one run so concurrent runs never collide."""
        self.run_id = run_id

    def container_name(self, unit_index: int) -> str:
        return f"{self.container_prefix}-{self.run_id}-{unit_index}"

    def build_command(
        self,
        job_template: JobTemplate,
        unit_index: int,
        paths: Optional[UnitPaths] = None,
        interactive: bool = False
    ) -> List[str]:
        """
        Build the `docker run` argument list for one unit.

        Args:
            job_template: Local job template
            unit_index: 1-based unit index
            paths: Host artifact directories to mount
            interactive: Add -it

        Returns:
            argv list
        """
        resources = job_template.resources
        cmd = [self.docker_binary, "run", "--rm"]
        if interactive:
            cmd.append("-it")
        cmd += ["--name", self.container_name(unit_index), f"--shm-size={resources.shm_size}"]

        if resources.cpus:
            cmd.append(f"--cpus={resources.cpus}")
        if resources.memory:
            cmd.append(f"--memory={resources.memory}")
        if job_template.env_file:
            cmd += ["--env-file", str(job_template.env_file)]
        for key, value in job_template.environment:
            cmd += ["-e", f"{key}={value}"]
        cmd += ["-e", f"VOLLEY_UNIT_INDEX={unit_index}"]

        if paths is not None:
            cmd += ["-v", f"{paths.results_dir}:{CONTAINER_RESULTS_DIR}"]
            cmd += ["-v", f"{paths.report_dir}:{CONTAINER_REPORT_DIR}"]

        if job_template.command:
            cmd += ["--entrypoint", "/bin/bash", job_template.image_reference, "-lc", job_template.command]
        else:
            cmd.append(job_template.image_reference)

        return cmd

    def launch(
        self,
        job_template: JobTemplate,
        unit_index: int,
        paths: Optional[UnitPaths] = None,
        interactive: bool = False
    ) -> Handle:
        """
        Start the unit container and return immediately.

        Non-interactive units write combined output to <unit_dir>/container.log
        and run in their own session so they can be signalled as a group.

        Raises:
            LaunchError: If the docker client cannot be started
        """
        cmd = self.build_command(job_template, unit_index, paths, interactive)
        name = self.container_name(unit_index)

        log_file = None
        try:
            if interactive:
                process = subprocess.Popen(cmd)
            else:
                if paths is not None:
                    log_file = open(paths.unit_dir / UNIT_LOG_NAME, "wb")
                    output = log_file
                else:
                    output = subprocess.DEVNULL
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=output,
                    stderr=subprocess.STDOUT,
                    start_new_session=True
                )
        except OSError as e:
            if log_file is not None:
                log_file.close()
            raise LaunchError(f"Failed to start unit {unit_index} ({name}): {e}") from e

        logger.info("Started unit %d as container %s (pid %d)", unit_index, name, process.pid)
        return LocalContainerHandle(name, process, log_file=log_file, own_session=not interactive)
