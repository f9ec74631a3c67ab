"""
Remote ECS executor - registers a task definition and starts a batch of tasks.

Artifacts stay inside the remote environment (CloudWatch Logs); nothing is
mounted from this host.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from volley.artifacts.allocator import UnitPaths
from volley.errors import AggregationError, LaunchError
from volley.executors.base import Executor, Handle
from volley.job_template import JobTemplate

logger = logging.getLogger(__name__)

# ECS API limits
MAX_RUN_TASK_COUNT = 10
MAX_DESCRIBE_TASKS = 100

# Fields returned by DescribeTaskDefinition that RegisterTaskDefinition rejects
READ_ONLY_TASK_DEFINITION_FIELDS = (
    "taskDefinitionArn",
    "revision",
    "status",
    "requiresAttributes",
    "compatibilities",
    "registeredAt",
    "registeredBy",
    "deregisteredAt",
)


def _chunks(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


@dataclass
class TaskOutcome:
    """Last known state of a stopped cluster task."""
    task_arn: str
    last_status: str
    containers: List[Tuple[str, Optional[int]]] = field(default_factory=list)
    stopped_reason: Optional[str] = None

    @property
    def exit_code(self) -> Optional[int]:
        """
        Task-level exit code.

        First non-zero container exit code; None if any container has no
        exit code (or there are none); otherwise 0.
        """
        if not self.containers:
            return None
        codes = [code for _, code in self.containers]
        for code in codes:
            if code is not None and code != 0:
                return code
        if any(code is None for code in codes):
            return None
        return 0

    def describe_containers(self) -> str:
        return ", ".join(
            f"{name}=exit({code if code is not None else 'unknown'})"
            for name, code in self.containers
        )


class ClusterTask(Handle):
    """Handle over one ECS task."""

    def __init__(self, task_arn: str, executor: "EcsExecutor", last_status: str = "PROVISIONING"):
        self.task_arn = task_arn
        self.executor = executor
        self.last_status = last_status

    @property
    def handle_id(self) -> str:
        return self.task_arn

    def wait(self) -> Optional[int]:
        self.executor.wait_stopped([self.task_arn])
        outcome = self.executor.describe_tasks([self.task_arn]).get(self.task_arn)
        if outcome is None:
            return None
        self.last_status = outcome.last_status
        return outcome.exit_code

    def terminate(self):
        # Remote tasks are reaped by `clean --remote`, never by the run itself
        pass


@dataclass
class BatchSubmission:
    """Result of one batched launch."""
    task_definition_arn: str
    tasks: List[ClusterTask]
    failures: List[str]


class EcsExecutor(Executor):
    """
    Executor that runs units as ECS tasks.

    launch_batch() performs:
    1. Copy the task-definition template and point every container at the image
    2. Register it as a new task-definition revision
    3. RunTask with count copies (split into chunks of 10)
    """

    mode = "remote"

    def __init__(
        self,
        cluster: str,
        launch_type: str = "FARGATE",
        started_by: str = "volley",
        wait_delay: int = 6,
        wait_max_attempts: Optional[int] = None,
        region: Optional[str] = None,
        ecs_client=None
    ):
        """
        Initialize ECS executor.

        Args:
            cluster: ECS cluster name or ARN
            launch_type: RunTask launch type (default: FARGATE)
            started_by: Tag stamped on every task (used by remote cleanup)
            wait_delay: Seconds between tasks-stopped waiter polls
            wait_max_attempts: Waiter attempts (default: botocore's)
            region: AWS region (default: from environment/profile)
            ecs_client: Preconfigured boto3 ECS client
        """
        self.cluster = cluster
        self.launch_type = launch_type
        self.started_by = started_by
        self.wait_delay = wait_delay
        self.wait_max_attempts = wait_max_attempts

        if ecs_client is None:
            ecs_client = boto3.client("ecs", region_name=region)
        self.ecs = ecs_client

    def prepare_task_definition(self, job_template: JobTemplate) -> Dict[str, Any]:
        """
        Return a registrable copy of the template with the image replaced.

        Only the image of each container definition changes.
        """
        document = job_template.task_definition_copy()
        for name in READ_ONLY_TASK_DEFINITION_FIELDS:
            document.pop(name, None)
        for container in document.get("containerDefinitions", []):
            container["image"] = job_template.image_reference
        return document

    def register_task_definition(self, job_template: JobTemplate) -> str:
        """
        Register a new task-definition revision.

        Returns:
            Task-definition ARN

        Raises:
            LaunchError: If registration fails or returns no ARN
        """
        document = self.prepare_task_definition(job_template)
        try:
            response = self.ecs.register_task_definition(**document)
        except (ClientError, BotoCoreError) as e:
            raise LaunchError(f"Failed to register task definition: {e}") from e

        arn = (response.get("taskDefinition") or {}).get("taskDefinitionArn")
        if not arn:
            raise LaunchError("Failed to register task definition: no taskDefinitionArn in response")

        logger.info("Registered task definition: %s", arn)
        return arn

    def launch_batch(self, job_template: JobTemplate, count: int) -> BatchSubmission:
        """
        Register the template and start count tasks.

        Args:
            job_template: Remote job template (network config required)
            count: Number of tasks

        Returns:
            BatchSubmission with accepted tasks and per-task failure reasons

        Raises:
            LaunchError: If the batch is rejected as a whole
        """
        if job_template.network is None:
            raise LaunchError("Remote job template has no network configuration")

        task_definition_arn = self.register_task_definition(job_template)

        tasks: List[ClusterTask] = []
        failures: List[str] = []

        for chunk_number, chunk_count in enumerate(self._chunk_counts(count)):
            try:
                response = self.ecs.run_task(
                    cluster=self.cluster,
                    taskDefinition=task_definition_arn,
                    launchType=self.launch_type,
                    count=chunk_count,
                    startedBy=self.started_by,
                    networkConfiguration=job_template.network.to_awsvpc()
                )
            except (ClientError, BotoCoreError) as e:
                if chunk_number == 0:
                    raise LaunchError(f"RunTask rejected in cluster {self.cluster}: {e}") from e
                logger.warning("RunTask chunk %d rejected: %s", chunk_number + 1, e)
                failures.extend([f"RunTask rejected: {e}"] * chunk_count)
                continue

            accepted = response.get("tasks", [])
            for task in accepted:
                tasks.append(ClusterTask(task["taskArn"], self, task.get("lastStatus", "PROVISIONING")))
            for failure in response.get("failures", []):
                reason = failure.get("reason", "unknown")
                if failure.get("detail"):
                    reason = f"{reason}: {failure['detail']}"
                failures.append(reason)

            # ECS may report fewer failures than missing tasks
            missing = chunk_count - len(accepted) - len(response.get("failures", []))
            if missing > 0:
                failures.extend(["task not started (no failure reported)"] * missing)

        if failures:
            logger.warning("%d of %d task(s) failed to start", len(failures), count)
        logger.info("Started %d task(s) in cluster %s", len(tasks), self.cluster)
        return BatchSubmission(task_definition_arn=task_definition_arn, tasks=tasks, failures=failures)

    @staticmethod
    def _chunk_counts(count: int) -> List[int]:
        full, rest = divmod(count, MAX_RUN_TASK_COUNT)
        return [MAX_RUN_TASK_COUNT] * full + ([rest] if rest else [])

    def launch(
        self,
        job_template: JobTemplate,
        unit_index: int,
        paths: Optional[UnitPaths] = None,
        interactive: bool = False
    ) -> Handle:
        """Start a single task; artifact paths and TTY do not apply remotely."""
        submission = self.launch_batch(job_template, 1)
        if not submission.tasks:
            reason = submission.failures[0] if submission.failures else "unknown"
            raise LaunchError(f"Unit {unit_index} was not started: {reason}")
        return submission.tasks[0]

    def waiter_config(self, deadline: Optional[float] = None) -> Dict[str, int]:
        """Waiter settings; a deadline caps the number of attempts."""
        config = {"Delay": self.wait_delay}
        if self.wait_max_attempts is not None:
            config["MaxAttempts"] = self.wait_max_attempts
        if deadline is not None:
            attempts = max(1, math.ceil(deadline / max(self.wait_delay, 1)))
            config["MaxAttempts"] = min(attempts, config.get("MaxAttempts", attempts))
        return config

    def wait_stopped(self, task_arns: List[str], deadline: Optional[float] = None):
        """
        Block on the native tasks-stopped waiter for every task.

        The deadline covers all chunks together; each chunk only gets the
        time the previous ones left over.

        Raises:
            AggregationError: If the waiter fails or times out
        """
        waiter = self.ecs.get_waiter("tasks_stopped")
        started = time.monotonic()
        for chunk in _chunks(list(task_arns), MAX_DESCRIBE_TASKS):
            remaining = None
            if deadline is not None:
                remaining = deadline - (time.monotonic() - started)
                if remaining <= 0:
                    raise AggregationError(f"Run deadline of {deadline}s reached while waiting for tasks to stop")
            try:
                waiter.wait(cluster=self.cluster, tasks=chunk, WaiterConfig=self.waiter_config(remaining))
            except (WaiterError, ClientError, BotoCoreError) as e:
                raise AggregationError(f"Waiting for tasks to stop failed: {e}") from e

    def describe_tasks(self, task_arns: List[str]) -> Dict[str, TaskOutcome]:
        """
        Fetch last status and container exit codes.

        Raises:
            AggregationError: If the status query fails
        """
        outcomes: Dict[str, TaskOutcome] = {}
        for chunk in _chunks(list(task_arns), MAX_DESCRIBE_TASKS):
            try:
                response = self.ecs.describe_tasks(cluster=self.cluster, tasks=chunk)
            except (ClientError, BotoCoreError) as e:
                raise AggregationError(f"DescribeTasks failed: {e}") from e

            for task in response.get("tasks", []):
                outcomes[task["taskArn"]] = TaskOutcome(
                    task_arn=task["taskArn"],
                    last_status=task.get("lastStatus", "UNKNOWN"),
                    containers=[
                        (container.get("name", "?"), container.get("exitCode"))
                        for container in task.get("containers", [])
                    ],
                    stopped_reason=task.get("stoppedReason")
                )
        return outcomes

    def stop_started_tasks(self, reason: str = "volley cleanup") -> List[str]:
        """
        Stop every running task tagged with started_by.

        Returns:
            ARNs that were asked to stop

        Raises:
            ClientError, BotoCoreError: If listing or stopping fails
        """
        stopped = []
        paginator = self.ecs.get_paginator("list_tasks")
        for page in paginator.paginate(cluster=self.cluster, startedBy=self.started_by, desiredStatus="RUNNING"):
            for task_arn in page.get("taskArns", []):
                self.ecs.stop_task(cluster=self.cluster, task=task_arn, reason=reason)
                stopped.append(task_arn)
        return stopped
