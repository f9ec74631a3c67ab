"""
Base executor interface and work-unit data model.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from volley.artifacts.allocator import UnitPaths
from volley.job_template import JobTemplate


class UnitStatus(str, Enum):
    """Lifecycle states of a work unit."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitStatus.SUCCEEDED, UnitStatus.FAILED, UnitStatus.UNKNOWN)


class Handle(ABC):
    """Opaque reference to a launched unit."""

    @property
    @abstractmethod
    def handle_id(self) -> str:
        """Identifier reported for the unit (container name, task ARN)."""
        pass

    @abstractmethod
    def wait(self) -> Optional[int]:
        """
        Block until the unit terminates.

        Returns:
            Exit code, or None if it could not be read
        """
        pass

    @abstractmethod
    def terminate(self):
        """Best-effort interrupt of a live unit."""
        pass


@dataclass
class WorkUnit:
    """One independent execution of the test workload."""
    index: int
    status: UnitStatus = UnitStatus.PENDING
    handle: Optional[Handle] = None
    handle_id: Optional[str] = None
    artifact_dir: Optional[Path] = None
    paths: Optional[UnitPaths] = None
    exit_code: Optional[int] = None
    reason: Optional[str] = None
    details: List[str] = field(default_factory=list)

    def attach(self, handle: Handle):
        """Record a successful launch."""
        self.handle = handle
        self.handle_id = handle.handle_id
        self.status = UnitStatus.RUNNING

    def mark_unknown(self, reason: str):
        """Unit never started; it is not waited upon."""
        self.status = UnitStatus.UNKNOWN
        self.exit_code = None
        self.reason = reason


class Executor(ABC):
    """
    Abstract base class for unit executors.

    launch() must return as soon as the unit is submitted (container started,
    or request accepted by the scheduler), never after the unit finishes.
    """

    mode: str = ""

    @abstractmethod
    def launch(
        self,
        job_template: JobTemplate,
        unit_index: int,
        paths: Optional[UnitPaths] = None,
        interactive: bool = False
    ) -> Handle:
        """
        Launch exactly one unit.

        Args:
            job_template: What to run
            unit_index: 1-based unit index within the run
            paths: Host artifact directories (local mode only)
            interactive: Attach the calling terminal (local mode only)

        Returns:
            Handle for the launched unit

        Raises:
            LaunchError: If the unit could not be submitted
        """
        pass

    def bind_run(self, run_id: str):
        """Called once per run before any launch; default is a no-op."""
        pass
