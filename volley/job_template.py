"""
Job templates: the read-only description of what a work unit runs.
"""
import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from volley.config import LauncherConfig
from volley.errors import ConfigurationError


@dataclass(frozen=True)
class ResourceLimits:
    """Local container resource limits."""
    shm_size: str = "2g"
    cpus: Optional[str] = None
    memory: Optional[str] = None


@dataclass(frozen=True)
class NetworkConfig:
    """Remote network placement for cluster tasks."""
    subnets: Tuple[str, ...]
    security_groups: Tuple[str, ...]
    assign_public_ip: str = "ENABLED"

    def to_awsvpc(self) -> Dict[str, Any]:
        """Render as an ECS networkConfiguration block."""
        return {
            "awsvpcConfiguration": {
                "subnets": list(self.subnets),
                "securityGroups": list(self.security_groups),
                "assignPublicIp": self.assign_public_ip
            }
        }


@dataclass(frozen=True)
class JobTemplate:
    """
    Immutable job description shared by every unit of a run.

    Local templates carry resource limits and an optional env file; remote
    templates carry the network config and the task-definition document.
    """
    image_reference: str
    environment: Tuple[Tuple[str, str], ...] = ()
    command: Optional[str] = None
    env_file: Optional[Path] = None
    resources: ResourceLimits = field(default_factory=ResourceLimits)
    network: Optional[NetworkConfig] = None
    task_definition: Optional[Dict[str, Any]] = None

    @classmethod
    def for_local(cls, config: LauncherConfig, environment: Optional[Dict[str, str]] = None) -> "JobTemplate":
        """Build a local docker template from configuration."""
        env_file = config.env_file if config.env_file and Path(config.env_file).is_file() else None
        return cls(
            image_reference=config.local_image,
            environment=tuple(sorted((environment or {}).items())),
            command=config.test_command,
            env_file=env_file,
            resources=ResourceLimits(
                shm_size=config.shm_size,
                cpus=config.cpus,
                memory=config.memory
            )
        )

    @classmethod
    def for_remote(cls, config: LauncherConfig) -> "JobTemplate":
        """
        Build a remote template; configuration must already be validated.

        Raises:
            ConfigurationError: If the task-definition file is invalid
        """
        return cls(
            image_reference=config.resolved_image_uri(),
            network=NetworkConfig(
                subnets=tuple(config.subnets),
                security_groups=tuple(config.security_groups),
                assign_public_ip=config.assign_public_ip
            ),
            task_definition=load_task_definition(Path(config.task_definition_path))
        )

    def environment_dict(self) -> Dict[str, str]:
        return dict(self.environment)

    def task_definition_copy(self) -> Dict[str, Any]:
        """Deep copy of the task-definition document; the template is never mutated."""
        return copy.deepcopy(self.task_definition or {})


def load_task_definition(path: Path) -> Dict[str, Any]:
    """
    Load an ECS task-definition document (JSON or YAML).

    Args:
        path: Path to the template file

    Returns:
        Parsed document

    Raises:
        ConfigurationError: If the file is missing, unparsable, or has no container definitions
    """
    if not path.is_file():
        raise ConfigurationError(f"Task definition file not found: {path}")

    try:
        with open(path, "r") as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid task definition in {path}: {e}") from e

    if not isinstance(document, dict):
        raise ConfigurationError(f"Invalid task definition in {path}: must be an object")

    containers = document.get("containerDefinitions")
    if not isinstance(containers, list) or not containers:
        raise ConfigurationError(f"Task definition {path} has no containerDefinitions")

    return document
