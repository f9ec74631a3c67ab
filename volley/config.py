"""
Launcher configuration.

A single LauncherConfig is built at CLI entry and handed to every component.
Values come from built-in defaults, an optional YAML file, VOLLEY_* environment
variables and finally explicit CLI flags, in that order of precedence.
"""
import os
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from volley.errors import ConfigurationError


DEFAULT_TEST_COMMAND = (
    'set -x; cd /app/playwright && xvfb-run --auto-servernum '
    '--server-args="-screen 0 1280x960x24" npx playwright test --headed --workers 1'
)

ENV_PREFIX = "VOLLEY_"


def _split_csv(value: Any) -> List[str]:
    """Accept 'a,b' strings or YAML lists; drop empty entries."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return [item.strip() for item in items if item.strip()]


def parse_count(value: Any) -> int:
    """
    Parse a unit count argument.

    Args:
        value: Raw count (string from the command line, or int)

    Returns:
        Positive integer count

    Raises:
        ConfigurationError: If value is not a positive integer
    """
    text = str(value).strip()
    if not text.isdigit() or int(text) <= 0:
        raise ConfigurationError(f"Count must be a positive integer, got: {value!r}")
    return int(text)


@dataclass(frozen=True)
class LauncherConfig:
    """Immutable launcher settings shared by all components."""

    # Image build
    repo_url: str = "https://github.com/Shuttle-Labs/genius-e2e-load-testing.git"
    branch: str = "satyam2"
    dockerfile: str = "Dockerfile.fixed"
    image_name: str = "playwright-load-test"
    image_tag: str = "latest"

    # Local runs
    results_root: Path = Path("playwright-results")
    env_file: Optional[Path] = Path(".env")
    shm_size: str = "2g"
    cpus: Optional[str] = None
    memory: Optional[str] = None
    container_prefix: str = "playwright-test"
    test_command: str = DEFAULT_TEST_COMMAND
    stagger_seconds: float = 1.0
    max_in_flight: Optional[int] = None
    interactive: bool = False
    compose_command: str = "docker-compose"

    # Remote (ECS) runs
    cluster: str = ""
    subnets: List[str] = field(default_factory=list)
    security_groups: List[str] = field(default_factory=list)
    task_definition_path: Optional[Path] = None
    repository_uri: str = ""
    image_uri: str = ""
    assign_public_ip: str = "ENABLED"
    launch_type: str = "FARGATE"
    region: Optional[str] = None
    started_by: str = "volley"
    wait_delay: int = 6
    wait_max_attempts: Optional[int] = None
    log_group: str = "/ecs/e2e-load-test"

    # Opt-in overall deadline in seconds; None keeps the unbounded wait
    run_deadline: Optional[float] = None

    @property
    def local_image(self) -> str:
        """Local image reference (name:tag)."""
        return f"{self.image_name}:{self.image_tag}"

    def resolved_image_uri(self) -> str:
        """Image URI used for remote task definitions."""
        if self.image_uri:
            return self.image_uri
        if not self.repository_uri:
            return ""
        return f"{self.repository_uri}:{self.image_tag}"

    def validate_remote(self):
        """
        Check every value a remote run needs.

        Raises:
            ConfigurationError: Listing all missing values, or a missing template file
        """
        missing = []
        if not self.cluster:
            missing.append("cluster")
        if not self.subnets:
            missing.append("subnets")
        if not self.security_groups:
            missing.append("security_groups")
        if not self.task_definition_path:
            missing.append("task_definition_path")
        if not self.resolved_image_uri():
            missing.append("image_uri or repository_uri")

        if missing:
            names = ", ".join(missing)
            raise ConfigurationError(
                f"Missing required value(s): {names}. Set via {ENV_PREFIX}* env var, --config file or CLI option."
            )

        if not Path(self.task_definition_path).is_file():
            raise ConfigurationError(f"Task definition file not found: {self.task_definition_path}")

    def validate_limits(self):
        """
        Check the optional run limits.

        Raises:
            ConfigurationError: If max_in_flight or run_deadline is set but not positive
        """
        if self.max_in_flight is not None and self.max_in_flight < 1:
            raise ConfigurationError(f"max_in_flight must be a positive integer, got: {self.max_in_flight}")
        if self.run_deadline is not None and self.run_deadline <= 0:
            raise ConfigurationError(f"run_deadline must be a positive number of seconds, got: {self.run_deadline}")

    def with_overrides(self, overrides: Mapping[str, Any]) -> "LauncherConfig":
        """Return a copy with non-None overrides applied and coerced."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if not values:
            return self
        return replace(self, **_coerce(values))

    @classmethod
    def load(
        cls,
        config_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        interactive: Optional[bool] = None
    ) -> "LauncherConfig":
        """
        Build configuration from YAML file, environment and CLI overrides.

        Args:
            config_path: Optional YAML file with keys named after fields
            environ: Environment mapping (default: os.environ)
            overrides: Values from explicit CLI flags
            interactive: TTY flag (default: detect from stdout)

        Returns:
            LauncherConfig instance

        Raises:
            ConfigurationError: If the file is missing, invalid, has unknown keys, or a limit is not positive
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        if config_path is not None:
            values.update(_load_yaml(Path(config_path)))

        for name in _field_names():
            env_value = environ.get(ENV_PREFIX + name.upper())
            if env_value is not None:
                values[name] = env_value

        if interactive is not None:
            values["interactive"] = interactive
        elif "interactive" not in values:
            values["interactive"] = sys.stdout.isatty()

        config = cls(**_coerce(values)).with_overrides(overrides or {})
        config.validate_limits()
        return config


def _field_names() -> List[str]:
    return [f.name for f in fields(LauncherConfig)]


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid config in {path}: must be a YAML dict")

    unknown = sorted(set(data) - set(_field_names()))
    if unknown:
        raise ConfigurationError(f"Unknown config key(s) in {path}: {', '.join(unknown)}")

    return data


_PATH_FIELDS = {"results_root", "env_file", "task_definition_path"}
_LIST_FIELDS = {"subnets", "security_groups"}
_INT_FIELDS = {"max_in_flight", "wait_delay", "wait_max_attempts"}
_FLOAT_FIELDS = {"stagger_seconds", "run_deadline"}


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert raw string/YAML values into field types."""
    coerced = {}
    for name, value in values.items():
        try:
            if name in _PATH_FIELDS:
                coerced[name] = Path(value).expanduser() if value != "" else None
            elif name in _LIST_FIELDS:
                coerced[name] = _split_csv(value)
            elif name in _INT_FIELDS:
                coerced[name] = int(value) if value != "" else None
            elif name in _FLOAT_FIELDS:
                coerced[name] = float(value) if value != "" else None
            elif name == "interactive":
                coerced[name] = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes")
            else:
                coerced[name] = value
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    return coerced
