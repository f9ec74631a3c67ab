#!/usr/bin/env python3
"""
volleyctl - parallel launcher for end-to-end load runs

Usage:
    volleyctl build
    volleyctl run [COUNT]
    volleyctl scale COUNT --cluster genius-prod --subnets subnet-a,subnet-b \\
        --security-groups sg-1 --task-definition task-definition-e2e-load.json
    volleyctl compose
    volleyctl clean [--remote]
"""
import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from volley.cleanup import CleanupManager
from volley.config import LauncherConfig, parse_count
from volley.console import Console
from volley.errors import ConfigurationError, RunInterrupted, VolleyError
from volley.executors.ecs_executor import EcsExecutor
from volley.executors.local_docker import LocalDockerExecutor
from volley.image_builder import ImageBuilder
from volley.job_template import JobTemplate
from volley.run.coordinator import RunCoordinator


@dataclass(frozen=True)
class BuildCommand:
    pass


@dataclass(frozen=True)
class RunCommand:
    count: int


@dataclass(frozen=True)
class ScaleCommand:
    count: int


@dataclass(frozen=True)
class ComposeCommand:
    pass


@dataclass(frozen=True)
class CleanCommand:
    remote: bool = False


Command = Union[BuildCommand, RunCommand, ScaleCommand, ComposeCommand, CleanCommand]


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="volleyctl",
        description="Run many copies of the e2e load test locally or on ECS",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--config", type=Path, help="YAML config file (keys named after settings)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # build
    build_parser_ = subparsers.add_parser("build", help="Build the unit image")
    build_parser_.add_argument("--repo-url", help="Test repository URL")
    build_parser_.add_argument("--branch", help="Test repository branch")

    # run
    run_parser = subparsers.add_parser("run", help="Run COUNT units locally (default: 1)")
    run_parser.add_argument("count", nargs="?", default="1", help="Number of units")
    run_parser.add_argument("--results-root", type=Path, help="Host directory for artifacts")
    run_parser.add_argument("--max-in-flight", type=int, help="Cap on concurrently running units (default: COUNT)")
    run_parser.add_argument("--stagger", type=float, dest="stagger_seconds", help="Seconds between launches")
    run_parser.add_argument("--deadline", type=float, dest="run_deadline", help="Terminate units still running after N seconds")

    # scale
    scale_parser = subparsers.add_parser("scale", help="Run COUNT units as ECS tasks")
    scale_parser.add_argument("count", help="Number of tasks")
    scale_parser.add_argument("--cluster", help="ECS cluster")
    scale_parser.add_argument("--subnets", help="Comma-separated subnet IDs")
    scale_parser.add_argument("--security-groups", help="Comma-separated security group IDs")
    scale_parser.add_argument("--task-definition", type=Path, dest="task_definition_path", help="Task definition template (JSON/YAML)")
    scale_parser.add_argument("--image-uri", help="Image URI (default: REPOSITORY_URI:IMAGE_TAG)")
    scale_parser.add_argument("--region", help="AWS region")
    scale_parser.add_argument("--deadline", type=float, dest="run_deadline", help="Give up waiting after N seconds")

    # compose
    subparsers.add_parser("compose", help="Run using docker-compose")

    # clean
    clean_parser = subparsers.add_parser("clean", help="Remove leftover unit containers")
    clean_parser.add_argument("--remote", action="store_true", help="Also stop running ECS tasks started by volley")
    clean_parser.add_argument("--cluster", help="ECS cluster (with --remote)")
    clean_parser.add_argument("--region", help="AWS region (with --remote)")

    return parser


_OVERRIDE_KEYS = (
    "repo_url", "branch", "results_root", "max_in_flight", "stagger_seconds", "run_deadline",
    "cluster", "subnets", "security_groups", "task_definition_path", "image_uri", "region"
)


def resolve_command(args: argparse.Namespace) -> Tuple[Command, Dict[str, Any]]:
    """
    Turn parsed arguments into a command variant and config overrides.

    Raises:
        ConfigurationError: If the count is not a positive integer
    """
    overrides = {key: getattr(args, key) for key in _OVERRIDE_KEYS if getattr(args, key, None) is not None}

    if args.command == "build":
        return BuildCommand(), overrides
    if args.command == "run":
        return RunCommand(count=parse_count(args.count)), overrides
    if args.command == "scale":
        return ScaleCommand(count=parse_count(args.count)), overrides
    if args.command == "compose":
        return ComposeCommand(), overrides
    if args.command == "clean":
        return CleanCommand(remote=args.remote), overrides
    raise ConfigurationError(f"Unknown command: {args.command}")


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def run_build(config: LauncherConfig) -> int:
    Console.header("Building unit image")
    image = ImageBuilder(config).build()
    Console.success(f"Image built: {image}")
    return 0


def run_local(config: LauncherConfig, count: int) -> int:
    Console.header(f"Running {count} local unit(s)")
    executor = LocalDockerExecutor(container_prefix=config.container_prefix)
    coordinator = RunCoordinator(config)
    report = coordinator.run_local(executor, JobTemplate.for_local(config), count)
    Console.run_report(report)
    return report.exit_code


def run_scale(config: LauncherConfig, count: int) -> int:
    config.validate_remote()
    job_template = JobTemplate.for_remote(config)

    Console.header(f"Starting {count} ECS task(s) in cluster {config.cluster}")
    Console.info(f"Image: {job_template.image_reference}")
    executor = EcsExecutor(
        cluster=config.cluster,
        launch_type=config.launch_type,
        started_by=config.started_by,
        wait_delay=config.wait_delay,
        wait_max_attempts=config.wait_max_attempts,
        region=config.region
    )
    coordinator = RunCoordinator(config)
    report = coordinator.run_remote(executor, job_template, count)
    Console.run_report(report)
    if config.log_group:
        Console.info(f"Check CloudWatch Logs group {config.log_group} for detailed output.")
    return report.exit_code


def run_compose(config: LauncherConfig) -> int:
    Console.header("Running with docker-compose")
    return ImageBuilder(config).compose_up()


def run_clean(config: LauncherConfig, remote: bool) -> int:
    Console.header("Cleaning up")
    remote_executor = None
    if remote:
        if not config.cluster:
            raise ConfigurationError("Missing required value: cluster (needed for --remote)")
        remote_executor = EcsExecutor(
            cluster=config.cluster,
            started_by=config.started_by,
            region=config.region
        )
    manager = CleanupManager(
        container_prefix=config.container_prefix,
        compose_command=config.compose_command,
        remote_executor=remote_executor
    )
    result = manager.cleanup()
    Console.success(
        f"Cleanup complete: {len(result.removed_containers)} container(s) removed"
        + (f", {len(result.stopped_tasks)} task(s) stopped" if remote else "")
    )
    return 0


def dispatch(command: Command, config: LauncherConfig) -> int:
    if isinstance(command, BuildCommand):
        return run_build(config)
    if isinstance(command, RunCommand):
        return run_local(config, command.count)
    if isinstance(command, ScaleCommand):
        return run_scale(config, command.count)
    if isinstance(command, ComposeCommand):
        return run_compose(config)
    if isinstance(command, CleanCommand):
        return run_clean(config, command.remote)
    raise ConfigurationError(f"Unsupported command: {command!r}")


def main(argv: Optional[list] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.verbose)

    try:
        command, overrides = resolve_command(args)
        config = LauncherConfig.load(config_path=args.config, overrides=overrides)
        exit_code = dispatch(command, config)
    except ConfigurationError as e:
        Console.error(f"Configuration error: {e}")
        sys.exit(1)
    except RunInterrupted as e:
        Console.run_report(e.report)
        Console.error("Interrupted")
        sys.exit(1)
    except VolleyError as e:
        Console.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        Console.error("Interrupted")
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
