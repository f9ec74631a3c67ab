"""
Unit tests for the cleanup manager with a mocked docker CLI.
"""
import subprocess
import pytest
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from volley.cleanup import CleanupManager
from volley.errors import CleanupError


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeDocker:
    """Routes subprocess.run calls by subcommand."""

    def __init__(self, ps_output="", rm_result=None, compose_result=None):
        self.ps_output = ps_output
        self.rm_result = rm_result or _completed()
        self.compose_result = compose_result or _completed()
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        if cmd[-1] == "down":
            return self.compose_result
        if cmd[1] == "ps":
            return _completed(stdout=self.ps_output)
        if cmd[1] == "rm":
            return self.rm_result
        raise AssertionError(f"unexpected command {cmd}")

    def rm_calls(self):
        return [cmd for cmd in self.calls if cmd[1] == "rm"]


class TestCleanupManager:
    """Test idempotent leftover removal."""

    def test_nothing_to_clean_twice(self):
        docker = FakeDocker(ps_output="")
        manager = CleanupManager(container_prefix="playwright-test")

        with patch("volley.cleanup.subprocess.run", side_effect=docker):
            first = manager.cleanup()
            second = manager.cleanup()

        assert first.removed_containers == []
        assert second.removed_containers == []
        assert docker.rm_calls() == []

    def test_removes_prefixed_containers_only(self):
        docker = FakeDocker(ps_output=(
            "abc123 playwright-test-20240517-143005-1\n"
            "def456 playwright-test-20240517-143005-2\n"
            "999999 my-playwright-test-db\n"
        ))
        manager = CleanupManager(container_prefix="playwright-test")

        with patch("volley.cleanup.subprocess.run", side_effect=docker):
            result = manager.cleanup()

        assert result.removed_containers == ["abc123", "def456"]
        assert docker.rm_calls() == [["docker", "rm", "-f", "abc123", "def456"]]
        ps_call = [cmd for cmd in docker.calls if cmd[1] == "ps"][0]
        assert "name=playwright-test-" in ps_call

    def test_already_removed_is_not_an_error(self):
        docker = FakeDocker(
            ps_output="abc123 playwright-test-x-1\n",
            rm_result=_completed(1, stderr="Error response from daemon: No such container: abc123\n")
        )
        manager = CleanupManager(container_prefix="playwright-test")

        with patch("volley.cleanup.subprocess.run", side_effect=docker):
            manager.cleanup()

    def test_removal_failure_raises(self):
        docker = FakeDocker(
            ps_output="abc123 playwright-test-x-1\n",
            rm_result=_completed(1, stderr="Error response from daemon: permission denied\n")
        )
        manager = CleanupManager(container_prefix="playwright-test")

        with patch("volley.cleanup.subprocess.run", side_effect=docker):
            with pytest.raises(CleanupError, match="permission denied"):
                manager.cleanup()

    def test_compose_failure_is_best_effort(self):
        docker = FakeDocker(compose_result=_completed(1, stderr="no configuration file provided"))
        manager = CleanupManager(container_prefix="playwright-test")

        with patch("volley.cleanup.subprocess.run", side_effect=docker):
            result = manager.cleanup()

        assert result.compose_down is False

    def test_missing_docker_binary(self):
        manager = CleanupManager(container_prefix="playwright-test")

        with patch("volley.cleanup.subprocess.run", side_effect=FileNotFoundError("docker")):
            result = manager.cleanup()

        assert result.removed_containers == []

    def test_remote_tasks_stopped(self):
        remote = MagicMock()
        remote.stop_started_tasks.return_value = ["arn:task/1"]
        manager = CleanupManager(container_prefix="playwright-test", remote_executor=remote)

        with patch("volley.cleanup.subprocess.run", side_effect=FakeDocker()):
            result = manager.cleanup()

        assert result.stopped_tasks == ["arn:task/1"]

    def test_remote_failure_raises(self):
        remote = MagicMock()
        remote.stop_started_tasks.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "StopTask"
        )
        manager = CleanupManager(container_prefix="playwright-test", remote_executor=remote)

        with patch("volley.cleanup.subprocess.run", side_effect=FakeDocker()):
            with pytest.raises(CleanupError):
                manager.cleanup()
