"""
Unit tests for the volleyctl command surface.
"""
import json
import pytest
from unittest.mock import patch

from volley.cli.volleyctl import (
    CleanCommand,
    RunCommand,
    ScaleCommand,
    build_parser,
    main,
    resolve_command,
)
from volley.errors import ConfigurationError, LaunchError, RunInterrupted
from volley.run.models import RunReport


def _report(overall="success", mode="local"):
    return RunReport(
        run_id="20240517-143005",
        mode=mode,
        requested_count=1,
        overall_status=overall,
        units=[{"index": 1, "status": "succeeded" if overall == "success" else "failed", "exit_code": 0 if overall == "success" else 1}]
    )


class TestResolveCommand:
    """Test argument parsing into command variants."""

    def test_run_defaults_to_one(self):
        command, _ = resolve_command(build_parser().parse_args(["run"]))

        assert command == RunCommand(count=1)

    def test_scale_with_overrides(self):
        args = build_parser().parse_args(["scale", "5", "--cluster", "genius-prod", "--subnets", "a,b"])

        command, overrides = resolve_command(args)

        assert command == ScaleCommand(count=5)
        assert overrides == {"cluster": "genius-prod", "subnets": "a,b"}

    def test_clean_remote(self):
        command, _ = resolve_command(build_parser().parse_args(["clean", "--remote"]))

        assert command == CleanCommand(remote=True)

    @pytest.mark.parametrize("count", ["abc", "0", "-3"])
    def test_invalid_run_count(self, count):
        with pytest.raises(ConfigurationError):
            resolve_command(build_parser().parse_args(["run", count]))


class TestMain:
    """Test exit codes and component wiring."""

    @pytest.mark.parametrize("count", ["abc", "0", "-3"])
    def test_run_invalid_count_exits_1_without_launch(self, count):
        with patch("volley.cli.volleyctl.RunCoordinator") as mock_coordinator:
            with patch("volley.cli.volleyctl.LocalDockerExecutor") as mock_executor:
                with pytest.raises(SystemExit) as exc_info:
                    main(["run", count])

        assert exc_info.value.code == 1
        mock_coordinator.assert_not_called()
        mock_executor.assert_not_called()

    @pytest.mark.parametrize("flags", [["--max-in-flight", "-2"], ["--max-in-flight", "0"], ["--deadline", "-1"]])
    def test_run_non_positive_limit_exits_1_before_launch(self, tmp_path, flags):
        with patch("volley.cli.volleyctl.RunCoordinator") as mock_coordinator:
            with pytest.raises(SystemExit) as exc_info:
                main(["run", "3", "--results-root", str(tmp_path / "results")] + flags)

        assert exc_info.value.code == 1
        mock_coordinator.assert_not_called()
        assert not (tmp_path / "results").exists()

    def test_interrupted_run_prints_partial_report(self, tmp_path, capsys):
        with patch("volley.cli.volleyctl.RunCoordinator") as mock_coordinator:
            mock_coordinator.return_value.run_local.side_effect = RunInterrupted(_report("failure"))

            with pytest.raises(SystemExit) as exc_info:
                main(["run", "--results-root", str(tmp_path)])

        assert exc_info.value.code == 1
        out = capsys.readouterr().out
        assert "Run 20240517-143005" in out
        assert "Interrupted" in out

    def test_run_exit_code_follows_report(self, tmp_path):
        with patch("volley.cli.volleyctl.RunCoordinator") as mock_coordinator:
            mock_coordinator.return_value.run_local.return_value = _report("failure")

            with pytest.raises(SystemExit) as exc_info:
                main(["run", "3", "--results-root", str(tmp_path)])

        assert exc_info.value.code == 1
        args = mock_coordinator.return_value.run_local.call_args[0]
        assert args[2] == 3
        config = mock_coordinator.call_args[0][0]
        assert config.results_root == tmp_path

    def test_run_success(self, tmp_path):
        with patch("volley.cli.volleyctl.RunCoordinator") as mock_coordinator:
            mock_coordinator.return_value.run_local.return_value = _report("success")

            with pytest.raises(SystemExit) as exc_info:
                main(["run", "--results-root", str(tmp_path)])

        assert exc_info.value.code == 0
        assert mock_coordinator.return_value.run_local.call_args[0][2] == 1

    def test_scale_missing_config_fails_fast(self):
        with patch("volley.cli.volleyctl.EcsExecutor") as mock_ecs:
            with pytest.raises(SystemExit) as exc_info:
                main(["scale", "5"])

        assert exc_info.value.code == 1
        mock_ecs.assert_not_called()

    def test_scale_wires_ecs_executor(self, tmp_path):
        template = tmp_path / "task.json"
        template.write_text(json.dumps({"containerDefinitions": [{"name": "e2e", "image": "x"}]}))

        with patch("volley.cli.volleyctl.EcsExecutor") as mock_ecs:
            with patch("volley.cli.volleyctl.RunCoordinator") as mock_coordinator:
                mock_coordinator.return_value.run_remote.return_value = _report("success", mode="remote")

                with pytest.raises(SystemExit) as exc_info:
                    main([
                        "scale", "10",
                        "--cluster", "genius-prod",
                        "--subnets", "subnet-a,subnet-b",
                        "--security-groups", "sg-1",
                        "--task-definition", str(template),
                        "--image-uri", "repo/e2e:latest",
                    ])

        assert exc_info.value.code == 0
        assert mock_ecs.call_args[1]["cluster"] == "genius-prod"
        executor, job_template, count = mock_coordinator.return_value.run_remote.call_args[0]
        assert executor is mock_ecs.return_value
        assert count == 10
        assert job_template.image_reference == "repo/e2e:latest"
        assert job_template.network.subnets == ("subnet-a", "subnet-b")

    def test_launch_error_exits_1(self, tmp_path):
        with patch("volley.cli.volleyctl.RunCoordinator") as mock_coordinator:
            mock_coordinator.return_value.run_local.side_effect = LaunchError("boom")

            with pytest.raises(SystemExit) as exc_info:
                main(["run", "--results-root", str(tmp_path)])

        assert exc_info.value.code == 1

    def test_clean_twice_exits_0(self):
        with patch("volley.cleanup.subprocess.run", side_effect=FileNotFoundError("docker")):
            for _ in range(2):
                with pytest.raises(SystemExit) as exc_info:
                    main(["clean"])
                assert exc_info.value.code == 0

    def test_clean_remote_requires_cluster(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["clean", "--remote"])

        assert exc_info.value.code == 1

    def test_no_command_prints_help(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 1

    def test_unknown_command_is_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["explode"])

        assert exc_info.value.code == 2
