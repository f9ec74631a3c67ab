"""
Pytest configuration for unit tests.

Provides a hermetic launcher config and fake executors/handles so that no
test ever starts docker or talks to AWS.
"""
import os
import threading
import time
from datetime import datetime
from typing import Dict, Optional, Set

import pytest

from volley.config import LauncherConfig
from volley.errors import LaunchError
from volley.executors.base import Executor, Handle
from volley.job_template import JobTemplate, ResourceLimits


@pytest.fixture(autouse=True)
def clean_volley_env(monkeypatch):
    """Keep VOLLEY_* variables from the developer's shell out of tests."""
    for name in list(os.environ):
        if name.startswith("VOLLEY_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path):
    """Local launcher config rooted in a temporary directory."""
    return LauncherConfig(
        results_root=tmp_path / "results",
        env_file=None,
        stagger_seconds=0,
        interactive=False
    )


@pytest.fixture
def local_template():
    return JobTemplate(
        image_reference="playwright-load-test:latest",
        environment=(("BASE_URL", "https://staging.example.com"),),
        command="npx playwright test",
        resources=ResourceLimits(shm_size="2g")
    )


@pytest.fixture
def run_timestamp():
    return datetime(2024, 5, 17, 14, 30, 5)


class FakeHandle(Handle):
    """Handle returning a fixed exit code, optionally after a delay or until terminated."""

    def __init__(self, name: str, exit_code: Optional[int] = 0, delay: float = 0.0, block: bool = False):
        self.name = name
        self.exit_code = exit_code
        self.delay = delay
        self.block = block
        self.terminated = threading.Event()

    @property
    def handle_id(self) -> str:
        return self.name

    def wait(self) -> Optional[int]:
        if self.block:
            self.terminated.wait(timeout=5)
            return 143
        if self.delay:
            time.sleep(self.delay)
        return self.exit_code

    def terminate(self):
        self.terminated.set()


class FakeExecutor(Executor):
    """Records launches; exit codes and launch failures are configured per index."""

    mode = "local"

    def __init__(
        self,
        exit_codes: Optional[Dict[int, int]] = None,
        launch_failures: Optional[Set[int]] = None,
        delays: Optional[Dict[int, float]] = None,
        block: bool = False
    ):
        self.exit_codes = exit_codes or {}
        self.launch_failures = launch_failures or set()
        self.delays = delays or {}
        self.block = block
        self.launches = []
        self.handles = {}
        self.run_id = None
        self.active = 0
        self.peak_active = 0
        self._lock = threading.Lock()

    def bind_run(self, run_id: str):
        self.run_id = run_id

    def launch(self, job_template, unit_index, paths=None, interactive=False):
        self.launches.append((unit_index, interactive, paths))
        if unit_index in self.launch_failures:
            raise LaunchError(f"docker not available for unit {unit_index}")

        with self._lock:
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)

        executor = self

        class TrackingHandle(FakeHandle):
            def wait(self):
                try:
                    return super().wait()
                finally:
                    with executor._lock:
                        executor.active -= 1

        handle = TrackingHandle(
            f"unit-{unit_index}",
            exit_code=self.exit_codes.get(unit_index, 0),
            delay=self.delays.get(unit_index, 0.0),
            block=self.block
        )
        self.handles[unit_index] = handle
        return handle


@pytest.fixture
def fake_executor_factory():
    return FakeExecutor
