"""
Run coordination: allocate, fan out launches, fan in waits, report.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from volley.artifacts.allocator import ArtifactAllocator
from volley.config import LauncherConfig
from volley.errors import ConfigurationError, LaunchError, RunInterrupted
from volley.executors.base import Executor, UnitStatus, WorkUnit
from volley.executors.ecs_executor import EcsExecutor
from volley.job_template import JobTemplate
from volley.run.aggregator import StatusAggregator
from volley.run.models import Run, RunReport

logger = logging.getLogger(__name__)

REPORT_FILENAME = "run-report.json"


class RunCoordinator:
    """
    Orchestrates one run.

    Local mode:
    1. Allocate artifact directories for every unit
    2. Launch each unit in a worker thread (staggered, bounded by max_in_flight)
    3. Each worker blocks on its own unit; the coordinator joins all workers
    4. Build the report and write run-report.json into the run root

    Remote mode:
    1. Submit one batch to the cluster scheduler
    2. Record rejected copies as UNKNOWN, wait on the accepted set only
    3. Build the report
    """

    def __init__(
        self,
        config: LauncherConfig,
        allocator: Optional[ArtifactAllocator] = None,
        aggregator: Optional[StatusAggregator] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.config = config
        self.allocator = allocator or ArtifactAllocator(config.results_root)
        self.aggregator = aggregator or StatusAggregator()
        self.clock = clock
        self.sleep = sleep
        self._launch_lock = threading.Lock()
        self._stopping = threading.Event()

    def _check_run(self, count: int):
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            raise ConfigurationError(f"Count must be a positive integer, got: {count!r}")
        self.config.validate_limits()

    def run_local(self, executor: Executor, job_template: JobTemplate, count: int) -> RunReport:
        """
        Run count units on this host and wait for all of them.

        Args:
            executor: Local executor
            job_template: Local job template
            count: Number of units

        Returns:
            RunReport

        Raises:
            ConfigurationError: If count or a configured limit is not positive
            StorageError: If artifact directories cannot be created
            AggregationError: If waiting itself fails
            RunInterrupted: On Ctrl-C, once every launched unit has stopped
        """
        self._check_run(count)
        self._stopping.clear()

        root, unit_paths = self.allocator.allocate(self.clock(), count)
        run = Run(run_id=root.name, mode=executor.mode or "local", requested_count=count, root_artifact_path=root)
        run.units = [
            WorkUnit(index=index, artifact_dir=paths.unit_dir, paths=paths)
            for index, paths in enumerate(unit_paths, start=1)
        ]
        executor.bind_run(run.run_id)

        max_workers = min(self.config.max_in_flight or count, count)
        logger.info("Starting %d unit(s), run %s, at most %d in flight", count, run.run_id, max_workers)

        futures: List[Future] = []
        interrupted = False
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="volley-unit") as pool:
            try:
                for unit in run.units:
                    interactive = self.config.interactive and unit.index == 1
                    futures.append(pool.submit(self._launch_and_wait, executor, job_template, unit, interactive))
                    if self.config.stagger_seconds and unit.index < count:
                        self.sleep(self.config.stagger_seconds)

                pending = self.aggregator.join(futures, timeout=self.config.run_deadline)
                if pending:
                    logger.warning(
                        "Run deadline of %ss reached; terminating %d unit(s)",
                        self.config.run_deadline, len(pending)
                    )
                    self._interrupt(run, futures)
                    self.aggregator.join(pending)
            except KeyboardInterrupt:
                logger.warning("Interrupted; forwarding SIGTERM to local units")
                self._interrupt(run, futures)
                interrupted = True
            # Leaving the pool joins every worker, so all launched units are terminal here

        self._mark_unlaunched(run)
        report = self.aggregator.build_report(run)
        self._write_report(report, root)
        if interrupted:
            raise RunInterrupted(report)
        return report

    def _launch_and_wait(self, executor: Executor, job_template: JobTemplate, unit: WorkUnit, interactive: bool) -> WorkUnit:
        with self._launch_lock:
            if self._stopping.is_set():
                unit.mark_unknown("run interrupted before launch")
                return unit
            try:
                handle = executor.launch(job_template, unit.index, unit.paths, interactive=interactive)
            except LaunchError as e:
                logger.error("Unit %d failed to launch: %s", unit.index, e)
                unit.mark_unknown(str(e))
                return unit
            unit.attach(handle)

        return self.aggregator.await_unit(unit)

    def _interrupt(self, run: Run, futures: List[Future]):
        """Stop further launches, drop queued ones, and signal every live unit."""
        with self._launch_lock:
            self._stopping.set()
            for future in futures:
                future.cancel()
            for handle in run.live_handles():
                handle.terminate()

    @staticmethod
    def _mark_unlaunched(run: Run):
        # Queued launches cancelled by an interrupt never ran
        for unit in run.units:
            if unit.status == UnitStatus.PENDING:
                unit.mark_unknown("run interrupted before launch")

    @staticmethod
    def _write_report(report: RunReport, root: Path):
        path = root / REPORT_FILENAME
        try:
            path.write_text(report.model_dump_json(indent=2))
        except OSError as e:
            logger.warning("Could not write %s: %s", path, e)

    def run_remote(self, executor: EcsExecutor, job_template: JobTemplate, count: int) -> RunReport:
        """
        Run count units as cluster tasks and wait for the accepted ones.

        Args:
            executor: ECS executor
            job_template: Remote job template
            count: Number of tasks

        Returns:
            RunReport

        Raises:
            ConfigurationError: If count or a configured limit is not positive
            LaunchError: If the batch is rejected as a whole
            AggregationError: If the scheduler wait or status query fails
        """
        self._check_run(count)

        run = Run(
            run_id=ArtifactAllocator.run_id_for(self.clock()),
            mode=executor.mode or "remote",
            requested_count=count
        )
        executor.bind_run(run.run_id)

        submission = executor.launch_batch(job_template, count)

        index = 1
        for task in submission.tasks:
            unit = WorkUnit(index=index)
            unit.attach(task)
            run.units.append(unit)
            index += 1
        for reason in submission.failures:
            unit = WorkUnit(index=index)
            unit.mark_unknown(reason)
            run.units.append(unit)
            index += 1
        while index <= count:
            unit = WorkUnit(index=index)
            unit.mark_unknown("task not reported by scheduler")
            run.units.append(unit)
            index += 1

        if submission.failures:
            logger.warning("Some tasks failed to start: %s", submission.failures)

        self.aggregator.await_cluster(executor, run.units, deadline=self.config.run_deadline)
        return self.aggregator.build_report(run)
