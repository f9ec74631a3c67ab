"""
Status aggregation: wait for every unit, record exit codes, compute the verdict.
"""
import logging
from concurrent.futures import Future, wait
from typing import List, Optional

from volley.errors import AggregationError, ExecutionError
from volley.executors.base import UnitStatus, WorkUnit
from volley.executors.ecs_executor import EcsExecutor
from volley.run.models import Run, RunReport, UnitReport

logger = logging.getLogger(__name__)


class StatusAggregator:
    """
    Waits on launched units and reduces them to a RunReport.

    A failing unit never cancels its siblings; every unit runs to completion.
    Units that never started stay UNKNOWN and count as failures.
    """

    @staticmethod
    def record_exit(unit: WorkUnit, exit_code: Optional[int]):
        """Map an observed exit code to a terminal status."""
        unit.exit_code = exit_code
        if exit_code == 0:
            unit.status = UnitStatus.SUCCEEDED
        else:
            unit.status = UnitStatus.FAILED
            unit.reason = str(ExecutionError(unit.index, exit_code))

    def await_unit(self, unit: WorkUnit) -> WorkUnit:
        """
        Block on one local unit's handle.

        An unreadable exit code (OSError from wait) marks the unit failed.
        """
        if unit.status != UnitStatus.RUNNING or unit.handle is None:
            return unit

        try:
            exit_code = unit.handle.wait()
        except OSError as e:
            logger.warning("Could not read exit code of unit %d: %s", unit.index, e)
            exit_code = None

        self.record_exit(unit, exit_code)
        logger.info("Unit %d finished: %s (exit %s)", unit.index, unit.status.value, exit_code)
        return unit

    def join(self, futures: List[Future], timeout: Optional[float] = None) -> List[Future]:
        """
        Wait for all unit futures.

        Returns:
            Futures still pending when the timeout elapsed (empty without a timeout)

        Raises:
            AggregationError: If a waiter itself crashed
        """
        done, pending = wait(futures, timeout=timeout)
        for future in done:
            if future.cancelled():
                continue
            error = future.exception()
            if error is not None:
                raise AggregationError(f"Waiting on a unit failed: {error}") from error
        return list(pending)

    def await_cluster(self, executor: EcsExecutor, units: List[WorkUnit], deadline: Optional[float] = None):
        """
        Single blocking wait across all accepted remote tasks, then one status query.

        Raises:
            AggregationError: If the scheduler wait or the status query fails
        """
        running = [unit for unit in units if unit.status == UnitStatus.RUNNING]
        if not running:
            return

        task_arns = [unit.handle_id for unit in running]
        logger.info("Waiting for %d task(s) to stop...", len(task_arns))
        executor.wait_stopped(task_arns, deadline=deadline)
        outcomes = executor.describe_tasks(task_arns)

        for unit in running:
            outcome = outcomes.get(unit.handle_id)
            if outcome is None:
                self.record_exit(unit, None)
                unit.details.append("task missing from DescribeTasks response")
                continue
            unit.handle.last_status = outcome.last_status
            self.record_exit(unit, outcome.exit_code)
            unit.details.append(f"{outcome.last_status} - containers: {outcome.describe_containers()}")
            if outcome.stopped_reason:
                unit.details.append(f"stopped: {outcome.stopped_reason}")

    def build_report(self, run: Run) -> RunReport:
        """
        Build the report; every unit must be terminal.

        Raises:
            AggregationError: If a unit is still pending or running
        """
        overall = run.overall_status
        if overall is None:
            open_units = [unit.index for unit in run.units if not unit.status.is_terminal]
            raise AggregationError(f"Run {run.run_id} has non-terminal units: {open_units}")

        units = [
            UnitReport(
                index=unit.index,
                status=unit.status.value,
                exit_code=unit.exit_code,
                artifact_dir=str(unit.artifact_dir) if unit.artifact_dir else None,
                handle_id=unit.handle_id,
                reason=unit.reason,
                details=list(unit.details)
            )
            for unit in sorted(run.units, key=lambda u: u.index)
        ]

        return RunReport(
            run_id=run.run_id,
            mode=run.mode,
            requested_count=run.requested_count,
            root_artifact_path=str(run.root_artifact_path) if run.root_artifact_path else None,
            overall_status=overall,
            units=units
        )
