"""
Artifact path allocation.

Each run gets its own root directory named after the run timestamp, and each
unit gets its own directory below it with separate raw-results and report
sub-directories. Directories are created eagerly so that units never race on
them once started.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Tuple

from volley.errors import StorageError

logger = logging.getLogger(__name__)

RESULTS_DIRNAME = "test-results"
REPORT_DIRNAME = "playwright-report"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


@dataclass(frozen=True)
class UnitPaths:
    """Host directories assigned to one unit."""
    unit_dir: Path
    results_dir: Path
    report_dir: Path


class ArtifactAllocator:
    """
    Allocates collision-free artifact directories for a run.

    Layout:
        <results_root>/<timestamp>/                       (count == 1)
        <results_root>/<timestamp>/instance-<i>/          (count > 1)
    each holding test-results/ and playwright-report/.

    If the timestamped root already exists (a concurrent run started in the
    same second), a numeric suffix is appended: <timestamp>-2, <timestamp>-3...
    """

    def __init__(self, results_root: Path):
        self.results_root = Path(results_root)

    @staticmethod
    def run_id_for(run_timestamp: datetime) -> str:
        return run_timestamp.strftime(TIMESTAMP_FORMAT)

    def allocate(self, run_timestamp: datetime, count: int) -> Tuple[Path, List[UnitPaths]]:
        """
        Create the run root and one directory set per unit.

        Args:
            run_timestamp: Run start time
            count: Number of units (>= 1)

        Returns:
            (root_path, [UnitPaths for unit 1..count])

        Raises:
            ValueError: If count < 1
            StorageError: If directories cannot be created
        """
        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")

        root = self._claim_root(self.run_id_for(run_timestamp))

        units = []
        for index in range(1, count + 1):
            unit_dir = root if count == 1 else root / f"instance-{index}"
            paths = UnitPaths(
                unit_dir=unit_dir,
                results_dir=unit_dir / RESULTS_DIRNAME,
                report_dir=unit_dir / REPORT_DIRNAME
            )
            try:
                paths.results_dir.mkdir(parents=True, exist_ok=False)
                paths.report_dir.mkdir(parents=True, exist_ok=False)
            except OSError as e:
                raise StorageError(f"Cannot create artifact directory for unit {index}: {e}") from e
            units.append(paths)

        logger.debug("Allocated %d unit director%s under %s", count, "y" if count == 1 else "ies", root)
        return root, units

    def _claim_root(self, run_id: str) -> Path:
        """Atomically create a root directory that no other run owns."""
        try:
            self.results_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Results root not writable: {self.results_root}: {e}") from e

        suffix = 1
        while True:
            name = run_id if suffix == 1 else f"{run_id}-{suffix}"
            candidate = self.results_root / name
            try:
                candidate.mkdir()
                return candidate.resolve()
            except FileExistsError:
                suffix += 1
            except OSError as e:
                raise StorageError(f"Cannot create run directory {candidate}: {e}") from e
