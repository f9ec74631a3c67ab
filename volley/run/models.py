"""
Run state and the structured Run Report.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from volley.executors.base import UnitStatus, WorkUnit


OVERALL_SUCCESS = "success"
OVERALL_FAILURE = "failure"


@dataclass
class Run:
    """One invocation of the launcher covering requested_count units."""
    run_id: str
    mode: str
    requested_count: int
    root_artifact_path: Optional[Path] = None
    units: List[WorkUnit] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return bool(self.units) and all(unit.status.is_terminal for unit in self.units)

    @property
    def overall_status(self) -> Optional[str]:
        """None until every unit is terminal; success only if all succeeded."""
        if not self.is_complete:
            return None
        if all(unit.status == UnitStatus.SUCCEEDED for unit in self.units):
            return OVERALL_SUCCESS
        return OVERALL_FAILURE

    def live_handles(self):
        return [unit.handle for unit in self.units if unit.handle is not None and unit.status == UnitStatus.RUNNING]


class UnitReport(BaseModel):
    """Outcome of one unit."""
    index: int
    status: str
    exit_code: Optional[int] = None
    artifact_dir: Optional[str] = None
    handle_id: Optional[str] = None
    reason: Optional[str] = None
    details: List[str] = []


class RunReport(BaseModel):
    """Aggregate verdict plus every unit's outcome, ordered by index."""
    run_id: str
    mode: str
    requested_count: int
    root_artifact_path: Optional[str] = None
    overall_status: str
    units: List[UnitReport]

    @property
    def succeeded(self) -> bool:
        return self.overall_status == OVERALL_SUCCESS

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def counts(self):
        """Number of units per status."""
        totals = {}
        for unit in self.units:
            totals[unit.status] = totals.get(unit.status, 0) + 1
        return totals
