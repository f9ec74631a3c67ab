"""
Error taxonomy for volley runs.

Configuration and whole-batch launch errors are fatal and raised before any
unit is waited on. Per-unit failures are recorded on the unit and only change
the aggregate verdict.
"""


class VolleyError(Exception):
    """Base class for all launcher errors."""
    pass


class ConfigurationError(VolleyError):
    """Raised when a required value is missing or malformed."""
    pass


class StorageError(VolleyError):
    """Raised when artifact directories cannot be created."""
    pass


class LaunchError(VolleyError):
    """Raised when a unit (local) or a batch (remote) cannot be submitted."""
    pass


class ExecutionError(VolleyError):
    """A unit started but exited with a non-zero or unreadable code."""

    def __init__(self, index: int, exit_code=None):
        self.index = index
        self.exit_code = exit_code
        super().__init__(f"Unit {index} exited with code {exit_code if exit_code is not None else 'unknown'}")


class AggregationError(VolleyError):
    """Raised when the wait or status-query phase cannot complete."""
    pass


class CleanupError(VolleyError):
    """Raised when leftover units could not be removed."""
    pass


class BuildError(VolleyError):
    """Raised when the unit image build fails."""
    pass


class RunInterrupted(VolleyError):
    """Raised after an interrupted run has been drained; carries its partial report."""

    def __init__(self, report):
        self.report = report
        super().__init__(f"Run {report.run_id} interrupted")
