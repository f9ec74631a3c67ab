"""
Console output and run report display.
"""
from volley.run.models import RunReport


class Console:
    """Handles console output with formatting."""

    @staticmethod
    def header(text: str):
        """Print a header."""
        print(f"\n{'=' * 70}")
        print(f"  {text}")
        print(f"{'=' * 70}\n")

    @staticmethod
    def section(text: str):
        """Print a section header."""
        print(f"\n{'─' * 70}")
        print(f"  {text}")
        print(f"{'─' * 70}")

    @staticmethod
    def info(text: str):
        """Print an informational line."""
        print(f"ℹ️  {text}")

    @staticmethod
    def success(text: str):
        """Print a success line (run or command completed)."""
        print(f"✅ {text}")

    @staticmethod
    def warning(text: str):
        """Print a warning line."""
        print(f"⚠️  {text}")

    @staticmethod
    def error(text: str):
        """Print an error line."""
        print(f"❌ {text}")

    @staticmethod
    def run_report(report: RunReport):
        """Print the report, one line per unit in index order."""
        Console.section(f"Run {report.run_id} ({report.mode}, {report.requested_count} unit(s))")
        if report.root_artifact_path:
            print(f"📁 Artifacts: {report.root_artifact_path}")

        for unit in report.units:
            exit_code = unit.exit_code if unit.exit_code is not None else "-"
            marker = "✅" if unit.status == "succeeded" else "❌"
            print(f"{marker} #{unit.index:<4} {unit.status:<10} exit={exit_code:<4} {unit.handle_id or ''}")
            if unit.artifact_dir and unit.artifact_dir != report.root_artifact_path:
                print(f"     artifacts: {unit.artifact_dir}")
            if unit.reason and unit.status != "failed":
                print(f"     reason: {unit.reason}")
            for detail in unit.details:
                print(f"     {detail}")

        counts = ", ".join(f"{status}={count}" for status, count in sorted(report.counts().items()))
        print()
        if report.succeeded:
            Console.success(f"All {len(report.units)} unit(s) succeeded ({counts})")
        else:
            Console.error(f"Run failed ({counts})")
