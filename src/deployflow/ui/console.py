"""Console output formatting utilities for deployflow."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, Optional

from ..model import RunReport, Status, Trigger


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # matrix siblings print from worker threads
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        with self._lock:
            print("\n".join(lines), file=sys.stderr if err else sys.stdout)

    def print_run_started(self, pipeline: str, trigger: Trigger, job_count: int) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Trigger: {trigger.event_kind.value} on {trigger.branch}"
            + (f" @ {trigger.sha[:12]}" if trigger.sha else ""),
            f"Jobs: {job_count}",
            "",
        )

    def print_run_skipped(self, trigger: Trigger, allowed: Iterable[str]) -> None:
        self._emit(
            "\nRUN SKIPPED",
            f"Branch '{trigger.branch}' is not one of: {', '.join(allowed)}",
        )

    def print_tier(self, index: int, labels: list[str]) -> None:
        self._emit(f"\n=== Tier {index + 1}: {', '.join(labels)} ===")

    def print_job_start(self, label: str) -> None:
        """Print job start message."""
        self._emit(f"JOB STARTED: {label}")

    def print_step(self, label: str, step: str) -> None:
        """Print step start message."""
        self._emit(f"[{label}] STEP: {step}")

    def print_step_skipped(self, label: str, step: str, reason: str) -> None:
        self._emit(f"[{label}] STEP SKIPPED: {step} ({reason})")

    def print_success(self, label: str) -> None:
        """Print success message."""
        self._emit(f"JOB SUCCEEDED: {label}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        self._emit(*lines)

    def print_job_skipped(self, label: str, reason: str) -> None:
        """Print job skipped message."""
        self._emit(f"JOB SKIPPED: {label} ({reason})")

    def print_plan(self, tiers: list[list[str]]) -> None:
        """Print the tiers a run would walk, with matrix fan-out."""
        lines = ["\nPLAN"]
        for idx, tier in enumerate(tiers):
            lines.append(f"  Tier {idx + 1}: {', '.join(tier)}")
        self._emit(*lines)

    def print_results(self, report: RunReport) -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for inst in report.instances:
            lines.append(f"  {inst.label}: {inst.status.value.upper()}")
            if inst.status is Status.FAILED and inst.diagnostics:
                lines.append(f"    {inst.diagnostics.splitlines()[0]}")
        lines.append(f"RUN: {report.status.value.upper()}")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_worker_started(self, worker_id: str, api: str, poll_interval: int) -> None:
        """Print worker start information."""
        self._emit(
            "\nWORKER STARTED",
            f"Worker ID: {worker_id}",
            f"API: {api}",
            f"Polling every: {poll_interval}s",
            "",
        )

    def print_run_claimed(self, run_id: str, trigger: Trigger) -> None:
        self._emit("\nRUN CLAIMED", f"Run ID: {run_id}", f"Branch: {trigger.branch}")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
