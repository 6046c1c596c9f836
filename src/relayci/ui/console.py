"""Console output formatting utilities for RelayCI."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from ..report import ReportDocument


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-job progress lines
        """
        self.debug = debug
        self.quiet = quiet
        # jobs report progress from worker threads
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        event: str,
        branch: str | None,
        instance_count: int,
        run_id: str,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Event: {event}" + (f" ({branch})" if branch else ""),
            f"Run ID: {run_id}",
            f"Jobs: {instance_count}",
            "",
        )

    def print_not_triggered(self, workflow: str, event: str, branch: str | None) -> None:
        self._emit(f"\nNOT TRIGGERED: {workflow} does not run on {event}" + (f" ({branch})" if branch else ""))

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print the stages a graph will run in."""
        self.print_header("PLAN")
        for idx, level in enumerate(levels):
            self._emit(f"Stage {idx + 1}:")
            self._emit(*(f"  {name}" for name in level))

    def print_job_start(self, name: str, runs_on: str | None = None) -> None:
        """Print job start message."""
        if self.quiet:
            return
        suffix = f" on {runs_on}" if runs_on else ""
        self._emit(f"\nJOB STARTED: {name}{suffix}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        if self.quiet:
            return
        self._emit(f"[{job}] STEP: {name}")

    def print_job_finished(
        self,
        name: str,
        state: str,
        reason: str | None = None,
        duration: float | None = None,
    ) -> None:
        if self.quiet:
            return
        line = f"[{name}] STATUS: {state}"
        if duration is not None:
            line += f" ({duration:.1f}s)"
        if reason:
            line += f" - {reason}"
        self._emit(line)

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: str | None = None,
    ) -> None:
        """Print a failed step, with its captured output in debug mode."""
        lines = [f"STEP FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if self.debug and output:
            lines.append(output.rstrip())
        else:
            # Show first line of error for non-debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._emit(*lines)

    def print_cache_hit(self, job: str, key: str) -> None:
        """Print cache hit message."""
        if not self.quiet:
            self._emit(f"[{job}] CACHE: hit ({key[:12]}...)")

    def print_cache_miss(self, job: str, key: str) -> None:
        """Print cache miss message."""
        if not self.quiet:
            self._emit(f"[{job}] CACHE: miss ({key[:12]}...)")

    def print_cache_saved(self, job: str, key: str) -> None:
        """Print cache save message."""
        if not self.quiet:
            short_key = key[:12] + "..." if len(key) > 12 else key
            self._emit(f"[{job}] CACHE: saved ({short_key})")

    def print_results(self, report: "ReportDocument") -> None:
        """Print final results summary."""
        from ..report import render_text

        self._emit("", render_text(report))

    def print_warning(self, message: str) -> None:
        self._emit(f"WARNING: {message}", err=True)

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
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

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
