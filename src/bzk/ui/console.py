"""Console output formatting utilities for the orchestrator."""

from __future__ import annotations

import sys
from typing import Mapping, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_run_started(self, project_id: str, job_id: str, reference: str) -> None:
        """Print orchestration start information."""
        print("\nORCHESTRATION STARTED")
        print(f"Project: {project_id}")
        print(f"Job: {job_id}")
        print(f"Reference: {reference}")
        print()

    def print_stage(self, stage: str) -> None:
        """Print stage start message."""
        print(f"STAGE: {stage}")

    def print_variant_result(self, number: int, status: str, reason: Optional[str] = None) -> None:
        """Print the terminal status of one variant."""
        line = f"  variant {number}: {status.upper()}"
        if reason:
            line += f" ({reason})"
        print(line)

    def print_results(self, counts: Mapping[str, int]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for status, count in counts.items():
            print(f"  {status}: {count}")

    def print_job_completed(self, status: str, elapsed: Optional[float] = None) -> None:
        """Print job completion message."""
        print("\nJOB COMPLETED")
        print(f"Status: {status}")
        if elapsed is not None:
            print(f"Elapsed: {elapsed:.1f}s")

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
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_worker_started(self, queue: str, poll_interval: int) -> None:
        """Print worker start information."""
        print("\nWORKER STARTED")
        print(f"Queue: {queue}")
        print(f"Polling every: {poll_interval}s")
        print()

    def print_job_dequeued(self, job_id: str) -> None:
        print(f"\nJOB DEQUEUED: {job_id}")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)


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
