# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class RunOutcome(str, Enum):
    """Meaning of a run container's exit code."""
    SUCCESS = "success"
    FAILURE = "failure"
    DECLARED_FAILURE = "declared_failure"


@dataclass(frozen=True)
class ExitCodePolicy:
    """
    Maps raw exit codes to a RunOutcome.

    A declared failure (the run harness aborting on purpose) escalates to an
    error for the whole run batch while escalate_declared_failure is set;
    otherwise it only fails its own variant.
    """
    declared_failure_code: int = 42
    escalate_declared_failure: bool = True

    def classify(self, exit_code: int) -> RunOutcome:
        if exit_code == 0:
            return RunOutcome.SUCCESS
        if exit_code == self.declared_failure_code:
            return RunOutcome.DECLARED_FAILURE
        return RunOutcome.FAILURE


class InvalidTransition(ValueError):
    pass


@dataclass(frozen=True)
class VariantSpec:
    """One variant produced by the parse stage."""
    number: int
    metas: Dict[str, str] = field(default_factory=dict)


@dataclass
class Variant:
    """
    In-memory variant record shared between the controller and the runner.

    status None means pending (not yet running). Transitions are monotonic:
    pending -> running -> terminal, or pending -> terminal when the variant
    never reaches the run stage.
    """
    number: int
    job_id: str
    project_id: str
    metas: Dict[str, str] = field(default_factory=dict)
    id: Optional[str] = None
    status: Optional[JobStatus] = None
    started: datetime = field(default_factory=now_utc)
    completed: Optional[datetime] = None
    image: Optional[str] = None

    def transition(self, status: JobStatus, at: datetime | None = None) -> None:
        if self.status is not None and self.status.terminal:
            raise InvalidTransition(
                f"variant {self.number} is already {self.status.value}, cannot become {status.value}"
            )
        if self.status is JobStatus.RUNNING and status is JobStatus.RUNNING:
            raise InvalidTransition(f"variant {self.number} is already running")
        self.status = status
        if status.terminal:
            self.completed = at or now_utc()


@dataclass(frozen=True)
class ReadyVariant:
    """A variant whose image was built and which may enter the run stage."""
    variant: Variant
    image: str


def aggregate_job_status(statuses: Iterable[Optional[JobStatus]]) -> JobStatus:
    """
    Errored dominates Failed, which dominates Success.

    Raises ValueError if a variant has not reached a terminal status.
    """
    error_count = fail_count = 0
    for status in statuses:
        if status is None or not status.terminal:
            raise ValueError(f"Found a variant without a terminal status: {status}")
        if status is JobStatus.ERRORED:
            error_count += 1
        elif status is JobStatus.FAILED:
            fail_count += 1

    if error_count > 0:
        return JobStatus.ERRORED
    if fail_count > 0:
        return JobStatus.FAILED
    return JobStatus.SUCCESS
