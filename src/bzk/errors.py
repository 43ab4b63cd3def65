# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class OrchestrationError(Exception):
    """
    Base class for every error that ends (part of) an orchestration.

    leaked_containers holds the ids of containers that could not be removed
    while the error was unwinding.
    """
    leaked_containers = ()


@dataclass(eq=False)
class ConfigError(OrchestrationError):
    message: str

    def __str__(self) -> str:
        return f"config: {self.message}"


@dataclass(eq=False)
class ContainerRuntimeError(OrchestrationError):
    """
    Structured runtime error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass(eq=False)
class StoreError(OrchestrationError):
    operation: str
    message: str

    def __str__(self) -> str:
        return f"store {self.operation} failed: {self.message}"


# ----------------------------------------------------------------------
# Stage level (fatal for the job)
# ----------------------------------------------------------------------

@dataclass(eq=False)
class StageError(OrchestrationError):
    stage: str
    message: str
    container_id: str | None = None

    def __str__(self) -> str:
        text = f"[{self.stage}] {self.message}"
        if self.container_id:
            text += f"\nCheck Docker container logs, id is {self.container_id}"
        return text


# ----------------------------------------------------------------------
# Variant level
# ----------------------------------------------------------------------

@dataclass(eq=False)
class VariantBuildError(OrchestrationError):
    """Image build failed for one variant. Recorded, never raised past the build stage."""
    variant_number: int
    message: str

    def __str__(self) -> str:
        return f"variant {self.variant_number}: image build failed: {self.message}"


@dataclass(eq=False)
class RunInfrastructureError(OrchestrationError):
    variant_number: int
    message: str
    container_id: str | None = None

    def __str__(self) -> str:
        text = f"variant {self.variant_number}: {self.message}"
        if self.container_id:
            text += f" (container {self.container_id})"
        return text


class RunTimeout(RunInfrastructureError):
    """The main container did not exit within the configured run timeout."""


@dataclass(eq=False)
class DeclaredRunFailure(OrchestrationError):
    variant_number: int
    container_id: str
    exit_code: int

    def __str__(self) -> str:
        return (
            f"variant {self.variant_number}: run failed (exit={self.exit_code})\n"
            f"Check Docker container logs, id is {self.container_id}"
        )


@dataclass(eq=False)
class RunCancelled(OrchestrationError):
    variant_number: int

    def __str__(self) -> str:
        return f"variant {self.variant_number}: cancelled after another variant aborted the run"
