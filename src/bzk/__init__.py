from .config import OrchestrationConfig
from .controller import PipelineController, PipelineState
from .model import ExitCodePolicy, JobStatus, RunOutcome, Variant, aggregate_job_status
from .orchestrate import orchestrate
from .runner import ConcurrentRunner

__all__ = [
    "OrchestrationConfig",
    "PipelineController",
    "PipelineState",
    "ExitCodePolicy",
    "JobStatus",
    "RunOutcome",
    "Variant",
    "aggregate_job_status",
    "orchestrate",
    "ConcurrentRunner",
]
