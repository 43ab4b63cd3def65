# controller.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .builder import Builder
from .config import OrchestrationConfig
from .errors import OrchestrationError, StageError, StoreError, VariantBuildError
from .fetcher import SCMFetcher
from .model import JobStatus, ReadyVariant, Variant, aggregate_job_status, now_utc
from .parser import ConfigParser
from .runner import ConcurrentRunner
from .store import JobStore
from .ui.console import Console, get_console

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    FETCHING = "fetching"
    PARSING = "parsing"
    BUILDING = "building"
    RUNNING = "running"
    FINISHED = "finished"


# stage label carried by StageError
STAGE_NAMES = {
    PipelineState.FETCHING: "fetch",
    PipelineState.PARSING: "parse",
    PipelineState.BUILDING: "build",
    PipelineState.RUNNING: "run",
}

@dataclass
class StageResult:
    """
    Outcome of one stage transition:
      - next_state set, no error: the stage succeeded
      - variant_failures: variants the stage dropped (the pipeline goes on)
      - error: fatal, the job is Errored
    """
    next_state: PipelineState
    variant_failures: List[VariantBuildError] = field(default_factory=list)
    error: Optional[OrchestrationError] = None


@dataclass
class JobReport:
    job_id: str
    status: JobStatus
    counts: Dict[str, int]
    variants: List[Variant]
    elapsed: float


class PipelineController:
    """Drives fetch -> parse -> build -> run for one job, in that order only."""

    def __init__(
        self,
        config: OrchestrationConfig,
        store: JobStore,
        fetcher: SCMFetcher,
        parser: ConfigParser,
        builder: Builder,
        runner: ConcurrentRunner,
        console: Console | None = None,
    ):
        self.config = config
        self.store = store
        self.fetcher = fetcher
        self.parser = parser
        self.builder = builder
        self.runner = runner
        self.console = console or get_console()

        self.state = PipelineState.FETCHING
        self.variants: List[Variant] = []
        self.ready: List[ReadyVariant] = []
        self._transitions: Dict[PipelineState, Callable[[], StageResult]] = {
            PipelineState.FETCHING: self._fetch,
            PipelineState.PARSING: self._parse,
            PipelineState.BUILDING: self._build,
            PipelineState.RUNNING: self._run,
        }

    def run(self) -> JobReport:
        """
        Run the pipeline to completion and persist the job status.

        Raises the fatal OrchestrationError of a failing stage after the job
        was recorded as Errored.
        """
        start = time.monotonic()
        logger.info("Starting orchestration of job %s", self.config.job_id)

        while self.state is not PipelineState.FINISHED:
            stage = self.state
            self.console.print_stage(stage.value)
            result = self._step(stage)

            for failure in result.variant_failures:
                self.console.print_variant_result(failure.variant_number, JobStatus.ERRORED.value, failure.message)
            if result.error is not None:
                self._abort(stage, result.error)
            self.state = result.next_state

        return self._finish(time.monotonic() - start)

    def _step(self, stage: PipelineState) -> StageResult:
        try:
            return self._transitions[stage]()
        except OrchestrationError as e:
            return StageResult(next_state=stage, error=e)
        except Exception as e:
            logger.exception("unexpected error in %s stage", stage.value)
            error = StageError(stage=STAGE_NAMES[stage], message=f"unexpected error: {e!r}")
            error.__cause__ = e
            return StageResult(next_state=stage, error=error)

    # ---- transitions ----

    def _fetch(self) -> StageResult:
        self.fetcher.fetch()
        return StageResult(next_state=PipelineState.PARSING)

    def _parse(self) -> StageResult:
        cfg = self.config
        for parsed in self.parser.parse():
            variant = Variant(
                number=parsed.number,
                job_id=cfg.job_id,
                project_id=cfg.project_id,
                metas=dict(parsed.metas),
            )
            self.store.create_variant(variant)
            self.variants.append(variant)
        return StageResult(next_state=PipelineState.BUILDING)

    def _build(self) -> StageResult:
        self.ready = self.builder.build(self.variants)
        failures = list(self.builder.errors)
        ready_numbers = {rv.variant.number for rv in self.ready}
        for variant in self.variants:
            if variant.number not in ready_numbers:
                self._persist(variant)
        return StageResult(next_state=PipelineState.RUNNING, variant_failures=failures)

    def _run(self) -> StageResult:
        for rv in self.ready:
            rv.variant.transition(JobStatus.RUNNING)
            self._persist(rv.variant)

        self.runner.run(self.ready)

        for rv in self.ready:
            self._persist(rv.variant)
            self.console.print_variant_result(rv.variant.number, rv.variant.status.value)
        return StageResult(next_state=PipelineState.FINISHED)

    # ---- terminal handling ----

    def _persist(self, variant: Variant) -> None:
        if variant.id is None or variant.status is None:
            return
        self.store.update_variant_status(variant.id, variant.status, variant.completed)

    def _abort(self, stage: PipelineState, error: OrchestrationError) -> None:
        """Record the job as Errored, then re-raise the stage error."""
        logger.error("%s stage failed: %s", stage.value, error)
        completed = now_utc()
        try:
            for variant in self.variants:
                if variant.status is None or not variant.status.terminal:
                    variant.transition(JobStatus.ERRORED, completed)
                self._persist(variant)
            self.store.finish_job(self.config.job_id, JobStatus.ERRORED, completed)
        except StoreError as store_err:
            logger.error("could not record job %s as errored: %s", self.config.job_id, store_err)
            raise store_err from error
        raise error

    def _finish(self, elapsed: float) -> JobReport:
        job_status = aggregate_job_status(v.status for v in self.variants)
        counts = {
            "ERRORED": sum(1 for v in self.variants if v.status is JobStatus.ERRORED),
            "SUCCEEDED": sum(1 for v in self.variants if v.status is JobStatus.SUCCESS),
            "FAILED": sum(1 for v in self.variants if v.status is JobStatus.FAILED),
        }
        logger.info("Job completed: %s", counts)
        self.console.print_results(counts)

        self.store.finish_job(self.config.job_id, job_status, now_utc())
        self.console.print_job_completed(job_status.value, elapsed)
        return JobReport(
            job_id=self.config.job_id,
            status=job_status,
            counts=counts,
            variants=list(self.variants),
            elapsed=elapsed,
        )
