# orchestrate.py
from __future__ import annotations

import logging

from .builder import Builder
from .config import OrchestrationConfig
from .controller import JobReport, PipelineController
from .docker import ContainerRuntime, DockerRuntime
from .errors import ContainerRuntimeError
from .fetcher import SCMFetcher
from .logs import JobLogHandler, LogSink
from .model import JobStatus, now_utc
from .parser import ConfigParser
from .runner import ConcurrentRunner
from .store import SqlJobStore
from .ui.console import Console, get_console

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_controller(
    config: OrchestrationConfig,
    store: SqlJobStore,
    runtime: ContainerRuntime | None = None,
    console: Console | None = None,
) -> PipelineController:
    runtime = runtime or DockerRuntime()
    sink = LogSink(store)
    return PipelineController(
        config,
        store,
        fetcher=SCMFetcher(config, runtime, store, sink),
        parser=ConfigParser(config, runtime, store, sink),
        builder=Builder(config, runtime, store, sink),
        runner=ConcurrentRunner(config, runtime, sink),
        console=console or get_console(),
    )


def orchestrate(
    config: OrchestrationConfig,
    store: SqlJobStore | None = None,
    runtime: ContainerRuntime | None = None,
    console: Console | None = None,
) -> JobReport:
    """
    Orchestrate one job end to end.

    The orchestrator's own log records are copied into the job log for the
    duration of the run.
    """
    console = console or get_console()
    store = store or SqlJobStore.from_url(config.database_url)

    handler = JobLogHandler(store, config.project_id, config.job_id)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("bzk")
    root.addHandler(handler)
    try:
        console.print_run_started(config.project_id, config.job_id, config.scm_reference)
        if runtime is None:
            runtime = DockerRuntime()
            try:
                runtime.check_available()
            except ContainerRuntimeError as e:
                logger.error("container runtime unavailable: %s", e)
                store.finish_job(config.job_id, JobStatus.ERRORED, now_utc())
                raise
        return build_controller(config, store, runtime, console).run()
    finally:
        root.removeHandler(handler)
