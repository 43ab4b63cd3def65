# fetcher.py
from __future__ import annotations

import logging

from .config import OrchestrationConfig
from .docker import ContainerRuntime, RunOptions
from .errors import StageError, StoreError
from .logs import LogEntry, LogSink
from .stage import run_stage_container
from .store import JobStore

logger = logging.getLogger(__name__)


class SCMFetcher:
    """Checks out the job's source reference into the shared source folder."""

    def __init__(self, config: OrchestrationConfig, runtime: ContainerRuntime, store: JobStore, sink: LogSink):
        self.config = config
        self.runtime = runtime
        self.store = store
        self.sink = sink

    def image_role(self) -> str:
        return f"scm_{self.config.scm}"

    def fetch(self) -> None:
        cfg = self.config
        host = cfg.paths.host
        logger.info("Fetching %s %s at %s", cfg.scm, cfg.scm_url, cfg.scm_reference)

        try:
            image = self.store.resolve_image(self.image_role())
        except StoreError as e:
            raise StageError(stage="fetch", message=f"Unable to find Docker image for {cfg.scm} fetcher: {e}") from e

        run_stage_container(
            "fetch",
            self.runtime,
            self.sink,
            RunOptions(
                image=image,
                env=cfg.container_env(),
                volume_binds=[
                    f"{host.source}:/bazooka",
                    f"{host.meta}:/meta",
                    f"{host.key}:/bazooka-key",
                ],
                detach=True,
            ),
            LogEntry(project_id=cfg.project_id, job_id=cfg.job_id, image=image),
        )
        logger.info("Source checked out in %s", host.source)
