# builder.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from .config import OrchestrationConfig
from .docker import ContainerRuntime
from .errors import ContainerRuntimeError, StageError, VariantBuildError
from .logs import LogEntry, LogSink
from .model import JobStatus, ReadyVariant, Variant
from .store import JobStore

logger = logging.getLogger(__name__)


def image_tag(project_id: str, job_id: str, number: int) -> str:
    return f"bzk_{project_id}_{number}:{job_id}".lower()


class Builder:
    """Builds one image per variant from the Dockerfile the parser generated."""

    def __init__(self, config: OrchestrationConfig, runtime: ContainerRuntime, store: JobStore, sink: LogSink):
        self.config = config
        self.runtime = runtime
        self.store = store
        self.sink = sink
        self.errors: List[VariantBuildError] = []

    def build(self, variants: List[Variant]) -> List[ReadyVariant]:
        """
        Returns the variants that got an image.

        Variants whose build fails are marked Errored and left out; the
        matching VariantBuildError is kept in self.errors. Only losing the
        runtime altogether fails the stage.
        """
        ready: List[ReadyVariant] = []
        for variant in variants:
            try:
                ready.append(self._build_variant(variant))
            except VariantBuildError as e:
                logger.warning(str(e))
                self.errors.append(e)
                variant.transition(JobStatus.ERRORED)
        logger.info("Dockerfile builds finished: %d/%d variant(s) ready", len(ready), len(variants))
        return ready

    def _build_variant(self, variant: Variant) -> ReadyVariant:
        cfg = self.config
        context = cfg.paths.container.variant_work(variant.number)
        if not (Path(context) / "Dockerfile").is_file():
            raise VariantBuildError(variant_number=variant.number, message=f"no Dockerfile in {context}")

        tag = image_tag(cfg.project_id, cfg.job_id, variant.number)
        logger.info("Building image %s for variant %d", tag, variant.number)
        try:
            result = self.runtime.build(context, tag)
        except ContainerRuntimeError as e:
            raise StageError(stage="build", message=str(e)) from e

        entry = LogEntry(project_id=cfg.project_id, job_id=cfg.job_id, variant_id=variant.id, image=tag)
        self.sink.feed(result.output.splitlines(), entry).join()

        if not result.ok:
            raise VariantBuildError(
                variant_number=variant.number,
                message=f"docker build exited with {result.exit_code}",
            )

        variant.image = tag
        if variant.id is not None:
            self.store.set_variant_image(variant.id, tag)
        return ReadyVariant(variant=variant, image=tag)
