# parser.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List

from .config import OrchestrationConfig
from .docker import ContainerRuntime, RunOptions
from .errors import StageError, StoreError
from .logs import LogEntry, LogSink
from .model import VariantSpec
from .stage import run_stage_container
from .store import JobStore

logger = logging.getLogger(__name__)

PARSER_ROLE = "parser"
META_FILE = "meta.json"


class ConfigParser:
    """
    Runs the parser image against the checked-out source.

    The parser writes one numbered folder per variant into the work folder:
      work/<n>/Dockerfile   build recipe for the variant image
      work/<n>/meta.json    optional flat metadata for the variant
      work/<n>/services     optional service manifest, read by the runner
    """

    def __init__(self, config: OrchestrationConfig, runtime: ContainerRuntime, store: JobStore, sink: LogSink):
        self.config = config
        self.runtime = runtime
        self.store = store
        self.sink = sink

    def resolve_parser_image(self) -> str:
        try:
            return self.store.resolve_image(PARSER_ROLE)
        except StoreError as e:
            raise StageError(stage="parse", message=f"Unable to find Docker image for parser: {e}") from e

    def parse(self) -> List[VariantSpec]:
        cfg = self.config
        host = cfg.paths.host
        logger.info("Parsing configuration from checked-out source %s", host.source)

        image = self.resolve_parser_image()
        logger.info("Using image '%s'", image)

        run_stage_container(
            "parse",
            self.runtime,
            self.sink,
            RunOptions(
                image=image,
                env=cfg.container_env(),
                volume_binds=[
                    f"{host.source}:/bazooka",
                    f"{host.meta}:/meta",
                    f"{host.work}:/bazooka-output",
                    f"{host.crypto_key}:/bazooka-cryptokey",
                    f"{cfg.paths.docker_sock}:/docker.sock",
                ],
                detach=True,
            ),
            LogEntry(project_id=cfg.project_id, job_id=cfg.job_id, image=image),
        )

        variants = read_variants(Path(cfg.paths.container.work))
        logger.info("Configuration parsed, %d variant(s) generated in %s", len(variants), host.work)
        return variants


def read_variants(work_dir: Path) -> List[VariantSpec]:
    """Read the parser output. All or nothing: any unreadable variant fails the stage."""
    if not work_dir.is_dir():
        raise StageError(stage="parse", message=f"parser output folder not found: {work_dir}")

    try:
        entries = list(work_dir.iterdir())
    except OSError as e:
        raise StageError(stage="parse", message=f"cannot list parser output {work_dir}: {e}") from e

    # isdigit() alone accepts non-ASCII digits such as '²' that int() rejects
    numbers = sorted(int(p.name) for p in entries if p.is_dir() and p.name.isascii() and p.name.isdigit())
    if not numbers:
        raise StageError(stage="parse", message=f"parser produced no variants in {work_dir}")

    return [VariantSpec(number=n, metas=_read_metas(work_dir / str(n))) for n in numbers]


def _read_metas(variant_dir: Path) -> Dict[str, str]:
    meta_file = variant_dir / META_FILE
    if not meta_file.exists():
        return {}
    try:
        data = json.loads(meta_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise StageError(stage="parse", message=f"unreadable variant metadata {meta_file}: {e}") from e
    if not isinstance(data, dict):
        raise StageError(stage="parse", message=f"variant metadata must be an object: {meta_file}")
    return {str(k): str(v) for k, v in data.items()}
