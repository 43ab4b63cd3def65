# stage.py
from __future__ import annotations

import logging

from .docker import Container, ContainerRuntime, RunOptions
from .errors import ContainerRuntimeError, StageError
from .logs import LogEntry, LogSink

logger = logging.getLogger(__name__)


def run_stage_container(
    stage: str,
    runtime: ContainerRuntime,
    sink: LogSink,
    options: RunOptions,
    entry: LogEntry,
) -> Container:
    """
    Run the single container of a sequential stage and wait for it.

    Logs are drained before the exit code is read. A nonzero exit leaves the
    container in place for inspection and raises StageError; on success the
    container is removed.
    """
    try:
        container = runtime.run(options)
    except ContainerRuntimeError as e:
        raise StageError(stage=stage, message=f"could not start {options.image}: {e}") from e

    sink.feed(runtime.logs(container), entry).join()

    try:
        exit_code = runtime.wait(container)
    except ContainerRuntimeError as e:
        raise StageError(stage=stage, message=str(e), container_id=container.id) from e

    if exit_code != 0:
        raise StageError(
            stage=stage,
            message=f"Error during execution of {stage} container {options.image} (exit={exit_code})",
            container_id=container.id,
        )

    try:
        runtime.remove(container, force=True, remove_volumes=True)
    except ContainerRuntimeError as e:
        raise StageError(stage=stage, message=str(e), container_id=container.id) from e

    logger.info("%s container %s finished", stage, container.id[:12])
    return container
