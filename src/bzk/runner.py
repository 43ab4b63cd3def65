# runner.py
from __future__ import annotations

import logging
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .config import OrchestrationConfig
from .docker import Container, ContainerRuntime, RunOptions
from .errors import (
    ContainerRuntimeError,
    DeclaredRunFailure,
    OrchestrationError,
    RunCancelled,
    RunInfrastructureError,
    RunTimeout,
)
from .logs import LogEntry, LogSink
from .model import ExitCodePolicy, JobStatus, ReadyVariant, RunOutcome

logger = logging.getLogger(__name__)

ARTIFACTS_MOUNT = "/artifacts"


# ----------------------------------------------------------------------
# Service manifest + naming
# ----------------------------------------------------------------------

def read_services(manifest: str | Path) -> List[str]:
    """
    Newline-delimited service image names. A missing manifest means no
    services; any other read error propagates.
    """
    try:
        text = Path(manifest).read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def service_container_name(project_id: str, job_id: str, variant_number: int, index: int) -> str:
    return f"service-{project_id}-{job_id}-{variant_number}-{index}"


def service_alias(image: str) -> str:
    """'registry:5000/team/postgres:9.4' -> 'postgres'"""
    name = image.rsplit("/", 1)[-1]
    name = name.split("@", 1)[0]
    return name.split(":", 1)[0]


@dataclass
class _ContainerGroup:
    """Containers owned by one variant task."""
    services: List[Container] = field(default_factory=list)
    main: Optional[Container] = None

    def removal_order(self) -> List[Container]:
        # main container first, then its services
        ordered = [self.main] if self.main is not None else []
        return ordered + list(self.services)


# ----------------------------------------------------------------------
# Runner
# ----------------------------------------------------------------------

class ConcurrentRunner:
    """
    Runs every ready variant's container group in parallel.

    Each task starts the variant's service containers, links them to the
    main container, waits for it, classifies the exit code and removes all
    of its containers. The first fatal error wins: remaining tasks are
    cancelled cooperatively (in-flight main containers are killed, unstarted
    tasks are dropped) and every container already created is torn down
    before run() raises.
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        runtime: ContainerRuntime,
        sink: LogSink,
        *,
        policy: ExitCodePolicy | None = None,
        run_timeout: float | None = None,
        max_workers: int | None = None,
    ):
        self.config = config
        self.runtime = runtime
        self.sink = sink
        self.policy = policy or config.exit_codes
        self.run_timeout = run_timeout if run_timeout is not None else config.run_timeout
        self.max_workers = max_workers if max_workers is not None else config.max_parallel_variants

        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._in_flight: Dict[int, Container] = {}
        self._leaked: List[str] = []

    # ---- public API ----

    def run(self, variants: List[ReadyVariant]) -> bool:
        """
        Returns True if at least one variant succeeded.

        Raises the first fatal error reported by any variant
        (RunInfrastructureError, DeclaredRunFailure).
        """
        if not variants:
            return False

        self._cancelled.clear()
        self._leaked = []
        outcomes: List[bool] = []
        first_error: Exception | None = None

        workers = self.max_workers or len(variants)
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="variant")
        try:
            futures = {pool.submit(self._run_variant, rv): rv for rv in variants}
            for fut in as_completed(futures):
                try:
                    outcomes.append(fut.result())
                except Exception as e:
                    first_error = e
                    break
        finally:
            if first_error is not None:
                self._abort()
                pool.shutdown(wait=True, cancel_futures=True)
            else:
                pool.shutdown(wait=True)

        if first_error is not None:
            logger.error("Run aborted: %s", first_error)
            if self._leaked and isinstance(first_error, OrchestrationError):
                first_error.leaked_containers = tuple(self._leaked)
            raise first_error

        logger.info("Variant runs finished: %d/%d succeeded", sum(outcomes), len(outcomes))
        return any(outcomes)

    # ---- cancellation ----

    def _abort(self) -> None:
        with self._lock:
            self._cancelled.set()
            in_flight = list(self._in_flight.items())
        for number, container in in_flight:
            logger.info("Killing main container %s of variant %d", container.id[:12], number)
            try:
                self.runtime.kill(container)
            except ContainerRuntimeError as e:
                # the container may have exited on its own meanwhile
                logger.warning("could not kill container %s: %s", container.id[:12], e)

    def _check_cancelled(self, number: int) -> None:
        if self._cancelled.is_set():
            raise RunCancelled(variant_number=number)

    def _track(self, number: int, container: Container) -> None:
        with self._lock:
            if self._cancelled.is_set():
                raise RunCancelled(variant_number=number)
            self._in_flight[number] = container

    def _untrack(self, number: int) -> None:
        with self._lock:
            self._in_flight.pop(number, None)

    # ---- per-variant task ----

    def _run_variant(self, ready: ReadyVariant) -> bool:
        variant = ready.variant
        number = variant.number
        cfg = self.config
        env = cfg.container_env()
        group = _ContainerGroup()

        try:
            self._check_cancelled(number)
            services = self._list_services(number)

            links: List[str] = []
            for index, service in enumerate(services):
                self._check_cancelled(number)
                name = service_container_name(cfg.project_id, cfg.job_id, number, index)
                group.services.append(self._start(number, RunOptions(image=service, name=name, env=env)))
                links.append(f"{name}:{service_alias(service)}")

            self._check_cancelled(number)
            main = self._start(number, RunOptions(
                image=ready.image,
                env=env,
                links=links,
                volume_binds=[f"{cfg.paths.host.variant_artifacts(number)}:{ARTIFACTS_MOUNT}"],
            ))
            group.main = main
            self._track(number, main)

            entry = LogEntry(project_id=cfg.project_id, job_id=cfg.job_id, variant_id=variant.id, image=ready.image)
            exit_code = self._wait(number, main, entry)
            self._untrack(number)
            self._check_cancelled(number)
        except BaseException:
            self._untrack(number)
            self._teardown_after_error(number, group)
            raise

        outcome = self.policy.classify(exit_code)
        self._teardown(number, group)

        if outcome is RunOutcome.DECLARED_FAILURE and self.policy.escalate_declared_failure:
            variant.transition(JobStatus.ERRORED)
            raise DeclaredRunFailure(variant_number=number, container_id=main.id, exit_code=exit_code)

        success = outcome is RunOutcome.SUCCESS
        variant.transition(JobStatus.SUCCESS if success else JobStatus.FAILED)
        logger.info("Variant %d finished with exit code %d", number, exit_code)
        return success

    def _list_services(self, number: int) -> List[str]:
        manifest = self.config.paths.container.services_manifest(number)
        try:
            return read_services(manifest)
        except OSError as e:
            raise RunInfrastructureError(variant_number=number, message=f"cannot read {manifest}: {e}") from e

    def _start(self, number: int, options: RunOptions) -> Container:
        try:
            return self.runtime.run(options)
        except ContainerRuntimeError as e:
            raise RunInfrastructureError(variant_number=number, message=f"could not start {options.image}: {e}") from e

    def _wait(self, number: int, container: Container, entry: LogEntry) -> int:
        deadline = None if self.run_timeout is None else time.monotonic() + self.run_timeout

        # drain the logs before reading the exit code
        self.sink.feed(self.runtime.logs(container), entry).join(self.run_timeout)

        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.1)
        try:
            return self.runtime.wait(container, timeout=remaining)
        except subprocess.TimeoutExpired as e:
            raise RunTimeout(
                variant_number=number,
                message=f"main container did not exit within {self.run_timeout}s",
                container_id=container.id,
            ) from e
        except ContainerRuntimeError as e:
            raise RunInfrastructureError(variant_number=number, message=str(e), container_id=container.id) from e

    # ---- teardown ----

    def _teardown(self, number: int, group: _ContainerGroup) -> None:
        """Remove every container of the group; the first removal failure is fatal."""
        first: RunInfrastructureError | None = None
        for container in group.removal_order():
            try:
                self.runtime.remove(container, force=True, remove_volumes=True)
            except ContainerRuntimeError as e:
                logger.error("could not remove container %s of variant %d: %s", container.id[:12], number, e)
                if first is None:
                    first = RunInfrastructureError(
                        variant_number=number,
                        message=f"could not remove container: {e}",
                        container_id=container.id,
                    )
        if first is not None:
            raise first

    def _teardown_after_error(self, number: int, group: _ContainerGroup) -> None:
        for container in group.removal_order():
            try:
                self.runtime.remove(container, force=True, remove_volumes=True)
            except ContainerRuntimeError as e:
                logger.warning("cleanup of container %s (variant %d) failed: %s", container.id[:12], number, e)
                with self._lock:
                    self._leaked.append(container.id)
