from __future__ import annotations

import itertools
import json
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from bzk.config import Folders, OrchestrationConfig, Paths
from bzk.docker import BuildResult, Container, RunOptions
from bzk.errors import ContainerRuntimeError, StoreError
from bzk.logs import LogEntry, LogSink
from bzk.model import ExitCodePolicy, JobStatus, Variant


class FakeRuntime:
    """
    Scripted container runtime.

    exit_codes: image -> exit code returned by wait (default 0)
    blocking: images whose containers run until killed
    fail_run / fail_remove: images whose run / remove raise
    """

    def __init__(self):
        self.exit_codes: Dict[str, int] = {}
        self.blocking: set[str] = set()
        self.fail_run: set[str] = set()
        self.fail_remove: set[str] = set()
        self.build_codes: Dict[str, int] = {}
        self.log_lines: Dict[str, List[str]] = {}

        self.created: List[Container] = []
        self.options: Dict[str, RunOptions] = {}
        self.alive: Dict[str, Container] = {}
        self.removed: List[Container] = []
        self.killed: List[Container] = []
        self.built: List[str] = []
        self.events: List[tuple] = []

        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._kill_events: Dict[str, threading.Event] = {}

    def run(self, options: RunOptions) -> Container:
        if options.image in self.fail_run:
            raise ContainerRuntimeError(kind="docker_command_failed", message=f"cannot run {options.image}")
        with self._lock:
            if options.name and any(c.name == options.name for c in self.alive.values()):
                raise ContainerRuntimeError(kind="docker_command_failed", message=f"name {options.name} in use")
            container = Container(id=f"c{next(self._ids)}", image=options.image, name=options.name)
            self.created.append(container)
            self.options[container.id] = options
            self.alive[container.id] = container
            self._kill_events[container.id] = threading.Event()
            self.events.append(("run", container.id))
        return container

    def logs(self, container: Container):
        for line in self.log_lines.get(container.image, [f"hello from {container.image}"]):
            yield line
        with self._lock:
            self.events.append(("logs_done", container.id))

    def wait(self, container: Container, timeout: float | None = None) -> int:
        if container.image in self.blocking:
            if not self._kill_events[container.id].wait(timeout if timeout is not None else 10):
                raise subprocess.TimeoutExpired(cmd=["docker", "wait", container.id], timeout=timeout)
            code = 137
        else:
            code = self.exit_codes.get(container.image, 0)
        with self._lock:
            self.events.append(("wait", container.id))
        return code

    def remove(self, container: Container, *, force: bool = True, remove_volumes: bool = True) -> None:
        with self._lock:
            if container.id not in self.alive:
                raise ContainerRuntimeError(kind="docker_command_failed", message=f"No such container: {container.id}")
            if container.image in self.fail_remove:
                raise ContainerRuntimeError(kind="docker_command_failed", message=f"cannot remove {container.id}")
            del self.alive[container.id]
            self.removed.append(container)
            self.events.append(("remove", container.id))

    def kill(self, container: Container) -> None:
        with self._lock:
            self.killed.append(container)
        self._kill_events[container.id].set()

    def build(self, context: str, tag: str) -> BuildResult:
        with self._lock:
            self.built.append(tag)
        return BuildResult(tag=tag, exit_code=self.build_codes.get(tag, 0), output="Step 1/1 : FROM scratch\n")

    def removed_ids(self) -> List[str]:
        return [c.id for c in self.removed]

    def created_for(self, image: str) -> List[Container]:
        return [c for c in self.created if c.image == image]


class MemoryStore:
    """In-memory JobStore."""

    def __init__(self):
        self.images: Dict[str, str] = {"parser": "bzk/parser", "scm_git": "bzk/scm-git"}
        self.variants: Dict[str, dict] = {}
        self.jobs: Dict[str, JobStatus] = {}
        self.logs: List[tuple] = []
        self.fail_finish = False
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create_variant(self, variant: Variant) -> None:
        variant.id = f"v{next(self._ids)}"
        self.variants[variant.id] = {"number": variant.number, "status": variant.status, "image": None}

    def update_variant_status(self, variant_id, status, completed) -> None:
        self.variants[variant_id]["status"] = status
        self.variants[variant_id]["completed"] = completed

    def set_variant_image(self, variant_id, image) -> None:
        self.variants[variant_id]["image"] = image

    def finish_job(self, job_id, status, completed) -> None:
        if self.fail_finish:
            raise StoreError(operation="finish_job", message="database is gone")
        self.jobs[job_id] = status

    def resolve_image(self, role: str) -> str:
        if role not in self.images:
            raise StoreError(operation="resolve_image", message=f"no image registered for role {role!r}")
        return self.images[role]

    def add_log(self, entry: LogEntry, message: str) -> None:
        with self._lock:
            self.logs.append((entry, message))

    def variant_status(self, number: int) -> Optional[JobStatus]:
        for row in self.variants.values():
            if row["number"] == number:
                return row["status"]
        return None


def make_config(base: Path, **overrides) -> OrchestrationConfig:
    folders = Folders(str(base))
    values = dict(
        scm="git",
        scm_url="https://example.com/repo.git",
        scm_reference="main",
        project_id="p1",
        job_id="j1",
        paths=Paths(host=folders, container=folders),
        database_url="sqlite://",
        exit_codes=ExitCodePolicy(),
    )
    values.update(overrides)
    return OrchestrationConfig(**values)


def write_variant(
    base: Path,
    number: int,
    *,
    services: Optional[List[str]] = None,
    dockerfile: bool = True,
    metas: Optional[dict] = None,
) -> Path:
    folder = base / "work" / str(number)
    folder.mkdir(parents=True, exist_ok=True)
    if dockerfile:
        (folder / "Dockerfile").write_text("FROM scratch\n")
    if services is not None:
        (folder / "services").write_text("\n".join(services) + "\n")
    if metas is not None:
        (folder / "meta.json").write_text(json.dumps(metas))
    return folder


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def sink(store) -> LogSink:
    return LogSink(store)


@pytest.fixture
def config(tmp_path) -> OrchestrationConfig:
    return make_config(tmp_path)
