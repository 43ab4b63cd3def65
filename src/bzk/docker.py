# docker.py
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Protocol

from .errors import ContainerRuntimeError

logger = logging.getLogger(__name__)

DOCKER_HINT = "Install Docker and ensure the daemon is running."


# ---------------------------------------------------------------------
# Runtime types
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class RunOptions:
    image: str
    name: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    volume_binds: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    detach: bool = True


@dataclass(frozen=True)
class Container:
    """Handle on a container created by the runtime."""
    id: str
    image: str
    name: str | None = None


@dataclass(frozen=True)
class BuildResult:
    tag: str
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ContainerRuntime(Protocol):
    def run(self, options: RunOptions) -> Container: ...

    def logs(self, container: Container) -> Iterator[str]: ...

    def wait(self, container: Container, timeout: float | None = None) -> int: ...

    def remove(self, container: Container, *, force: bool = True, remove_volumes: bool = True) -> None: ...

    def kill(self, container: Container) -> None: ...

    def build(self, context: str, tag: str) -> BuildResult: ...


# ---------------------------------------------------------------------
# Docker CLI runtime
# ---------------------------------------------------------------------

class DockerRuntime:
    """Container runtime backed by the docker CLI."""

    def __init__(self, docker_bin: str = "docker"):
        self.docker_bin = docker_bin

    def _docker(self, args: list[str], *, timeout: float | None = None) -> str:
        cmd = [self.docker_bin, *args]
        try:
            proc = subprocess.run(
                cmd,
                text=True,
                capture_output=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise ContainerRuntimeError(
                kind="docker_unavailable",
                message="Docker is not available",
                details={"hint": DOCKER_HINT},
            )
        if proc.returncode != 0:
            raise ContainerRuntimeError(
                kind="docker_command_failed",
                message=f"docker {args[0]} failed (exit={proc.returncode})",
                details={"cmd": " ".join(cmd), "stderr": (proc.stderr or "").strip()[-4000:]},
            )
        return (proc.stdout or "").strip()

    def check_available(self) -> None:
        self._docker(["version", "--format", "{{.Server.Version}}"])

    def run(self, options: RunOptions) -> Container:
        cmd = ["run"]
        if options.detach:
            cmd.append("-d")
        if options.name:
            cmd.extend(["--name", options.name])
        for key, value in options.env.items():
            cmd.extend(["-e", f"{key}={value}"])
        for bind in options.volume_binds:
            cmd.extend(["-v", bind])
        for link in options.links:
            cmd.extend(["--link", link])
        cmd.append(options.image)

        out = self._docker(cmd)
        container_id = out.splitlines()[-1] if out else ""
        if not container_id:
            raise ContainerRuntimeError(
                kind="docker_run_no_id",
                message=f"docker run returned no container id for {options.image}",
            )
        logger.debug("started container %s from %s", container_id[:12], options.image)
        return Container(id=container_id, image=options.image, name=options.name)

    def logs(self, container: Container) -> Iterator[str]:
        """Follow the container's combined output until it exits."""
        proc = subprocess.Popen(
            [self.docker_bin, "logs", "-f", container.id],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                yield line.rstrip("\n")
        finally:
            if proc.stdout is not None:
                proc.stdout.close()
            proc.wait()

    def wait(self, container: Container, timeout: float | None = None) -> int:
        """
        Block until the container exits and return its exit code.

        Raises subprocess.TimeoutExpired when timeout elapses first; the
        caller decides what a timeout means.
        """
        out = self._docker(["wait", container.id], timeout=timeout)
        try:
            return int(out.splitlines()[-1])
        except (IndexError, ValueError):
            raise ContainerRuntimeError(
                kind="docker_wait_bad_output",
                message=f"unexpected output from docker wait: {out!r}",
                details={"container": container.id},
            )

    def remove(self, container: Container, *, force: bool = True, remove_volumes: bool = True) -> None:
        cmd = ["rm"]
        if force:
            cmd.append("-f")
        if remove_volumes:
            cmd.append("-v")
        cmd.append(container.id)
        self._docker(cmd)
        logger.debug("removed container %s", container.id[:12])

    def kill(self, container: Container) -> None:
        self._docker(["kill", container.id])

    def build(self, context: str, tag: str) -> BuildResult:
        try:
            proc = subprocess.run(
                [self.docker_bin, "build", "-t", tag, context],
                text=True,
                capture_output=True,
            )
        except FileNotFoundError:
            raise ContainerRuntimeError(
                kind="docker_unavailable",
                message="Docker is not available",
                details={"hint": DOCKER_HINT},
            )
        output = (proc.stdout or "") + (proc.stderr or "")
        return BuildResult(tag=tag, exit_code=proc.returncode, output=output)
