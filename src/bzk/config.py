# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, Mapping, Optional

from .errors import ConfigError
from .model import ExitCodePolicy

ENV_SCM = "BZK_SCM"
ENV_SCM_URL = "BZK_SCM_URL"
ENV_SCM_REFERENCE = "BZK_SCM_REFERENCE"
ENV_PROJECT_ID = "BZK_PROJECT_ID"
ENV_JOB_ID = "BZK_JOB_ID"

REQUIRED_ENV = (ENV_SCM, ENV_SCM_URL, ENV_SCM_REFERENCE, ENV_PROJECT_ID, ENV_JOB_ID)

DEFAULT_BASE = "/bazooka"
DEFAULT_DOCKER_SOCK = "/var/run/docker.sock"
DEFAULT_QUEUE_NAME = "bzk:jobs"


@dataclass(frozen=True)
class Folders:
    """Standard folder layout under one base directory."""
    base: str

    def _join(self, *parts: str) -> str:
        return str(PurePosixPath(self.base, *parts))

    @property
    def source(self) -> str:
        return self._join("source")

    @property
    def work(self) -> str:
        return self._join("work")

    @property
    def meta(self) -> str:
        return self._join("meta")

    @property
    def artifacts(self) -> str:
        return self._join("artifacts")

    @property
    def key(self) -> str:
        return self._join("key")

    @property
    def crypto_key(self) -> str:
        return self._join("crypto-key")

    def variant_work(self, number: int) -> str:
        return self._join("work", str(number))

    def services_manifest(self, number: int) -> str:
        return self._join("work", str(number), "services")

    def variant_artifacts(self, number: int) -> str:
        return self._join("artifacts", str(number))


@dataclass(frozen=True)
class Paths:
    """
    host: the folders as the Docker daemon sees them (used for volume binds)
    container: the same folders as this process sees them (used to read files)
    """
    host: Folders
    container: Folders
    docker_sock: str = DEFAULT_DOCKER_SOCK


@dataclass(frozen=True)
class OrchestrationConfig:
    scm: str
    scm_url: str
    scm_reference: str
    project_id: str
    job_id: str
    paths: Paths
    database_url: str
    redis_url: Optional[str] = None
    queue_name: str = DEFAULT_QUEUE_NAME
    exit_codes: ExitCodePolicy = field(default_factory=ExitCodePolicy)
    run_timeout: Optional[float] = None
    max_parallel_variants: Optional[int] = None

    def container_env(self) -> Dict[str, str]:
        """Environment propagated to every launched container."""
        return {
            ENV_SCM: self.scm,
            ENV_SCM_URL: self.scm_url,
            ENV_SCM_REFERENCE: self.scm_reference,
            ENV_PROJECT_ID: self.project_id,
            ENV_JOB_ID: self.job_id,
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OrchestrationConfig":
        env = os.environ if environ is None else environ

        missing = [name for name in REQUIRED_ENV if not env.get(name)]
        if missing:
            raise ConfigError(f"missing environment variables: {', '.join(missing)}")

        container_base = env.get("BZK_CONTAINER_BASE", DEFAULT_BASE)
        paths = Paths(
            host=Folders(env.get("BZK_HOST_BASE", DEFAULT_BASE)),
            container=Folders(container_base),
            docker_sock=env.get("BZK_DOCKER_SOCK", DEFAULT_DOCKER_SOCK),
        )

        return cls(
            scm=env[ENV_SCM],
            scm_url=env[ENV_SCM_URL],
            scm_reference=env[ENV_SCM_REFERENCE],
            project_id=env[ENV_PROJECT_ID],
            job_id=env[ENV_JOB_ID],
            paths=paths,
            database_url=env.get("BZK_DATABASE_URL", f"sqlite:///{container_base}/bzk.db"),
            redis_url=env.get("BZK_REDIS_URL"),
            queue_name=env.get("BZK_QUEUE_NAME", DEFAULT_QUEUE_NAME),
            exit_codes=ExitCodePolicy(
                declared_failure_code=_int(env, "BZK_DECLARED_FAILURE_CODE", 42),
            ),
            run_timeout=_float_or_none(env, "BZK_RUN_TIMEOUT"),
            max_parallel_variants=_int_or_none(env, "BZK_MAX_PARALLEL_VARIANTS"),
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    value = _int_or_none(env, name)
    return default if value is None else value


def _int_or_none(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _float_or_none(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = env.get(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
