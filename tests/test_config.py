"""Tests for OrchestrationConfig."""

from dataclasses import FrozenInstanceError

import pytest

from bzk.config import OrchestrationConfig
from bzk.errors import ConfigError

ENV = {
    "BZK_SCM": "git",
    "BZK_SCM_URL": "https://example.com/repo.git",
    "BZK_SCM_REFERENCE": "main",
    "BZK_PROJECT_ID": "p1",
    "BZK_JOB_ID": "j1",
}


def test_from_env_defaults():
    config = OrchestrationConfig.from_env(ENV)

    assert config.paths.host.source == "/bazooka/source"
    assert config.paths.container.services_manifest(3) == "/bazooka/work/3/services"
    assert config.exit_codes.declared_failure_code == 42
    assert config.run_timeout is None
    assert config.max_parallel_variants is None
    assert config.database_url == "sqlite:////bazooka/bzk.db"


def test_from_env_overrides():
    env = dict(
        ENV,
        BZK_HOST_BASE="/srv/bzk/j1",
        BZK_CONTAINER_BASE="/bazooka",
        BZK_DECLARED_FAILURE_CODE="99",
        BZK_RUN_TIMEOUT="30",
        BZK_MAX_PARALLEL_VARIANTS="2",
    )
    config = OrchestrationConfig.from_env(env)

    assert config.paths.host.work == "/srv/bzk/j1/work"
    assert config.paths.container.work == "/bazooka/work"
    assert config.exit_codes.declared_failure_code == 99
    assert config.run_timeout == 30.0
    assert config.max_parallel_variants == 2


def test_missing_variables():
    env = dict(ENV)
    del env["BZK_JOB_ID"]
    with pytest.raises(ConfigError) as excinfo:
        OrchestrationConfig.from_env(env)
    assert "BZK_JOB_ID" in str(excinfo.value)


def test_bad_number():
    with pytest.raises(ConfigError):
        OrchestrationConfig.from_env(dict(ENV, BZK_RUN_TIMEOUT="soon"))


def test_container_env_and_immutability():
    config = OrchestrationConfig.from_env(ENV)
    assert config.container_env() == ENV
    with pytest.raises(FrozenInstanceError):
        config.job_id = "other"
