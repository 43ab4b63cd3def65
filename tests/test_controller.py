"""Tests for PipelineController."""

from __future__ import annotations

import pytest

from conftest import make_config, write_variant

from bzk.builder import Builder, image_tag
from bzk.controller import PipelineController, PipelineState
from bzk.errors import DeclaredRunFailure, StageError, StoreError
from bzk.fetcher import SCMFetcher
from bzk.model import JobStatus
from bzk.parser import ConfigParser
from bzk.runner import ConcurrentRunner
from bzk.ui.console import Console


def make_controller(config, runtime, store, sink) -> PipelineController:
    return PipelineController(
        config,
        store,
        fetcher=SCMFetcher(config, runtime, store, sink),
        parser=ConfigParser(config, runtime, store, sink),
        builder=Builder(config, runtime, store, sink),
        runner=ConcurrentRunner(config, runtime, sink),
        console=Console(),
    )


def tag(number: int) -> str:
    return image_tag("p1", "j1", number)


def test_end_to_end_job_failed(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0, services=["redis"], metas={"python": "3.11"})
    write_variant(tmp_path, 1)
    runtime.exit_codes = {tag(0): 0, tag(1): 7}

    controller = make_controller(config, runtime, store, sink)
    report = controller.run()

    assert report.status is JobStatus.FAILED
    assert report.counts == {"ERRORED": 0, "SUCCEEDED": 1, "FAILED": 1}
    assert controller.state is PipelineState.FINISHED
    assert store.jobs["j1"] is JobStatus.FAILED
    assert store.variant_status(0) is JobStatus.SUCCESS
    assert store.variant_status(1) is JobStatus.FAILED
    assert runtime.alive == {}


def test_all_variants_succeed(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0)
    write_variant(tmp_path, 1)

    report = make_controller(config, runtime, store, sink).run()

    assert report.status is JobStatus.SUCCESS
    assert store.jobs["j1"] is JobStatus.SUCCESS


def test_variants_are_persisted_with_metas_and_images(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0, metas={"python": "3.11"})

    report = make_controller(config, runtime, store, sink).run()

    variant = report.variants[0]
    assert variant.metas == {"python": "3.11"}
    assert variant.image == tag(0)
    assert store.variants[variant.id]["image"] == tag(0)


def test_fetch_failure_errors_the_job(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0)
    runtime.exit_codes = {"bzk/scm-git": 1}
    controller = make_controller(config, runtime, store, sink)

    with pytest.raises(StageError) as excinfo:
        controller.run()

    assert excinfo.value.stage == "fetch"
    assert controller.state is PipelineState.FETCHING
    assert store.jobs["j1"] is JobStatus.ERRORED
    assert runtime.created_for("bzk/parser") == []


def test_unknown_parser_image_errors_the_job(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    del store.images["parser"]

    with pytest.raises(StageError) as excinfo:
        make_controller(config, runtime, store, sink).run()

    assert excinfo.value.stage == "parse"
    assert store.jobs["j1"] is JobStatus.ERRORED


def test_parse_failure_errors_the_job(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    runtime.exit_codes = {"bzk/parser": 2}

    with pytest.raises(StageError) as excinfo:
        make_controller(config, runtime, store, sink).run()

    assert excinfo.value.container_id == runtime.created_for("bzk/parser")[0].id
    assert store.jobs["j1"] is JobStatus.ERRORED
    assert store.variants == {}


def test_variant_build_failure_excludes_only_that_variant(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0)
    write_variant(tmp_path, 1)
    runtime.build_codes = {tag(1): 1}

    report = make_controller(config, runtime, store, sink).run()

    assert store.variant_status(1) is JobStatus.ERRORED
    assert store.variant_status(0) is JobStatus.SUCCESS
    assert runtime.created_for(tag(1)) == []
    assert len(runtime.created_for(tag(0))) == 1
    assert report.status is JobStatus.ERRORED


def test_missing_dockerfile_is_a_variant_build_failure(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0)
    write_variant(tmp_path, 1, dockerfile=False)

    report = make_controller(config, runtime, store, sink).run()

    assert report.counts["ERRORED"] == 1
    assert report.counts["SUCCEEDED"] == 1


def test_declared_run_failure_errors_the_job(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0)
    write_variant(tmp_path, 1)
    runtime.exit_codes = {tag(1): 42}

    with pytest.raises(DeclaredRunFailure):
        make_controller(config, runtime, store, sink).run()

    assert store.jobs["j1"] is JobStatus.ERRORED
    assert store.variant_status(1) is JobStatus.ERRORED
    assert store.variant_status(0) in (JobStatus.SUCCESS, JobStatus.ERRORED)


def test_persistence_failure_while_aborting_is_reported(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    runtime.exit_codes = {"bzk/scm-git": 1}
    store.fail_finish = True

    with pytest.raises(StoreError) as excinfo:
        make_controller(config, runtime, store, sink).run()

    assert isinstance(excinfo.value.__cause__, StageError)


def test_in_flight_variant_is_errored_when_another_declares_failure(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0, services=["redis"])
    write_variant(tmp_path, 1)
    runtime.blocking = {tag(0)}
    runtime.exit_codes = {tag(1): 42}

    with pytest.raises(DeclaredRunFailure):
        make_controller(config, runtime, store, sink).run()

    slow = next(row for row in store.variants.values() if row["number"] == 0)
    assert slow["status"] is JobStatus.ERRORED
    assert slow["completed"] is not None
    assert store.variant_status(1) is JobStatus.ERRORED
    assert store.jobs["j1"] is JobStatus.ERRORED
    assert runtime.alive == {}


def test_unexpected_stage_exception_errors_the_job(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0)
    controller = make_controller(config, runtime, store, sink)

    def broken_parse():
        raise ValueError("invalid literal for int()")

    controller.parser.parse = broken_parse

    with pytest.raises(StageError) as excinfo:
        controller.run()

    assert excinfo.value.stage == "parse"
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert store.jobs["j1"] is JobStatus.ERRORED


def test_stray_non_ascii_digit_folder_does_not_break_the_job(tmp_path, runtime, store, sink):
    config = make_config(tmp_path)
    write_variant(tmp_path, 0)
    (tmp_path / "work" / "²").mkdir()

    report = make_controller(config, runtime, store, sink).run()

    assert report.status is JobStatus.SUCCESS
    assert store.jobs["j1"] is JobStatus.SUCCESS
