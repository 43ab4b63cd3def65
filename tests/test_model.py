"""Tests for the job/variant model."""

import pytest

from bzk.model import (
    ExitCodePolicy,
    InvalidTransition,
    JobStatus,
    RunOutcome,
    Variant,
    aggregate_job_status,
)

S, F, E = JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.ERRORED


@pytest.mark.parametrize(
    "statuses,expected",
    [
        ([S, S], S),
        ([S, F], F),
        ([S, E], E),
        ([F, E], E),
        ([F, F], F),
        ([E], E),
        ([], S),
    ],
)
def test_aggregate_job_status(statuses, expected):
    assert aggregate_job_status(statuses) is expected


def test_aggregate_rejects_unfinished_variants():
    with pytest.raises(ValueError):
        aggregate_job_status([S, JobStatus.RUNNING])
    with pytest.raises(ValueError):
        aggregate_job_status([None])


def test_exit_code_policy():
    policy = ExitCodePolicy()
    assert policy.classify(0) is RunOutcome.SUCCESS
    assert policy.classify(42) is RunOutcome.DECLARED_FAILURE
    assert policy.classify(7) is RunOutcome.FAILURE
    assert ExitCodePolicy(declared_failure_code=3).classify(42) is RunOutcome.FAILURE


def test_variant_transitions_are_monotonic():
    v = Variant(number=0, job_id="j", project_id="p")
    assert v.status is None

    v.transition(JobStatus.RUNNING)
    assert v.completed is None
    with pytest.raises(InvalidTransition):
        v.transition(JobStatus.RUNNING)

    v.transition(JobStatus.SUCCESS)
    assert v.completed is not None
    with pytest.raises(InvalidTransition):
        v.transition(JobStatus.FAILED)


def test_pending_variant_may_error_directly():
    v = Variant(number=0, job_id="j", project_id="p")
    v.transition(JobStatus.ERRORED)
    assert v.status is JobStatus.ERRORED
