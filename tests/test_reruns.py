from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import PROJECT_ID
from simops.core.errors import ConflictError, ConflictExhaustedError, TransportError, UsageError
from simops.core.models import Batch, ConflatedJobStatus, Job
from simops.core.reruns import (
    RerunReason,
    decide_rerun,
    filter_jobs_by_status,
    matching_job_ids,
    parse_rerun_states,
    submit_rerun,
)
from simops.core.supervise import SuperviseParams


def params(*, attempts=2, percent=50, states="ERROR,BLOCKER") -> SuperviseParams:
    return SuperviseParams.build(
        project_id=PROJECT_ID,
        max_rerun_attempts=attempts,
        rerun_max_failure_percent=percent,
        rerun_on_states=states,
        batch_name="nightly",
    )


def finished(platform, status="ERROR", jobs=None) -> Batch:
    batch_id = platform.add_batch([status], jobs=jobs)
    return Batch(batch_id=batch_id, status=status)


class TestParseRerunStates:
    def test_is_case_insensitive_and_trims(self):
        assert parse_rerun_states(" warning, Error ,BLOCKER") == {
            ConflatedJobStatus.WARNING,
            ConflatedJobStatus.ERROR,
            ConflatedJobStatus.BLOCKER,
        }

    def test_accepts_iterables(self):
        assert parse_rerun_states(["error"]) == {ConflatedJobStatus.ERROR}

    @pytest.mark.parametrize("state", ["PASSED", "CANCELLED", "QUEUED", "bogus"])
    def test_rejects_non_rerunnable_states(self, state):
        with pytest.raises(UsageError, match="Valid states are: WARNING, ERROR, BLOCKER"):
            parse_rerun_states(state)


def test_filter_jobs_by_status_ignores_missing_status_and_id():
    jobs = [
        Job(job_id="a", conflated_status="ERROR"),
        Job(job_id="b", conflated_status=None),
        Job(job_id=None, conflated_status="ERROR"),
        Job(job_id="c", conflated_status="PASSED"),
        Job(job_id="d", conflated_status="BLOCKER"),
    ]
    states = {ConflatedJobStatus.ERROR, ConflatedJobStatus.BLOCKER}

    assert filter_jobs_by_status(jobs, states) == ["a", "d"]
    assert filter_jobs_by_status(jobs, set()) == []


def test_attempt_budget_spent_makes_no_calls(platform):
    batch = finished(platform, jobs={"a": "ERROR"})

    decision = decide_rerun(platform, batch, params(attempts=2), attempt=2)

    assert decision.reason is RerunReason.ATTEMPTS_EXHAUSTED
    assert decision.job_ids == []
    assert platform.calls == []


def test_cancelled_batch_makes_no_calls(platform):
    batch = finished(platform, status="CANCELLED", jobs={"a": "ERROR"})

    decision = decide_rerun(platform, batch, params(), attempt=0)

    assert decision.reason is RerunReason.BATCH_CANCELLED
    assert platform.calls == []


def test_threshold_is_strictly_greater_than(platform):
    jobs = {"a": "ERROR", "b": "PASSED", "c": "BLOCKER", "d": "PASSED"}
    batch = finished(platform, jobs=jobs)

    at_limit = decide_rerun(platform, batch, params(percent=50), attempt=0)
    below_limit = decide_rerun(platform, batch, params(percent=49.9), attempt=0)

    assert at_limit.reason is RerunReason.RERUN
    assert at_limit.job_ids == ["a", "c"]
    assert at_limit.failure_percent == 50
    assert below_limit.reason is RerunReason.THRESHOLD_EXCEEDED
    assert below_limit.job_ids == []


def test_no_matching_jobs(platform):
    batch = finished(platform, status="SUCCEEDED", jobs={"a": "PASSED", "b": "WARNING"})

    decision = decide_rerun(platform, batch, params(states="ERROR"), attempt=0)

    assert decision.reason is RerunReason.NO_MATCHING_JOBS
    assert decision.total_jobs == 2
    assert decision.undesired_jobs == 0


def test_warning_jobs_rerun_when_requested(platform):
    batch = finished(platform, status="SUCCEEDED", jobs={"a": "PASSED", "b": "WARNING"})

    assert matching_job_ids(platform, batch, params(states="warning"), attempt=0) == ["b"]


def test_jobs_are_listed_across_pages(platform):
    jobs = {f"j{i}": ("ERROR" if i % 10 == 0 else "PASSED") for i in range(250)}
    batch = finished(platform, jobs=jobs)

    decision = decide_rerun(platform, batch, params(), attempt=0)

    assert decision.total_jobs == 250
    assert decision.job_ids == [f"j{i}" for i in range(0, 250, 10)]
    assert platform.count("list_jobs") == 3


class TestSubmitRerun:
    def test_returns_new_batch_id(self, platform, clock):
        platform.rerun_responses = ["new-batch"]

        new_id = submit_rerun(platform, PROJECT_ID, "parent", ["a"], sleep=clock.sleep)

        assert new_id == "new-batch"
        assert platform.calls == [("rerun_batch", "parent", ["a"])]
        assert clock.sleeps == []

    def test_retries_conflicts_with_backoff(self, platform, clock):
        platform.rerun_responses = [ConflictError("409"), ConflictError("409"), "new-batch"]

        new_id = submit_rerun(
            platform,
            PROJECT_ID,
            "parent",
            ["a"],
            backoff=timedelta(seconds=2),
            sleep=clock.sleep,
        )

        assert new_id == "new-batch"
        assert platform.count("rerun_batch") == 3
        assert clock.sleeps == [2.0, 2.0]

    def test_gives_up_after_max_attempts(self, platform, clock):
        platform.rerun_responses = [ConflictError("409")] * 5

        with pytest.raises(ConflictExhaustedError) as excinfo:
            submit_rerun(platform, PROJECT_ID, "parent", ["a"], max_attempts=3, sleep=clock.sleep)

        assert excinfo.value.attempts == 3
        assert platform.count("rerun_batch") == 3
        assert len(clock.sleeps) == 2

    def test_other_errors_are_not_retried(self, platform, clock):
        platform.rerun_responses = [TransportError("500", status_code=500), "new-batch"]

        with pytest.raises(TransportError):
            submit_rerun(platform, PROJECT_ID, "parent", ["a"], sleep=clock.sleep)

        assert platform.count("rerun_batch") == 1

    def test_empty_job_list_is_sent(self, platform, clock):
        platform.rerun_responses = ["new-batch"]

        submit_rerun(platform, PROJECT_ID, "parent", [], sleep=clock.sleep)

        assert platform.calls == [("rerun_batch", "parent", [])]

    def test_requires_at_least_one_attempt(self, platform):
        with pytest.raises(ValueError):
            submit_rerun(platform, PROJECT_ID, "parent", ["a"], max_attempts=0)
