from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from conftest import PROJECT_ID, new_id
from simops.core.errors import (
    BatchTimeoutError,
    ConflictError,
    ConflictExhaustedError,
    NotFoundError,
    SuperviseCancelled,
    TransportError,
    UnknownStatusError,
    UsageError,
)
from simops.core.models import Batch
from simops.core.reruns import RerunReason
from simops.core.supervise import (
    EXIT_BATCH_CANCELLED,
    EXIT_BATCH_ERROR,
    EXIT_FAILURE,
    EXIT_SUCCEEDED,
    EXIT_TIMEOUT,
    SuperviseParams,
    SuperviseReporter,
    SuperviseResult,
    exit_code_for,
    supervise,
)


def make_params(
    *,
    batch_id: str | None = None,
    batch_name: str | None = None,
    max_rerun_attempts: int = 1,
    percent: float = 50,
    states: str = "ERROR,BLOCKER",
    timeout: timedelta = timedelta(minutes=10),
    poll_interval: timedelta = timedelta(seconds=5),
    total_timeout: timedelta | None = None,
) -> SuperviseParams:
    return SuperviseParams.build(
        project_id=PROJECT_ID,
        max_rerun_attempts=max_rerun_attempts,
        rerun_max_failure_percent=percent,
        rerun_on_states=states,
        timeout=timeout,
        poll_interval=poll_interval,
        batch_id=batch_id,
        batch_name=batch_name,
        total_timeout=total_timeout,
    )


def run(platform, clock, params, **kwargs) -> SuperviseResult:
    return supervise(
        platform,
        params,
        clock=clock,
        sleep=clock.sleep,
        rerun_backoff=timedelta(seconds=1),
        **kwargs,
    )


class RecordingReporter(SuperviseReporter):
    def __init__(self) -> None:
        self.polls: list[tuple[int, str | None]] = []
        self.decisions: list[tuple[int, RerunReason]] = []
        self.reruns: list[tuple[int, str, str, list[str]]] = []

    def on_poll(self, attempt, batch):
        self.polls.append((attempt, batch.status))

    def on_decision(self, attempt, batch, decision):
        self.decisions.append((attempt, decision.reason))

    def on_rerun(self, attempt, parent, new_batch_id, job_ids):
        self.reruns.append((attempt, parent.batch_id, new_batch_id, list(job_ids)))


def test_succeeds_first_time_without_rerun(platform, clock):
    batch_id = platform.add_batch(
        ["SUBMITTED", "EXPERIENCES_RUNNING", "SUCCEEDED"],
        jobs={"j1": "PASSED", "j2": "PASSED"},
    )
    result = run(platform, clock, make_params(batch_id=batch_id))

    assert result.exit_code == EXIT_SUCCEEDED
    assert result.batch.batch_id == batch_id
    assert result.reruns == []
    assert platform.count("rerun_batch") == 0
    assert result.decision.reason is RerunReason.NO_MATCHING_JOBS


def test_error_batch_is_rerun_once_and_rerun_succeeds(platform, clock):
    parent = platform.add_batch(
        ["EXPERIENCES_RUNNING", "ERROR"],
        jobs={f"j{i}": "PASSED" for i in range(8)} | {"j8": "ERROR", "j9": "BLOCKER"},
    )
    child = platform.add_batch(["SUBMITTED", "SUCCEEDED"])
    platform.rerun_responses = [child]
    reporter = RecordingReporter()

    result = run(
        platform,
        clock,
        make_params(batch_id=parent, max_rerun_attempts=1, percent=50),
        reporter=reporter,
    )

    assert result.exit_code == EXIT_SUCCEEDED
    assert result.batch.batch_id == child
    assert result.reruns == [child]
    rerun_calls = [c for c in platform.calls if c[0] == "rerun_batch"]
    assert rerun_calls == [("rerun_batch", parent, ["j8", "j9"])]
    assert reporter.reruns == [(0, parent, child, ["j8", "j9"])]
    assert {attempt for attempt, _ in reporter.polls} == {0, 1}


def test_failure_share_above_threshold_skips_rerun(platform, clock):
    jobs = {f"j{i}": "ERROR" for i in range(6)} | {f"p{i}": "PASSED" for i in range(4)}
    batch_id = platform.add_batch(["ERROR"], jobs=jobs)

    result = run(
        platform,
        clock,
        make_params(batch_id=batch_id, max_rerun_attempts=2, percent=50, states="ERROR"),
    )

    assert result.exit_code == EXIT_BATCH_ERROR
    assert result.decision.reason is RerunReason.THRESHOLD_EXCEEDED
    assert result.decision.failure_percent == 60
    assert platform.count("rerun_batch") == 0


def test_failure_share_equal_to_threshold_still_reruns(platform, clock):
    jobs = {f"j{i}": "ERROR" for i in range(5)} | {f"p{i}": "PASSED" for i in range(5)}
    parent = platform.add_batch(["ERROR"], jobs=jobs)
    child = platform.add_batch(["SUCCEEDED"])
    platform.rerun_responses = [child]

    result = run(
        platform,
        clock,
        make_params(batch_id=parent, percent=50, states="ERROR"),
    )

    assert result.reruns == [child]
    assert result.exit_code == EXIT_SUCCEEDED


def test_timeout_returns_last_seen_batch_and_exit_code_6(platform, clock):
    batch_id = platform.add_batch(["EXPERIENCES_RUNNING"])

    result = run(
        platform,
        clock,
        make_params(
            batch_id=batch_id,
            timeout=timedelta(seconds=10),
            poll_interval=timedelta(seconds=5),
        ),
    )

    assert result.timed_out
    assert isinstance(result.error, BatchTimeoutError)
    assert result.error.last_status == "EXPERIENCES_RUNNING"
    assert result.batch.batch_id == batch_id
    assert result.exit_code == EXIT_TIMEOUT
    assert platform.count("rerun_batch") == 0
    assert platform.count("list_jobs") == 0


def test_cancelled_batch_is_never_rerun(platform, clock):
    batch_id = platform.add_batch(["EXPERIENCES_RUNNING", "CANCELLED"], jobs={"j1": "ERROR"})

    result = run(
        platform,
        clock,
        make_params(batch_id=batch_id, max_rerun_attempts=3),
    )

    assert result.exit_code == EXIT_BATCH_CANCELLED
    assert result.decision.reason is RerunReason.BATCH_CANCELLED
    assert platform.count("list_jobs") == 0
    assert platform.count("rerun_batch") == 0


def test_rerun_conflicts_are_retried_until_accepted(platform, clock):
    parent = platform.add_batch(["ERROR"], jobs={"j1": "ERROR", "j2": "PASSED", "j3": "PASSED"})
    child = platform.add_batch(["SUCCEEDED"])
    platform.rerun_responses = [ConflictError("busy"), ConflictError("busy"), child]

    result = run(platform, clock, make_params(batch_id=parent))

    assert platform.count("rerun_batch") == 3
    assert result.reruns == [child]
    assert result.exit_code == EXIT_SUCCEEDED


def test_rerun_conflicts_exhausted_exit_with_failure(platform, clock):
    parent = platform.add_batch(["ERROR"], jobs={"j1": "ERROR", "j2": "PASSED", "j3": "PASSED"})
    platform.rerun_responses = [ConflictError("busy")] * 3

    result = run(platform, clock, make_params(batch_id=parent))

    assert platform.count("rerun_batch") == 3
    assert isinstance(result.error, ConflictExhaustedError)
    assert "max retries reached" in str(result.error)
    assert result.exit_code == EXIT_FAILURE


def test_reruns_never_exceed_max_attempts(platform, clock):
    jobs = {"j1": "ERROR", "j2": "PASSED", "j3": "PASSED", "j4": "PASSED"}
    gen0 = platform.add_batch(["ERROR"], jobs=jobs)
    gen1 = platform.add_batch(["ERROR"], jobs=jobs)
    gen2 = platform.add_batch(["ERROR"], jobs=jobs)
    platform.rerun_responses = [gen1, gen2]

    result = run(platform, clock, make_params(batch_id=gen0, max_rerun_attempts=2))

    assert result.reruns == [gen1, gen2]
    assert platform.count("rerun_batch") == 2
    assert result.batch.batch_id == gen2
    assert result.decision.reason is RerunReason.ATTEMPTS_EXHAUSTED
    assert result.exit_code == EXIT_BATCH_ERROR


def test_per_generation_timeout_resets_after_rerun(platform, clock):
    parent = platform.add_batch(
        ["EXPERIENCES_RUNNING", "EXPERIENCES_RUNNING", "ERROR"],
        jobs={"j1": "ERROR", "j2": "PASSED"},
    )
    child = platform.add_batch(["EXPERIENCES_RUNNING", "EXPERIENCES_RUNNING", "SUCCEEDED"])
    platform.rerun_responses = [child]

    result = run(
        platform,
        clock,
        make_params(
            batch_id=parent,
            timeout=timedelta(seconds=12),
            poll_interval=timedelta(seconds=5),
        ),
    )

    # Both generations take ~10s; together they exceed one 12s budget.
    assert result.exit_code == EXIT_SUCCEEDED
    assert clock.now > 12


def test_total_timeout_caps_the_whole_run(platform, clock):
    parent = platform.add_batch(
        ["EXPERIENCES_RUNNING", "EXPERIENCES_RUNNING", "ERROR"],
        jobs={"j1": "ERROR", "j2": "PASSED"},
    )
    child = platform.add_batch(["EXPERIENCES_RUNNING"])
    platform.rerun_responses = [child]

    result = run(
        platform,
        clock,
        make_params(
            batch_id=parent,
            timeout=timedelta(seconds=12),
            poll_interval=timedelta(seconds=5),
            total_timeout=timedelta(seconds=15),
        ),
    )

    assert result.exit_code == EXIT_TIMEOUT
    assert result.batch.batch_id == child
    assert result.reruns == [child]


def test_lookup_by_name_then_follow_rerun_by_id(platform, clock):
    parent = platform.add_batch(["ERROR"], name="nightly", jobs={"j1": "ERROR", "j2": "PASSED"})
    child = platform.add_batch(["SUCCEEDED"], name="nightly")
    platform.batch_pages = [[Batch(batch_id=parent, friendly_name="nightly")]]
    platform.rerun_responses = [child]

    result = run(platform, clock, make_params(batch_name="nightly"))

    assert result.exit_code == EXIT_SUCCEEDED
    assert ("get_batch", child) in platform.calls
    assert platform.count("list_batches") == 1


def test_unknown_status_fails_without_rerun(platform, clock):
    batch_id = platform.add_batch(["EXPERIENCES_RUNNING", "EXPLODED"], jobs={"j1": "ERROR"})

    result = run(platform, clock, make_params(batch_id=batch_id))

    assert isinstance(result.error, UnknownStatusError)
    assert str(result.error) == "unknown batch status: EXPLODED"
    assert result.exit_code == EXIT_FAILURE
    assert platform.count("rerun_batch") == 0


def test_missing_batch_fails_with_exit_code_1(platform, clock):
    result = run(platform, clock, make_params(batch_id=new_id()))

    assert isinstance(result.error, NotFoundError)
    assert result.batch is None
    assert result.exit_code == EXIT_FAILURE


def test_failure_in_rerun_generation_does_not_report_parent(platform, clock):
    parent = platform.add_batch(["ERROR"], jobs={"a": "ERROR", "b": "PASSED", "c": "PASSED"})
    child = platform.add_batch(["NEW_STATUS"])
    platform.rerun_responses = [child]

    result = run(platform, clock, make_params(batch_id=parent))

    assert isinstance(result.error, UnknownStatusError)
    assert result.reruns == [child]
    assert result.batch is None
    assert result.exit_code == EXIT_FAILURE


def test_cancel_requested_during_decision_submits_no_rerun(platform, clock):
    parent = platform.add_batch(["ERROR"], jobs={"a": "ERROR", "b": "PASSED", "c": "PASSED"})
    platform.rerun_responses = [new_id()]
    cancel = threading.Event()

    class CancellingReporter(SuperviseReporter):
        def on_decision(self, attempt, batch, decision):
            cancel.set()

    result = run(
        platform,
        clock,
        make_params(batch_id=parent),
        reporter=CancellingReporter(),
        cancel=cancel,
    )

    assert isinstance(result.error, SuperviseCancelled)
    assert result.batch.batch_id == parent
    assert result.decision.reason is RerunReason.RERUN
    assert result.reruns == []
    assert platform.count("rerun_batch") == 0
    assert result.exit_code == EXIT_FAILURE


def test_transport_error_while_listing_jobs_ends_run(platform, clock):
    batch_id = platform.add_batch(["ERROR"])

    def broken_list_jobs(*args, **kwargs):
        raise TransportError("boom", status_code=500)

    platform.list_jobs = broken_list_jobs
    result = run(platform, clock, make_params(batch_id=batch_id))

    assert isinstance(result.error, TransportError)
    assert result.batch.batch_id == batch_id
    assert result.exit_code == EXIT_FAILURE


def test_cancel_event_stops_the_wait(platform):
    batch_id = platform.add_batch(["EXPERIENCES_RUNNING"])
    cancel = threading.Event()
    cancel.set()

    result = supervise(platform, make_params(batch_id=batch_id), cancel=cancel)

    assert isinstance(result.error, SuperviseCancelled)
    assert result.batch.batch_id == batch_id
    assert result.exit_code == EXIT_FAILURE
    assert platform.count("get_batch") == 1


def test_empty_job_list_on_error_batch_means_no_rerun(platform, clock):
    batch_id = platform.add_batch(["ERROR"], jobs={})

    result = run(platform, clock, make_params(batch_id=batch_id))

    assert result.decision.reason is RerunReason.NO_MATCHING_JOBS
    assert result.exit_code == EXIT_BATCH_ERROR


@pytest.mark.parametrize(
    "status, code",
    [
        ("SUCCEEDED", EXIT_SUCCEEDED),
        ("ERROR", EXIT_BATCH_ERROR),
        ("CANCELLED", EXIT_BATCH_CANCELLED),
        ("EXPERIENCES_RUNNING", EXIT_FAILURE),
        (None, EXIT_FAILURE),
    ],
)
def test_exit_code_for_final_status(status, code):
    result = SuperviseResult(batch=Batch(batch_id=new_id(), status=status))
    assert exit_code_for(result) == code


def test_exit_code_for_missing_batch():
    assert exit_code_for(SuperviseResult()) == EXIT_FAILURE


class TestSuperviseParams:
    def test_requires_exactly_one_selector(self):
        with pytest.raises(UsageError):
            make_params()
        with pytest.raises(UsageError):
            make_params(batch_id=new_id(), batch_name="nightly")

    def test_rejects_malformed_batch_id(self):
        with pytest.raises(UsageError, match="batch ID"):
            make_params(batch_id="not-a-uuid")

    @pytest.mark.parametrize("attempts", [0, -1])
    def test_rejects_non_positive_attempts(self, attempts):
        with pytest.raises(UsageError, match="max-rerun-attempts"):
            make_params(batch_name="b", max_rerun_attempts=attempts)

    @pytest.mark.parametrize("percent", [0, -5, 100.5])
    def test_rejects_out_of_range_percent(self, percent):
        with pytest.raises(UsageError, match="rerun-max-failure-percent"):
            make_params(batch_name="b", percent=percent)

    def test_accepts_percent_of_exactly_100(self):
        assert make_params(batch_name="b", percent=100).rerun_max_failure_percent == 100.0

    def test_rejects_unknown_state(self):
        with pytest.raises(UsageError, match="Unsupported rerun state: PASSED"):
            make_params(batch_name="b", states="ERROR,PASSED")

    def test_rejects_empty_states(self):
        with pytest.raises(UsageError, match="rerun-on-states"):
            make_params(batch_name="b", states=" , ")

    def test_rejects_negative_durations(self):
        with pytest.raises(UsageError, match="wait-timeout"):
            make_params(batch_name="b", timeout=timedelta(seconds=-1))
        with pytest.raises(UsageError, match="poll-every"):
            make_params(batch_name="b", poll_interval=timedelta(seconds=-1))
        with pytest.raises(UsageError, match="total-timeout"):
            make_params(batch_name="b", total_timeout=timedelta(seconds=-1))

    def test_canonicalizes_batch_id(self):
        batch_id = new_id()
        assert make_params(batch_id=batch_id.upper()).batch_id == batch_id
