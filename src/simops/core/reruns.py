"""Rerun decision and submission.

A finished batch may be rerun for the subset of its jobs whose conflated
status is in the user's undesired set. The decision rules are evaluated in a
fixed order and the first rule that applies ends the decision:

1. the rerun attempt budget is spent,
2. the batch was cancelled,
3. the undesired share of jobs is above the structural-failure threshold.

Otherwise the undesired jobs are rerun. Submission retries on HTTP 409, the
platform's signal that the parent batch is still being modified.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Protocol

from simops.core.batches import BatchesAdapter, list_batch_jobs
from simops.core.errors import ConflictError, ConflictExhaustedError, UsageError
from simops.core.models import RERUNNABLE_STATES, Batch, BatchStatus, ConflatedJobStatus, Job

if TYPE_CHECKING:
    from simops.core.supervise import SuperviseParams

DEFAULT_RERUN_ATTEMPTS = 3
DEFAULT_RERUN_BACKOFF = timedelta(seconds=1)


def parse_rerun_states(value: str | Iterable[str]) -> frozenset[ConflatedJobStatus]:
    """
    Parse the rerun trigger states, case-insensitively.

    Accepts a comma separated string ("warning, ERROR") or an iterable of
    state names.

    Raises:
        UsageError: If a state is not one of WARNING, ERROR, BLOCKER.
    """
    raw = value.split(",") if isinstance(value, str) else list(value)
    allowed = {s.value: s for s in RERUNNABLE_STATES}
    states: set[ConflatedJobStatus] = set()
    for item in raw:
        name = str(item).strip().upper()
        if not name:
            continue
        if name not in allowed:
            raise UsageError(
                f"Unsupported rerun state: {name}. Valid states are: WARNING, ERROR, BLOCKER"
            )
        states.add(allowed[name])
    return frozenset(states)


class RerunReason(str, Enum):
    """Why a rerun decision came out the way it did."""

    ATTEMPTS_EXHAUSTED = "ATTEMPTS_EXHAUSTED"
    BATCH_CANCELLED = "BATCH_CANCELLED"
    NO_MATCHING_JOBS = "NO_MATCHING_JOBS"
    THRESHOLD_EXCEEDED = "THRESHOLD_EXCEEDED"
    RERUN = "RERUN"


@dataclass(frozen=True)
class RerunDecision:
    """
    Outcome of the rerun decision for one batch generation.

    Attributes:
        reason: The rule that ended the decision.
        job_ids: Jobs to rerun; empty unless reason is RERUN.
        total_jobs: Number of jobs enumerated (0 when no jobs were listed).
        undesired_jobs: Number of jobs whose status is in the undesired set.
    """

    reason: RerunReason
    job_ids: list[str] = field(default_factory=list)
    total_jobs: int = 0
    undesired_jobs: int = 0

    @property
    def should_rerun(self) -> bool:
        return self.reason is RerunReason.RERUN

    @property
    def failure_percent(self) -> float:
        if self.total_jobs == 0:
            return 0.0
        return self.undesired_jobs * 100 / self.total_jobs


def filter_jobs_by_status(
    jobs: Iterable[Job], states: Iterable[ConflatedJobStatus | str]
) -> list[str]:
    """Return the ids of jobs whose conflated status is in states."""
    wanted = {s.value if isinstance(s, ConflatedJobStatus) else str(s) for s in states}
    if not wanted:
        return []
    return [
        job.job_id
        for job in jobs
        if job.job_id is not None and job.conflated_status in wanted
    ]


def decide_rerun(
    adapter: BatchesAdapter,
    batch: Batch,
    params: SuperviseParams,
    attempt: int,
) -> RerunDecision:
    """
    Decide whether a finished batch should be rerun, and for which jobs.

    The attempt and cancellation rules are checked before any platform call.
    Otherwise every job of the batch is listed and classified; jobs without a
    conflated status never match. The threshold rule trips only when the
    undesired percentage is strictly greater than the configured maximum,
    and never for a batch with no jobs.

    Args:
        adapter: Platform adapter used to list jobs.
        batch: The batch in a terminal status.
        params: Supervise parameters (attempt budget, threshold, states).
        attempt: Zero-based generation index of batch.
    """
    if attempt >= params.max_rerun_attempts:
        return RerunDecision(RerunReason.ATTEMPTS_EXHAUSTED)

    if batch.status == BatchStatus.CANCELLED.value:
        return RerunDecision(RerunReason.BATCH_CANCELLED)

    jobs = list_batch_jobs(adapter, params.project_id, batch.batch_id)
    job_ids = filter_jobs_by_status(jobs, params.undesired_states)
    total = len(jobs)
    undesired = len(job_ids)

    if total > 0 and undesired * 100 / total > params.rerun_max_failure_percent:
        return RerunDecision(RerunReason.THRESHOLD_EXCEEDED, [], total, undesired)
    if not job_ids:
        return RerunDecision(RerunReason.NO_MATCHING_JOBS, [], total, undesired)
    return RerunDecision(RerunReason.RERUN, job_ids, total, undesired)


def matching_job_ids(
    adapter: BatchesAdapter,
    batch: Batch,
    params: SuperviseParams,
    attempt: int,
) -> list[str]:
    """Return the job ids to rerun; an empty list means no rerun."""
    return decide_rerun(adapter, batch, params, attempt).job_ids


class RerunAdapter(Protocol):
    """Interface for submitting batch reruns."""

    def rerun_batch(self, project_id: str, batch_id: str, job_ids: list[str]) -> str:
        """Submit a rerun and return the new batch id; raise ConflictError on 409."""
        ...


def submit_rerun(
    adapter: RerunAdapter,
    project_id: str,
    parent_batch_id: str,
    job_ids: Iterable[str],
    *,
    max_attempts: int = DEFAULT_RERUN_ATTEMPTS,
    backoff: timedelta = DEFAULT_RERUN_BACKOFF,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """
    Submit a rerun of job_ids against parent_batch_id.

    The job id list is always sent, even when empty (the platform then only
    reruns the batch aggregation phase). A 409 means the parent batch is
    still being modified and the request had no effect, so it is retried
    after a constant backoff. Any other failure propagates immediately.

    Returns:
        The id of the new rerun batch.

    Raises:
        ConflictExhaustedError: Every one of max_attempts calls returned 409.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    ids = list(job_ids)

    for attempt in range(1, max_attempts + 1):
        try:
            return adapter.rerun_batch(project_id, parent_batch_id, ids)
        except ConflictError:
            if attempt == max_attempts:
                break
            sleep(backoff.total_seconds())

    raise ConflictExhaustedError(max_attempts)
