"""Batch supervision: wait, decide, rerun, repeat.

`supervise` watches a batch until it finishes, reruns its undesired jobs when
the rerun rules allow it, and follows the rerun batch the same way, for at
most `max_rerun_attempts` reruns. The wait budget applies per generation and
resets when a rerun is submitted; `total_timeout` optionally caps the whole
run on top of that.

The result carries the final batch and any error; `exit_code_for` turns it
into the process exit code CI systems rely on:

    0 SUCCEEDED, 2 ERROR, 5 CANCELLED, 6 timed out, 1 anything else.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Iterable, Protocol

from simops.core.batches import BatchesAdapter, parse_uuid
from simops.core.errors import (
    BatchTimeoutError,
    SimopsError,
    SuperviseCancelled,
    UsageError,
)
from simops.core.models import Batch, BatchStatus, ConflatedJobStatus
from simops.core.reruns import (
    DEFAULT_RERUN_ATTEMPTS,
    DEFAULT_RERUN_BACKOFF,
    RerunAdapter,
    RerunDecision,
    decide_rerun,
    parse_rerun_states,
    submit_rerun,
)
from simops.core.wait import wait_for_batch

EXIT_SUCCEEDED = 0
EXIT_FAILURE = 1
EXIT_BATCH_ERROR = 2
EXIT_BATCH_CANCELLED = 5
EXIT_TIMEOUT = 6

_STATUS_EXIT_CODES = {
    BatchStatus.SUCCEEDED.value: EXIT_SUCCEEDED,
    BatchStatus.ERROR.value: EXIT_BATCH_ERROR,
    BatchStatus.CANCELLED.value: EXIT_BATCH_CANCELLED,
}


@dataclass(frozen=True)
class SuperviseParams:
    """
    Validated, read-only parameters of one supervise run.

    Build instances with `SuperviseParams.build`, which validates every field
    before any network call is made.
    """

    project_id: str
    max_rerun_attempts: int
    rerun_max_failure_percent: float
    undesired_states: frozenset[ConflatedJobStatus]
    timeout: timedelta
    poll_interval: timedelta
    batch_id: str | None = None
    batch_name: str | None = None
    total_timeout: timedelta | None = None

    @classmethod
    def build(
        cls,
        *,
        project_id: str,
        max_rerun_attempts: int,
        rerun_max_failure_percent: float,
        rerun_on_states: str | Iterable[str],
        timeout: timedelta = timedelta(hours=1),
        poll_interval: timedelta = timedelta(seconds=30),
        batch_id: str | None = None,
        batch_name: str | None = None,
        total_timeout: timedelta | None = None,
    ) -> SuperviseParams:
        """
        Validate inputs and return the parameter record.

        Raises:
            UsageError: On any invalid or missing parameter.
        """
        if bool(batch_id) == bool(batch_name):
            raise UsageError("exactly one of batch ID or batch name must be specified")
        if batch_id:
            batch_id = parse_uuid(batch_id, what="batch ID")
        if max_rerun_attempts < 1:
            raise UsageError(
                f"max-rerun-attempts must be at least 1, got: {max_rerun_attempts}"
            )
        if not 0.0 < rerun_max_failure_percent <= 100.0:
            raise UsageError(
                "rerun-max-failure-percent must be greater than 0 and at most 100, "
                f"got: {rerun_max_failure_percent}"
            )
        states = parse_rerun_states(rerun_on_states)
        if not states:
            raise UsageError("rerun-on-states must name at least one of WARNING, ERROR, BLOCKER")
        if timeout < timedelta(0):
            raise UsageError("wait-timeout must not be negative")
        if poll_interval < timedelta(0):
            raise UsageError("poll-every must not be negative")
        if total_timeout is not None and total_timeout < timedelta(0):
            raise UsageError("total-timeout must not be negative")

        return cls(
            project_id=project_id,
            max_rerun_attempts=max_rerun_attempts,
            rerun_max_failure_percent=float(rerun_max_failure_percent),
            undesired_states=states,
            timeout=timeout,
            poll_interval=poll_interval,
            batch_id=batch_id or None,
            batch_name=batch_name or None,
            total_timeout=total_timeout,
        )


@dataclass
class SuperviseResult:
    """
    Outcome of a supervise run.

    Attributes:
        batch: The latest batch observed: the final generation on success,
               the last polled record on timeout or cancellation. None when
               the current generation could not be read.
        error: The error that ended the run, if any.
        reruns: Ids of the rerun batches submitted, in order.
        decision: The rerun decision that ended the run, if it got that far.
    """

    batch: Batch | None = None
    error: Exception | None = None
    reruns: list[str] = field(default_factory=list)
    decision: RerunDecision | None = None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, BatchTimeoutError)

    @property
    def exit_code(self) -> int:
        return exit_code_for(self)


def exit_code_for(result: SuperviseResult) -> int:
    """Translate a supervise result into the process exit code."""
    if result.error is not None:
        return EXIT_TIMEOUT if result.timed_out else EXIT_FAILURE
    if result.batch is None or result.batch.status is None:
        return EXIT_FAILURE
    return _STATUS_EXIT_CODES.get(result.batch.status, EXIT_FAILURE)


class SuperviseReporter:
    """
    Observer of supervise progress. The default implementation does nothing;
    frontends override the hooks they care about.
    """

    def on_poll(self, attempt: int, batch: Batch) -> None:
        """Called after every poll of the current generation's batch."""

    def on_decision(self, attempt: int, batch: Batch, decision: RerunDecision) -> None:
        """Called once per generation with the rerun decision."""

    def on_rerun(
        self, attempt: int, parent: Batch, new_batch_id: str, job_ids: list[str]
    ) -> None:
        """Called after a rerun batch was submitted."""


class SuperviseAdapter(BatchesAdapter, RerunAdapter, Protocol):
    """Platform operations needed to supervise a batch."""


def supervise(
    adapter: SuperviseAdapter,
    params: SuperviseParams,
    *,
    reporter: SuperviseReporter | None = None,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    rerun_attempts: int = DEFAULT_RERUN_ATTEMPTS,
    rerun_backoff: timedelta = DEFAULT_RERUN_BACKOFF,
) -> SuperviseResult:
    """
    Supervise a batch and its rerun generations until a final status.

    Generation 0 is the batch named by params. After each generation
    finishes, the rerun rules decide whether to submit a rerun; if so, the
    new batch becomes the next generation and is always tracked by id. At
    most params.max_rerun_attempts reruns are submitted.

    Platform errors never escape: they end the run and are returned in the
    result so the caller can map them to an exit code.
    """
    reporter = reporter or SuperviseReporter()
    batch_id, batch_name = params.batch_id, params.batch_name
    batch: Batch | None = None
    reruns: list[str] = []
    started = clock()

    for attempt in range(params.max_rerun_attempts + 1):
        timeout = params.timeout
        if params.total_timeout is not None:
            remaining = params.total_timeout - timedelta(seconds=clock() - started)
            timeout = max(min(timeout, remaining), timedelta(0))

        def _on_poll(polled: Batch, attempt: int = attempt) -> None:
            reporter.on_poll(attempt, polled)

        try:
            batch = wait_for_batch(
                adapter,
                params.project_id,
                batch_id=batch_id,
                batch_name=batch_name,
                timeout=timeout,
                poll_interval=params.poll_interval,
                on_poll=_on_poll,
                cancel=cancel,
                clock=clock,
                sleep=sleep,
            )
        except (BatchTimeoutError, SuperviseCancelled) as exc:
            return SuperviseResult(batch=exc.batch, error=exc, reruns=reruns)
        except SimopsError as exc:
            # The previous generation is not this run's latest batch.
            return SuperviseResult(error=exc, reruns=reruns)

        try:
            decision = decide_rerun(adapter, batch, params, attempt)
            reporter.on_decision(attempt, batch, decision)
            if not decision.should_rerun:
                return SuperviseResult(batch=batch, reruns=reruns, decision=decision)
            if cancel is not None and cancel.is_set():
                return SuperviseResult(
                    batch=batch,
                    error=SuperviseCancelled(batch),
                    reruns=reruns,
                    decision=decision,
                )

            new_batch_id = submit_rerun(
                adapter,
                params.project_id,
                batch.batch_id,
                decision.job_ids,
                max_attempts=rerun_attempts,
                backoff=rerun_backoff,
                sleep=sleep,
            )
        except SimopsError as exc:
            return SuperviseResult(batch=batch, error=exc, reruns=reruns)

        reporter.on_rerun(attempt, batch, new_batch_id, decision.job_ids)
        reruns.append(new_batch_id)
        batch_id, batch_name = new_batch_id, None

    # decide_rerun refuses once attempt == max_rerun_attempts.
    raise RuntimeError("supervise loop ended without a final decision")
