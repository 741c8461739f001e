"""Batch completion polling.

The platform has no push channel, so completion is observed by polling the
batch record at a fixed interval until its status is terminal or the wait
budget runs out. Polling is synchronous and single threaded; the only
suspension points are the adapter call and the sleep between polls.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import Callable

from simops.core.batches import BatchesAdapter, locate_batch
from simops.core.errors import (
    BatchTimeoutError,
    ProtocolError,
    SuperviseCancelled,
    UnknownStatusError,
)
from simops.core.models import Batch, StatusClass, classify_status

PollCallback = Callable[[Batch], None]


def wait_for_batch(
    adapter: BatchesAdapter,
    project_id: str,
    *,
    batch_id: str | None = None,
    batch_name: str | None = None,
    timeout: timedelta,
    poll_interval: timedelta,
    on_poll: PollCallback | None = None,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Batch:
    """
    Block until a batch reaches a terminal status.

    The batch is looked up (by id or name) on every poll. SUCCEEDED, ERROR
    and CANCELLED are terminal and returned as-is; the caller decides what
    they mean. At least one poll is made even with a zero timeout, and the
    deadline is only checked after a poll returns, so the last poll may end
    slightly past it.

    Args:
        adapter: Platform adapter used to query the batch.
        project_id: Project the batch belongs to.
        batch_id: Batch identifier; mutually exclusive with batch_name.
        batch_name: Batch friendly name (most recent match wins).
        timeout: Wall-clock budget for this wait.
        poll_interval: Delay between polls.
        on_poll: Optional observer called with every polled record.
        cancel: Optional event; once set, the wait stops at the next sleep.
        clock: Monotonic clock in seconds.
        sleep: Sleep function, used when no cancel event is given.

    Returns:
        The batch record in its terminal status.

    Raises:
        BatchTimeoutError: The budget ran out; carries the last polled batch.
        ProtocolError: The platform returned a batch without a status.
        UnknownStatusError: The status is not one this client knows.
        SuperviseCancelled: The cancel event was set.
    """
    start = clock()
    budget = timeout.total_seconds()
    interval = max(poll_interval.total_seconds(), 0.0)

    while True:
        batch = locate_batch(adapter, project_id, batch_id=batch_id, batch_name=batch_name)
        if on_poll is not None:
            on_poll(batch)

        if batch.status is None:
            raise ProtocolError("no status returned")

        status_class = classify_status(batch.status)
        if status_class.is_terminal:
            return batch
        if status_class is StatusClass.UNKNOWN:
            raise UnknownStatusError(batch.status)

        if clock() - start > budget:
            raise BatchTimeoutError(batch, batch.status, timeout)

        if cancel is not None:
            if cancel.wait(interval):
                raise SuperviseCancelled(batch)
        else:
            sleep(interval)
