"""Progress rendering for batch waits and supervision."""

from __future__ import annotations

from rich.console import Console
from rich.progress import (
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from simops.cli.common.output import console as default_console
from simops.core.models import Batch, StatusClass, classify_status
from simops.core.reruns import RerunDecision, RerunReason
from simops.core.supervise import SuperviseReporter

_MAX_BATCH_NAME_WIDTH = 48

_REASON_TEXT = {
    RerunReason.ATTEMPTS_EXHAUSTED: "rerun attempts exhausted",
    RerunReason.BATCH_CANCELLED: "batch was cancelled, not rerunning",
    RerunReason.NO_MATCHING_JOBS: "no tests match the rerun states",
    RerunReason.THRESHOLD_EXCEEDED: "too many failed tests, not rerunning",
    RerunReason.RERUN: "rerunning matching tests",
}


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _display_batch_label(batch: Batch) -> str:
    """
    Render a batch label for the progress rows.

    - With a friendly name: `<name>  (id: <id>)`
    - Without: just `<id>`
    """
    if not batch.friendly_name:
        return batch.batch_id
    return f"{_truncate(batch.friendly_name, _MAX_BATCH_NAME_WIDTH)}  (id: {batch.batch_id})"


def _style_for(status: str | None) -> str:
    if not status:
        return "dim"
    status_class = classify_status(status)
    if status_class is StatusClass.SUCCEEDED:
        return "green"
    if status_class in (StatusClass.FAILED, StatusClass.CANCELLED):
        return "red"
    if status_class is StatusClass.RUNNING:
        return "yellow"
    return "dim"


class BatchProgress(SuperviseReporter):
    """
    Live progress for one or more batch generations.

    Shows one spinner row per generation with the batch label, its latest
    status and an elapsed timer that stops when the generation finishes.
    Status changes and rerun decisions are also printed as plain lines so
    they remain in CI logs.

    Use as a context manager around `wait_for_batch` or `supervise`.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or default_console
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]gen {task.fields[attempt]}[/]"),
            TextColumn("[bold]{task.fields[batch]}[/]"),
            TextColumn(
                "status=[{task.fields[style]}]{task.fields[status]}[/{task.fields[style]}]"
            ),
            TimeElapsedColumn(),
            console=self.console,
        )
        self._tasks: dict[int, TaskID] = {}
        self._last_status: dict[int, str | None] = {}

    def __enter__(self) -> BatchProgress:
        self.progress.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.progress.stop()

    def _task_for(self, attempt: int, batch: Batch) -> TaskID:
        if attempt not in self._tasks:
            self._tasks[attempt] = self.progress.add_task(
                "",
                total=1,
                attempt=attempt,
                batch=_display_batch_label(batch),
                status="PENDING",
                style="dim",
            )
        return self._tasks[attempt]

    def on_poll(self, attempt: int, batch: Batch) -> None:
        task_id = self._task_for(attempt, batch)
        style = _style_for(batch.status)
        finished = batch.status is not None and classify_status(batch.status).is_terminal
        self.progress.update(
            task_id,
            batch=_display_batch_label(batch),
            status=batch.status or "UNKNOWN",
            style=style,
            completed=1 if finished else 0,
        )
        if self._last_status.get(attempt) != batch.status:
            self._last_status[attempt] = batch.status
            self.progress.console.print(
                f"Batch {batch.label} is [{style}]{batch.status or 'UNKNOWN'}[/{style}]"
            )

    def on_decision(self, attempt: int, batch: Batch, decision: RerunDecision) -> None:
        if decision.total_jobs:
            self.progress.console.print(
                f"Found {decision.undesired_jobs} test(s) matching rerun states "
                f"({decision.failure_percent:.1f}% of {decision.total_jobs})"
            )
        self.progress.console.print(f"[dim]›[/] {_REASON_TEXT[decision.reason]}")

    def on_rerun(
        self, attempt: int, parent: Batch, new_batch_id: str, job_ids: list[str]
    ) -> None:
        self.progress.console.print(
            f"[green]✓[/] Submitted rerun batch {new_batch_id} "
            f"({len(job_ids)} test(s), attempt {attempt + 1})"
        )
