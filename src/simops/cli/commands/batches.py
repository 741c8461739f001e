"""Commands for inspecting, waiting on and supervising batches."""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import timedelta
from functools import partial

import typer

from simops.cli.common.context import AppContext, CliSettings, app_context
from simops.cli.common.exits import die, exit_from_exc, ok_exit, warn_exit
from simops.cli.common.options import (
    BatchIdOpt,
    BatchNameOpt,
    ExitStatusOpt,
    PollEveryOpt,
    ProfileOpt,
    ProjectOpt,
    UrlOpt,
    WaitTimeoutOpt,
    YesOpt,
)
from simops.cli.common.output import out
from simops.cli.common.parsing import parse_duration, parse_id_list
from simops.cli.common.progress import BatchProgress
from simops.core.batches import list_batch_jobs, list_batch_logs, locate_batch, parse_uuid
from simops.core.errors import (
    BatchTimeoutError,
    SimopsError,
    SuperviseCancelled,
    UsageError,
)
from simops.core.models import Batch, BatchStatus
from simops.core.projects import resolve_project_id
from simops.core.reruns import submit_rerun
from simops.core.supervise import (
    EXIT_BATCH_CANCELLED,
    EXIT_BATCH_ERROR,
    EXIT_FAILURE,
    EXIT_SUCCEEDED,
    EXIT_TIMEOUT,
    SuperviseParams,
    SuperviseResult,
    supervise as core_supervise,
)
from simops.core.wait import wait_for_batch

app = typer.Typer(
    help="Inspect, wait on and supervise batches",
    no_args_is_help=True,
)

_GET_EXIT_CODES = {
    BatchStatus.SUCCEEDED.value: 0,
    BatchStatus.ERROR.value: 2,
    BatchStatus.SUBMITTED.value: 3,
    BatchStatus.EXPERIENCES_RUNNING.value: 4,
    BatchStatus.BATCH_METRICS_QUEUED.value: 4,
    BatchStatus.BATCH_METRICS_RUNNING.value: 4,
    BatchStatus.CANCELLED.value: 5,
}


@app.callback()
def _init(
    ctx: typer.Context,
    profile: str | None = ProfileOpt,
    url: str | None = UrlOpt,
):
    """Record connection settings; clients are built on first use."""
    ctx.obj = CliSettings(profile=profile, url=url)


def _check_selector(batch_id: str | None, batch_name: str | None) -> None:
    if batch_id and batch_name:
        die("--batch-id and --batch-name are mutually exclusive", code=EXIT_FAILURE)
    if not batch_id and not batch_name:
        die("must specify either --batch-id or --batch-name", code=EXIT_FAILURE)


def _require_project(project: str | None) -> str:
    if not project:
        die("--project is required", code=EXIT_FAILURE)
    return project


def _resolve_project(appctx: AppContext, project: str) -> str:
    try:
        return resolve_project_id(appctx.adapter, project)
    except SimopsError as exc:
        exit_from_exc(exc, message=str(exc))


def _locate(
    appctx: AppContext, project_id: str, batch_id: str | None, batch_name: str | None
) -> Batch:
    try:
        return locate_batch(appctx.adapter, project_id, batch_id=batch_id, batch_name=batch_name)
    except SimopsError as exc:
        exit_from_exc(exc, message=str(exc))


def _durations(wait_timeout: str, poll_every: str) -> tuple[timedelta, timedelta]:
    try:
        return parse_duration(wait_timeout), parse_duration(poll_every)
    except ValueError as exc:
        exit_from_exc(exc, message=str(exc))


@contextmanager
def _interrupts(cancel: threading.Event):
    """Turn SIGINT/SIGTERM into a cancel request for the duration of a wait."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        cancel.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _finish(
    appctx: AppContext,
    project_id: str,
    result: SuperviseResult,
    *,
    cancel_batch: bool = False,
) -> None:
    """Report a wait/supervise result and exit with its exit code."""
    err = result.error

    if isinstance(err, SuperviseCancelled):
        if cancel_batch and result.batch is not None:
            try:
                appctx.adapter.cancel_batch(project_id, result.batch.batch_id)
            except SimopsError as exc:
                out.error(f"failed to cancel batch {result.batch.batch_id}: {exc}")
            else:
                out.warn(f"Cancelled batch {result.batch.label}")
        die("interrupted while waiting for batch", code=EXIT_FAILURE)

    if isinstance(err, BatchTimeoutError):
        out.batch_summary(err.batch)
        warn_exit(f"Batch timed out: {err}", code=EXIT_TIMEOUT)

    if err is not None:
        die(str(err), code=EXIT_FAILURE)

    batch = result.batch
    if batch is None:
        die("no batch returned", code=EXIT_FAILURE)
    out.batch_summary(batch)
    if result.reruns:
        out.kv({"Rerun batches": ", ".join(result.reruns)})

    code = result.exit_code
    if code == EXIT_SUCCEEDED:
        out.success("Batch completed successfully")
        raise typer.Exit(EXIT_SUCCEEDED)
    if code == EXIT_BATCH_ERROR:
        die(f"Batch {batch.label} finished with status ERROR", code=code)
    if code == EXIT_BATCH_CANCELLED:
        warn_exit(f"Batch {batch.label} was cancelled", code=code)
    die(f"unknown batch status: {batch.status}", code=code)


@app.command()
def get(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    batch_id: str | None = BatchIdOpt,
    batch_name: str | None = BatchNameOpt,
    exit_status: bool = ExitStatusOpt,
):
    """
    Retrieve a batch.
    """
    _check_selector(batch_id, batch_name)
    project = _require_project(project)
    appctx = app_context(ctx)
    project_id = _resolve_project(appctx, project)

    with out.status("Loading batch..."):
        batch = _locate(appctx, project_id, batch_id, batch_name)

    if exit_status:
        if batch.status is None:
            die("no status returned", code=EXIT_FAILURE)
        code = _GET_EXIT_CODES.get(batch.status)
        if code is None:
            die(f"unknown batch status: {batch.status}", code=EXIT_FAILURE)
        raise typer.Exit(code)

    out.json(dict(batch.raw))


@app.command("list")
def list_(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    limit: int = typer.Option(50, "--limit", help="Maximum number of batches to show"),
):
    """
    List the most recent batches of a project.
    """
    project = _require_project(project)
    appctx = app_context(ctx)
    project_id = _resolve_project(appctx, project)

    batches: list[Batch] = []
    page_token: str | None = None
    try:
        with out.status("Loading batches..."):
            while len(batches) < limit:
                page = appctx.adapter.list_batches(project_id, page_token=page_token)
                batches.extend(page.items)
                if not page.has_more:
                    break
                page_token = page.next_page_token
    except SimopsError as exc:
        exit_from_exc(exc, message=str(exc))

    if not batches:
        warn_exit("No batches found", code=0)
    out.batches_table(batches[:limit], title="Batches")


@app.command("tests")
def tests(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    batch_id: str | None = BatchIdOpt,
    batch_name: str | None = BatchNameOpt,
    as_json: bool = typer.Option(False, "--json", help="Print tests as JSON"),
):
    """
    List the tests (jobs) in a batch.
    """
    _check_selector(batch_id, batch_name)
    project = _require_project(project)
    appctx = app_context(ctx)
    project_id = _resolve_project(appctx, project)
    batch = _locate(appctx, project_id, batch_id, batch_name)

    try:
        with out.status("Loading tests..."):
            jobs = list_batch_jobs(appctx.adapter, project_id, batch.batch_id)
    except SimopsError as exc:
        exit_from_exc(exc, message=f"unable to list tests: {exc}")

    if as_json:
        out.json([dict(j.raw) for j in jobs])
        return
    if not jobs:
        warn_exit("No tests found", code=0)
    out.jobs_table(jobs, title=f"Tests of {batch.label}")


app.command("jobs", hidden=True)(tests)


@app.command()
def logs(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    batch_id: str | None = BatchIdOpt,
    batch_name: str | None = BatchNameOpt,
):
    """
    List the logs associated with a batch.
    """
    _check_selector(batch_id, batch_name)
    project = _require_project(project)
    appctx = app_context(ctx)
    project_id = _resolve_project(appctx, project)
    batch = _locate(appctx, project_id, batch_id, batch_name)

    try:
        with out.status("Loading logs..."):
            records = list_batch_logs(appctx.adapter, project_id, batch.batch_id)
    except SimopsError as exc:
        exit_from_exc(exc, message=f"unable to list logs: {exc}")

    if not records:
        warn_exit("No logs found", code=0)
    out.logs_table(records, title=f"Logs of {batch.label}")


@app.command()
def wait(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    batch_id: str | None = BatchIdOpt,
    batch_name: str | None = BatchNameOpt,
    wait_timeout: str = WaitTimeoutOpt,
    poll_every: str = PollEveryOpt,
):
    """
    Wait for batch completion.

    Exit codes: 0 SUCCEEDED, 2 ERROR, 5 CANCELLED, 6 timed out, 1 internal error.
    """
    _check_selector(batch_id, batch_name)
    project = _require_project(project)
    timeout, poll_interval = _durations(wait_timeout, poll_every)
    appctx = app_context(ctx)
    project_id = _resolve_project(appctx, project)

    cancel = threading.Event()
    with _interrupts(cancel), BatchProgress() as progress:
        try:
            batch = wait_for_batch(
                appctx.adapter,
                project_id,
                batch_id=batch_id,
                batch_name=batch_name,
                timeout=timeout,
                poll_interval=poll_interval,
                on_poll=partial(progress.on_poll, 0),
                cancel=cancel,
            )
        except (BatchTimeoutError, SuperviseCancelled) as exc:
            result = SuperviseResult(batch=exc.batch, error=exc)
        except SimopsError as exc:
            result = SuperviseResult(error=exc)
        else:
            result = SuperviseResult(batch=batch)

    _finish(appctx, project_id, result)


@app.command()
def cancel(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    batch_id: str | None = BatchIdOpt,
    batch_name: str | None = BatchNameOpt,
    yes: bool = YesOpt,
):
    """
    Cancel a batch.
    """
    _check_selector(batch_id, batch_name)
    project = _require_project(project)
    appctx = app_context(ctx)
    project_id = _resolve_project(appctx, project)
    batch = _locate(appctx, project_id, batch_id, batch_name)

    if not yes and not out.confirm(f"Cancel batch {batch.label}?"):
        ok_exit("Aborted")

    try:
        appctx.adapter.cancel_batch(project_id, batch.batch_id)
    except SimopsError as exc:
        exit_from_exc(exc, message=f"failed to cancel batch: {exc}")
    out.success("Batch cancelled successfully!")


@app.command()
def rerun(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    batch_id: str | None = BatchIdOpt,
    batch_name: str | None = BatchNameOpt,
    test_ids: str | None = typer.Option(
        None,
        "--test-ids",
        "--job-ids",
        help="Comma-separated test IDs to rerun. Empty reruns only the batch metrics.",
    ),
):
    """
    Rerun a subset of tests in a batch.
    """
    _check_selector(batch_id, batch_name)
    project = _require_project(project)
    try:
        job_ids = [parse_uuid(i, what="test ID") for i in parse_id_list(test_ids)]
    except UsageError as exc:
        exit_from_exc(exc, message=str(exc))

    appctx = app_context(ctx)
    project_id = _resolve_project(appctx, project)
    batch = _locate(appctx, project_id, batch_id, batch_name)

    try:
        with out.status("Submitting rerun..."):
            new_batch_id = submit_rerun(appctx.adapter, project_id, batch.batch_id, job_ids)
    except SimopsError as exc:
        exit_from_exc(exc, message=str(exc))

    out.success("Batch rerun successfully!")
    out.kv({"Rerun batch ID": new_batch_id})


@app.command()
def supervise(
    ctx: typer.Context,
    project: str | None = ProjectOpt,
    batch_id: str | None = BatchIdOpt,
    batch_name: str | None = BatchNameOpt,
    max_rerun_attempts: int | None = typer.Option(
        None,
        "--max-rerun-attempts",
        help="Maximum number of rerun attempts for failed tests (at least 1)",
    ),
    rerun_max_failure_percent: float | None = typer.Option(
        None,
        "--rerun-max-failure-percent",
        help="Do not rerun when more than this percentage of tests failed (0-100]",
    ),
    rerun_on_states: str | None = typer.Option(
        None,
        "--rerun-on-states",
        help="Comma-separated test results that trigger a rerun: Warning, Error, Blocker",
    ),
    wait_timeout: str = WaitTimeoutOpt,
    poll_every: str = PollEveryOpt,
    total_timeout: str | None = typer.Option(
        None,
        "--total-timeout",
        help="Optional overall time budget across all rerun generations",
    ),
    cancel_on_interrupt: bool = typer.Option(
        False,
        "--cancel-on-interrupt",
        help="Cancel the batch being watched when interrupted (SIGINT/SIGTERM)",
    ),
):
    """
    Wait on batch completion and rerun failed tests.

    The wait timeout applies to each generation and resets after a rerun.
    Exit codes: 0 SUCCEEDED, 2 ERROR, 5 CANCELLED, 6 timed out, 1 internal error.
    """
    project = _require_project(project)
    for flag, value in (
        ("--max-rerun-attempts", max_rerun_attempts),
        ("--rerun-max-failure-percent", rerun_max_failure_percent),
        ("--rerun-on-states", rerun_on_states),
    ):
        if value is None:
            die(f"required flag {flag} not set", code=EXIT_FAILURE)
    _check_selector(batch_id, batch_name)
    timeout, poll_interval = _durations(wait_timeout, poll_every)

    # Validate everything before the first network call.
    try:
        params = SuperviseParams.build(
            project_id=project,
            batch_id=batch_id,
            batch_name=batch_name,
            max_rerun_attempts=max_rerun_attempts,
            rerun_max_failure_percent=rerun_max_failure_percent,
            rerun_on_states=rerun_on_states,
            timeout=timeout,
            poll_interval=poll_interval,
            total_timeout=parse_duration(total_timeout) if total_timeout else None,
        )
    except ValueError as exc:
        exit_from_exc(exc, message=str(exc))

    appctx = app_context(ctx)
    params = replace(params, project_id=_resolve_project(appctx, project))

    cancel = threading.Event()
    with _interrupts(cancel), BatchProgress() as progress:
        result = core_supervise(appctx.adapter, params, reporter=progress, cancel=cancel)

    _finish(appctx, params.project_id, result, cancel_batch=cancel_on_interrupt)
