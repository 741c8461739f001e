"""Batch lookup and listing logic.

This module resolves user supplied batch references (an id or a friendly
name) to concrete batch records and enumerates the jobs and logs of a batch.
It is intentionally free of CLI concerns and talks to the platform only
through the `BatchesAdapter` protocol, so the same functions back the CLI,
automation and tests.
"""

from __future__ import annotations

import uuid
from typing import Any, Protocol

from simops.core.errors import NotFoundError, UsageError
from simops.core.models import Batch, Job, Page

JOBS_PAGE_SIZE = 100


class BatchesAdapter(Protocol):
    """Interface for batch operations used by the core domain."""

    def get_batch(self, project_id: str, batch_id: str) -> Batch:
        """Return one batch; raise NotFoundError on 404."""
        ...

    def list_batches(
        self,
        project_id: str,
        *,
        page_token: str | None = None,
        order_by: str = "timestamp",
    ) -> Page[Batch]:
        """Return one page of the project's batches, newest first."""
        ...

    def list_jobs(
        self,
        project_id: str,
        batch_id: str,
        *,
        page_size: int = JOBS_PAGE_SIZE,
        page_token: str | None = None,
    ) -> Page[Job]:
        """Return one page of the jobs in a batch."""
        ...


def parse_uuid(value: str, *, what: str) -> str:
    """
    Validate that value is a UUID and return its canonical string form.

    Raises:
        UsageError: If value does not parse as a UUID.
    """
    try:
        return str(uuid.UUID(value.strip()))
    except (AttributeError, ValueError) as exc:
        raise UsageError(f"unable to parse {what}: {value!r}") from exc


def locate_batch(
    adapter: BatchesAdapter,
    project_id: str,
    batch_id: str | None = None,
    batch_name: str | None = None,
) -> Batch:
    """
    Resolve a batch reference to a fresh batch record.

    Exactly one of batch_id or batch_name must be given. Lookups by id are a
    single point read. Lookups by name page through the project's batches
    newest-first and return the first exact friendly-name match, so when
    several batches share a name the most recent one wins. That choice is
    not stable across invocations: a newer batch with the same name will be
    picked up by the next call.

    Args:
        adapter: Platform adapter used to query batches.
        project_id: Project the batch belongs to.
        batch_id: Batch identifier (UUID string).
        batch_name: Batch friendly name.

    Returns:
        The batch as currently seen by the platform.

    Raises:
        UsageError: If neither or both selectors are given, or the id is malformed.
        NotFoundError: If no batch matches.
    """
    if batch_id and batch_name:
        raise UsageError("specify either the batch ID or the batch name, not both")
    if batch_id:
        return adapter.get_batch(project_id, parse_uuid(batch_id, what="batch ID"))
    if batch_name:
        return _find_batch_by_name(adapter, project_id, batch_name)
    raise UsageError("must specify either the batch ID or the batch name")


def _find_batch_by_name(adapter: BatchesAdapter, project_id: str, name: str) -> Batch:
    page_token: str | None = None
    while True:
        page = adapter.list_batches(project_id, page_token=page_token, order_by="timestamp")
        for batch in page.items:
            if batch.friendly_name == name:
                return batch
        if not page.has_more:
            raise NotFoundError(f"unable to find batch: {name}")
        page_token = page.next_page_token


def list_batch_jobs(
    adapter: BatchesAdapter,
    project_id: str,
    batch_id: str,
    page_size: int = JOBS_PAGE_SIZE,
) -> list[Job]:
    """Return every job of a batch, accumulating all pages."""
    jobs: list[Job] = []
    page_token: str | None = None
    while True:
        page = adapter.list_jobs(
            project_id, batch_id, page_size=page_size, page_token=page_token
        )
        jobs.extend(page.items)
        if not page.has_more:
            return jobs
        page_token = page.next_page_token


class BatchLogsAdapter(Protocol):
    """Interface for listing the log files attached to a batch."""

    def list_batch_logs(
        self,
        project_id: str,
        batch_id: str,
        *,
        page_size: int = JOBS_PAGE_SIZE,
        page_token: str | None = None,
    ) -> Page[dict[str, Any]]:
        """Return one page of batch log records."""
        ...


def list_batch_logs(
    adapter: BatchLogsAdapter, project_id: str, batch_id: str
) -> list[dict[str, Any]]:
    """Return every log record of a batch."""
    logs: list[dict[str, Any]] = []
    page_token: str | None = None
    while True:
        page = adapter.list_batch_logs(project_id, batch_id, page_token=page_token)
        logs.extend(page.items)
        if not page.has_more:
            return logs
        page_token = page.next_page_token
