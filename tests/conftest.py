from __future__ import annotations

import sys
import uuid
from pathlib import Path

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from simops.core.errors import NotFoundError  # noqa: E402
from simops.core.models import Batch, Job, Page, Project  # noqa: E402

PROJECT_ID = "7b1c3f52-8d0e-4d7e-9a44-0f3f1c2b9e10"


def new_id() -> str:
    return str(uuid.uuid4())


class FakeClock:
    """Deterministic monotonic clock; sleeping advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakePlatform:
    """
    In-memory stand-in for the platform adapter.

    `statuses[batch_id]` is the sequence of statuses returned by successive
    get_batch calls; the last one repeats. `rerun_responses` is consumed one
    item per rerun call: a string is the new batch id, an exception is raised.
    """

    def __init__(self) -> None:
        self.statuses: dict[str, list[str | None]] = {}
        self.names: dict[str, str] = {}
        self.jobs: dict[str, list[Job]] = {}
        self.batch_pages: list[list[Batch]] = []
        self.rerun_responses: list[str | Exception] = []
        self.calls: list[tuple] = []
        self.cancelled: list[str] = []

    def add_batch(
        self,
        statuses: list[str | None],
        *,
        name: str | None = None,
        jobs: dict[str, str | None] | None = None,
        batch_id: str | None = None,
    ) -> str:
        batch_id = batch_id or new_id()
        self.statuses[batch_id] = list(statuses)
        if name:
            self.names[batch_id] = name
        if jobs is not None:
            self.jobs[batch_id] = [
                Job(job_id=job_id, conflated_status=status) for job_id, status in jobs.items()
            ]
        return batch_id

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def _batch(self, batch_id: str) -> Batch:
        seq = self.statuses[batch_id]
        status = seq.pop(0) if len(seq) > 1 else seq[0]
        return Batch(
            batch_id=batch_id,
            friendly_name=self.names.get(batch_id),
            status=status,
            project_id=PROJECT_ID,
        )

    def get_batch(self, project_id: str, batch_id: str) -> Batch:
        self.calls.append(("get_batch", batch_id))
        if batch_id not in self.statuses:
            raise NotFoundError(f"unable to retrieve batch: not found ({batch_id})")
        return self._batch(batch_id)

    def list_batches(
        self, project_id: str, *, page_token: str | None = None, order_by: str = "timestamp"
    ) -> Page[Batch]:
        self.calls.append(("list_batches", page_token, order_by))
        index = int(page_token or 0)
        if not self.batch_pages:
            return Page(items=[])
        items = [
            self._batch(b.batch_id) if b.batch_id in self.statuses else b
            for b in self.batch_pages[index]
        ]
        more = index + 1 < len(self.batch_pages)
        return Page(items=items, next_page_token=str(index + 1) if more else None)

    def list_jobs(
        self,
        project_id: str,
        batch_id: str,
        *,
        page_size: int = 100,
        page_token: str | None = None,
    ) -> Page[Job]:
        self.calls.append(("list_jobs", batch_id, page_size, page_token))
        jobs = self.jobs.get(batch_id, [])
        start = int(page_token or 0)
        end = start + page_size
        return Page(
            items=jobs[start:end],
            next_page_token=str(end) if end < len(jobs) else "",
        )

    def rerun_batch(self, project_id: str, batch_id: str, job_ids: list[str]) -> str:
        self.calls.append(("rerun_batch", batch_id, list(job_ids)))
        response = self.rerun_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def cancel_batch(self, project_id: str, batch_id: str) -> None:
        self.calls.append(("cancel_batch", batch_id))
        self.cancelled.append(batch_id)

    def get_project(self, project_id: str) -> Project:
        if project_id != PROJECT_ID:
            raise NotFoundError(f"unable to retrieve project: not found ({project_id})")
        return Project(project_id=PROJECT_ID, name="autonomy")

    def list_projects(self, *, page_size=100, page_token=None, order_by="timestamp"):
        return Page(items=[Project(project_id=PROJECT_ID, name="autonomy")])


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
