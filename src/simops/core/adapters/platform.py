from __future__ import annotations

from typing import Any, Callable, TypeVar

import httpx

from simops.core.errors import (
    ConflictError,
    NotFoundError,
    ProtocolError,
    TransportError,
)
from simops.core.models import Batch, Job, Page, Project

T = TypeVar("T")


class PlatformAdapter:
    """Adapter around the platform's versioned REST API."""

    def __init__(self, client: httpx.Client):
        """Create an adapter on top of an authenticated httpx client."""
        self.client = client

    def _request(
        self,
        method: str,
        path: str,
        *,
        what: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (None when empty)."""
        query = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = self.client.request(method, path, params=query or None, json=json)
        except httpx.HTTPError as exc:
            raise TransportError(f"{what}: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"{what}: not found ({path})")
        if response.status_code == 409:
            raise ConflictError(f"{what}: conflict ({path})")
        if not response.is_success:
            raise TransportError(
                f"{what}: received status {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"{what}: response is not valid JSON") from exc

    def _page(
        self,
        path: str,
        *,
        what: str,
        key: str,
        parse: Callable[[dict[str, Any]], T],
        params: dict[str, Any],
    ) -> Page[T]:
        """Fetch one page of a token-paginated listing."""
        payload = self._request("GET", path, what=what, params=params)
        if not isinstance(payload, dict):
            raise ProtocolError(f"{what}: empty response")
        items = payload.get(key)
        if items is None:
            raise ProtocolError(f"{what}: response has no '{key}'")
        return Page(
            items=[parse(item) for item in items],
            next_page_token=payload.get("nextPageToken") or None,
        )

    def get_project(self, project_id: str) -> Project:
        """Return a project by id."""
        payload = self._request("GET", f"/projects/{project_id}", what="unable to retrieve project")
        if not isinstance(payload, dict):
            raise ProtocolError("unable to retrieve project: empty response")
        return Project.from_api(payload)

    def list_projects(
        self,
        *,
        page_size: int = 100,
        page_token: str | None = None,
        order_by: str = "timestamp",
    ) -> Page[Project]:
        """Return one page of projects."""
        return self._page(
            "/projects",
            what="failed to list projects",
            key="projects",
            parse=Project.from_api,
            params={"pageSize": page_size, "pageToken": page_token, "orderBy": order_by},
        )

    def get_batch(self, project_id: str, batch_id: str) -> Batch:
        """Return a batch by id."""
        payload = self._request(
            "GET",
            f"/projects/{project_id}/batches/{batch_id}",
            what="unable to retrieve batch",
        )
        if not isinstance(payload, dict):
            raise ProtocolError("unable to retrieve batch: empty response")
        return Batch.from_api(payload)

    def list_batches(
        self,
        project_id: str,
        *,
        page_token: str | None = None,
        order_by: str = "timestamp",
    ) -> Page[Batch]:
        """Return one page of the project's batches."""
        return self._page(
            f"/projects/{project_id}/batches",
            what="unable to list batches",
            key="batches",
            parse=Batch.from_api,
            params={"pageToken": page_token, "orderBy": order_by},
        )

    def list_jobs(
        self,
        project_id: str,
        batch_id: str,
        *,
        page_size: int = 100,
        page_token: str | None = None,
    ) -> Page[Job]:
        """Return one page of the jobs in a batch."""
        return self._page(
            f"/projects/{project_id}/batches/{batch_id}/jobs",
            what="unable to list jobs",
            key="jobs",
            parse=Job.from_api,
            params={"pageSize": page_size, "pageToken": page_token},
        )

    def list_batch_logs(
        self,
        project_id: str,
        batch_id: str,
        *,
        page_size: int = 100,
        page_token: str | None = None,
    ) -> Page[dict[str, Any]]:
        """Return one page of the log records of a batch."""
        return self._page(
            f"/projects/{project_id}/batches/{batch_id}/logs",
            what="unable to list logs",
            key="logs",
            parse=dict,
            params={"pageSize": page_size, "pageToken": page_token},
        )

    def rerun_batch(self, project_id: str, batch_id: str, job_ids: list[str]) -> str:
        """Submit a rerun of job_ids and return the new batch id."""
        payload = self._request(
            "POST",
            f"/projects/{project_id}/batches/{batch_id}/rerun",
            what="failed to rerun batch",
            json={"jobIDs": list(job_ids)},
        )
        new_id = (payload or {}).get("batchID") if isinstance(payload, dict) else None
        if not new_id:
            raise ProtocolError("failed to rerun batch: response has no batch ID")
        return str(new_id)

    def cancel_batch(self, project_id: str, batch_id: str) -> None:
        """Cancel a running batch."""
        self._request(
            "POST",
            f"/projects/{project_id}/batches/{batch_id}/cancel",
            what="failed to cancel batch",
        )
