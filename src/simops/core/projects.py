"""Project lookup logic.

Users may refer to a project by its id or by its name. Names can themselves
look like UUIDs, so an id that does not resolve falls back to a name search.
"""

from __future__ import annotations

import uuid
from typing import Protocol

from simops.core.errors import NotFoundError, ProtocolError
from simops.core.models import Page, Project


class ProjectsAdapter(Protocol):
    """Interface for project lookups used by the core domain."""

    def get_project(self, project_id: str) -> Project:
        """Return one project; raise NotFoundError on 404."""
        ...

    def list_projects(
        self,
        *,
        page_size: int = 100,
        page_token: str | None = None,
        order_by: str = "timestamp",
    ) -> Page[Project]:
        """Return one page of projects."""
        ...


def list_all_projects(adapter: ProjectsAdapter) -> list[Project]:
    """Return every project visible to the current principal."""
    projects: list[Project] = []
    page_token: str | None = None
    while True:
        page = adapter.list_projects(page_token=page_token)
        projects.extend(page.items)
        if not page.has_more:
            return projects
        page_token = page.next_page_token


def find_project_id(adapter: ProjectsAdapter, identifier: str) -> str | None:
    """
    Return the id of the project matching identifier, or None.

    The identifier is first tried as a project id; if it is not a UUID or no
    project has that id, projects are searched by exact name.
    """
    identifier = identifier.strip()
    try:
        candidate = str(uuid.UUID(identifier))
    except ValueError:
        candidate = None

    if candidate is not None:
        try:
            return adapter.get_project(candidate).project_id
        except NotFoundError:
            pass

    page_token: str | None = None
    while True:
        page = adapter.list_projects(page_token=page_token)
        for project in page.items:
            if not project.project_id:
                raise ProtocolError("project ID is empty")
            if project.name == identifier:
                return project.project_id
        if not page.has_more:
            return None
        page_token = page.next_page_token


def resolve_project_id(adapter: ProjectsAdapter, identifier: str) -> str:
    """
    Resolve a project name or id to a project id.

    Raises:
        NotFoundError: If no project matches.
    """
    project_id = find_project_id(adapter, identifier)
    if project_id is None:
        raise NotFoundError(f"failed to find project with name or ID: {identifier}")
    return project_id
