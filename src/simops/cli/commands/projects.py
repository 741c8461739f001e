"""Commands for looking up projects."""

import typer

from simops.cli.common.context import CliSettings, app_context
from simops.cli.common.exits import die, exit_from_exc, warn_exit
from simops.cli.common.options import ProfileOpt, ProjectOpt, UrlOpt
from simops.cli.common.output import out
from simops.core.errors import SimopsError
from simops.core.projects import list_all_projects, resolve_project_id

app = typer.Typer(
    help="Look up projects",
    no_args_is_help=True,
)


@app.callback()
def _init(
    ctx: typer.Context,
    profile: str | None = ProfileOpt,
    url: str | None = UrlOpt,
):
    """Record connection settings; clients are built on first use."""
    ctx.obj = CliSettings(profile=profile, url=url)


@app.command("list")
def list_(ctx: typer.Context):
    """
    List projects.
    """
    appctx = app_context(ctx)
    try:
        with out.status("Loading projects..."):
            projects = list_all_projects(appctx.adapter)
    except SimopsError as exc:
        exit_from_exc(exc, message=f"failed to list projects: {exc}")

    if not projects:
        warn_exit("No projects found", code=0)
    out.projects_table(projects)


@app.command()
def get(ctx: typer.Context, project: str | None = ProjectOpt):
    """
    Get details about a project, by name or ID.
    """
    if not project:
        die("--project is required", code=1)
    appctx = app_context(ctx)
    try:
        project_id = resolve_project_id(appctx.adapter, project)
        found = appctx.adapter.get_project(project_id)
    except SimopsError as exc:
        exit_from_exc(exc, message=str(exc))

    out.kv(
        {
            "Project ID": found.project_id,
            "Name": found.name,
            "Description": found.description or "",
        }
    )
