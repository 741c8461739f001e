"""CLI application for simulation platform operations."""

import typer

from simops.cli.commands.batches import app as batches_app
from simops.cli.commands.projects import app as projects_app

app = typer.Typer(
    help="simops - command line client for the simulation and test platform",
    no_args_is_help=True,
)

app.add_typer(
    batches_app,
    name="batches",
    help="Inspect, wait on, rerun and supervise batches.",
)
app.add_typer(batches_app, name="batch", hidden=True)
app.add_typer(projects_app, name="projects", help="Look up projects.")
app.add_typer(projects_app, name="project", hidden=True)


if __name__ == "__main__":
    app()
