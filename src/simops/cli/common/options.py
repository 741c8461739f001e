"""Common CLI options for the CLI."""

import typer

ProfileOpt = typer.Option(
    None,
    "--profile",
    "-p",
    help="simops profile (from ~/.simops/config.ini)",
)

UrlOpt = typer.Option(
    None,
    "--url",
    help="The URL of the API (overrides SIMOPS_URL and the profile)",
)

ProjectOpt = typer.Option(
    None,
    "--project",
    "--project-id",
    "--project-name",
    help="The name or ID of the project",
)

BatchIdOpt = typer.Option(
    None,
    "--batch-id",
    "--batch",
    "--id",
    help="The ID of the batch",
)

BatchNameOpt = typer.Option(
    None,
    "--batch-name",
    help=(
        "The name of the batch (e.g. rejoicing-aquamarine-starfish). If the name "
        "is not unique, the most recent batch with that name is used."
    ),
)

WaitTimeoutOpt = typer.Option(
    "1h",
    "--wait-timeout",
    help="How long to wait for a batch to finish, as a duration (e.g. 1h, 30m, 90s)",
)

PollEveryOpt = typer.Option(
    "30s",
    "--poll-every",
    help="Interval between batch status checks, as a duration",
)

ExitStatusOpt = typer.Option(
    False,
    "--exit-status",
    help=(
        "Exit with a code for the batch status: 0 SUCCEEDED, 2 ERROR, 3 SUBMITTED, "
        "4 running, 5 CANCELLED"
    ),
)

YesOpt = typer.Option(
    False,
    "--yes",
    "-y",
    help="Do not ask for confirmation",
)
