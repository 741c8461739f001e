"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from simops.cli.common.tui_style import QUESTIONARY_STYLE_CONFIRM

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)
err_console = Console(theme=_THEME, stderr=True)

_STATUS_STYLES = {
    "SUCCEEDED": "ok",
    "PASSED": "ok",
    "ERROR": "err",
    "BLOCKER": "err",
    "CANCELLED": "err",
    "WARNING": "warn",
}


def status_style(status: str | None) -> str:
    """Return the theme style used to render a batch or job status."""
    if not status:
        return "meta"
    return _STATUS_STYLES.get(status, "warn")


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def _q_try(self, fn, *args, **kwargs):
        """Call questionary prompts and drop unsupported kwargs on older versions."""
        try:
            return fn(*args, **kwargs)
        except TypeError:
            for k in ("pointer", "auto_enter"):
                kwargs.pop(k, None)
            return fn(*args, **kwargs)

    def _q(self, message: str) -> str:
        """Prefix Questionary prompts to be SIMOPS consistent."""
        return f"[SIMOPS] {message}"

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        err_console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        err_console.print(f"[err]✗[/] {msg}")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {v}")

    def json(self, data: Any) -> None:
        """Print data as indented JSON."""
        console.print_json(json.dumps(data, default=str))

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """
        Ask the user for confirmation using a standardized Questionary prompt.

        Args:
            message: Confirmation question shown to the user.
            default: Default answer if the user just presses enter.

        Returns:
            True if the user confirms, False otherwise.
        """
        # Questionary renders `instruction=...` inline next to the echoed answer.
        console.print("[meta]Use y/n then Enter[/]")

        prompt = self._q_try(
            questionary.confirm,
            self._q(message),
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="✦",
            auto_enter=False,
        )
        return bool(prompt.ask())

    def batch_summary(self, batch: Any) -> None:
        """
        Expects an object with .batch_id .friendly_name .status
        (like simops.core.models.Batch)
        """
        style = status_style(batch.status)
        self.kv(
            {
                "Batch ID": batch.batch_id,
                "Name": batch.friendly_name or "",
                "Status": f"[{style}]{batch.status or 'UNKNOWN'}[/{style}]",
            }
        )

    def batches_table(self, batches: Iterable[Any], title: str = "Batches") -> None:
        """
        Expects objects with .batch_id .friendly_name .status .creation_timestamp
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Batch ID", style="ok", no_wrap=True)
        t.add_column("Name")
        t.add_column("Status")
        t.add_column("Created", style="meta")

        for b in batches:
            style = status_style(b.status)
            t.add_row(
                b.batch_id,
                b.friendly_name or "",
                f"[{style}]{b.status or ''}[/{style}]",
                b.creation_timestamp or "",
            )

        console.print(t)

    def jobs_table(self, jobs: Iterable[Any], title: str = "Tests") -> None:
        """
        Expects objects with .job_id .experience_id .status .conflated_status
        (like simops.core.models.Job)
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Test ID", style="ok", no_wrap=True)
        t.add_column("Experience ID", style="meta", no_wrap=True)
        t.add_column("Status")
        t.add_column("Result")

        for j in jobs:
            style = status_style(j.conflated_status)
            t.add_row(
                j.job_id or "",
                j.experience_id or "",
                j.status or "",
                f"[{style}]{j.conflated_status or ''}[/{style}]",
            )

        console.print(t)

    def projects_table(self, projects: Iterable[Any], title: str = "Projects") -> None:
        """Expects objects with .project_id .name .description"""
        t = Table(title=title, show_lines=False)
        t.add_column("Project ID", style="ok", no_wrap=True)
        t.add_column("Name")
        t.add_column("Description", style="meta")

        for p in projects:
            t.add_row(p.project_id, p.name, p.description or "")

        console.print(t)

    def logs_table(self, logs: Iterable[Mapping[str, Any]], title: str = "Logs") -> None:
        """Render batch log records (fileName, logType, fileSize)."""
        t = Table(title=title, show_lines=False)
        t.add_column("File", style="ok")
        t.add_column("Type", style="meta")
        t.add_column("Size", justify="right")

        for log in logs:
            t.add_row(
                str(log.get("fileName", "") or ""),
                str(log.get("logType", "") or ""),
                str(log.get("fileSize", "") or ""),
            )

        console.print(t)


out = Out()
