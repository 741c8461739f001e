"""Application context management for the CLI."""

from dataclasses import dataclass

import httpx
import typer

from simops.cli.common.exits import die
from simops.core.adapters.platform import PlatformAdapter
from simops.core.auth import get_client
from simops.core.errors import AuthError


@dataclass
class CliSettings:
    """Connection options collected by a command group callback."""

    profile: str | None = None
    url: str | None = None


@dataclass
class AppContext:
    """Application context holding the platform client and adapter."""

    profile: str | None
    client: httpx.Client
    adapter: PlatformAdapter


def build_context(profile: str | None, url: str | None = None) -> AppContext:
    """Build and return the application context with platform client and adapter.

    Args:
        profile: Optional simops profile name to use for authentication.
        url: Optional API URL overriding the configured one.

    Returns:
        AppContext: Application context with configured client and adapter.
    """
    try:
        client = get_client(profile, url)
    except AuthError as exc:
        die(str(exc), code=1)
    return AppContext(profile=profile, client=client, adapter=PlatformAdapter(client))


def app_context(ctx: typer.Context) -> AppContext:
    """
    Return the context for this invocation, authenticating on first use.

    Group callbacks only record connection settings so that `--help` and
    argument errors never need credentials.
    """
    if isinstance(ctx.obj, AppContext):
        return ctx.obj
    settings = ctx.obj if isinstance(ctx.obj, CliSettings) else CliSettings()
    appctx = build_context(settings.profile, settings.url)
    ctx.obj = appctx
    ctx.call_on_close(appctx.client.close)
    return appctx
