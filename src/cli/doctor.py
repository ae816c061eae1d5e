"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from adapters.auth import TOKENINFO_URL
from adapters.http_client import build_async_client
from cli.session import CliState, resolve_context
from cli.ui_components import print_banner
from core.config import AppSettings, read_preferences
from core.domain.errors import FlowCtlError

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_http(url: str, settings: AppSettings, proxy_url: str | None) -> tuple[bool, str]:
    try:
        async with build_async_client(settings, proxy_url=proxy_url) as client:
            response = await client.get(url)
        return True, f"HTTP {response.status_code}"
    except Exception as exc:
        return False, str(exc)


@app.command()
def run(ctx: typer.Context) -> None:
    """Run baseline diagnostics and show recommended fixes."""

    state = ctx.obj if isinstance(ctx.obj, CliState) else CliState()
    settings = state.settings
    prefs = read_preferences(settings.preferences_path)

    print_banner(_console)
    table = Table(title="flowctl Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    # Config
    prefs_exists = settings.preferences_path.exists()
    table.add_row("Preferences", "OK" if prefs_exists else "OPTIONAL", str(settings.preferences_path))
    try:
        request_ctx = resolve_context(state)
        table.add_row("Project/region", "OK", f"{request_ctx.project_id} / {request_ctx.region} ({request_ctx.api.value})")
    except FlowCtlError as exc:
        table.add_row("Project/region", "FAIL", str(exc))

    if state.token:
        table.add_row("Credentials", "OK", "--token")
    elif prefs.token:
        table.add_row("Credentials", "OK", "cached token in preferences")
    elif state.account or settings.google_application_credentials:
        table.add_row("Credentials", "OK", f"service account {state.account or settings.google_application_credentials}")
    elif state.metadata_token:
        table.add_row("Credentials", "OK", "metadata server")
    else:
        table.add_row("Credentials", "FAIL", "no token, service account or --metadata-token")

    table.add_row("Dry run", "ON" if settings.dry_run else "OFF", "FLOWCTL_DRY_RUN")
    table.add_row(
        "Rate limits",
        "OK",
        f"integrations {settings.integrations_rate_per_second}/s, connectors {settings.connectors_rate_per_second}/s",
    )
    table.add_row("Proxy", "OK" if prefs.proxy_url else "NONE", prefs.proxy_url or "-")

    # Connectivity (best-effort)
    ok_http, detail_http = asyncio.run(_check_http(TOKENINFO_URL, settings, prefs.proxy_url))
    table.add_row("HTTP connectivity", "OK" if ok_http else "FAIL", detail_http)

    _console.print(table)

    if not ok_http and not prefs.proxy_url:
        _console.print("\n[yellow]Note:[/yellow] behind a corporate proxy use `flowctl prefs set --proxy URL`.")
