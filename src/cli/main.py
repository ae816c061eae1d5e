"""CLI principal (Typer).

Por qué Typer:
- Subcomandos y flags tipados con ayuda generada automáticamente.
- Los comandos son síncronos y delegan en corrutinas con `asyncio.run`.

Estructura:
- `integrations ...`: operaciones sobre versiones y export/import masivo.
- `prefs ...`: preferencias persistidas (`~/.flowctl/config.json`).
- `doctor run`: diagnóstico del entorno.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import Progress

from adapters.integrations_api import VersionView, basic_info, load_json_document
from cli import doctor
from cli.logging_setup import setup_logging
from cli.session import CliState, Session, open_session
from cli.ui_components import build_descriptors_table, build_transfer_panel, print_json
from core.config import ApiEnvironment, AppSettings, read_preferences, update_preferences
from core.domain.errors import FlowCtlError
from core.domain.models import OverrideSpec
from core.domain.naming import DEFAULT_SEPARATOR, LEGACY_SEPARATOR
from core.services.transfer_pipeline import PipelineHooks, TransferOptions, TransferPipeline, TransferReport

app = typer.Typer(
    no_args_is_help=True,
    help="flowctl: manage, export and promote integration flows through the REST control plane.",
)
integrations_app = typer.Typer(no_args_is_help=True, help="Manage integration versions.")
prefs_app = typer.Typer(no_args_is_help=True, help="Read and update stored preferences.")

app.add_typer(integrations_app, name="integrations")
app.add_typer(prefs_app, name="prefs")
app.add_typer(doctor.app, name="doctor")

_console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    token: str | None = typer.Option(None, "--token", "-t", help="Access token (skips every other credential)."),
    account: Path | None = typer.Option(
        None, "--account", "-a", help="Service account JSON key file.", exists=True, dir_okay=False
    ),
    project: str | None = typer.Option(None, "--project", "-p", help="Project id (default: prefs)."),
    region: str | None = typer.Option(None, "--region", "-r", help="Region (default: prefs)."),
    api: ApiEnvironment | None = typer.Option(None, "--api", help="Control plane environment."),
    metadata_token: bool = typer.Option(False, "--metadata-token", help="Get the token from the metadata server."),
    skip_check: bool = typer.Option(False, "--skip-check", help="Do not validate the cached token."),
    print_output: bool = typer.Option(True, "--print-output/--no-print-output", help="Print API responses."),
    no_output: bool = typer.Option(False, "--no-output", help="Disable all logging."),
    suppress_warnings: bool = typer.Option(False, "--suppress-warnings", help="Hide warnings."),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging."),
) -> None:
    """Global options shared by every command."""

    settings = AppSettings()
    setup_logging(
        debug=debug or settings.debug,
        suppress_warnings=suppress_warnings,
        quiet=no_output or settings.skip_log,
    )
    ctx.obj = CliState(
        settings=settings,
        token=token,
        account=account,
        project=project,
        region=region,
        api=api,
        metadata_token=metadata_token,
        skip_check=skip_check,
        print_output=print_output,
        suppress_warnings=suppress_warnings,
    )


def _state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if not isinstance(state, CliState):
        state = CliState()
    return state


def _run(state: CliState, action: Callable[[Session], Awaitable[Any]]) -> Any:
    """Abre una sesión, ejecuta `action` y traduce errores a exit code 1."""

    async def runner() -> Any:
        async with open_session(state) as session:
            return await action(session)

    try:
        return asyncio.run(runner())
    except FlowCtlError as exc:
        _console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


def _emit(state: CliState, data: Any) -> None:
    if state.print_output:
        print_json(_console, data)


def _read_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        _console.print(f"[red]Error:[/red] cannot read {path}: {exc}")
        raise typer.Exit(code=1) from exc


def _view(basic: bool, minimal: bool, overrides: bool) -> VersionView:
    if sum((basic, minimal, overrides)) > 1:
        raise typer.BadParameter("cannot combine --basic, --minimal and --overrides")
    if basic:
        return VersionView.BASIC
    if minimal:
        return VersionView.MINIMAL
    if overrides:
        return VersionView.OVERRIDES
    return VersionView.FULL


# --- integrations -----------------------------------------------------------


@integrations_app.command("list")
def list_integrations(
    ctx: typer.Context,
    filter: str | None = typer.Option(None, "--filter", "-f", help="List filter."),
    order_by: str | None = typer.Option(None, "--order-by", help="Order expression."),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
) -> None:
    """List every integration (all pages)."""

    state = _state(ctx)

    async def action(session: Session) -> list[dict[str, Any]]:
        silent = session.ctx.silenced()
        return await session.integrations.enumerate_integrations(filter=filter, order_by=order_by, ctx=silent).collect()

    items = _run(state, action)
    if table:
        _console.print(build_descriptors_table(items))
    else:
        _emit(state, {"integrations": items})


@integrations_app.command("versions")
def list_versions(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Integration name."),
    filter: str | None = typer.Option(None, "--filter", "-f"),
    order_by: str | None = typer.Option(None, "--order-by"),
    basic: bool = typer.Option(False, "--basic", help="Only snapshot number and version id."),
) -> None:
    """List every version of an integration."""

    state = _state(ctx)

    async def action(session: Session) -> list[dict[str, Any]]:
        client = session.integrations
        items = await client.enumerate_versions(name, filter=filter, order_by=order_by, ctx=session.ctx.silenced()).collect()
        if basic:
            return [basic_info(item) for item in items]
        return items

    _emit(state, {"integrationVersions": _run(state, action)})


@integrations_app.command("get")
def get_version(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Integration name."),
    version: str | None = typer.Option(None, "--version", "-v", help="Version id."),
    snapshot: str | None = typer.Option(None, "--snapshot", "-s", help="Snapshot number."),
    userlabel: str | None = typer.Option(None, "--userlabel", "-u", help="User label."),
    basic: bool = typer.Option(False, "--basic", help="Only snapshot number and version id."),
    minimal: bool = typer.Option(False, "--minimal", help="External (promotable) definition."),
    overrides: bool = typer.Option(False, "--overrides", help="Extracted override template."),
) -> None:
    """Get one version by id, snapshot number or user label."""

    state = _state(ctx)
    view = _view(basic, minimal, overrides)
    if sum(x is not None for x in (version, snapshot, userlabel)) != 1:
        raise typer.BadParameter("exactly one of --version, --snapshot or --userlabel is required")

    async def action(session: Session) -> dict[str, Any]:
        client = session.integrations
        if version:
            return await client.get_version(name, version, view=view)
        if snapshot:
            return await client.get_by_snapshot(name, snapshot, view=view)
        return await client.get_by_userlabel(name, userlabel or "", view=view)

    result = _run(state, action)
    if view is not VersionView.FULL:
        _emit(state, result)


@integrations_app.command("create")
def create_version(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Integration name."),
    file: Path = typer.Option(..., "--file", "-f", exists=True, dir_okay=False, help="Definition JSON."),
    overrides_file: Path | None = typer.Option(
        None, "--overrides", "-o", exists=True, dir_okay=False, help="Overrides JSON."
    ),
    snapshot: str | None = typer.Option(None, "--snapshot", "-s"),
    userlabel: str | None = typer.Option(None, "--userlabel", "-u"),
    strict_overrides: bool = typer.Option(False, "--strict-overrides", help="Fail on override warnings."),
) -> None:
    """Create a new version (internal fields stripped, overrides merged)."""

    state = _state(ctx)
    content = _read_file(file)
    overrides_raw = _read_file(overrides_file) if overrides_file else None

    async def action(session: Session) -> dict[str, Any]:
        spec = OverrideSpec.from_json(overrides_raw) if overrides_raw else None
        return await session.integrations.create_version(
            name,
            content,
            overrides=spec,
            snapshot=snapshot,
            user_label=userlabel,
            strict_overrides=strict_overrides or session.settings.strict_overrides,
            suppress_warnings=state.suppress_warnings,
        )

    _run(state, action)


@integrations_app.command("upload")
def upload(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Integration name."),
    file: Path = typer.Option(..., "--file", "-f", exists=True, dir_okay=False, help="Upload envelope JSON."),
) -> None:
    """Upload a version from an envelope `{"content": ..., "fileFormat": ...}`."""

    state = _state(ctx)
    content = _read_file(file)
    _run(state, lambda session: session.integrations.upload(name, content))


@integrations_app.command("patch")
def patch_version(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    version: str = typer.Option(..., "--version", "-v"),
    file: Path = typer.Option(..., "--file", "-f", exists=True, dir_okay=False),
) -> None:
    """Patch an existing version."""

    state = _state(ctx)
    content = _read_file(file)
    _run(state, lambda session: session.integrations.patch_version(name, version, content))


@integrations_app.command("delete-version")
def delete_version(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    version: str = typer.Option(..., "--version", "-v"),
) -> None:
    """Delete one version."""

    state = _state(ctx)
    _run(state, lambda session: session.integrations.delete_version(name, version))


@integrations_app.command("publish")
def publish(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    version: str = typer.Option(..., "--version", "-v"),
    config_vars: Path | None = typer.Option(
        None, "--config-vars", exists=True, dir_okay=False, help="JSON with config parameter values."
    ),
) -> None:
    """Publish a version."""

    state = _state(ctx)
    config = load_json_document(_read_file(config_vars), what="config variables") if config_vars else None
    _run(state, lambda session: session.integrations.publish(name, version, config))


@integrations_app.command("unpublish")
def unpublish(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    version: str = typer.Option(..., "--version", "-v"),
) -> None:
    """Unpublish a version."""

    state = _state(ctx)
    _run(state, lambda session: session.integrations.unpublish(name, version))


@integrations_app.command("download")
def download(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    version: str = typer.Option(..., "--version", "-v"),
) -> None:
    """Download a version in its portable form."""

    state = _state(ctx)
    _run(state, lambda session: session.integrations.download(name, version))


def _progress_hooks(progress: Progress, description: str) -> PipelineHooks:
    """Una barra por operación: avanza con cada item, haya ido bien o mal."""

    task_id = progress.add_task(description, total=None)

    def advance(*_: object) -> None:
        progress.advance(task_id)

    return PipelineHooks(
        started=lambda total: progress.update(task_id, total=total),
        item_done=advance,
        item_failed=advance,
    )


def _finish_transfer(report: TransferReport) -> None:
    _console.print(build_transfer_panel(report))
    if not report.ok or report.cancelled:
        raise typer.Exit(code=1)


@integrations_app.command("export")
def export(
    ctx: typer.Context,
    folder: Path = typer.Option(..., "--folder", "-f", file_okay=False, help="Destination folder."),
    parallel: int | None = typer.Option(None, "--parallel", "-c", min=1, help="Worker count."),
    download_versions: bool = typer.Option(False, "--download", help="Store the :download payload."),
    legacy_separator: bool = typer.Option(False, "--legacy-separator", help="Use '_' in file names."),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Stop dispatching after the first failure."),
) -> None:
    """Export every version of every integration to FOLDER."""

    state = _state(ctx)
    options = TransferOptions(
        folder=folder,
        concurrency=parallel or state.settings.transfer_concurrency,
        separator=LEGACY_SEPARATOR if legacy_separator else state.settings.file_separator or DEFAULT_SEPARATOR,
        download=download_versions,
        fail_fast=fail_fast,
    )

    async def action(session: Session) -> TransferReport:
        with Progress(console=_console, transient=True) as progress:
            pipeline = TransferPipeline(session.integrations, hooks=_progress_hooks(progress, "Exporting"))
            return await pipeline.export_all(options)

    _finish_transfer(_run(state, action))


@integrations_app.command("import")
def import_(
    ctx: typer.Context,
    folder: Path = typer.Option(..., "--folder", "-f", exists=True, file_okay=False, help="Source folder."),
    name: str | None = typer.Option(None, "--name", "-n", help="Only import this integration."),
    parallel: int | None = typer.Option(None, "--parallel", "-c", min=1, help="Worker count."),
    legacy_separator: bool = typer.Option(False, "--legacy-separator", help="Files use '_' as separator."),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Stop dispatching after the first failure."),
) -> None:
    """Create a version for every version file in FOLDER."""

    state = _state(ctx)
    options = TransferOptions(
        folder=folder,
        concurrency=parallel or state.settings.transfer_concurrency,
        separator=LEGACY_SEPARATOR if legacy_separator else state.settings.file_separator or DEFAULT_SEPARATOR,
        fail_fast=fail_fast,
    )

    async def action(session: Session) -> TransferReport:
        with Progress(console=_console, transient=True) as progress:
            pipeline = TransferPipeline(session.integrations, hooks=_progress_hooks(progress, "Importing"))
            if name:
                return await pipeline.import_flow(name, options)
            return await pipeline.import_all(options)

    _finish_transfer(_run(state, action))


# --- prefs ------------------------------------------------------------------


@prefs_app.command("get")
def prefs_get(ctx: typer.Context) -> None:
    """Print stored preferences (the token is masked)."""

    state = _state(ctx)
    prefs = read_preferences(state.settings.preferences_path)
    data = prefs.model_dump(mode="json", by_alias=True, exclude_none=True)
    if "token" in data:
        data["token"] = data["token"][:8] + "..."
    print_json(_console, data)


@prefs_app.command("set")
def prefs_set(
    ctx: typer.Context,
    project: str | None = typer.Option(None, "--project", "-p"),
    region: str | None = typer.Option(None, "--region", "-r"),
    proxy: str | None = typer.Option(None, "--proxy", help="Proxy URL for every request."),
    nocheck: bool | None = typer.Option(None, "--nocheck/--check", help="Skip token validation."),
    api: str | None = typer.Option(None, "--api", help="prod, staging or autopush."),
) -> None:
    """Update stored preferences (only the given keys)."""

    state = _state(ctx)
    try:
        update_preferences(
            state.settings.preferences_path,
            default_project=project,
            region=region,
            proxy_url=proxy,
            nocheck=nocheck,
            api=api,
        )
    except ValidationError as exc:
        _console.print(f"[red]Error:[/red] invalid preference value: {exc.errors()[0]['msg']}")
        raise typer.Exit(code=1) from exc
    _console.print(f"[green]Saved preferences to:[/green] {state.settings.preferences_path}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
