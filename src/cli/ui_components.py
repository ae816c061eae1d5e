"""Componentes de UI para CLI (Rich).

Por qué separar componentes:
- Evita mezclar lógica de comandos con detalles visuales.
- Permite reutilizar tablas/paneles en múltiples comandos.
"""

from __future__ import annotations

from typing import Any

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.services.transfer_pipeline import TransferReport


def print_banner(console: Console) -> None:
    """Imprime el banner de bienvenida (cabecera de `doctor run`)."""

    title = Text("flowctl", style="bold cyan")
    subtitle = Text("Integration flows • Export/Import • Promoción entre entornos", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def print_json(console: Console, data: Any) -> None:
    console.print_json(data=data)


def build_descriptors_table(items: list[dict[str, Any]]) -> Table:
    table = Table(title="Integrations")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Snapshot", style="white")
    table.add_column("State", style="green")
    for item in items:
        table.add_row(
            str(item.get("name", "")).rsplit("/", 1)[-1],
            str(item.get("snapshotNumber", "") or ""),
            str(item.get("state", "") or item.get("status", "") or ""),
        )
    return table


def build_transfer_panel(report: TransferReport) -> Panel:
    """Resumen de un export/import masivo, con cada fallo por item."""

    ok = report.ok and not report.cancelled
    style = "green" if ok else "red"
    body = Text()
    body.append(f"{report.direction.value}: ", style="bold")
    body.append(f"{len(report.succeeded)} ok, {len(report.failures)} failed")
    if report.files:
        body.append(f", {len(report.files)} files written")
    if report.cancelled:
        body.append("\nStopped early (--fail-fast).", style="yellow")
    for failure in report.failures:
        body.append(f"\n- {failure.job.resource_name}: ", style="bold red")
        body.append(failure.message)
    return Panel(body, title=Text("Transfer", style=f"bold {style}"), border_style=style)
