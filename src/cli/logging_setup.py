"""Logging de la CLI (stdlib `logging` + `rich.logging.RichHandler`).

Por qué RichHandler:
- Los warnings del motor de overrides y los fallos por item del pipeline
  se ven con el mismo estilo que el resto de la salida Rich.
- Va a stderr: stdout queda libre para el JSON de las respuestas.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(*, debug: bool = False, suppress_warnings: bool = False, quiet: bool = False) -> None:
    if quiet:
        level = logging.CRITICAL + 1
    elif debug:
        level = logging.DEBUG
    elif suppress_warnings:
        level = logging.ERROR
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=debug,
        rich_tracebacks=debug,
        markup=False,
    )
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # httpx loguea cada request en INFO; solo lo queremos en modo debug.
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
