"""Persistencia JSON de definiciones exportadas.

Por qué JSON con formato estable:
- Los ficheros versionados se guardan en git y se comparan entre entornos.
- `sort_keys` evita diffs espurios entre dos exports de la misma versión.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from core.domain.errors import DecodeError


def export_definition_json(*, payload: Any, output_path: Path) -> Path:
    """Escribe `payload` a JSON UTF-8 con formato estable."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return output_path


def read_definition_json(path: Path) -> str:
    """Lee un fichero exportado y comprueba que es JSON válido."""

    try:
        raw = path.read_text(encoding="utf-8")
        json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"{path.name} is not valid JSON: {exc}") from exc
    return raw
