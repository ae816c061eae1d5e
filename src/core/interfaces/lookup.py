"""Contratos de búsqueda de recursos auxiliares.

Por qué Protocol:
- El motor de overrides necesita resolver auth configs y conexiones en vivo,
  pero no debe conocer el transporte HTTP.
- En tests se sustituye por un objeto en memoria sin red.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from core.domain.models import ConnectionInfo


@runtime_checkable
class ResourceLookup(Protocol):
    """Resolución de nombres legibles a identificadores del control plane."""

    async def find_auth_config(self, display_name: str) -> str:
        """Devuelve el id del auth config cuyo display name coincide.

        Lanza `FlowCtlError` si no existe.
        """

        ...

    async def auth_config_display_name(self, auth_config_id: str) -> str:
        ...

    async def get_connection(self, name: str, location: str | None = None) -> ConnectionInfo:
        """Lee una conexión (opcionalmente en otra región)."""

        ...
