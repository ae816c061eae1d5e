"""Implementación de `ResourceLookup` contra el control plane."""

from __future__ import annotations

from adapters.authconfigs_api import AuthConfigsClient
from adapters.connections_api import ConnectionsClient
from adapters.http_client import RateLimitedTransport, RequestContext
from core.domain.models import ConnectionInfo


class ControlPlaneLookup:
    """Resuelve auth configs y conexiones sin imprimir respuestas."""

    def __init__(self, transport: RateLimitedTransport, ctx: RequestContext) -> None:
        silent = ctx.silenced()
        self._auth_configs = AuthConfigsClient(transport, silent)
        self._connections = ConnectionsClient(transport, silent)

    async def find_auth_config(self, display_name: str) -> str:
        return await self._auth_configs.find_by_display_name(display_name)

    async def auth_config_display_name(self, auth_config_id: str) -> str:
        return await self._auth_configs.get_display_name(auth_config_id)

    async def get_connection(self, name: str, location: str | None = None) -> ConnectionInfo:
        return await self._connections.get_connection_info(name, location)
