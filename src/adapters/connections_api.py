"""Cliente de conexiones (API de conectores, limitada a 1 req/s)."""

from __future__ import annotations

from adapters.endpoints import connections_url
from adapters.http_client import RateLimitedTransport, RequestContext
from adapters.rate_limiter import ApiFamily
from core.domain.models import ConnectionInfo


class ConnectionsClient:
    def __init__(self, transport: RateLimitedTransport, ctx: RequestContext) -> None:
        self._transport = transport
        self._ctx = ctx

    async def get_connection_info(self, name: str, region: str | None = None) -> ConnectionInfo:
        # Lookup interno: nunca se imprime la respuesta.
        ctx = self._ctx.silenced().in_region(region)
        payload = await self._transport.request(
            ctx,
            "GET",
            connections_url(ctx, name),
            family=ApiFamily.CONNECTORS,
            params={"view": "BASIC"},
        )
        return ConnectionInfo(
            name=str(payload.get("name") or name),
            connector_version=payload.get("connectorVersion"),
            service_directory=payload.get("serviceDirectory"),
        )
