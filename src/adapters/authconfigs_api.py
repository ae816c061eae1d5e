"""Cliente de auth configs (solo lectura)."""

from __future__ import annotations

import logging
from typing import Any

from adapters.endpoints import auth_configs_url
from adapters.http_client import RateLimitedTransport, RequestContext
from adapters.pagination import MAX_PAGE_SIZE, PaginatedEnumerator
from core.domain.errors import FlowCtlError

logger = logging.getLogger(__name__)


class AuthConfigsClient:
    def __init__(self, transport: RateLimitedTransport, ctx: RequestContext) -> None:
        self._transport = transport
        self._ctx = ctx

    def enumerate(self, *, filter: str | None = None, page_size: int = MAX_PAGE_SIZE) -> PaginatedEnumerator:
        return PaginatedEnumerator(
            self._transport,
            self._ctx,
            auth_configs_url(self._ctx),
            items_key="authConfigs",
            page_size=page_size,
            filter=filter,
        )

    async def get(self, auth_config_id: str) -> dict[str, Any]:
        return await self._transport.request(self._ctx, "GET", auth_configs_url(self._ctx, auth_config_id))

    async def find_by_display_name(self, display_name: str) -> str:
        """Id (último segmento del nombre) del primer auth config con ese display name."""

        async for batch in self.enumerate():
            for item in batch:
                if item.get("displayName") == display_name:
                    return str(item.get("name", "")).rsplit("/", 1)[-1]
        raise FlowCtlError(f"auth config with display name {display_name!r} not found")

    async def get_display_name(self, auth_config_id: str) -> str:
        payload = await self.get(auth_config_id)
        return str(payload.get("displayName") or "")
