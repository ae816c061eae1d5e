"""Enumeración de endpoints de listado paginados por cursor.

Objetivo:
- Exponer un listado remoto como una secuencia perezosa de lotes.
- Cada iteración (`async for`) vuelve a empezar desde la primera página.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from adapters.http_client import RateLimitedTransport, RequestContext
from adapters.rate_limiter import ApiFamily
from core.domain.errors import DecodeError, RepeatedPageTokenError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


class PaginatedEnumerator:
    """Recorre `url` página a página siguiendo `nextPageToken`.

    El token vacío (o ausente) termina la secuencia; la última página parcial
    siempre se entrega. Un token no vacío repetido aborta con
    `RepeatedPageTokenError` para no entrar en bucle infinito.
    """

    def __init__(
        self,
        transport: RateLimitedTransport,
        ctx: RequestContext,
        url: str,
        *,
        items_key: str,
        page_size: int | None = None,
        filter: str | None = None,
        order_by: str | None = None,
        family: ApiFamily = ApiFamily.INTEGRATIONS,
    ) -> None:
        if page_size is not None and not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        self._transport = transport
        self._ctx = ctx
        self._url = url
        self._items_key = items_key
        self._page_size = page_size
        self._filter = filter
        self._order_by = order_by
        self._family = family
        self.pages_fetched = 0

    def __aiter__(self) -> AsyncIterator[list[dict[str, Any]]]:
        return self._pages()

    async def _pages(self) -> AsyncIterator[list[dict[str, Any]]]:
        token = ""
        seen: set[str] = set()
        while True:
            params = {
                "pageSize": self._page_size,
                "pageToken": token,
                "filter": self._filter,
                "orderBy": self._order_by,
            }
            payload = await self._transport.request(
                self._ctx, "GET", self._url, family=self._family, params=params
            )
            self.pages_fetched += 1
            if not isinstance(payload, dict):
                raise DecodeError(f"list response from {self._url} is not an object")

            items = payload.get(self._items_key) or []
            if not isinstance(items, list):
                raise DecodeError(f"{self._items_key!r} in list response is not an array")
            yield items

            token = str(payload.get("nextPageToken") or "")
            if not token:
                return
            if token in seen:
                raise RepeatedPageTokenError(token)
            seen.add(token)

    async def collect(self) -> list[dict[str, Any]]:
        """Todos los elementos de todas las páginas."""

        out: list[dict[str, Any]] = []
        async for batch in self:
            out.extend(batch)
        logger.debug("collected %d items from %s in %d pages", len(out), self._url, self.pages_fetched)
        return out
