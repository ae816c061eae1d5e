"""Wrapper de httpx y transporte compartido.

Por qué un wrapper:
- Estandariza timeouts, headers, proxy y el mapeo de errores HTTP.
- Facilita testeo: se inyecta un `httpx.MockTransport` en el builder.

`RateLimitedTransport` es el único punto por el que pasan las llamadas al
control plane: espera al bucket de su familia, inyecta el bearer token,
respeta el modo dry-run y traduce fallos a la taxonomía de `core.domain.errors`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Protocol

import httpx
from rich.console import Console

from adapters.rate_limiter import ApiFamily, RateLimiterRegistry
from core.config import ApiEnvironment, AppSettings
from core.domain.errors import ApiError, DecodeError, TransportError

logger = logging.getLogger(__name__)

_console = Console()


def build_async_client(
    settings: AppSettings | None = None,
    *,
    extra_headers: dict[str, str] | None = None,
    proxy_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Crea un `httpx.AsyncClient` con defaults seguros.

    Por qué un builder:
    - Centraliza timeouts/headers para que todas las llamadas se comporten igual.
    - `transport` permite sustituir la red por un fake en tests.
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        proxy=proxy_url or None,
        transport=transport,
    )


@dataclass(frozen=True)
class RequestContext:
    """Contexto explícito de una llamada (sustituye a los flags globales).

    Se deriva con `silenced()` / `in_region()` en lugar de mutar estado compartido,
    así dos workers nunca se pisan la configuración.
    """

    project_id: str
    region: str
    api: ApiEnvironment = ApiEnvironment.PROD
    print_responses: bool = False
    conflicts_as_success: bool = True

    def silenced(self) -> RequestContext:
        return replace(self, print_responses=False)

    def in_region(self, region: str | None) -> RequestContext:
        if not region:
            return self
        return replace(self, region=region)


class TokenSource(Protocol):
    async def get_token(self) -> str:
        ...


class RateLimitedTransport:
    """Transporte autenticado con rate limiting por familia de API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        limiter: RateLimiterRegistry,
        token_source: TokenSource | None = None,
        dry_run: bool = False,
    ) -> None:
        self._client = client
        self._limiter = limiter
        self._token_source = token_source
        self.dry_run = dry_run

    async def request(
        self,
        ctx: RequestContext,
        method: str,
        url: str,
        *,
        family: ApiFamily = ApiFamily.INTEGRATIONS,
        json_body: Any = None,
        content: str | bytes | None = None,
        params: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> Any:
        """Ejecuta una request y devuelve el cuerpo JSON decodificado.

        - Dry-run: no toca la red y devuelve `{}`.
        - 409 con `conflicts_as_success`: warning y `{}`.
        - Cuerpo vacío: `{}`.
        """

        if self.dry_run:
            logger.debug("dry-run: skipping %s %s", method, url)
            return {}

        await self._limiter.wait(family)

        headers: dict[str, str] = {}
        if authenticated and self._token_source is not None:
            token = await self._token_source.get_token()
            headers["Authorization"] = f"Bearer {token}"
        if json_body is not None or content is not None:
            headers["Content-Type"] = "application/json"

        clean_params = {k: v for k, v in (params or {}).items() if v not in (None, "")}
        logger.debug("%s %s params=%s", method, url, clean_params)
        try:
            response = await self._client.request(
                method,
                url,
                headers=headers,
                params=clean_params or None,
                json=json_body,
                content=content,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url}: {exc}") from exc

        return self._handle_response(ctx, response)

    def _handle_response(self, ctx: RequestContext, response: httpx.Response) -> Any:
        status = response.status_code
        if status == 409 and ctx.conflicts_as_success:
            logger.warning("entity already exists, ignoring conflict")
            return {}
        if status >= 400:
            logger.debug("HTTP %s from %s: %s", status, response.request.url, response.text)
            raise ApiError(status, response.text, url=str(response.request.url))

        text = response.text
        if not text.strip():
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"invalid JSON from {response.request.url}: {exc}") from exc

        if ctx.print_responses:
            _console.print_json(data=payload)
        return payload
