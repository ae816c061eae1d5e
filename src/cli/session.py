"""Cableado de adaptadores para un comando de la CLI.

Por qué aquí y no en cada comando:
- Un único sitio resuelve proyecto/región (flags > preferencias), credenciales,
  proxy y rate limits.
- Los tests sustituyen `build_async_client` para hablar con un control plane falso.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator

from adapters.auth import TokenProvider
from adapters.http_client import RateLimitedTransport, RequestContext, build_async_client
from adapters.integrations_api import IntegrationsClient
from adapters.lookup import ControlPlaneLookup
from adapters.rate_limiter import RateLimiterRegistry
from core.config import ApiEnvironment, AppSettings, read_preferences
from core.domain.errors import FlowCtlError


@dataclass
class CliState:
    """Opciones globales recogidas en el callback raíz."""

    settings: AppSettings = field(default_factory=AppSettings)
    token: str | None = None
    account: Path | None = None
    project: str | None = None
    region: str | None = None
    api: ApiEnvironment | None = None
    metadata_token: bool = False
    skip_check: bool = False
    print_output: bool = True
    suppress_warnings: bool = False


@dataclass
class Session:
    settings: AppSettings
    ctx: RequestContext
    transport: RateLimitedTransport
    integrations: IntegrationsClient
    tokens: TokenProvider


def resolve_context(state: CliState) -> RequestContext:
    prefs = read_preferences(state.settings.preferences_path)
    project = state.project or prefs.default_project
    region = state.region or prefs.region
    if not project:
        raise FlowCtlError("project id is required: use --project or `flowctl prefs set --project`")
    if not region:
        raise FlowCtlError("region is required: use --region or `flowctl prefs set --region`")
    return RequestContext(
        project_id=project,
        region=region,
        api=state.api or prefs.api,
        print_responses=state.print_output,
        conflicts_as_success=state.settings.conflicts_as_success,
    )


@asynccontextmanager
async def open_session(state: CliState) -> AsyncIterator[Session]:
    settings = state.settings
    ctx = resolve_context(state)
    prefs = read_preferences(settings.preferences_path)

    async with build_async_client(settings, proxy_url=prefs.proxy_url) as http:
        tokens = TokenProvider(
            http,
            token=state.token,
            service_account_path=state.account or settings.google_application_credentials,
            use_metadata=state.metadata_token,
            check_token=not state.skip_check,
            skip_cache=settings.skip_cache,
            preferences_path=settings.preferences_path,
        )
        transport = RateLimitedTransport(
            http,
            limiter=RateLimiterRegistry.from_settings(settings),
            token_source=tokens,
            dry_run=settings.dry_run,
        )
        client = IntegrationsClient(transport, ctx, lookup=ControlPlaneLookup(transport, ctx))
        yield Session(settings=settings, ctx=ctx, transport=transport, integrations=client, tokens=tokens)
