"""URLs base del control plane por entorno."""

from __future__ import annotations

from adapters.http_client import RequestContext
from core.config import ApiEnvironment

_INTEGRATIONS_HOSTS: dict[ApiEnvironment, str] = {
    ApiEnvironment.PROD: "https://{region}-integrations.googleapis.com",
    ApiEnvironment.STAGING: "https://stagingqual{compact}-integrations.sandbox.googleapis.com",
    ApiEnvironment.AUTOPUSH: "https://autopushqual{compact}-integrations.sandbox.googleapis.com",
}

_CONNECTORS_HOSTS: dict[ApiEnvironment, str] = {
    ApiEnvironment.PROD: "https://connectors.googleapis.com",
    ApiEnvironment.STAGING: "https://staging-connectors.sandbox.googleapis.com",
    ApiEnvironment.AUTOPUSH: "https://autopush-connectors.sandbox.googleapis.com",
}


def integrations_base(ctx: RequestContext) -> str:
    """`.../v1/projects/{p}/locations/{r}` (sin barra final)."""

    host = _INTEGRATIONS_HOSTS[ctx.api].format(region=ctx.region, compact=ctx.region.replace("-", ""))
    return f"{host}/v1/projects/{ctx.project_id}/locations/{ctx.region}"


def integrations_url(ctx: RequestContext, *parts: str) -> str:
    return "/".join([integrations_base(ctx), "integrations", *parts])


def auth_configs_url(ctx: RequestContext, *parts: str) -> str:
    return "/".join([integrations_base(ctx), "authConfigs", *parts])


def connections_url(ctx: RequestContext, *parts: str) -> str:
    host = _CONNECTORS_HOSTS[ctx.api]
    return "/".join([f"{host}/v1/projects/{ctx.project_id}/locations/{ctx.region}/connections", *parts])
