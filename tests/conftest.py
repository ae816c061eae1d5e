"""
Pytest configuration and shared fixtures.

Provides an in-memory fake of the control plane (served through
`httpx.MockTransport`), isolated settings/preferences and sample definitions.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest

from adapters.http_client import RateLimitedTransport, RequestContext, build_async_client
from adapters.integrations_api import IntegrationsClient
from adapters.rate_limiter import ApiFamily, RateLimiterRegistry
from core.config import AppSettings
from core.domain.errors import FlowCtlError
from core.domain.models import ConnectionInfo

PROJECT = "proj1"
REGION = "us-central1"


def version_id(n: int) -> str:
    return str(uuid.UUID(int=n))


class StaticToken:
    async def get_token(self) -> str:
        return "test-token"


@dataclass
class FakeControlPlane:
    """Minimal stateful fake of the integrations/connectors REST API."""

    integrations: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    auth_configs: list[dict[str, Any]] = field(default_factory=list)
    connections: dict[str, dict[str, Any]] = field(default_factory=dict)
    page_size: int = 2
    created: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)
    fail_create_for: set[str] = field(default_factory=set)

    def add_integration(self, name: str, versions: int = 1) -> None:
        base = f"projects/{PROJECT}/locations/{REGION}/integrations/{name}"
        self.integrations[name] = [
            {
                "name": f"{base}/versions/{version_id(len(self.integrations) * 100 + i)}",
                "snapshotNumber": str(i + 1),
                "description": f"{name} v{i + 1}",
                "lockHolder": "someone@example.com",
                "createTime": "2024-01-01T00:00:00Z",
                "triggerConfigs": [],
                "taskConfigs": [],
            }
            for i in range(versions)
        ]

    def _page(self, request: httpx.Request, key: str, items: list[dict[str, Any]]) -> httpx.Response:
        start = int(request.url.params.get("pageToken") or 0)
        size = self.page_size
        chunk = items[start : start + size]
        next_token = str(start + size) if start + size < len(items) else ""
        return httpx.Response(200, json={key: chunk, "nextPageToken": next_token})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        host = request.url.host

        if "connectors" in host:
            name = path.rsplit("/", 1)[-1]
            if name not in self.connections:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=self.connections[name])

        marker = f"/v1/projects/{PROJECT}/locations/{REGION}/"
        if marker not in path:
            return httpx.Response(404, text="unknown project")
        rest = path.split(marker, 1)[1]
        parts = rest.split("/")

        if parts[0] == "authConfigs":
            if len(parts) == 1:
                return self._page(request, "authConfigs", self.auth_configs)
            for cfg in self.auth_configs:
                if cfg["name"].endswith("/" + parts[1]):
                    return httpx.Response(200, json=cfg)
            return httpx.Response(404, text="no such auth config")

        if parts == ["integrations"]:
            listed = [{"name": f"projects/{PROJECT}/locations/{REGION}/integrations/{n}"} for n in sorted(self.integrations)]
            return self._page(request, "integrations", listed)

        name = parts[1]
        if len(parts) == 3 and parts[2] == "versions":
            if request.method == "POST":
                body = json.loads(request.content)
                if name in self.fail_create_for:
                    return httpx.Response(400, json={"error": "bad definition"})
                self.created.append((name, body))
                return httpx.Response(200, json={"name": f"integrations/{name}/versions/new"})
            versions = self.integrations.get(name)
            if versions is None:
                return httpx.Response(404, text="no such integration")
            flt = request.url.params.get("filter") or ""
            if flt.startswith("snapshotNumber="):
                wanted = flt.split("=", 1)[1]
                versions = [v for v in versions if v["snapshotNumber"] == wanted]
            return self._page(request, "integrationVersions", versions)

        if len(parts) == 4 and parts[2] == "versions":
            vid, _, action = parts[3].partition(":")
            for item in self.integrations.get(name, []):
                if item["name"].endswith(vid):
                    if action == "download":
                        return httpx.Response(200, json={"content": json.dumps(item)})
                    return httpx.Response(200, json=item)
            return httpx.Response(404, text="no such version")

        return httpx.Response(404, text=f"unhandled {request.method} {path}")


class InMemoryLookup:
    """`ResourceLookup` backed by dicts."""

    def __init__(self, auth_configs: dict[str, str] | None = None, connections: dict[str, ConnectionInfo] | None = None):
        self.auth_configs = auth_configs or {}
        self.connections = connections or {}
        self.calls: list[tuple[str, str]] = []

    async def find_auth_config(self, display_name: str) -> str:
        self.calls.append(("find_auth_config", display_name))
        for auth_id, name in self.auth_configs.items():
            if name == display_name:
                return auth_id
        raise FlowCtlError(f"auth config with display name {display_name!r} not found")

    async def auth_config_display_name(self, auth_config_id: str) -> str:
        self.calls.append(("auth_config_display_name", auth_config_id))
        return self.auth_configs.get(auth_config_id, "")

    async def get_connection(self, name: str, location: str | None = None) -> ConnectionInfo:
        self.calls.append(("get_connection", name))
        return self.connections[name]


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        preferences_path=tmp_path / "prefs" / "config.json",
        integrations_rate_per_second=1000,
        connectors_rate_per_second=1000,
    )


@pytest.fixture
def fake_api() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def request_ctx() -> RequestContext:
    return RequestContext(project_id=PROJECT, region=REGION)


def make_transport(
    fake: FakeControlPlane,
    settings: AppSettings,
    *,
    dry_run: bool = False,
) -> RateLimitedTransport:
    client = build_async_client(settings, transport=httpx.MockTransport(fake.handler))
    limiter = RateLimiterRegistry(
        {
            ApiFamily.INTEGRATIONS: settings.integrations_rate_per_second,
            ApiFamily.CONNECTORS: settings.connectors_rate_per_second,
        }
    )
    return RateLimitedTransport(client, limiter=limiter, token_source=StaticToken(), dry_run=dry_run)


@pytest.fixture
def transport(fake_api: FakeControlPlane, settings: AppSettings) -> RateLimitedTransport:
    return make_transport(fake_api, settings)


@pytest.fixture
def integrations_client(transport: RateLimitedTransport, request_ctx: RequestContext) -> IntegrationsClient:
    return IntegrationsClient(transport, request_ctx, lookup=InMemoryLookup())


@pytest.fixture
def pubsub_definition() -> dict[str, Any]:
    """Definition with a pub/sub trigger, a REST task and promotable params."""

    return {
        "name": f"projects/{PROJECT}/locations/{REGION}/integrations/orders/versions/{version_id(1)}",
        "snapshotNumber": "3",
        "description": "orders flow",
        "lockHolder": "dev@example.com",
        "createTime": "2024-01-01T00:00:00Z",
        "updateTime": "2024-01-02T00:00:00Z",
        "state": "ACTIVE",
        "status": "ACTIVE",
        "triggerConfigs": [
            {
                "triggerNumber": "1",
                "triggerType": "CLOUD_PUBSUB_EXTERNAL",
                "triggerId": "cloud_pubsub_external_trigger/projects/cloud-crm-eventbus-cpsexternal/subscriptions/proj1_topicA",
                "label": "Cloud Pub/Sub Trigger",
                "properties": {
                    "Subscription name": "proj1_topicA",
                    "Service account": "runner@proj1.iam.gserviceaccount.com",
                },
            }
        ],
        "taskConfigs": [
            {
                "task": "GenericRestV2Task",
                "taskId": "2",
                "displayName": "Call backend",
                "parameters": {
                    "url": {"key": "url", "value": {"stringValue": "https://backend.dev.example.com/orders"}},
                    "httpMethod": {"key": "httpMethod", "value": {"stringValue": "POST"}},
                },
            }
        ],
        "integrationParameters": [
            {"key": "_endpoint", "dataType": "STRING_VALUE", "defaultValue": {"stringValue": "dev"}},
            {"key": "payload", "dataType": "JSON_VALUE", "inputOutputType": "IN"},
            {"key": "_input", "dataType": "STRING_VALUE", "inputOutputType": "IN"},
        ],
        "taskConfigsInternal": [{"taskNumber": "2"}],
    }
