"""Cliente de la API de integraciones (versiones).

Por qué una clase con contexto fijo:
- Cada instancia está atada a un `RequestContext` (proyecto, región, salida).
- Las operaciones de un solo recurso propagan el primer error tal cual.

Nota: las búsquedas internas (listar para resolver un snapshot, leer antes de
transformar) usan un contexto silenciado; solo la respuesta final se imprime.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any

from adapters.endpoints import integrations_url
from adapters.http_client import RateLimitedTransport, RequestContext
from adapters.pagination import MAX_PAGE_SIZE, PaginatedEnumerator
from core.domain.errors import DecodeError, FlowCtlError
from core.domain.models import IntegrationDefinition, OverrideSpec, ResourceDescriptor, UploadEnvelope
from core.interfaces.lookup import ResourceLookup
from core.services.override_engine import OverrideResult, extract_overrides, merge_overrides

logger = logging.getLogger(__name__)


class VersionView(str, Enum):
    FULL = "full"
    BASIC = "basic"
    MINIMAL = "minimal"
    OVERRIDES = "overrides"


def basic_info(payload: dict[str, Any]) -> dict[str, Any]:
    """`{snapshotNumber, version}` de una versión."""

    return {
        "snapshotNumber": payload.get("snapshotNumber"),
        "version": str(payload.get("name") or "").rsplit("/", 1)[-1],
    }


class IntegrationsClient:
    def __init__(
        self,
        transport: RateLimitedTransport,
        ctx: RequestContext,
        *,
        lookup: ResourceLookup | None = None,
    ) -> None:
        self._transport = transport
        self.ctx = ctx
        self.lookup = lookup

    @property
    def dry_run(self) -> bool:
        return self._transport.dry_run

    def with_context(self, ctx: RequestContext) -> IntegrationsClient:
        return IntegrationsClient(self._transport, ctx, lookup=self.lookup)

    # --- listados -------------------------------------------------------------

    def enumerate_integrations(
        self,
        *,
        page_size: int | None = MAX_PAGE_SIZE,
        filter: str | None = None,
        order_by: str | None = None,
        ctx: RequestContext | None = None,
    ) -> PaginatedEnumerator:
        ctx = ctx or self.ctx
        return PaginatedEnumerator(
            self._transport,
            ctx,
            integrations_url(ctx),
            items_key="integrations",
            page_size=page_size,
            filter=filter,
            order_by=order_by,
        )

    def enumerate_versions(
        self,
        name: str,
        *,
        page_size: int | None = MAX_PAGE_SIZE,
        filter: str | None = None,
        order_by: str | None = None,
        ctx: RequestContext | None = None,
    ) -> PaginatedEnumerator:
        ctx = ctx or self.ctx
        return PaginatedEnumerator(
            self._transport,
            ctx,
            integrations_url(ctx, name, "versions"),
            items_key="integrationVersions",
            page_size=page_size,
            filter=filter,
            order_by=order_by,
        )

    async def list_integrations(self, *, filter: str | None = None, order_by: str | None = None) -> list[ResourceDescriptor]:
        items = await self.enumerate_integrations(filter=filter, order_by=order_by).collect()
        return [ResourceDescriptor.from_api(item) for item in items]

    async def list_versions(
        self,
        name: str,
        *,
        filter: str | None = None,
        order_by: str | None = None,
        basic: bool = False,
    ) -> list[dict[str, Any]]:
        items = await self.enumerate_versions(name, filter=filter, order_by=order_by).collect()
        if basic:
            return [basic_info(item) for item in items]
        return items

    # --- lectura --------------------------------------------------------------

    async def get_version(
        self,
        name: str,
        version: str,
        *,
        view: VersionView = VersionView.FULL,
    ) -> dict[str, Any]:
        ctx = self.ctx if view is VersionView.FULL else self.ctx.silenced()
        payload = await self._transport.request(ctx, "GET", integrations_url(ctx, name, "versions", version))
        if view is VersionView.FULL:
            return payload
        if view is VersionView.BASIC:
            return basic_info(payload)

        definition = IntegrationDefinition.model_validate(payload)
        if view is VersionView.MINIMAL:
            return definition.to_external().to_payload()
        spec = await extract_overrides(definition, lookup=self.lookup)
        return spec.to_payload()

    async def _version_by_filter(self, name: str, filter: str, not_found: str) -> str:
        items = await self.enumerate_versions(name, filter=filter, page_size=None, ctx=self.ctx.silenced()).collect()
        if not items:
            raise FlowCtlError(not_found)
        return basic_info(items[0])["version"]

    async def get_by_snapshot(self, name: str, snapshot: int | str, *, view: VersionView = VersionView.FULL) -> dict[str, Any]:
        version = await self._version_by_filter(name, f"snapshotNumber={snapshot}", "snapshot number was not found")
        return await self.get_version(name, version, view=view)

    async def get_by_userlabel(self, name: str, user_label: str, *, view: VersionView = VersionView.FULL) -> dict[str, Any]:
        version = await self._version_by_filter(name, f"userLabel={user_label}", "userLabel was not found")
        return await self.get_version(name, version, view=view)

    async def download(self, name: str, version: str) -> dict[str, Any]:
        return await self._transport.request(
            self.ctx, "GET", integrations_url(self.ctx, name, "versions", f"{version}:download")
        )

    # --- escritura ------------------------------------------------------------

    async def prepare_version(
        self,
        content: str | bytes,
        *,
        overrides: OverrideSpec | None = None,
        snapshot: int | str | None = None,
        user_label: str | None = None,
        strict_overrides: bool = False,
        suppress_warnings: bool = False,
    ) -> OverrideResult:
        """Convierte a forma externa y aplica overrides, snapshot y user label."""

        external = IntegrationDefinition.from_json(content).to_external()
        if overrides is not None:
            result = await merge_overrides(
                external,
                overrides,
                lookup=self.lookup,
                dry_run=self.dry_run,
                strict=strict_overrides,
                suppress_warnings=suppress_warnings,
            )
        else:
            result = OverrideResult(definition=external)
        if snapshot not in (None, ""):
            result.definition.snapshot_number = str(snapshot)
        if user_label:
            result.definition.user_label = user_label
        return result

    async def create_version(
        self,
        name: str,
        content: str | bytes,
        *,
        overrides: OverrideSpec | None = None,
        snapshot: int | str | None = None,
        user_label: str | None = None,
        strict_overrides: bool = False,
        suppress_warnings: bool = False,
    ) -> dict[str, Any]:
        result = await self.prepare_version(
            content,
            overrides=overrides,
            snapshot=snapshot,
            user_label=user_label,
            strict_overrides=strict_overrides,
            suppress_warnings=suppress_warnings,
        )
        return await self._transport.request(
            self.ctx,
            "POST",
            integrations_url(self.ctx, name, "versions"),
            json_body=result.definition.to_payload(),
        )

    async def upload(self, name: str, content: str | bytes) -> dict[str, Any]:
        try:
            envelope = UploadEnvelope.model_validate_json(content)
        except ValueError as exc:
            raise DecodeError(
                "invalid format for upload: the document must have a non-empty 'content' field "
                f"with the stringified integration and optionally 'fileFormat' ({exc})"
            ) from exc
        return await self._transport.request(
            self.ctx,
            "POST",
            integrations_url(self.ctx, name, "versions:upload"),
            json_body=envelope.model_dump(by_alias=True),
        )

    async def patch_version(self, name: str, version: str, content: str | bytes) -> dict[str, Any]:
        external = IntegrationDefinition.from_json(content).to_external()
        return await self._transport.request(
            self.ctx,
            "PATCH",
            integrations_url(self.ctx, name, "versions", version),
            json_body=external.to_payload(),
        )

    async def delete_version(self, name: str, version: str) -> dict[str, Any]:
        return await self._transport.request(self.ctx, "DELETE", integrations_url(self.ctx, name, "versions", version))

    async def publish(self, name: str, version: str, config_parameters: Any = None) -> dict[str, Any]:
        body = {"configParameters": config_parameters} if config_parameters is not None else {}
        return await self._transport.request(
            self.ctx, "POST", integrations_url(self.ctx, name, "versions", f"{version}:publish"), json_body=body
        )

    async def unpublish(self, name: str, version: str) -> dict[str, Any]:
        return await self._transport.request(
            self.ctx, "POST", integrations_url(self.ctx, name, "versions", f"{version}:unpublish"), json_body={}
        )


def load_json_document(raw: str | bytes, *, what: str = "document") -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid JSON {what}: {exc}") from exc
