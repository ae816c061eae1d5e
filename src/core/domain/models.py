"""Modelos del dominio (Pydantic v2).

Por qué Pydantic en el dominio:
- Nos da validación estricta y documentación autocontenida (Field) sin acoplar
  el Core a librerías de I/O.
- Las definiciones del control plane traen muchos campos que no tocamos:
  `extra="allow"` los conserva intactos en el round-trip JSON.

Nota:
- Estos modelos describen *qué* es la información, no *cómo* se obtiene.
- En disco y en la API las claves van en camelCase (`alias_generator=to_camel`).
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

from core.domain.errors import DecodeError

CONFIG_VARIABLE_PREFIX = "$`CONFIG_"
CONNECTOR_TASK = "GenericConnectorTask"
IO_TYPES = frozenset({"IN", "OUT", "IN_OUT"})

# Campos que el control plane acepta al crear una versión.
EXTERNAL_FIELDS: tuple[str, ...] = (
    "description",
    "snapshotNumber",
    "triggerConfigs",
    "taskConfigs",
    "integrationParameters",
    "integrationConfigParameters",
    "userLabel",
    "errorCatcherConfigs",
    "databasePersistencePolicy",
    "enableVariableMasking",
    "cloudLoggingDetails",
    "runAsServiceAccount",
)


class _ApiModel(BaseModel):
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_payload(self) -> dict[str, Any]:
        """Serializa con las claves del control plane."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ResourceDescriptor(BaseModel):
    """Referencia inmutable a una versión (o integración) remota."""

    model_config = ConfigDict(frozen=True)

    full_name: str = Field(..., min_length=1, description="Nombre completo del recurso.")
    display_name: str = Field(..., description="Último segmento del nombre.")
    snapshot_number: int | None = Field(default=None)
    version: str | None = Field(default=None, description="UUID de la versión.")
    state: str | None = Field(default=None)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ResourceDescriptor:
        name = str(payload.get("name") or "")
        snapshot = payload.get("snapshotNumber")
        try:
            return cls(
                full_name=name,
                display_name=name.rsplit("/", 1)[-1],
                snapshot_number=int(snapshot) if snapshot not in (None, "") else None,
                version=name.rsplit("/", 1)[-1] if "/versions/" in name else None,
                state=payload.get("state") or payload.get("status"),
            )
        except (TypeError, ValueError) as exc:
            # ValidationError es subclase de ValueError.
            raise DecodeError(f"malformed resource {name or '<unnamed>'!r}: {exc}") from exc


class TransferDirection(str, Enum):
    EXPORT = "export"
    IMPORT = "import"


class TransferJob(BaseModel):
    """Unidad de trabajo del pipeline (se procesa como máximo una vez)."""

    model_config = ConfigDict(frozen=True)

    resource_name: str
    local_path: str
    direction: TransferDirection


class EventParameter(_ApiModel):
    """Parámetro de tarea: `{key, value: {stringValue|intValue|jsonValue|...}}`."""

    key: str | None = None
    value: dict[str, Any] = Field(default_factory=dict)

    @property
    def string_value(self) -> str | None:
        raw = self.value.get("stringValue")
        return raw if isinstance(raw, str) else None

    @property
    def json_value(self) -> str | None:
        raw = self.value.get("jsonValue")
        return raw if isinstance(raw, str) else None


class CloudSchedulerConfig(_ApiModel):
    service_account_email: str | None = None
    cron_tab: str | None = None
    location: str | None = None


class TriggerConfig(_ApiModel):
    trigger_number: str | None = None
    trigger_type: str | None = None
    trigger_id: str | None = None
    label: str | None = None
    properties: dict[str, str] = Field(default_factory=dict)
    cloud_scheduler_config: CloudSchedulerConfig | None = None


class TaskConfig(_ApiModel):
    task: str | None = None
    task_id: str | None = None
    display_name: str | None = None
    parameters: dict[str, EventParameter] = Field(default_factory=dict)


class IntegrationParameter(_ApiModel):
    key: str
    data_type: str | None = None
    default_value: dict[str, Any] | None = None
    display_name: str | None = None
    input_output_type: str | None = None

    @property
    def is_io(self) -> bool:
        return (self.input_output_type or "") in IO_TYPES


class ConfigParameter(_ApiModel):
    """Entrada de `integrationConfigParameters`."""

    parameter: IntegrationParameter
    value: dict[str, Any] | None = None

    def resolved_string(self) -> str | None:
        for source in (self.value, self.parameter.default_value):
            if source and isinstance(source.get("stringValue"), str):
                return source["stringValue"]
        return None


class CloudLoggingDetails(_ApiModel):
    cloud_logging_severity: str | None = None
    enable_cloud_logging: bool | None = None


class IntegrationDefinition(_ApiModel):
    """Definición de una versión.

    Representa tanto la forma interna (la que devuelve GET, con lock holders,
    timestamps, estado...) como la externa (promocionable). `to_external()` es
    la conversión en un solo sentido: descarta todo lo que no sea externo.
    """

    name: str | None = None
    description: str | None = None
    snapshot_number: str | int | None = None
    user_label: str | None = None
    trigger_configs: list[TriggerConfig] = Field(default_factory=list)
    task_configs: list[TaskConfig] = Field(default_factory=list)
    integration_parameters: list[IntegrationParameter] = Field(default_factory=list)
    integration_config_parameters: list[ConfigParameter] = Field(default_factory=list)
    database_persistence_policy: str | None = None
    enable_variable_masking: bool | None = None
    cloud_logging_details: CloudLoggingDetails | None = None
    run_as_service_account: str | None = None

    @classmethod
    def from_json(cls, raw: str | bytes) -> IntegrationDefinition:
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise DecodeError(f"invalid integration definition: {exc}") from exc

    def to_external(self) -> IntegrationDefinition:
        payload = self.to_payload()
        external = {k: payload[k] for k in EXTERNAL_FIELDS if k in payload}
        return IntegrationDefinition.model_validate(external)

    def config_parameter(self, key: str) -> ConfigParameter | None:
        for param in self.integration_config_parameters:
            if param.parameter.key == key:
                return param
        return None


# --- Overrides ---------------------------------------------------------------


class TriggerOverride(_ApiModel):
    trigger_number: str | None = None
    trigger_type: str | None = None
    project_id: str | None = None
    topic_name: str | None = None
    api_path: str | None = None
    service_account: str | None = None
    properties: dict[str, str] | None = None
    cloud_scheduler_service_account: str | None = None
    cloud_scheduler_location: str | None = None
    cloud_scheduler_cron_tab: str | None = None


class TaskOverride(_ApiModel):
    task_id: str | None = None
    task: str | None = None
    display_name: str | None = None
    parameters: dict[str, EventParameter] = Field(default_factory=dict)


class ConnectionOverrideParams(_ApiModel):
    connection_name: str | None = None
    connection_location: str | None = None
    entity_type: EventParameter | None = None


class ConnectionOverride(_ApiModel):
    task_id: str | None = None
    task: str | None = None
    parameters: ConnectionOverrideParams = Field(default_factory=ConnectionOverrideParams)


class ParamOverride(_ApiModel):
    key: str
    data_type: str | None = None
    default_value: dict[str, Any] | None = None


class IntegrationOverrides(_ApiModel):
    run_as_service_account: str | None = None
    database_persistence_policy: str | None = None
    enable_variable_masking: bool | None = None
    cloud_logging_details: CloudLoggingDetails | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class OverrideSpec(BaseModel):
    """Plantilla de overrides independiente del entorno.

    Las claves de primer nivel van en snake_case (`trigger_overrides`, ...)
    y las entradas en camelCase.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    trigger_overrides: list[TriggerOverride] = Field(default_factory=list)
    task_overrides: list[TaskOverride] = Field(default_factory=list)
    connection_overrides: list[ConnectionOverride] = Field(default_factory=list)
    param_overrides: list[ParamOverride] = Field(default_factory=list)
    integration_overrides: IntegrationOverrides | None = None

    @classmethod
    def from_json(cls, raw: str | bytes) -> OverrideSpec:
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise DecodeError(f"invalid overrides document: {exc}") from exc

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return {k: v for k, v in payload.items() if v not in ([], {})}


# --- Conector (JSON embebido en `config.jsonValue`) --------------------------


class ConnectionRef(_ApiModel):
    service_name: str | None = None
    connection_name: str | None = None
    connector_version: str | None = None


class ConnectorTaskConfig(_ApiModel):
    """Contenido tipado del parámetro `config` de un `GenericConnectorTask`."""

    type_url: str | None = Field(default=None, alias="@type")
    connection: ConnectionRef = Field(default_factory=ConnectionRef)
    operation: str | None = None

    @classmethod
    def from_json_value(cls, raw: str) -> ConnectorTaskConfig:
        try:
            return cls.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise DecodeError(f"invalid connector task config: {exc}") from exc

    def to_json_value(self) -> str:
        return json.dumps(self.to_payload(), separators=(",", ":"))


class ConnectionInfo(BaseModel):
    """Datos de una conexión remota necesarios para re-apuntar una tarea."""

    name: str
    connector_version: str | None = None
    service_directory: str | None = None


class UploadEnvelope(BaseModel):
    """Cuerpo de `versions:upload`."""

    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., min_length=1, description="Definición serializada.")
    file_format: str = Field(default="JSON", alias="fileFormat", pattern="^(JSON|YAML)$")
