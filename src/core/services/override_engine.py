"""Environment promotion through declarative overrides.

`extract_overrides` turns a captured definition into an environment-agnostic
template (pub/sub subscriptions, REST URLs, auth config display names,
connection names, `_`-prefixed parameters...). `merge_overrides` applies such a
template back onto a definition for a different project or region.

Entries that match nothing produce warnings, never errors, unless the caller
asks for strict mode. Mandatory fields missing from an override (pub/sub
project/topic, API path) are always errors.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from core.domain.errors import DecodeError, FlowCtlError, OverrideError
from core.domain.models import (
    CONFIG_VARIABLE_PREFIX,
    CONNECTOR_TASK,
    CloudLoggingDetails,
    CloudSchedulerConfig,
    ConnectionOverride,
    ConnectionOverrideParams,
    ConnectorTaskConfig,
    EventParameter,
    IntegrationDefinition,
    IntegrationOverrides,
    OverrideSpec,
    ParamOverride,
    TaskConfig,
    TaskOverride,
    TriggerConfig,
    TriggerOverride,
)
from core.interfaces.lookup import ResourceLookup

logger = logging.getLogger(__name__)

PUBSUB_TRIGGER_PREFIX = "cloud_pubsub_external_trigger/projects/cloud-crm-eventbus-cpsexternal/subscriptions/"
API_TRIGGER_PREFIX = "api_trigger/"
AUTH_CONFIG_PARAM_TYPE = "type.googleapis.com/enterprise.crm.eventbus.authconfig.AuthConfigTaskParam"
SERVICE_ACCOUNT_DOMAIN = "iam.gserviceaccount.com"

_CONNECTION_NAME_RE = re.compile(r"projects/(.*)/locations/(.*)/connections/(.*)")


@dataclass
class OverrideResult:
    """Merged definition plus every warning raised while merging."""

    definition: IntegrationDefinition
    warnings: list[str] = field(default_factory=list)


class _WarningSink:
    def __init__(self, *, strict: bool, suppress: bool) -> None:
        self.strict = strict
        self.suppress = suppress
        self.items: list[str] = []

    def __call__(self, message: str) -> None:
        if self.strict:
            raise OverrideError(message)
        self.items.append(message)
        if not self.suppress:
            logger.warning(message)


# --- merge --------------------------------------------------------------------


async def merge_overrides(
    definition: IntegrationDefinition,
    spec: OverrideSpec,
    *,
    lookup: ResourceLookup | None = None,
    dry_run: bool = False,
    strict: bool = False,
    suppress_warnings: bool = False,
) -> OverrideResult:
    """Apply `spec` to a copy of `definition`.

    Connection overrides need live lookups and are skipped entirely under
    dry-run. The input definition is never mutated.
    """

    merged = definition.model_copy(deep=True)
    warn = _WarningSink(strict=strict, suppress=suppress_warnings)

    for override in spec.trigger_overrides:
        _apply_trigger_override(merged, override, warn)

    for override in spec.task_overrides:
        await _apply_task_override(merged, override, lookup, warn)

    for override in spec.param_overrides:
        _apply_param_override(merged, override, warn)

    if dry_run:
        if spec.connection_overrides:
            logger.debug("dry-run: skipping %d connection overrides", len(spec.connection_overrides))
    else:
        for override in spec.connection_overrides:
            await _apply_connection_override(merged, override, lookup, warn)

    if spec.integration_overrides is not None:
        _apply_integration_overrides(merged, spec.integration_overrides)

    return OverrideResult(definition=merged, warnings=warn.items)


def _service_account_email(service_account: str, project_id: str) -> str:
    if "@" in service_account:
        return service_account
    return f"{service_account}@{project_id}.{SERVICE_ACCOUNT_DOMAIN}"


def _apply_trigger_override(
    definition: IntegrationDefinition, override: TriggerOverride, warn: _WarningSink
) -> None:
    found = False
    for trigger in definition.trigger_configs:
        if trigger.trigger_number != override.trigger_number:
            continue
        found = True
        kind = trigger.trigger_type
        if kind == "CLOUD_PUBSUB_EXTERNAL":
            if not override.project_id or not override.topic_name:
                raise OverrideError("projectId and topicName are mandatory in pub/sub trigger overrides")
            subscription = f"{override.project_id}_{override.topic_name}"
            trigger.trigger_id = PUBSUB_TRIGGER_PREFIX + subscription
            trigger.properties["Subscription name"] = subscription
            if override.service_account:
                trigger.properties["Service account"] = _service_account_email(
                    override.service_account, override.project_id
                )
        elif kind == "API":
            if not override.api_path:
                raise OverrideError("the field apiPath is missing from the API trigger override")
            trigger.trigger_id = API_TRIGGER_PREFIX + override.api_path
            if override.properties:
                trigger.properties = dict(override.properties)
        elif kind == "CLOUD_SCHEDULER":
            config = trigger.cloud_scheduler_config or CloudSchedulerConfig()
            if override.cloud_scheduler_service_account is not None:
                config.service_account_email = override.cloud_scheduler_service_account
            if override.cloud_scheduler_cron_tab is not None:
                config.cron_tab = override.cloud_scheduler_cron_tab
            if override.cloud_scheduler_location is not None:
                config.location = override.cloud_scheduler_location
            trigger.cloud_scheduler_config = config
        elif kind == "INTEGRATION_CONNECTOR_TRIGGER":
            if override.properties:
                props = override.properties
                trigger.trigger_id = (
                    f"integration_connector_trigger/projects/{props.get('Project name', '')}"
                    f"/locations/{props.get('Region', '')}"
                    f"/connections/{props.get('Connection name', '')}"
                    f"/eventSubscriptions/{props.get('Subscription name', '')}"
                )
                trigger.properties = dict(props)
        else:
            warn(f"unsupported trigger type {kind}")
    if not found:
        warn(f"trigger override id {override.trigger_number} was not found in the integration json")


def _auth_config_json_value(auth_config_id: str) -> dict[str, str]:
    payload = {"@type": AUTH_CONFIG_PARAM_TYPE, "authConfigId": auth_config_id}
    return {"jsonValue": json.dumps(payload)}


async def _apply_task_override(
    definition: IntegrationDefinition,
    override: TaskOverride,
    lookup: ResourceLookup | None,
    warn: _WarningSink,
) -> None:
    found = False
    for task in definition.task_configs:
        if task.task_id != override.task_id or task.task != override.task or task.task == CONNECTOR_TASK:
            continue
        found = True
        params = await _override_task_parameters(task, override.parameters, lookup, warn)
        if params is not None:
            task.parameters = params
    if not found:
        warn(f"task override {override.display_name or ''} with id {override.task_id} was not found in the integration json")


async def _override_task_parameters(
    task: TaskConfig,
    overrides: dict[str, EventParameter],
    lookup: ResourceLookup | None,
    warn: _WarningSink,
) -> dict[str, EventParameter] | None:
    """New parameter map, or None when the task must stay unchanged."""

    params = {name: p.model_copy(deep=True) for name, p in task.parameters.items()}
    for name, param in overrides.items():
        if name not in params:
            warn(f"override param {name} was not found")
            continue
        if (param.key or name) == "authConfig":
            display_name = param.string_value
            if lookup is None or not display_name:
                warn(f"cannot resolve auth config for task {task.task_id}")
                return None
            try:
                auth_config_id = await lookup.find_auth_config(display_name)
            except FlowCtlError as exc:
                warn(str(exc))
                return None
            params[name].value = _auth_config_json_value(auth_config_id)
        else:
            params[name] = param.model_copy(deep=True)
    return params


def _apply_param_override(definition: IntegrationDefinition, override: ParamOverride, warn: _WarningSink) -> None:
    for param in definition.integration_parameters:
        if param.key == override.key and param.key.startswith("_") and not param.is_io:
            param.default_value = dict(override.default_value) if override.default_value is not None else None
            return
    warn(f"param override key {override.key} with dataType {override.data_type} was not found in the integration json")


async def _apply_connection_override(
    definition: IntegrationDefinition,
    override: ConnectionOverride,
    lookup: ResourceLookup | None,
    warn: _WarningSink,
) -> None:
    found = False
    for task in definition.task_configs:
        if task.task_id != override.task_id or task.task != override.task:
            continue
        if lookup is None or not override.parameters.connection_name:
            warn(f"connection override for task {override.task_id} has no connection to resolve")
            return
        info = await lookup.get_connection(
            override.parameters.connection_name, override.parameters.connection_location or None
        )

        config_param = task.parameters.get("config")
        if config_param is not None and config_param.json_value is not None:
            details = ConnectorTaskConfig.from_json_value(config_param.json_value)
            details.connection.connection_name = info.name
            details.connection.connector_version = info.connector_version
            details.connection.service_name = info.service_directory
            config_param.value = {**config_param.value, "jsonValue": details.to_json_value()}
            if override.parameters.entity_type is not None:
                task.parameters["entityType"] = override.parameters.entity_type.model_copy(deep=True)
            found = True

        # Conector custom: nombre y versión como strings planos.
        version_param = task.parameters.get("connectionVersion")
        if version_param is not None and version_param.string_value is not None:
            version_param.value = {**version_param.value, "stringValue": info.connector_version or ""}
            name_param = task.parameters.get("connectionName")
            if name_param is not None:
                name_param.value = {**name_param.value, "stringValue": info.name}
            found = True
    if not found:
        warn(f"connection override with task id {override.task_id} was not found in the integration json")


def _apply_integration_overrides(definition: IntegrationDefinition, overrides: IntegrationOverrides) -> None:
    if overrides.run_as_service_account is not None:
        definition.run_as_service_account = overrides.run_as_service_account
    if overrides.database_persistence_policy:
        definition.database_persistence_policy = overrides.database_persistence_policy
    if overrides.enable_variable_masking is not None:
        definition.enable_variable_masking = overrides.enable_variable_masking
    if overrides.cloud_logging_details is not None:
        details = definition.cloud_logging_details or CloudLoggingDetails()
        incoming = overrides.cloud_logging_details
        if incoming.cloud_logging_severity is not None:
            details.cloud_logging_severity = incoming.cloud_logging_severity
        if incoming.enable_cloud_logging is not None:
            details.enable_cloud_logging = incoming.enable_cloud_logging
        definition.cloud_logging_details = details


# --- extract ------------------------------------------------------------------


async def extract_overrides(
    definition: IntegrationDefinition,
    *,
    lookup: ResourceLookup | None = None,
) -> OverrideSpec:
    """Build the override template for `definition`.

    Auth configs are carried by display name only; the raw id is never part of
    the template. When a display name cannot be resolved the parameter is
    omitted with a warning.
    """

    spec = OverrideSpec()

    for task in definition.task_configs:
        if task.task == CONNECTOR_TASK:
            connection = _extract_connection(task, definition)
            if connection is not None:
                spec.connection_overrides.append(connection)
        elif task.task == "GenericRestV2Task":
            task_override = await _extract_task(task, "url", lookup)
            if task_override.parameters:
                spec.task_overrides.append(task_override)
        elif task.task == "CloudFunctionTask":
            spec.task_overrides.append(await _extract_task(task, "TriggerUrl", lookup))

    for param in definition.integration_parameters:
        if param.key.startswith("_") and not param.is_io:
            spec.param_overrides.append(
                ParamOverride(
                    key=param.key,
                    data_type=param.data_type,
                    default_value=dict(param.default_value) if param.default_value is not None else None,
                )
            )

    for trigger in definition.trigger_configs:
        trigger_override = _extract_trigger(trigger)
        if trigger_override is not None:
            spec.trigger_overrides.append(trigger_override)

    integration = IntegrationOverrides(
        run_as_service_account=definition.run_as_service_account or None,
        database_persistence_policy=definition.database_persistence_policy or None,
        enable_variable_masking=definition.enable_variable_masking,
        cloud_logging_details=(
            definition.cloud_logging_details.model_copy(deep=True) if definition.cloud_logging_details else None
        ),
    )
    if not integration.is_empty():
        spec.integration_overrides = integration

    return spec


def resolve_connection_name(value: str, definition: IntegrationDefinition) -> str:
    """Resolve a `$`CONFIG_...`` reference and validate the full connection path."""

    name: str | None = value
    if value.startswith(CONFIG_VARIABLE_PREFIX):
        config = definition.config_parameter(value.replace("$", ""))
        name = config.resolved_string() if config is not None else None
    if not name or not _CONNECTION_NAME_RE.search(name):
        raise OverrideError(
            "connection name should be in the format: "
            "projects/{projectId}/locations/{locationId}/connections/{connectionId}"
        )
    return name


def _extract_connection(task: TaskConfig, definition: IntegrationDefinition) -> ConnectionOverride | None:
    name_param = task.parameters.get("connectionName")
    config_param = task.parameters.get("config")

    full_name: str | None = None
    if name_param is not None and name_param.string_value is not None:
        full_name = resolve_connection_name(name_param.string_value, definition)
    elif config_param is not None and config_param.json_value is not None:
        full_name = ConnectorTaskConfig.from_json_value(config_param.json_value).connection.connection_name

    if not full_name:
        return None
    return ConnectionOverride(
        task_id=task.task_id,
        task=task.task,
        parameters=ConnectionOverrideParams(connection_name=full_name.rsplit("/", 1)[-1]),
    )


def _auth_config_id(param: EventParameter) -> str | None:
    raw = param.json_value
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid authConfig parameter: {exc}") from exc
    auth_config_id = data.get("authConfigId") if isinstance(data, dict) else None
    return auth_config_id or None


async def _extract_task(task: TaskConfig, url_key: str, lookup: ResourceLookup | None) -> TaskOverride:
    override = TaskOverride(task_id=task.task_id, task=task.task, display_name=task.display_name)

    url_param = task.parameters.get(url_key)
    if url_param is not None:
        url = url_param.string_value
        if url is None or not url.startswith(CONFIG_VARIABLE_PREFIX):
            override.parameters[url_key] = url_param.model_copy(deep=True)

    auth_param = task.parameters.get("authConfig")
    if auth_param is not None:
        auth_config_id = _auth_config_id(auth_param)
        display_name: str | None = None
        if auth_config_id and lookup is not None:
            try:
                display_name = await lookup.auth_config_display_name(auth_config_id)
            except FlowCtlError as exc:
                logger.warning("cannot resolve auth config %s: %s", auth_config_id, exc)
        if display_name:
            override.parameters["authConfig"] = EventParameter(
                key=auth_param.key or "authConfig",
                value={"stringValue": display_name},
            )
    return override


def _extract_trigger(trigger: TriggerConfig) -> TriggerOverride | None:
    kind = trigger.trigger_type
    if kind == "CLOUD_PUBSUB_EXTERNAL":
        subscription = trigger.properties.get("Subscription name", "")
        # Los project ids no admiten "_": el primer "_" separa proyecto y topic.
        project_id, sep, topic_name = subscription.partition("_")
        if not sep or not project_id or not topic_name:
            logger.warning("cannot split pub/sub subscription %r into project and topic", subscription)
            return None
        override = TriggerOverride(
            trigger_number=trigger.trigger_number,
            trigger_type=kind,
            project_id=project_id,
            topic_name=topic_name,
        )
        service_account = trigger.properties.get("Service account")
        if service_account:
            suffix = f"@{project_id}.{SERVICE_ACCOUNT_DOMAIN}"
            override.service_account = (
                service_account[: -len(suffix)] if service_account.endswith(suffix) else service_account
            )
        return override
    if kind == "CLOUD_SCHEDULER":
        config = trigger.cloud_scheduler_config or CloudSchedulerConfig()
        return TriggerOverride(
            trigger_number=trigger.trigger_number,
            trigger_type=kind,
            cloud_scheduler_service_account=config.service_account_email,
            cloud_scheduler_location=config.location,
            cloud_scheduler_cron_tab=config.cron_tab,
        )
    if kind == "INTEGRATION_CONNECTOR_TRIGGER":
        return TriggerOverride(
            trigger_number=trigger.trigger_number,
            trigger_type=kind,
            properties=dict(trigger.properties),
        )
    return None
