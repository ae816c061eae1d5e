"""Tests for override extraction and merging."""

from __future__ import annotations

import json

import pytest

from core.domain.errors import OverrideError
from core.domain.models import (
    ConnectionInfo,
    ConnectorTaskConfig,
    IntegrationDefinition,
    OverrideSpec,
)
from core.services.override_engine import (
    AUTH_CONFIG_PARAM_TYPE,
    PUBSUB_TRIGGER_PREFIX,
    extract_overrides,
    merge_overrides,
    resolve_connection_name,
)
from tests.conftest import InMemoryLookup


def definition(data: dict) -> IntegrationDefinition:
    return IntegrationDefinition.model_validate(data)


def connector_task(connection_name: str) -> dict:
    config = {
        "@type": "type.googleapis.com/enterprise.crm.eventbus.proto.connectors.ConnectorsConnection",
        "connection": {
            "connectionName": connection_name,
            "serviceName": "projects/x/locations/us-central1/namespaces/old/services/old",
            "connectorVersion": "projects/x/locations/global/providers/gcp/connectors/pubsub/versions/1",
        },
        "operation": "EXECUTE_ACTION",
    }
    return {
        "task": "GenericConnectorTask",
        "taskId": "5",
        "parameters": {
            "config": {"key": "config", "value": {"jsonValue": json.dumps(config)}},
            "entityType": {"key": "entityType", "value": {"stringValue": "Orders"}},
        },
    }


@pytest.mark.unit
class TestMergeTriggers:
    @pytest.mark.asyncio
    async def test_pubsub_override(self, pubsub_definition):
        spec = OverrideSpec.model_validate(
            {"trigger_overrides": [{"triggerNumber": "1", "projectId": "proj2", "topicName": "topicB"}]}
        )

        result = await merge_overrides(definition(pubsub_definition), spec)

        trigger = result.definition.trigger_configs[0]
        assert trigger.trigger_id == PUBSUB_TRIGGER_PREFIX + "proj2_topicB"
        assert trigger.trigger_id == (
            "cloud_pubsub_external_trigger/projects/cloud-crm-eventbus-cpsexternal/subscriptions/proj2_topicB"
        )
        assert trigger.properties["Subscription name"] == "proj2_topicB"
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_pubsub_service_account_is_expanded(self, pubsub_definition):
        spec = OverrideSpec.model_validate(
            {
                "trigger_overrides": [
                    {"triggerNumber": "1", "projectId": "proj2", "topicName": "t", "serviceAccount": "invoker"}
                ]
            }
        )

        result = await merge_overrides(definition(pubsub_definition), spec)

        props = result.definition.trigger_configs[0].properties
        assert props["Service account"] == "invoker@proj2.iam.gserviceaccount.com"

    @pytest.mark.asyncio
    async def test_pubsub_requires_project_and_topic(self, pubsub_definition):
        spec = OverrideSpec.model_validate({"trigger_overrides": [{"triggerNumber": "1", "projectId": "proj2"}]})

        with pytest.raises(OverrideError):
            await merge_overrides(definition(pubsub_definition), spec)

    @pytest.mark.asyncio
    async def test_unknown_trigger_number_warns_once_and_changes_nothing(self, pubsub_definition):
        original = definition(pubsub_definition)
        spec = OverrideSpec.model_validate(
            {"trigger_overrides": [{"triggerNumber": "99", "projectId": "p", "topicName": "t"}]}
        )

        result = await merge_overrides(original, spec)

        assert len(result.warnings) == 1
        assert "99" in result.warnings[0]
        assert result.definition.to_payload() == original.to_payload()

    @pytest.mark.asyncio
    async def test_strict_mode_escalates_warnings(self, pubsub_definition):
        spec = OverrideSpec.model_validate({"trigger_overrides": [{"triggerNumber": "99"}]})

        with pytest.raises(OverrideError):
            await merge_overrides(definition(pubsub_definition), spec, strict=True)

    @pytest.mark.asyncio
    async def test_api_trigger(self):
        d = definition(
            {"triggerConfigs": [{"triggerNumber": "1", "triggerType": "API", "triggerId": "api_trigger/old", "properties": {}}]}
        )
        spec = OverrideSpec.model_validate(
            {"trigger_overrides": [{"triggerNumber": "1", "apiPath": "orders_prod", "properties": {"k": "v"}}]}
        )

        result = await merge_overrides(d, spec)

        trigger = result.definition.trigger_configs[0]
        assert trigger.trigger_id == "api_trigger/orders_prod"
        assert trigger.properties == {"k": "v"}

    @pytest.mark.asyncio
    async def test_api_trigger_requires_path(self):
        d = definition({"triggerConfigs": [{"triggerNumber": "1", "triggerType": "API"}]})
        spec = OverrideSpec.model_validate({"trigger_overrides": [{"triggerNumber": "1"}]})

        with pytest.raises(OverrideError):
            await merge_overrides(d, spec)

    @pytest.mark.asyncio
    async def test_scheduler_trigger(self):
        d = definition(
            {
                "triggerConfigs": [
                    {
                        "triggerNumber": "2",
                        "triggerType": "CLOUD_SCHEDULER",
                        "cloudSchedulerConfig": {"cronTab": "0 * * * *", "location": "us-central1"},
                    }
                ]
            }
        )
        spec = OverrideSpec.model_validate(
            {"trigger_overrides": [{"triggerNumber": "2", "cloudSchedulerCronTab": "*/5 * * * *"}]}
        )

        result = await merge_overrides(d, spec)

        config = result.definition.trigger_configs[0].cloud_scheduler_config
        assert config.cron_tab == "*/5 * * * *"
        assert config.location == "us-central1"

    @pytest.mark.asyncio
    async def test_unsupported_trigger_type_warns(self):
        d = definition({"triggerConfigs": [{"triggerNumber": "1", "triggerType": "SFDC_CHANNEL"}]})
        spec = OverrideSpec.model_validate({"trigger_overrides": [{"triggerNumber": "1"}]})

        result = await merge_overrides(d, spec)

        assert result.warnings == ["unsupported trigger type SFDC_CHANNEL"]


@pytest.mark.unit
class TestMergeTasksAndParams:
    @pytest.mark.asyncio
    async def test_task_parameter_is_replaced(self, pubsub_definition):
        spec = OverrideSpec.model_validate(
            {
                "task_overrides": [
                    {
                        "taskId": "2",
                        "task": "GenericRestV2Task",
                        "parameters": {"url": {"key": "url", "value": {"stringValue": "https://prod.example.com"}}},
                    }
                ]
            }
        )

        result = await merge_overrides(definition(pubsub_definition), spec)

        params = result.definition.task_configs[0].parameters
        assert params["url"].string_value == "https://prod.example.com"
        assert params["httpMethod"].string_value == "POST"

    @pytest.mark.asyncio
    async def test_unknown_task_parameter_warns(self, pubsub_definition):
        spec = OverrideSpec.model_validate(
            {
                "task_overrides": [
                    {"taskId": "2", "task": "GenericRestV2Task", "parameters": {"timeout": {"key": "timeout", "value": {}}}}
                ]
            }
        )

        result = await merge_overrides(definition(pubsub_definition), spec)

        assert result.warnings == ["override param timeout was not found"]

    @pytest.mark.asyncio
    async def test_auth_config_is_resolved_by_display_name(self):
        d = definition(
            {
                "taskConfigs": [
                    {
                        "task": "GenericRestV2Task",
                        "taskId": "1",
                        "parameters": {"authConfig": {"key": "authConfig", "value": {"jsonValue": "{}"}}},
                    }
                ]
            }
        )
        spec = OverrideSpec.model_validate(
            {
                "task_overrides": [
                    {
                        "taskId": "1",
                        "task": "GenericRestV2Task",
                        "parameters": {"authConfig": {"key": "authConfig", "value": {"stringValue": "prod-oauth"}}},
                    }
                ]
            }
        )
        lookup = InMemoryLookup(auth_configs={"ac-123": "prod-oauth"})

        result = await merge_overrides(d, spec, lookup=lookup)

        raw = result.definition.task_configs[0].parameters["authConfig"].json_value
        assert json.loads(raw) == {"@type": AUTH_CONFIG_PARAM_TYPE, "authConfigId": "ac-123"}

    @pytest.mark.asyncio
    async def test_auth_config_lookup_failure_leaves_task_unchanged(self):
        d = definition(
            {
                "taskConfigs": [
                    {
                        "task": "GenericRestV2Task",
                        "taskId": "1",
                        "parameters": {
                            "url": {"key": "url", "value": {"stringValue": "https://dev"}},
                            "authConfig": {"key": "authConfig", "value": {"jsonValue": "{}"}},
                        },
                    }
                ]
            }
        )
        spec = OverrideSpec.model_validate(
            {
                "task_overrides": [
                    {
                        "taskId": "1",
                        "task": "GenericRestV2Task",
                        "parameters": {
                            "url": {"key": "url", "value": {"stringValue": "https://prod"}},
                            "authConfig": {"key": "authConfig", "value": {"stringValue": "missing"}},
                        },
                    }
                ]
            }
        )

        result = await merge_overrides(d, spec, lookup=InMemoryLookup())

        params = result.definition.task_configs[0].parameters
        assert params["url"].string_value == "https://dev"
        assert len(result.warnings) == 1

    @pytest.mark.asyncio
    async def test_param_override_only_touches_promotable_params(self, pubsub_definition):
        spec = OverrideSpec.model_validate(
            {
                "param_overrides": [
                    {"key": "_endpoint", "defaultValue": {"stringValue": "prod"}},
                    {"key": "_input", "defaultValue": {"stringValue": "x"}},
                ]
            }
        )

        result = await merge_overrides(definition(pubsub_definition), spec)

        params = {p.key: p for p in result.definition.integration_parameters}
        assert params["_endpoint"].default_value == {"stringValue": "prod"}
        assert params["_input"].default_value is None
        assert len(result.warnings) == 1

    @pytest.mark.asyncio
    async def test_integration_overrides_apply_only_given_fields(self):
        d = definition({"databasePersistencePolicy": "DATABASE_PERSISTENCE_DISABLED", "enableVariableMasking": True})
        spec = OverrideSpec.model_validate({"integration_overrides": {"runAsServiceAccount": "sa@p.iam.gserviceaccount.com"}})

        result = await merge_overrides(d, spec)

        assert result.definition.run_as_service_account == "sa@p.iam.gserviceaccount.com"
        assert result.definition.database_persistence_policy == "DATABASE_PERSISTENCE_DISABLED"
        assert result.definition.enable_variable_masking is True

    @pytest.mark.asyncio
    async def test_input_is_not_mutated(self, pubsub_definition):
        original = definition(pubsub_definition)
        before = original.to_payload()
        spec = OverrideSpec.model_validate(
            {"trigger_overrides": [{"triggerNumber": "1", "projectId": "proj2", "topicName": "topicB"}]}
        )

        await merge_overrides(original, spec)

        assert original.to_payload() == before


@pytest.mark.unit
class TestMergeConnections:
    @pytest.mark.asyncio
    async def test_connection_override_rewrites_typed_config(self):
        d = definition({"taskConfigs": [connector_task("projects/dev/locations/us-central1/connections/pubsub-dev")]})
        spec = OverrideSpec.model_validate(
            {
                "connection_overrides": [
                    {
                        "taskId": "5",
                        "task": "GenericConnectorTask",
                        "parameters": {
                            "connectionName": "pubsub-prod",
                            "entityType": {"key": "entityType", "value": {"stringValue": "Invoices"}},
                        },
                    }
                ]
            }
        )
        info = ConnectionInfo(
            name="projects/prod/locations/us-central1/connections/pubsub-prod",
            connector_version="projects/prod/locations/global/providers/gcp/connectors/pubsub/versions/2",
            service_directory="projects/prod/locations/us-central1/namespaces/ns/services/svc",
        )
        lookup = InMemoryLookup(connections={"pubsub-prod": info})

        result = await merge_overrides(d, spec, lookup=lookup)

        task = result.definition.task_configs[0]
        config = ConnectorTaskConfig.from_json_value(task.parameters["config"].json_value)
        assert config.connection.connection_name == info.name
        assert config.connection.connector_version == info.connector_version
        assert config.connection.service_name == info.service_directory
        assert config.operation == "EXECUTE_ACTION"
        assert config.type_url.endswith("ConnectorsConnection")
        assert task.parameters["entityType"].string_value == "Invoices"
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_connection_overrides_are_skipped_under_dry_run(self):
        d = definition({"taskConfigs": [connector_task("projects/dev/locations/us-central1/connections/c")]})
        spec = OverrideSpec.model_validate(
            {"connection_overrides": [{"taskId": "5", "task": "GenericConnectorTask", "parameters": {"connectionName": "x"}}]}
        )
        lookup = InMemoryLookup()

        result = await merge_overrides(d, spec, lookup=lookup, dry_run=True)

        assert lookup.calls == []
        assert result.definition.to_payload() == d.to_payload()

    @pytest.mark.asyncio
    async def test_custom_connector_strings_are_rewritten(self):
        d = definition(
            {
                "taskConfigs": [
                    {
                        "task": "GenericConnectorTask",
                        "taskId": "7",
                        "parameters": {
                            "connectionName": {"key": "connectionName", "value": {"stringValue": "old"}},
                            "connectionVersion": {"key": "connectionVersion", "value": {"stringValue": "v1"}},
                        },
                    }
                ]
            }
        )
        spec = OverrideSpec.model_validate(
            {"connection_overrides": [{"taskId": "7", "task": "GenericConnectorTask", "parameters": {"connectionName": "new"}}]}
        )
        lookup = InMemoryLookup(connections={"new": ConnectionInfo(name="projects/p/locations/r/connections/new", connector_version="v2")})

        result = await merge_overrides(d, spec, lookup=lookup)

        params = result.definition.task_configs[0].parameters
        assert params["connectionVersion"].string_value == "v2"
        assert params["connectionName"].string_value == "projects/p/locations/r/connections/new"


@pytest.mark.unit
class TestExtract:
    @pytest.mark.asyncio
    async def test_extract_pubsub_rest_and_params(self, pubsub_definition):
        spec = await extract_overrides(definition(pubsub_definition))

        assert len(spec.trigger_overrides) == 1
        trigger = spec.trigger_overrides[0]
        assert (trigger.project_id, trigger.topic_name, trigger.service_account) == ("proj1", "topicA", "runner")
        assert [t.task_id for t in spec.task_overrides] == ["2"]
        assert set(spec.task_overrides[0].parameters) == {"url"}
        assert [p.key for p in spec.param_overrides] == ["_endpoint"]

    @pytest.mark.asyncio
    async def test_config_variable_urls_are_not_extracted(self):
        d = definition(
            {
                "taskConfigs": [
                    {
                        "task": "GenericRestV2Task",
                        "taskId": "1",
                        "parameters": {"url": {"key": "url", "value": {"stringValue": "$`CONFIG_backend_url`"}}},
                    }
                ]
            }
        )

        spec = await extract_overrides(d)

        assert spec.task_overrides == []

    @pytest.mark.asyncio
    async def test_auth_config_is_extracted_as_display_name(self):
        raw = json.dumps({"@type": AUTH_CONFIG_PARAM_TYPE, "authConfigId": "ac-9"})
        d = definition(
            {
                "taskConfigs": [
                    {
                        "task": "CloudFunctionTask",
                        "taskId": "4",
                        "parameters": {
                            "TriggerUrl": {"key": "TriggerUrl", "value": {"stringValue": "https://fn"}},
                            "authConfig": {"key": "authConfig", "value": {"jsonValue": raw}},
                        },
                    }
                ]
            }
        )

        spec = await extract_overrides(d, lookup=InMemoryLookup(auth_configs={"ac-9": "fn-auth"}))

        params = spec.task_overrides[0].parameters
        assert params["authConfig"].string_value == "fn-auth"
        assert "ac-9" not in json.dumps(spec.to_payload())

    @pytest.mark.asyncio
    async def test_connection_name_from_config_and_config_variable(self):
        d = definition(
            {
                "taskConfigs": [
                    connector_task("projects/dev/locations/us-central1/connections/pubsub-dev"),
                    {
                        "task": "GenericConnectorTask",
                        "taskId": "6",
                        "parameters": {
                            "connectionName": {"key": "connectionName", "value": {"stringValue": "$`CONFIG_conn`"}},
                            "connectionVersion": {"key": "connectionVersion", "value": {"stringValue": "v1"}},
                        },
                    },
                ],
                "integrationConfigParameters": [
                    {
                        "parameter": {"key": "`CONFIG_conn`", "dataType": "STRING_VALUE"},
                        "value": {"stringValue": "projects/dev/locations/us-central1/connections/custom-dev"},
                    }
                ],
            }
        )

        spec = await extract_overrides(d)

        names = [c.parameters.connection_name for c in spec.connection_overrides]
        assert names == ["pubsub-dev", "custom-dev"]

    def test_invalid_connection_name_is_rejected(self):
        with pytest.raises(OverrideError):
            resolve_connection_name("not-a-path", definition({}))

    @pytest.mark.asyncio
    async def test_subscription_without_underscore_is_skipped(self):
        d = definition(
            {
                "triggerConfigs": [
                    {"triggerNumber": "1", "triggerType": "CLOUD_PUBSUB_EXTERNAL", "properties": {"Subscription name": "bad"}}
                ]
            }
        )

        spec = await extract_overrides(d)

        assert spec.trigger_overrides == []

    @pytest.mark.asyncio
    async def test_merge_of_extract_is_idempotent(self, pubsub_definition):
        d = definition(pubsub_definition).to_external()

        spec = await extract_overrides(d)
        result = await merge_overrides(d, spec)

        assert result.warnings == []
        assert result.definition.to_payload() == d.to_payload()

    @pytest.mark.asyncio
    async def test_template_round_trips_through_json(self, pubsub_definition):
        spec = await extract_overrides(definition(pubsub_definition))

        payload = spec.to_payload()
        again = OverrideSpec.from_json(json.dumps(payload))

        assert "trigger_overrides" in payload
        assert payload["trigger_overrides"][0]["triggerNumber"] == "1"
        assert again.to_payload() == payload
