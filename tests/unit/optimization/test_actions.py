"""最適化アクションのユニットテスト。"""

from typing import Any

import pytest

from bosun.optimization.actions import (
    DEFAULT_ACTIONS,
    DEPLOYMENT_TEMPLATE_SCHEMA,
    add_content_version,
    add_outputs,
    add_parameter_descriptions,
    add_template_description,
    add_template_schema,
    parameterize_location,
    remove_credential_defaults,
    secure_secret_parameters,
)


class TestDocumentActions:
    def test_add_parameter_descriptions(self) -> None:
        document: dict[str, Any] = {
            "parameters": {
                "storageAccountName": {"type": "string"},
                "sku_name": {"type": "string", "metadata": {}},
                "location": {"type": "string", "metadata": {"description": "Keep me"}},
            }
        }
        assert add_parameter_descriptions(document) is True
        parameters = document["parameters"]
        assert parameters["storageAccountName"]["metadata"]["description"] == "Storage account name"
        assert parameters["sku_name"]["metadata"]["description"] == "Sku name"
        assert parameters["location"]["metadata"]["description"] == "Keep me"
        assert add_parameter_descriptions(document) is False

    def test_add_template_description_lists_resource_types(self) -> None:
        document: dict[str, Any] = {
            "resources": [
                {"type": "Microsoft.Web/sites", "resources": [{"type": "Microsoft.Web/sites/config"}]},
                {"type": "Microsoft.Storage/storageAccounts"},
            ]
        }
        assert add_template_description(document) is True
        assert document["metadata"]["description"] == (
            "Deploys Microsoft.Storage/storageAccounts, Microsoft.Web/sites, Microsoft.Web/sites/config"
        )
        assert add_template_description(document) is False

    def test_add_template_description_without_resources(self) -> None:
        document: dict[str, Any] = {"metadata": {"author": "contoso"}}
        assert add_template_description(document) is True
        assert document["metadata"] == {
            "author": "contoso",
            "description": "Azure Resource Manager deployment template",
        }

    def test_add_content_version(self) -> None:
        document: dict[str, Any] = {}
        assert add_content_version(document) is True
        assert document["contentVersion"] == "1.0.0.0"
        assert add_content_version(document) is False

    def test_add_template_schema_is_first_key(self) -> None:
        document: dict[str, Any] = {"contentVersion": "1.0.0.0", "resources": []}
        assert add_template_schema(document) is True
        assert list(document) == ["$schema", "contentVersion", "resources"]
        assert document["$schema"] == DEPLOYMENT_TEMPLATE_SCHEMA
        assert add_template_schema(document) is False

    def test_secure_secret_parameters(self) -> None:
        document: dict[str, Any] = {
            "parameters": {
                "adminPassword": {"type": "string"},
                "connectionStrings": {"type": "object"},
                "apiToken": {"type": "secureString"},
                "adminUsername": {"type": "string"},
            }
        }
        assert secure_secret_parameters(document) is True
        parameters = document["parameters"]
        assert parameters["adminPassword"]["type"] == "securestring"
        assert parameters["connectionStrings"]["type"] == "secureObject"
        assert parameters["apiToken"]["type"] == "secureString"
        assert parameters["adminUsername"]["type"] == "string"
        assert secure_secret_parameters(document) is False

    def test_remove_credential_defaults(self) -> None:
        document: dict[str, Any] = {
            "parameters": {
                "adminPassword": {"type": "securestring", "defaultValue": "P@ssw0rd!"},
                "sasToken": {"type": "securestring", "defaultValue": "[newGuid()]"},
                "adminUsername": {"type": "string", "defaultValue": "azureuser"},
            }
        }
        assert remove_credential_defaults(document) is True
        parameters = document["parameters"]
        assert "defaultValue" not in parameters["adminPassword"]
        assert parameters["sasToken"]["defaultValue"] == "[newGuid()]"
        assert parameters["adminUsername"]["defaultValue"] == "azureuser"
        assert remove_credential_defaults(document) is False

    def test_parameterize_location_adds_parameter(self) -> None:
        document: dict[str, Any] = {
            "resources": [
                {"type": "Microsoft.Storage/storageAccounts", "location": "japaneast"},
                {"type": "Microsoft.Network/frontDoors", "location": "global"},
            ]
        }
        assert parameterize_location(document) is True
        assert document["resources"][0]["location"] == "[parameters('location')]"
        assert document["resources"][1]["location"] == "global"
        location = document["parameters"]["location"]
        assert location["defaultValue"] == "[resourceGroup().location]"
        assert location["metadata"]["description"]
        assert parameterize_location(document) is False

    def test_parameterize_location_keeps_existing_parameter(self) -> None:
        existing = {"type": "string", "defaultValue": "japaneast", "metadata": {"description": "Region"}}
        document: dict[str, Any] = {
            "parameters": {"location": dict(existing)},
            "resources": [{"type": "Microsoft.Web/sites", "location": "westus"}],
        }
        assert parameterize_location(document) is True
        assert document["parameters"]["location"] == existing

    def test_add_outputs(self) -> None:
        document: dict[str, Any] = {"outputs": {}}
        assert add_outputs(document) is True
        assert document["outputs"]["resourceGroupName"]["value"] == "[resourceGroup().name]"
        assert add_outputs(document) is False


class TestCatalog:
    def test_action_names_are_unique(self) -> None:
        names = [action.name for action in DEFAULT_ACTIONS]
        assert len(names) == len(set(names))

    def test_each_action_addresses_a_distinct_finding(self) -> None:
        addressed = [action.addresses for action in DEFAULT_ACTIONS]
        assert len(addressed) == len(set(addressed))

    @pytest.mark.parametrize(
        ("name", "resource_type", "key", "value"),
        [
            ("enforce-storage-https", "Microsoft.Storage/storageAccounts", "supportsHttpsTrafficOnly", True),
            ("enforce-storage-tls", "Microsoft.Storage/storageAccounts", "minimumTlsVersion", "TLS1_2"),
            ("enforce-app-service-https", "Microsoft.Web/sites", "httpsOnly", True),
        ],
    )
    def test_resource_property_actions(self, name: str, resource_type: str, key: str, value: Any) -> None:
        action = next(a for a in DEFAULT_ACTIONS if a.name == name)
        document: dict[str, Any] = {
            "resources": [
                {"type": resource_type, "properties": {"other": 1}},
                {"type": "Microsoft.Insights/components"},
            ]
        }
        assert action.apply(document) is True
        assert document["resources"][0]["properties"] == {"other": 1, key: value}
        assert "properties" not in document["resources"][1]
        assert action.apply(document) is False

    def test_resource_property_action_keeps_expression_values(self) -> None:
        action = next(a for a in DEFAULT_ACTIONS if a.name == "enforce-storage-tls")
        document: dict[str, Any] = {
            "resources": [
                {
                    "type": "Microsoft.Storage/storageAccounts",
                    "name": "parameterized",
                    "properties": {"minimumTlsVersion": "[parameters('minTls')]"},
                },
                {"type": "Microsoft.Storage/storageAccounts", "name": "literal", "properties": {}},
            ]
        }
        assert action.apply(document) is True
        assert document["resources"][0]["properties"] == {"minimumTlsVersion": "[parameters('minTls')]"}
        assert document["resources"][1]["properties"] == {"minimumTlsVersion": "TLS1_2"}
        assert action.apply(document) is False
