"""最適化アクションのカタログ。

各アクションは前提条件となるFinding IDに紐づき、パース済みJSONドキュメントを
インメモリで変換する。修正済みのドキュメントに対しては何も変更しない（冪等）。
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from bosun.validators.template import SECRET_PARAM_RE, SECURE_TYPES, is_expression

DEPLOYMENT_TEMPLATE_SCHEMA = "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#"
DEFAULT_CONTENT_VERSION = "1.0.0.0"
LOCATION_PARAMETER = "location"
LOCATION_EXPRESSION = f"[parameters('{LOCATION_PARAMETER}')]"

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|[_\-]+")


class OptimizationAction(Protocol):
    """前提条件Findingに紐づく、範囲の限定された冪等な修正。"""

    name: str
    addresses: str
    description: str

    def apply(self, document: dict[str, Any]) -> bool:
        """ドキュメントをインメモリで変換し、変更があったかを返す。"""
        ...


@dataclass(frozen=True)
class DocumentAction:
    """変換関数をラップしたOptimizationAction実装。"""

    name: str
    addresses: str
    description: str
    transform: Callable[[dict[str, Any]], bool]

    def apply(self, document: dict[str, Any]) -> bool:
        return self.transform(document)


def _humanize(name: str) -> str:
    words = [w for w in _CAMEL_RE.split(name) if w]
    if not words:
        return name
    text = " ".join(w.lower() for w in words)
    return text[0].upper() + text[1:]


def _parameters(document: dict[str, Any]) -> dict[str, Any]:
    parameters = document.get("parameters")
    return parameters if isinstance(parameters, dict) else {}


def _resources(items: Any) -> list[dict[str, Any]]:
    """入れ子を含むリソース定義をすべて列挙する。"""
    if isinstance(items, dict):
        items = list(items.values())
    if not isinstance(items, list):
        return []
    found: list[dict[str, Any]] = []
    for resource in items:
        if isinstance(resource, dict):
            found.append(resource)
            found.extend(_resources(resource.get("resources")))
    return found


def add_parameter_descriptions(document: dict[str, Any]) -> bool:
    changed = False
    for name, definition in _parameters(document).items():
        if not isinstance(definition, dict):
            continue
        metadata = definition.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        if metadata.get("description"):
            continue
        metadata["description"] = _humanize(name)
        definition["metadata"] = metadata
        changed = True
    return changed


def add_template_description(document: dict[str, Any]) -> bool:
    metadata = document.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    if metadata.get("description"):
        return False
    types = sorted({str(r["type"]) for r in _resources(document.get("resources")) if r.get("type")})
    metadata["description"] = (
        f"Deploys {', '.join(types)}" if types else "Azure Resource Manager deployment template"
    )
    document["metadata"] = metadata
    return True


def add_content_version(document: dict[str, Any]) -> bool:
    if document.get("contentVersion"):
        return False
    document["contentVersion"] = DEFAULT_CONTENT_VERSION
    return True


def add_template_schema(document: dict[str, Any]) -> bool:
    if document.get("$schema"):
        return False
    # $schemaを先頭に置く
    items = list(document.items())
    document.clear()
    document["$schema"] = DEPLOYMENT_TEMPLATE_SCHEMA
    document.update(items)
    return True


def secure_secret_parameters(document: dict[str, Any]) -> bool:
    changed = False
    for name, definition in _parameters(document).items():
        if not isinstance(definition, dict) or not SECRET_PARAM_RE.search(name):
            continue
        param_type = str(definition.get("type", "")).lower()
        if param_type in SECURE_TYPES:
            continue
        definition["type"] = "secureObject" if param_type == "object" else "securestring"
        changed = True
    return changed


def remove_credential_defaults(document: dict[str, Any]) -> bool:
    changed = False
    for name, definition in _parameters(document).items():
        if not isinstance(definition, dict) or not SECRET_PARAM_RE.search(name):
            continue
        default = definition.get("defaultValue")
        if default in (None, "", {}) or is_expression(default):
            continue
        del definition["defaultValue"]
        changed = True
    return changed


def parameterize_location(document: dict[str, Any]) -> bool:
    changed = False
    for resource in _resources(document.get("resources")):
        location = resource.get("location")
        if not isinstance(location, str) or not location or is_expression(location) or location.lower() == "global":
            continue
        resource["location"] = LOCATION_EXPRESSION
        changed = True
    if changed and LOCATION_PARAMETER not in _parameters(document):
        parameters = _parameters(document)
        parameters[LOCATION_PARAMETER] = {
            "type": "string",
            "defaultValue": "[resourceGroup().location]",
            "metadata": {"description": "Location for all resources"},
        }
        document["parameters"] = parameters
    return changed


def add_outputs(document: dict[str, Any]) -> bool:
    if document.get("outputs"):
        return False
    document["outputs"] = {
        "resourceGroupName": {"type": "string", "value": "[resourceGroup().name]"},
    }
    return True


def _set_resource_property(resource_type: str, key: str, value: Any) -> Callable[[dict[str, Any]], bool]:
    def transform(document: dict[str, Any]) -> bool:
        changed = False
        for resource in _resources(document.get("resources")):
            if str(resource.get("type", "")).lower() != resource_type.lower():
                continue
            properties = resource.get("properties")
            if not isinstance(properties, dict):
                properties = {}
            current = properties.get(key)
            # 式で与えられた値はデプロイ時に決まるため上書きしない
            if current == value or is_expression(current):
                continue
            properties[key] = value
            resource["properties"] = properties
            changed = True
        return changed

    return transform


# 適用順。前のアクションが後続のFindingを増やさない順に並べる
DEFAULT_ACTIONS: tuple[OptimizationAction, ...] = (
    DocumentAction(
        name="add-template-schema",
        addresses="template-schema-missing",
        description="Add the deploymentTemplate $schema",
        transform=add_template_schema,
    ),
    DocumentAction(
        name="add-content-version",
        addresses="content-version-missing",
        description="Add contentVersion 1.0.0.0",
        transform=add_content_version,
    ),
    DocumentAction(
        name="secure-secret-parameters",
        addresses="password-parameter-not-secure",
        description="Convert secret-like parameters to secureString",
        transform=secure_secret_parameters,
    ),
    DocumentAction(
        name="remove-credential-defaults",
        addresses="hardcoded-credential-default",
        description="Remove hard-coded default values from secret parameters",
        transform=remove_credential_defaults,
    ),
    DocumentAction(
        name="parameterize-location",
        addresses="hardcoded-location",
        description="Replace hard-coded resource locations with a location parameter",
        transform=parameterize_location,
    ),
    DocumentAction(
        name="enforce-storage-https",
        addresses="storage-https-only",
        description="Set supportsHttpsTrafficOnly on storage accounts",
        transform=_set_resource_property("Microsoft.Storage/storageAccounts", "supportsHttpsTrafficOnly", True),
    ),
    DocumentAction(
        name="enforce-storage-tls",
        addresses="storage-minimum-tls",
        description="Require TLS 1.2 on storage accounts",
        transform=_set_resource_property("Microsoft.Storage/storageAccounts", "minimumTlsVersion", "TLS1_2"),
    ),
    DocumentAction(
        name="enforce-app-service-https",
        addresses="app-service-https-only",
        description="Set httpsOnly on App Service sites",
        transform=_set_resource_property("Microsoft.Web/sites", "httpsOnly", True),
    ),
    DocumentAction(
        name="add-parameter-description",
        addresses="parameter-description-missing",
        description="Add metadata.description to parameters that lack one",
        transform=add_parameter_descriptions,
    ),
    DocumentAction(
        name="add-template-description",
        addresses="template-description-missing",
        description="Add a template metadata.description",
        transform=add_template_description,
    ),
    DocumentAction(
        name="add-outputs",
        addresses="outputs-missing",
        description="Expose the resource group name as a template output",
        transform=add_outputs,
    ),
)
