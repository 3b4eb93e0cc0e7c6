"""テンプレート組み込みルールチェッカー。

外部バリデータとは別に、YAMLで定義したリソースプロパティ要件と
コードで実装した構造・セキュリティルールでアーティファクトを検証する。
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml

from bosun.models.validation import (
    ArtifactKind,
    Dimension,
    Finding,
    Severity,
    SourceLocation,
    ValidationRule,
    ValidationTarget,
)
from bosun.security.inputs import sanitize_for_display

logger = logging.getLogger(__name__)

TOOL = "bosun"

# コードベースのルールがカバーするディメンション
_CODE_RULE_DIMENSIONS: dict[ArtifactKind, frozenset[Dimension]] = {
    "template": frozenset({"structure", "security", "compliance"}),
    "ui_definition": frozenset({"structure"}),
    "view_definition": frozenset({"structure"}),
}

# パスワード等の機密値とみなすパラメータ名
SECRET_PARAM_RE = re.compile(r"(password|passwd|secret|token|apikey|api_key|connectionstring)", re.IGNORECASE)
SECURE_TYPES = {"securestring", "secureobject"}

UI_DEFINITION_HANDLER = "Microsoft.Azure.CreateUIDef"
UI_DEFINITION_VERSION = "0.1.2-preview"


def is_expression(value: Any) -> bool:
    """ARMテンプレート式（"[...]"）かどうか。式の値は静的に評価しない。"""
    return isinstance(value, str) and value.startswith("[") and value.endswith("]") and not value.startswith("[[")


def _metadata_description(holder: dict[str, Any]) -> Any:
    """metadata.description を返す。metadataがオブジェクトでなければ説明なしとみなす。"""
    metadata = holder.get("metadata")
    return metadata.get("description") if isinstance(metadata, dict) else None


def _lookup(data: Any, dotted_key: str) -> tuple[bool, Any]:
    current = data
    for part in dotted_key.split("."):
        if not isinstance(current, dict) or part not in current:
            return False, None
        current = current[part]
    return True, current


def _pointer_token(value: str) -> str:
    return value.replace("~", "~0").replace("/", "~1")


class TemplateRuleChecker:
    """組み込みルールに基づくアーティファクト検証を行う。"""

    def __init__(self, config_dir: Path) -> None:
        self._config_dir = config_dir
        self._rules: list[ValidationRule] | None = None

    def _load_rules(self) -> list[ValidationRule]:
        """バリデーションルールをYAMLファイルから読み込む。"""
        if self._rules is not None:
            return self._rules

        rules: list[ValidationRule] = []
        rules_dir = self._config_dir / "validation-rules"
        if not rules_dir.exists():
            self._rules = rules
            return rules

        for rule_file in sorted(rules_dir.glob("*.yaml")):
            with open(rule_file, encoding="utf-8") as f:
                data = yaml.safe_load(f)
            if data and "rules" in data:
                for rule_data in data["rules"]:
                    rules.append(ValidationRule.model_validate(rule_data))

        logger.debug("Loaded %d validation rules from %s", len(rules), rules_dir)
        self._rules = rules
        return rules

    @property
    def rules(self) -> list[ValidationRule]:
        return list(self._load_rules())

    def covered_dimensions(self, target: ValidationTarget) -> frozenset[Dimension]:
        """対象に適用されるルールがカバーするディメンションを返す。"""
        covered: set[Dimension] = set()
        for _, kind in target.artifact_files():
            covered |= _CODE_RULE_DIMENSIONS.get(kind, frozenset())
            covered |= {r.dimension for r in self._load_rules() if kind in r.artifact_kinds}
        return frozenset(covered)

    def check(self, target: ValidationTarget) -> list[Finding]:
        """対象のアーティファクトを組み込みルールで検証する。

        Args:
            target: 検証対象。package_rootの場合は含まれる各ファイルを検証する。

        Returns:
            検出された問題のリスト。問題がない場合は空リスト。
        """
        findings: list[Finding] = []
        if target.kind == "package_root":
            files = target.artifact_files()
            if not any(kind == "template" for _, kind in files):
                findings.append(
                    _finding(
                        "package-main-template-missing",
                        "error",
                        "structure",
                        "Package root does not contain mainTemplate.json",
                        "Add mainTemplate.json to the root of the package",
                    )
                )
        else:
            files = [(target.path, target.kind)]

        for file_path, kind in files:
            label = self._label(target, file_path)
            try:
                document = json.loads(file_path.read_text(encoding="utf-8-sig"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                findings.append(
                    _finding(
                        "invalid-json",
                        "error",
                        "structure",
                        f"{label} is not valid JSON: {_shown(str(e))}",
                        "Fix the JSON syntax of the file",
                        SourceLocation(file=label, line=getattr(e, "lineno", None)),
                    )
                )
                continue
            if not isinstance(document, dict):
                findings.append(
                    _finding(
                        "invalid-json",
                        "error",
                        "structure",
                        f"{label} must contain a JSON object",
                        "Make the top-level value a JSON object",
                        SourceLocation(file=label),
                    )
                )
                continue
            findings.extend(self.check_document(document, kind, label))
        return findings

    def check_document(self, document: dict[str, Any], kind: ArtifactKind, label: str) -> list[Finding]:
        """パース済みのドキュメントにルールを適用する。"""
        findings: list[Finding] = []
        for rule in self._load_rules():
            if kind in rule.artifact_kinds:
                findings.extend(self._apply_rule(rule, document, label))

        if kind == "template":
            findings.extend(self._check_template_header(document, label))
            findings.extend(self._check_parameters(document, label))
            findings.extend(self._check_resources(document, label))
            findings.extend(self._check_metadata_and_outputs(document, label))
        elif kind == "ui_definition":
            findings.extend(self._check_ui_definition(document, label))
        elif kind == "view_definition":
            findings.extend(self._check_view_definition(document, label))
        return findings

    @staticmethod
    def _label(target: ValidationTarget, file_path: Path) -> str:
        if target.kind == "package_root":
            return sanitize_for_display(file_path.relative_to(target.path).as_posix(), max_length=256)
        return sanitize_for_display(file_path.name, max_length=256)

    def _apply_rule(self, rule: ValidationRule, document: dict[str, Any], label: str) -> list[Finding]:
        """単一のバリデーションルールを適用する。"""
        results: list[Finding] = []
        resource_type = rule.condition.get("resource_type")
        if resource_type is None:
            return results

        for pointer, resource in _walk_resources(document):
            if str(resource.get("type", "")).lower() != str(resource_type).lower():
                continue
            violation = self._check_requirement(rule, resource)
            if violation:
                name = _shown(resource.get("name", ""))
                results.append(
                    _finding(
                        rule.id,
                        rule.severity,
                        rule.dimension,
                        f"{rule.description} ({violation}, resource {name})",
                        rule.recommendation,
                        SourceLocation(file=label, pointer=pointer),
                    )
                )
        return results

    def _check_requirement(self, rule: ValidationRule, resource: dict[str, Any]) -> str | None:
        """ルールの要件が満たされていないかチェックする。

        Returns:
            違反がある場合は違反したプロパティの説明、問題なしの場合はNone。
        """
        requirement = rule.requirement
        properties = resource.get("properties") or {}

        # properties チェック: リソースのプロパティ値を検証
        expected_props = requirement.get("properties")
        if expected_props is not None:
            for key, expected_value in expected_props.items():
                found, actual_value = _lookup(properties, key)
                if found and is_expression(actual_value):
                    continue
                if not found or actual_value != expected_value:
                    return f"properties.{key} must be {json.dumps(expected_value)}"

        for key in requirement.get("present", []) or []:
            found, _ = _lookup(resource, key)
            if not found:
                return f"{key} is required"

        return None

    @staticmethod
    def _check_template_header(document: dict[str, Any], label: str) -> list[Finding]:
        """$schema と contentVersion の存在チェック。"""
        results: list[Finding] = []
        if not document.get("$schema"):
            results.append(
                _finding(
                    "template-schema-missing",
                    "error",
                    "structure",
                    "Template does not declare $schema",
                    "Add the deploymentTemplate $schema URL to the template",
                    SourceLocation(file=label, pointer=""),
                )
            )
        if not document.get("contentVersion"):
            results.append(
                _finding(
                    "content-version-missing",
                    "warning",
                    "structure",
                    "Template does not declare contentVersion",
                    'Add "contentVersion": "1.0.0.0" to the template',
                    SourceLocation(file=label, pointer=""),
                )
            )
        return results

    @staticmethod
    def _check_parameters(document: dict[str, Any], label: str) -> list[Finding]:
        """パラメータの説明・機密パラメータの型・既定値チェック。"""
        results: list[Finding] = []
        parameters = document.get("parameters") or {}
        if not isinstance(parameters, dict):
            return results

        for name, definition in parameters.items():
            if not isinstance(definition, dict):
                continue
            pointer = f"/parameters/{_pointer_token(name)}"
            location = SourceLocation(file=label, pointer=pointer)
            description = _metadata_description(definition)
            if not description:
                results.append(
                    _finding(
                        "parameter-description-missing",
                        "warning",
                        "structure",
                        f"Parameter {_shown(name)} has no metadata.description",
                        "Describe the parameter in metadata.description",
                        location,
                    )
                )

            param_type = str(definition.get("type", "")).lower()
            if not SECRET_PARAM_RE.search(name):
                continue
            if param_type not in SECURE_TYPES:
                results.append(
                    _finding(
                        "password-parameter-not-secure",
                        "error",
                        "security",
                        f"Parameter {_shown(name)} looks like a secret but is of type {_shown(param_type) or 'unknown'}",
                        "Declare secret parameters as secureString",
                        location,
                    )
                )
            default = definition.get("defaultValue")
            if default not in (None, "", {}) and not is_expression(default):
                results.append(
                    _finding(
                        "hardcoded-credential-default",
                        "error",
                        "security",
                        f"Parameter {_shown(name)} has a hard-coded default value",
                        "Remove the defaultValue and supply the secret at deployment time",
                        location,
                    )
                )
        return results

    @staticmethod
    def _check_resources(document: dict[str, Any], label: str) -> list[Finding]:
        """リソースのapiVersionとlocationのチェック。"""
        results: list[Finding] = []
        for pointer, resource in _walk_resources(document):
            name = _shown(resource.get("name", ""))
            if not resource.get("apiVersion"):
                results.append(
                    _finding(
                        "resource-api-version-missing",
                        "error",
                        "structure",
                        f"Resource {name} ({_shown(resource.get('type', 'unknown type'))}) has no apiVersion",
                        "Pin an explicit apiVersion for every resource",
                        SourceLocation(file=label, pointer=pointer),
                    )
                )
            location = resource.get("location")
            if isinstance(location, str) and location and not is_expression(location) and location.lower() != "global":
                results.append(
                    _finding(
                        "hardcoded-location",
                        "warning",
                        "compliance",
                        f"Resource {name} has a hard-coded location {_shown(location)}",
                        "Use a location parameter or [resourceGroup().location]",
                        SourceLocation(file=label, pointer=f"{pointer}/location"),
                    )
                )
        return results

    @staticmethod
    def _check_metadata_and_outputs(document: dict[str, Any], label: str) -> list[Finding]:
        results: list[Finding] = []
        if not _metadata_description(document):
            results.append(
                _finding(
                    "template-description-missing",
                    "info",
                    "structure",
                    "Template has no metadata.description",
                    "Describe the template in metadata.description",
                    SourceLocation(file=label, pointer="/metadata"),
                )
            )
        if not document.get("outputs"):
            results.append(
                _finding(
                    "outputs-missing",
                    "info",
                    "structure",
                    "Template defines no outputs",
                    "Expose deployment results (resource ids, endpoints) as outputs",
                    SourceLocation(file=label, pointer="/outputs"),
                )
            )
        return results

    @staticmethod
    def _check_ui_definition(document: dict[str, Any], label: str) -> list[Finding]:
        """createUiDefinition.json の handler / version / outputs チェック。"""
        results: list[Finding] = []
        if document.get("handler") != UI_DEFINITION_HANDLER:
            results.append(
                _finding(
                    "ui-definition-handler-invalid",
                    "error",
                    "structure",
                    f"createUiDefinition handler must be {UI_DEFINITION_HANDLER}",
                    f'Set "handler": "{UI_DEFINITION_HANDLER}"',
                    SourceLocation(file=label, pointer="/handler"),
                )
            )
        if document.get("version") != UI_DEFINITION_VERSION:
            results.append(
                _finding(
                    "ui-definition-version-invalid",
                    "error",
                    "structure",
                    f"createUiDefinition version must be {UI_DEFINITION_VERSION}",
                    f'Set "version": "{UI_DEFINITION_VERSION}"',
                    SourceLocation(file=label, pointer="/version"),
                )
            )
        parameters = document.get("parameters") or {}
        if not isinstance(parameters, dict) or not parameters.get("outputs"):
            results.append(
                _finding(
                    "ui-definition-outputs-missing",
                    "error",
                    "structure",
                    "createUiDefinition does not map any outputs to template parameters",
                    "Add parameters.outputs mapping UI elements to mainTemplate parameters",
                    SourceLocation(file=label, pointer="/parameters/outputs"),
                )
            )
        return results

    @staticmethod
    def _check_view_definition(document: dict[str, Any], label: str) -> list[Finding]:
        results: list[Finding] = []
        if not document.get("$schema"):
            results.append(
                _finding(
                    "view-definition-schema-missing",
                    "warning",
                    "structure",
                    "viewDefinition does not declare $schema",
                    "Add the viewDefinition $schema URL",
                    SourceLocation(file=label, pointer=""),
                )
            )
        if not isinstance(document.get("views"), list):
            results.append(
                _finding(
                    "view-definition-views-missing",
                    "error",
                    "structure",
                    "viewDefinition must contain a views array",
                    "Add a views array to viewDefinition.json",
                    SourceLocation(file=label, pointer="/views"),
                )
            )
        return results


def _walk_resources(document: dict[str, Any], base: str = "") -> list[tuple[str, dict[str, Any]]]:
    """resources配列（入れ子のresourcesを含む）を JSON Pointer 付きで列挙する。"""
    found: list[tuple[str, dict[str, Any]]] = []
    resources = document.get("resources")
    if isinstance(resources, dict):
        # languageVersion 2.0 のシンボリック名形式
        items = [(_pointer_token(k), v) for k, v in resources.items()]
    elif isinstance(resources, list):
        items = [(str(i), v) for i, v in enumerate(resources)]
    else:
        return found
    for token, resource in items:
        if not isinstance(resource, dict):
            continue
        pointer = f"{base}/resources/{token}"
        found.append((pointer, resource))
        found.extend(_walk_resources(resource, pointer))
    return found


def _finding(
    finding_id: str,
    severity: Severity,
    dimension: Dimension,
    message: str,
    remediation: str,
    location: SourceLocation | None = None,
) -> Finding:
    return Finding(
        id=finding_id,
        tool=TOOL,
        severity=severity,
        dimension=dimension,
        message=message,
        remediation=remediation,
        location=location,
    )


def _shown(value: Any) -> str:
    return sanitize_for_display(str(value), max_length=128)
