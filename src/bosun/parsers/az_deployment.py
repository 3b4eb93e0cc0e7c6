"""az deployment group validate のJSON出力パーサー。"""

import json
from typing import Any

from bosun.models.errors import UnparsableOutputError
from bosun.models.process import ProcessResult
from bosun.models.validation import Dimension, Finding, Severity, ValidationTarget
from bosun.parsers.base import anomaly_finding, as_object, tool_finding

TOOL = "az-deployment"

# エラーコード → (重大度, ディメンション)。未登録のコードは(error, structure)
CLASSIFICATION_BY_CODE: dict[str, tuple[Severity, Dimension]] = {
    "InvalidTemplate": ("error", "structure"),
    "InvalidTemplateDeployment": ("error", "structure"),
    "DeploymentFailed": ("error", "structure"),
    "RequestDisallowedByPolicy": ("error", "compliance"),
    "LocationNotAvailableForResourceType": ("error", "compliance"),
    "SkuNotAvailable": ("warning", "performance"),
    "QuotaExceeded": ("warning", "cost"),
    "NoRegisteredProviderFound": ("warning", "structure"),
}
_DEFAULT_CLASSIFICATION: tuple[Severity, Dimension] = ("error", "structure")

_ERROR_PREFIX = "ERROR:"


def _load_payload(result: ProcessResult) -> dict[str, Any] | None:
    """成功時はstdout、失敗時はstderrの"ERROR: {...}"からJSONを取り出す。"""
    text = result.stdout.strip()
    if result.exit_code not in (0, None) or not text:
        text = result.stderr.strip()
        if text.startswith(_ERROR_PREFIX):
            text = text[len(_ERROR_PREFIX) :].strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise UnparsableOutputError(TOOL, f"invalid JSON ({e.msg})") from e
    if not isinstance(payload, dict):
        raise UnparsableOutputError(TOOL, "top-level JSON value is not an object")
    return payload


def _extract_error(payload: dict[str, Any]) -> dict[str, Any] | None:
    error = payload.get("error")
    if error is None:
        error = as_object(payload.get("properties")).get("error")
    if error is None and "code" in payload and "message" in payload:
        error = payload
    return error if isinstance(error, dict) else None


def parse_az_deployment(result: ProcessResult, target: ValidationTarget) -> list[Finding]:
    """検証エラー（details配列があれば各要素）をFindingに変換する。

    Raises:
        UnparsableOutputError: JSONとして読めない場合。
    """
    payload = _load_payload(result)
    if payload is None:
        return []
    error = _extract_error(payload)
    if error is None:
        if payload.get("error") is not None:
            return [anomaly_finding(TOOL, "error is not an object")]
        return []

    findings: list[Finding] = []
    details = error.get("details")
    if isinstance(details, list) and details:
        entries = details
    else:
        if details and not isinstance(details, list):
            findings.append(anomaly_finding(TOOL, "error details is not an array"))
        entries = [error]
    for entry in entries:
        if not isinstance(entry, dict):
            findings.append(anomaly_finding(TOOL, "error detail is not an object"))
            continue
        code = entry.get("code")
        message = entry.get("message")
        if not isinstance(code, str) or not code or not isinstance(message, str) or not message:
            findings.append(anomaly_finding(TOOL, "error detail without code or message"))
            continue
        severity, dimension = CLASSIFICATION_BY_CODE.get(code, _DEFAULT_CLASSIFICATION)
        target_hint = entry.get("target")
        findings.append(
            tool_finding(
                TOOL,
                f"{TOOL}:{code}",
                severity,
                dimension,
                message if not isinstance(target_hint, str) else f"{target_hint}: {message}",
            )
        )
    return findings
