"""Template Analyzer（SARIF 2.1.0）出力のパーサー。"""

import json
from typing import Any

from bosun.models.errors import UnparsableOutputError
from bosun.models.process import ProcessResult
from bosun.models.validation import ALL_DIMENSIONS, Dimension, Finding, Severity, ValidationTarget
from bosun.parsers.base import anomaly_finding, as_object, location_for, tool_finding

TOOL = "template-analyzer"

# SARIF level → 重大度
SEVERITY_BY_LEVEL: dict[str, Severity] = {
    "error": "error",
    "warning": "warning",
    "note": "info",
    "none": "info",
}

# SARIF仕様上、levelが省略された結果はwarning扱い
_DEFAULT_LEVEL = "warning"
_DEFAULT_DIMENSION: Dimension = "security"


def _rule_dimensions(run: dict[str, Any]) -> dict[str, Dimension]:
    """tool.driver.rules[].properties.dimension からルールID → ディメンションの表を作る。"""
    table: dict[str, Dimension] = {}
    rules = as_object(as_object(run.get("tool")).get("driver")).get("rules")
    if not isinstance(rules, list):
        return table
    for rule in rules:
        if not isinstance(rule, dict) or not isinstance(rule.get("id"), str):
            continue
        dimension = as_object(rule.get("properties")).get("dimension")
        if dimension in ALL_DIMENSIONS:
            table[rule["id"]] = dimension
    return table


def _first_location(result: dict[str, Any]) -> tuple[str | None, int | None]:
    locations = result.get("locations")
    if not isinstance(locations, list) or not locations:
        return None, None
    physical = as_object(as_object(locations[0]).get("physicalLocation"))
    uri = as_object(physical.get("artifactLocation")).get("uri")
    line = as_object(physical.get("region")).get("startLine")
    return (uri if isinstance(uri, str) else None, line if isinstance(line, int) else None)


def parse_sarif(result: ProcessResult, target: ValidationTarget) -> list[Finding]:
    """SARIFログの各resultをFindingに変換する。

    未知のフィールドは無視し、ruleId・message.text・既知のlevelを必須とする。
    必須フィールドを欠く結果はメタFindingとして記録してドロップする。

    Raises:
        UnparsableOutputError: JSONとして読めない、またはrunsが無い場合。
    """
    if not result.stdout.strip():
        return []
    try:
        log = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise UnparsableOutputError(TOOL, f"invalid JSON ({e.msg})") from e
    if not isinstance(log, dict) or not isinstance(log.get("runs"), list):
        raise UnparsableOutputError(TOOL, "SARIF log has no runs array")

    findings: list[Finding] = []
    for run in log["runs"]:
        if not isinstance(run, dict):
            findings.append(anomaly_finding(TOOL, "run entry is not an object"))
            continue
        dimensions = _rule_dimensions(run)
        results = run.get("results")
        if results is None:
            continue
        if not isinstance(results, list):
            findings.append(anomaly_finding(TOOL, "run results is not an array"))
            continue
        for item in results:
            if not isinstance(item, dict):
                findings.append(anomaly_finding(TOOL, "result entry is not an object"))
                continue
            rule_id = item.get("ruleId")
            message = as_object(item.get("message")).get("text")
            level = item.get("level", _DEFAULT_LEVEL)
            if not isinstance(rule_id, str) or not rule_id:
                findings.append(anomaly_finding(TOOL, "result without ruleId"))
                continue
            if not isinstance(message, str) or not message:
                findings.append(anomaly_finding(TOOL, f"result {rule_id} without message text"))
                continue
            severity = SEVERITY_BY_LEVEL.get(level) if isinstance(level, str) else None
            if severity is None:
                findings.append(anomaly_finding(TOOL, f"result {rule_id} has unknown level"))
                continue
            file, line = _first_location(item)
            findings.append(
                tool_finding(
                    TOOL,
                    f"{TOOL}:{rule_id}",
                    severity,
                    dimensions.get(rule_id, _DEFAULT_DIMENSION),
                    message,
                    location=location_for(target, file, line),
                )
            )
    return findings
