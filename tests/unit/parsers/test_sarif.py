"""SARIFパーサーのユニットテスト。"""

import json
from collections.abc import Callable

import pytest

from bosun.models.errors import UnparsableOutputError
from bosun.models.process import ProcessResult
from bosun.models.validation import PARSE_ANOMALY, ValidationTarget
from bosun.parsers.sarif import SEVERITY_BY_LEVEL, parse_sarif

ResultFactory = Callable[..., ProcessResult]


def _sarif(results: list[dict], rules: list[dict] | None = None) -> str:  # type: ignore[type-arg]
    return json.dumps(
        {
            "version": "2.1.0",
            "runs": [
                {
                    "tool": {"driver": {"name": "ARM BPA", "rules": rules or []}},
                    "results": results,
                    "invocations": [{"executionSuccessful": True}],
                }
            ],
        }
    )


class TestParseSarif:
    def test_level_table(self) -> None:
        assert SEVERITY_BY_LEVEL == {"error": "error", "warning": "warning", "note": "info", "none": "info"}

    def test_maps_results(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        output = _sarif(
            [
                {
                    "ruleId": "TA-000004",
                    "level": "error",
                    "message": {"text": "API app should only be accessible over HTTPS"},
                    "locations": [
                        {
                            "physicalLocation": {
                                "artifactLocation": {"uri": "mainTemplate.json"},
                                "region": {"startLine": 42},
                            }
                        }
                    ],
                },
                {"ruleId": "TA-000022", "level": "note", "message": {"text": "Consider TLS 1.2"}},
            ],
            rules=[{"id": "TA-000022", "properties": {"dimension": "compliance"}}],
        )
        findings = parse_sarif(make_result("template-analyzer", output, exit_code=5), template_target)
        assert [(f.id, f.severity, f.dimension) for f in findings] == [
            ("template-analyzer:TA-000004", "error", "security"),
            ("template-analyzer:TA-000022", "info", "compliance"),
        ]
        assert findings[0].location is not None
        assert findings[0].location.file == "mainTemplate.json"
        assert findings[0].location.line == 42

    def test_missing_level_defaults_to_warning(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        output = _sarif([{"ruleId": "TA-1", "message": {"text": "m"}}])
        findings = parse_sarif(make_result("template-analyzer", output), template_target)
        assert findings[0].severity == "warning"

    def test_unknown_fields_are_ignored(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        output = _sarif([{"ruleId": "TA-1", "level": "error", "message": {"text": "m"}, "fingerprints": {"x": 1}}])
        assert len(parse_sarif(make_result("template-analyzer", output), template_target)) == 1

    @pytest.mark.parametrize(
        "item",
        [
            {"level": "error", "message": {"text": "no rule id"}},
            {"ruleId": "TA-1", "level": "error"},
            {"ruleId": "TA-1", "level": "critical", "message": {"text": "unknown level"}},
        ],
    )
    def test_missing_required_field_records_anomaly(
        self, template_target: ValidationTarget, make_result: ResultFactory, item: dict  # type: ignore[type-arg]
    ) -> None:
        findings = parse_sarif(make_result("template-analyzer", _sarif([item])), template_target)
        assert [f.id for f in findings] == [PARSE_ANOMALY]
        assert findings[0].tool == "template-analyzer"

    def test_no_results(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        assert parse_sarif(make_result("template-analyzer", _sarif([])), template_target) == []

    def test_invalid_json(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        with pytest.raises(UnparsableOutputError):
            parse_sarif(make_result("template-analyzer", "Unhandled exception"), template_target)

    def test_missing_runs(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        with pytest.raises(UnparsableOutputError):
            parse_sarif(make_result("template-analyzer", '{"version": "2.1.0"}'), template_target)

    def test_string_message_records_anomaly(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        item = {"ruleId": "R1", "level": "error", "message": "plain string"}
        findings = parse_sarif(make_result("template-analyzer", _sarif([item])), template_target)
        assert [f.id for f in findings] == [PARSE_ANOMALY]

    @pytest.mark.parametrize(
        "run",
        [
            {"tool": "x"},
            {"tool": {"driver": "x"}, "results": []},
            {"tool": {"driver": {"rules": "x"}}, "results": []},
        ],
    )
    def test_malformed_tool_section_is_ignored(
        self, template_target: ValidationTarget, make_result: ResultFactory, run: dict  # type: ignore[type-arg]
    ) -> None:
        output = json.dumps({"version": "2.1.0", "runs": [run]})
        assert parse_sarif(make_result("template-analyzer", output), template_target) == []

    @pytest.mark.parametrize(
        "locations",
        [
            "mainTemplate.json",
            ["mainTemplate.json"],
            [{"physicalLocation": "mainTemplate.json"}],
            [{"physicalLocation": {"artifactLocation": "x", "region": 7}}],
        ],
    )
    def test_malformed_locations_drop_location(
        self, template_target: ValidationTarget, make_result: ResultFactory, locations: object
    ) -> None:
        item = {"ruleId": "R1", "level": "warning", "message": {"text": "m"}, "locations": locations}
        findings = parse_sarif(make_result("template-analyzer", _sarif([item])), template_target)
        assert len(findings) == 1
        assert findings[0].id != PARSE_ANOMALY
        assert findings[0].location is None

    def test_non_array_results_record_anomaly(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        output = json.dumps({"version": "2.1.0", "runs": [{"tool": {"driver": {}}, "results": {"ruleId": "R1"}}]})
        findings = parse_sarif(make_result("template-analyzer", output), template_target)
        assert [f.id for f in findings] == [PARSE_ANOMALY]
