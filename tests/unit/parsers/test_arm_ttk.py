"""ARM-TTK出力パーサーのユニットテスト。"""

from collections.abc import Callable

import pytest

from bosun.models.errors import UnparsableOutputError
from bosun.models.process import ProcessResult
from bosun.models.validation import PARSE_ANOMALY, ValidationTarget
from bosun.parsers.arm_ttk import SEVERITY_BY_MARKER, parse_arm_ttk

ResultFactory = Callable[..., ProcessResult]

OUTPUT = """\
Validating mainTemplate.json
  deploymentTemplate
    [+] adminUsername Should Not Be A Literal (6 ms)
    [-] apiVersions Should Be Recent (12 ms)
        Api versions must be the latest or under 2 years old (730 days)
        Api version 2019-01-01 was 1500 days old
    [?] Parameters Must Be Referenced (3 ms)
    [-] Location Should Not Be Hardcoded (4 ms)
  createUiDefinition
    [+] Allowed Values Should Actually Be Allowed (2 ms)
"""


class TestParseArmTtk:
    def test_severity_table(self) -> None:
        assert SEVERITY_BY_MARKER == {"[+]": None, "[-]": "error", "[?]": "warning", "[!]": "warning"}

    def test_parses_failures_and_warnings(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        findings = parse_arm_ttk(make_result("arm-ttk", OUTPUT), template_target)
        assert [(f.id, f.severity) for f in findings] == [
            ("arm-ttk:apiversions-should-be-recent", "error"),
            ("arm-ttk:parameters-must-be-referenced", "warning"),
            ("arm-ttk:location-should-not-be-hardcoded", "error"),
        ]

    def test_detail_lines_are_appended(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        findings = parse_arm_ttk(make_result("arm-ttk", OUTPUT), template_target)
        assert "1500 days old" in findings[0].message
        assert findings[2].message == "Location Should Not Be Hardcoded"

    def test_dimension_and_location(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        findings = parse_arm_ttk(make_result("arm-ttk", OUTPUT), template_target)
        by_id = {f.id: f for f in findings}
        assert by_id["arm-ttk:apiversions-should-be-recent"].dimension == "compliance"
        assert by_id["arm-ttk:location-should-not-be-hardcoded"].dimension == "compliance"
        assert by_id["arm-ttk:parameters-must-be-referenced"].dimension == "structure"
        assert all(f.location is not None and f.location.file == "mainTemplate.json" for f in findings)

    def test_all_passing_output(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        output = "Validating mainTemplate.json\n  deploymentTemplate\n    [+] IDs Should Be Derived From ResourceIDs (5 ms)\n"
        assert parse_arm_ttk(make_result("arm-ttk", output), template_target) == []

    def test_empty_output(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        assert parse_arm_ttk(make_result("arm-ttk", ""), template_target) == []

    def test_result_without_name_is_anomaly(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        findings = parse_arm_ttk(make_result("arm-ttk", "Validating t.json\n[-] (3 ms)\n"), template_target)
        assert [f.id for f in findings] == [PARSE_ANOMALY]
        assert findings[0].severity == "info"

    def test_unrecognized_output(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        with pytest.raises(UnparsableOutputError):
            parse_arm_ttk(make_result("arm-ttk", "Import-Module : module not found\n"), template_target)

    def test_messages_are_sanitized(self, template_target: ValidationTarget, make_result: ResultFactory) -> None:
        output = "Validating t.json\n[-] Bad $(whoami) Test\n"
        findings = parse_arm_ttk(make_result("arm-ttk", output), template_target)
        assert "$(" not in findings[0].message
