"""ARM-TTKスクリプト組み立て（唯一の埋め込みスクリプト経路）のユニットテスト。"""

from pathlib import Path

import pytest

from bosun.models.errors import InvalidIdentifierError, UnsafeEmbeddedValueError
from bosun.security.inputs import validate_identifier
from bosun.validators.powershell import build_arm_ttk_script, quote_literal


class TestQuoteLiteral:
    def test_wraps_in_single_quotes(self) -> None:
        assert quote_literal("C:\\templates\\main.json") == "'C:\\templates\\main.json'"

    def test_doubles_embedded_quotes(self) -> None:
        assert quote_literal("o'brien") == "'o''brien'"

    def test_doubles_typographic_quotes(self) -> None:
        assert quote_literal("a\u2019b") == "'a\u2019\u2019b'"


class TestBuildArmTtkScript:
    def test_basic_script(self) -> None:
        script = build_arm_ttk_script(Path("/opt/arm-ttk/arm-ttk"), Path("/work/mainTemplate.json"))
        assert script == (
            "$ErrorActionPreference = 'Stop'; "
            "$ProgressPreference = 'SilentlyContinue'; "
            "Import-Module '/opt/arm-ttk/arm-ttk'; "
            "Test-AzTemplate -TemplatePath '/work/mainTemplate.json'"
        )

    def test_skip_tests_are_quoted(self) -> None:
        script = build_arm_ttk_script(
            Path("/opt/arm-ttk"),
            Path("/work/mainTemplate.json"),
            ["apiVersions Should Be Recent", validate_identifier("Location Should Not Be Hardcoded", "test_name")],
        )
        assert script.endswith(
            "-Skip @('apiVersions Should Be Recent','Location Should Not Be Hardcoded')"
        )

    def test_path_with_quote_cannot_break_out(self) -> None:
        malicious = Path("/work/x'; Remove-Item -Recurse -Force /; '.json")
        script = build_arm_ttk_script(Path("/opt/arm-ttk"), malicious)
        assert "-TemplatePath '/work/x''; Remove-Item -Recurse -Force /; ''.json'" in script
        # 引用符は必ず対になる
        assert script.count("'") % 2 == 0

    def test_rejects_invalid_skip_test(self) -> None:
        with pytest.raises(InvalidIdentifierError):
            build_arm_ttk_script(Path("/opt/arm-ttk"), Path("/work/t.json"), ["x'); Remove-Item C:\\ #"])

    def test_rejects_nul_in_path(self) -> None:
        with pytest.raises(UnsafeEmbeddedValueError):
            build_arm_ttk_script(Path("/opt/arm-ttk"), Path("/work/a\x00b.json"))
