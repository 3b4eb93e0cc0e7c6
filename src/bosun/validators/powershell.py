"""PowerShellスクリプト文字列の組み立て。

ARM-TTKはpwsh -Commandに渡すスクリプト文字列で駆動する必要があるため、
コマンド文字列を組み立てる唯一の経路をこのモジュールに隔離する。
補間する値はすべてescape_for_embedded_stringを通した単一引用符リテラルにする。
"""

from collections.abc import Sequence
from pathlib import Path

from bosun.security.inputs import Identifier, escape_for_embedded_string, validate_identifier


def quote_literal(value: str) -> str:
    """値をPowerShellの単一引用符リテラルにする。"""
    return "'" + escape_for_embedded_string(value, "powershell") + "'"


def build_arm_ttk_script(
    module_dir: Path,
    template_path: Path,
    skip_tests: Sequence[str | Identifier] = (),
) -> str:
    """ARM-TTKを実行するPowerShellスクリプトを組み立てる。

    Args:
        module_dir: arm-ttkモジュールのディレクトリ。
        template_path: validate_pathで検証済みのテンプレートパス。
        skip_tests: スキップするテスト名。各要素はtest_nameとして検証する。

    Returns:
        pwsh -Commandに渡すスクリプト文字列。

    Raises:
        InvalidIdentifierError: テスト名がホワイトリストに一致しない場合。
        UnsafeEmbeddedValueError: 値にNULバイトが含まれる場合。
    """
    validated = [
        name if isinstance(name, Identifier) and name.kind == "test_name" else validate_identifier(str(name), "test_name")
        for name in skip_tests
    ]

    command = f"Test-AzTemplate -TemplatePath {quote_literal(str(template_path))}"
    if validated:
        skip_list = ",".join(quote_literal(name.value) for name in validated)
        command += f" -Skip @({skip_list})"

    statements = [
        "$ErrorActionPreference = 'Stop'",
        "$ProgressPreference = 'SilentlyContinue'",
        f"Import-Module {quote_literal(str(module_dir))}",
        command,
    ]
    return "; ".join(statements)
