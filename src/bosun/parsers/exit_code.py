"""構造化出力を持たないツール（終了コードのみ）のパーサー。"""

from bosun.models.errors import UnparsableOutputError
from bosun.models.process import ProcessResult
from bosun.models.validation import Dimension, Finding, Severity, ValidationTarget
from bosun.parsers.base import combined_output, location_for, tool_finding

# (下限, 上限, Finding定義)。定義がNoneの範囲はFindingなし
_Rule = tuple[str, Severity, Dimension, str] | None

EXIT_CODE_TABLE: dict[str, list[tuple[int, int, _Rule]]] = {
    "bicep": [
        (0, 0, None),
        (
            1,
            1,
            (
                "bicep:decompile-failed",
                "error",
                "structure",
                "Template could not be decompiled to Bicep; it contains invalid or unsupported constructs",
            ),
        ),
    ],
}


def parse_exit_code(result: ProcessResult, target: ValidationTarget) -> list[Finding]:
    """終了コードの範囲表から1件の合成Findingを作る。生出力はcontextに添付する。

    Raises:
        UnparsableOutputError: ツールの範囲表が無い、または終了コードがどの範囲にも入らない場合。
    """
    table = EXIT_CODE_TABLE.get(result.tool)
    if table is None or result.exit_code is None:
        raise UnparsableOutputError(result.tool, "no exit code mapping")
    for low, high, rule in table:
        if low <= result.exit_code <= high:
            if rule is None:
                return []
            finding_id, severity, dimension, message = rule
            return [
                tool_finding(
                    result.tool,
                    finding_id,
                    severity,
                    dimension,
                    message,
                    location=location_for(target, target.path.name) if target.kind != "package_root" else None,
                    context=combined_output(result) or None,
                )
            ]
    raise UnparsableOutputError(result.tool, f"unmapped exit code {result.exit_code}")
