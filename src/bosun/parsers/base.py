"""ツール出力パーサーの共通ヘルパー。"""

import re
from pathlib import Path
from typing import Any, Protocol

from bosun.models.process import ProcessResult
from bosun.models.validation import (
    PARSE_ANOMALY,
    Dimension,
    Finding,
    Severity,
    SourceLocation,
    ValidationTarget,
)
from bosun.security.inputs import sanitize_for_display

# Findingに添付する生出力の上限文字数
MAX_CONTEXT_CHARS = 4000

_SLUG_RE = re.compile(r"[^a-z0-9]+")


class OutputParser(Protocol):
    """ProcessResultをFindingのリストに正規化するアダプタ。

    出力全体を正規化できない場合はUnparsableOutputErrorを送出する。
    """

    def __call__(self, result: ProcessResult, target: ValidationTarget) -> list[Finding]: ...


def as_object(value: Any) -> dict[str, Any]:
    """JSONオブジェクトならそのまま、それ以外は空dictを返す。"""
    return value if isinstance(value, dict) else {}


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", text.lower()).strip("-")


def location_for(target: ValidationTarget, file: str | None, line: int | None = None) -> SourceLocation | None:
    """ツールが報告したファイルを、対象ルートからの相対表示に変換する。"""
    if not file:
        return None
    reported = Path(file)
    base = target.path if target.kind == "package_root" else target.path.parent
    try:
        shown = reported.resolve().relative_to(base).as_posix() if reported.is_absolute() else reported.as_posix()
    except ValueError:
        shown = reported.name
    return SourceLocation(file=sanitize_for_display(shown, max_length=256), line=line)


def tool_finding(
    tool: str,
    finding_id: str,
    severity: Severity,
    dimension: Dimension,
    message: str,
    *,
    remediation: str | None = None,
    location: SourceLocation | None = None,
    context: str | None = None,
) -> Finding:
    """ツール由来の値をサニタイズしてFindingを構築する。"""
    return Finding(
        id=finding_id,
        tool=tool,
        severity=severity,
        dimension=dimension,
        message=sanitize_for_display(message),
        remediation=sanitize_for_display(remediation) if remediation else None,
        location=location,
        context=sanitize_for_display(context, max_length=MAX_CONTEXT_CHARS) if context else None,
    )


def anomaly_finding(tool: str, reason: str) -> Finding:
    """必須フィールド欠落などでドロップした項目を記録するメタFinding。"""
    return tool_finding(
        tool,
        PARSE_ANOMALY,
        "info",
        "structure",
        f"{tool} reported an item that could not be normalized: {reason}",
    )


def combined_output(result: ProcessResult) -> str:
    parts = [p for p in (result.stdout.strip(), result.stderr.strip()) if p]
    return "\n".join(parts)
