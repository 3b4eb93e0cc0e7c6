"""ARM-TTK（Test-AzTemplate）のテキスト出力パーサー。

出力例:
    Validating mainTemplate.json
      deploymentTemplate
        [+] adminUsername Should Not Be A Literal (6 ms)
        [-] apiVersions Should Be Recent (12 ms)
            Api versions must be the latest or under 2 years old
        [?] Parameters Must Be Referenced (3 ms)
"""

import re

from bosun.models.errors import UnparsableOutputError
from bosun.models.process import ProcessResult
from bosun.models.validation import Dimension, Finding, Severity, ValidationTarget
from bosun.parsers.base import anomaly_finding, location_for, slugify, tool_finding

TOOL = "arm-ttk"

# 結果マーカー → 重大度。"[+]"（合格）はFindingにしない
SEVERITY_BY_MARKER: dict[str, Severity | None] = {
    "[+]": None,
    "[-]": "error",
    "[?]": "warning",
    "[!]": "warning",
}

# テスト名 → ディメンション。未登録のテストはstructure
DIMENSION_BY_TEST: dict[str, Dimension] = {
    "adminusername-should-not-be-a-literal": "security",
    "secure-string-parameters-cannot-have-default": "security",
    "secure-params-in-nested-deployments": "security",
    "outputs-must-not-contain-secrets": "security",
    "commandtoexecute-must-use-protectedsettings-for-secrets": "security",
    "managedidentityextension-must-not-be-used": "security",
    "location-should-not-be-hardcoded": "compliance",
    "resourceids-should-not-contain": "compliance",
    "providers-apiversions-is-not-permitted": "compliance",
    "apiversions-should-be-recent": "compliance",
    "vm-images-should-use-latest-version": "performance",
    "vm-size-should-be-a-parameter": "cost",
}

_VALIDATING_RE = re.compile(r"^Validating\s+(?P<file>.+?)\s*$")
_RESULT_RE = re.compile(r"^(?P<marker>\[[+\-?!]\])\s*(?P<name>.*?)\s*(?:\(\d+\s*ms\))?\s*$")
# "deploymentTemplate" などのセクション見出し
_SECTION_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")


def parse_arm_ttk(result: ProcessResult, target: ValidationTarget) -> list[Finding]:
    """ARM-TTKの出力をFindingに変換する。

    Raises:
        UnparsableOutputError: 出力があるのに結果行を1行も認識できない場合。
    """
    findings: list[Finding] = []
    current_file: str | None = None
    recognized = False
    # 直前の失敗行と、その後に続く詳細行
    pending: tuple[str, Severity, list[str]] | None = None

    def flush() -> None:
        nonlocal pending
        if pending is None:
            return
        name, severity, details = pending
        slug = slugify(name)
        message = name if not details else f"{name}: {' '.join(details)}"
        findings.append(
            tool_finding(
                TOOL,
                f"{TOOL}:{slug}",
                severity,
                DIMENSION_BY_TEST.get(slug, "structure"),
                message,
                location=location_for(target, current_file),
            )
        )
        pending = None

    for raw_line in result.stdout.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        validating = _VALIDATING_RE.match(line)
        if validating:
            flush()
            current_file = validating.group("file")
            recognized = True
            continue

        match = _RESULT_RE.match(line)
        if match:
            flush()
            recognized = True
            severity = SEVERITY_BY_MARKER[match.group("marker")]
            name = match.group("name")
            if severity is None:
                continue
            if not name:
                findings.append(anomaly_finding(TOOL, "result line without a test name"))
                continue
            pending = (name, severity, [])
            continue

        if _SECTION_RE.match(line):
            flush()
            continue

        if pending is not None:
            pending[2].append(line)

    flush()

    if not recognized and result.stdout.strip():
        raise UnparsableOutputError(TOOL, "no ARM-TTK result lines found")
    return findings
