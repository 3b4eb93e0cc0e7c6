"""バリデーション関連のデータモデル。"""

import hashlib
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["error", "warning", "info"]
Dimension = Literal["security", "structure", "compliance", "performance", "cost"]
ArtifactKind = Literal["template", "ui_definition", "view_definition", "package_root"]
ToolRunStatus = Literal["ok", "failed", "timed_out", "unparsable"]

ALL_DIMENSIONS: tuple[Dimension, ...] = ("security", "structure", "compliance", "performance", "cost")

# パイプライン自身が発行するFindingのID
TOOL_TIMED_OUT = "tool-timed-out"
TOOL_EXECUTION_FAILED = "tool-execution-failed"
UNPARSABLE_OUTPUT = "unparsable-output"
PARSE_ANOMALY = "parse-anomaly"

# パッケージルート内で検証対象とするファイル名
PACKAGE_FILES: dict[str, ArtifactKind] = {
    "mainTemplate.json": "template",
    "createUiDefinition.json": "ui_definition",
    "viewDefinition.json": "view_definition",
}

_HASH_CHUNK = 64 * 1024


class SourceLocation(BaseModel):
    """Findingの発生箇所。"""

    model_config = ConfigDict(frozen=True)

    file: str
    line: int | None = None
    pointer: str | None = None


class Finding(BaseModel):
    """バリデータまたはスコアラーが報告した1件の問題。"""

    model_config = ConfigDict(frozen=True)

    id: str
    tool: str
    severity: Severity
    dimension: Dimension
    message: str
    remediation: str | None = None
    location: SourceLocation | None = None
    context: str | None = None


class ValidationRule(BaseModel):
    """バリデーションルール定義（YAMLから読み込み）。"""

    id: str
    description: str
    severity: Severity
    dimension: Dimension
    artifact_kinds: list[ArtifactKind] = Field(default_factory=lambda: ["template"])
    condition: dict[str, Any]
    requirement: dict[str, Any]
    recommendation: str


def _hash_file(hasher: Any, path: Path) -> None:
    with open(path, "rb") as f:
        while chunk := f.read(_HASH_CHUNK):
            hasher.update(chunk)


class ValidationTarget(BaseModel):
    """検証対象のアーティファクト。1回の検証ランの間は不変。"""

    model_config = ConfigDict(frozen=True)

    path: Path
    kind: ArtifactKind
    size_bytes: int
    content_hash: str

    @classmethod
    def from_path(cls, path: Path, kind: ArtifactKind) -> "ValidationTarget":
        """正規化済みパスからValidationTargetを構築する。

        Args:
            path: validate_pathで検証済みの絶対パス。
            kind: アーティファクト種別。

        Returns:
            サイズとsha256ハッシュを計算済みのValidationTarget。

        Raises:
            ValueError: 種別とパスの種類（ファイル/ディレクトリ）が一致しない場合。
        """
        hasher = hashlib.sha256()
        if kind == "package_root":
            if not path.is_dir():
                raise ValueError("package_root target must be a directory")
            size = 0
            for file_path in sorted(p for p in path.rglob("*") if p.is_file()):
                rel = file_path.relative_to(path).as_posix()
                hasher.update(rel.encode("utf-8"))
                hasher.update(b"\0")
                _hash_file(hasher, file_path)
                size += file_path.stat().st_size
        else:
            if not path.is_file():
                raise ValueError(f"{kind} target must be a file")
            _hash_file(hasher, path)
            size = path.stat().st_size
        return cls(path=path, kind=kind, size_bytes=size, content_hash=hasher.hexdigest())

    def artifact_files(self) -> list[tuple[Path, ArtifactKind]]:
        """検証対象となる個々のファイルと種別を返す。"""
        if self.kind != "package_root":
            return [(self.path, self.kind)]
        files: list[tuple[Path, ArtifactKind]] = []
        for name, kind in PACKAGE_FILES.items():
            candidate = self.path / name
            if candidate.is_file():
                files.append((candidate, kind))
        return files


class ToolRunMetadata(BaseModel):
    """外部バリデータ1回分の実行メタデータ。"""

    model_config = ConfigDict(frozen=True)

    tool: str
    status: ToolRunStatus
    exit_code: int | None = None
    duration_ms: int = 0
    timed_out: bool = False
    truncated: bool = False
    attempts: int = 1


class ReportDelta(BaseModel):
    """2つのレポートの比較結果。"""

    resolved: list[str]
    introduced: list[str]
    dimension_deltas: dict[str, int]
    overall_delta: int


class ValidationReport(BaseModel):
    """1回の検証ランの集約結果。返却後は不変。"""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    target: ValidationTarget
    findings: tuple[Finding, ...] = ()
    dimension_scores: dict[Dimension, int] = Field(default_factory=dict)
    overall_score: int
    threshold: int
    passed: bool
    tool_runs: tuple[ToolRunMetadata, ...] = ()
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def errors(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == "error"]

    def has_finding(self, finding_id: str) -> bool:
        return any(f.id == finding_id for f in self.findings)

    def compare(self, other: "ValidationReport") -> ReportDelta:
        """このレポート（before）とother（after）の差分を返す。

        FindingはIDと発生箇所の組で同一視する。
        """
        before = {_finding_key(f) for f in self.findings}
        after = {_finding_key(f) for f in other.findings}
        dims = sorted(set(self.dimension_scores) | set(other.dimension_scores))
        return ReportDelta(
            resolved=sorted({key[0] for key in before - after}),
            introduced=sorted({key[0] for key in after - before}),
            dimension_deltas={
                d: other.dimension_scores.get(d, 0) - self.dimension_scores.get(d, 0)  # type: ignore[index]
                for d in dims
            },
            overall_delta=other.overall_score - self.overall_score,
        )


def _finding_key(finding: Finding) -> tuple[str, str, str]:
    location = finding.location
    if location is None:
        return (finding.id, "", "")
    return (finding.id, location.file, location.pointer or str(location.line or ""))
