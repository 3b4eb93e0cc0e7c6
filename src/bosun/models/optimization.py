"""最適化エンジン関連のデータモデル。"""

from typing import Literal

from pydantic import BaseModel, Field

from bosun.models.validation import ReportDelta, ValidationReport

OptimizationState = Literal["no_fix_available", "proposed", "reverified", "partially_applied"]


class ProposedAction(BaseModel):
    """前提条件のFindingが存在し、適用候補となったアクション。"""

    action: str
    addresses: str
    file: str
    description: str


class AppliedAction(BaseModel):
    """適用済みアクションの記録。

    confirmedは再検証後のレポートで、前提条件のFindingが対象ファイルから
    消えていることを示す。
    """

    action: str
    addresses: str
    file: str
    changed: bool
    confirmed: bool = False


class WriteFailure(BaseModel):
    """書き込みに失敗したアクションの記録。"""

    action: str
    file: str
    reason: str


class OptimizationResult(BaseModel):
    """最適化の結果。before/afterのレポートと適用アクションを保持する。"""

    state: OptimizationState
    before: ValidationReport
    after: ValidationReport | None = None
    proposed: list[ProposedAction] = Field(default_factory=list)
    applied: list[AppliedAction] = Field(default_factory=list)
    not_attempted: list[ProposedAction] = Field(default_factory=list)
    failure: WriteFailure | None = None
    delta: ReportDelta | None = None

    @property
    def best_report(self) -> ValidationReport:
        """最新の検証済みレポートを返す。"""
        return self.after if self.after is not None else self.before
