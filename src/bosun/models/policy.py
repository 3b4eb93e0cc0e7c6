"""スコアリングポリシー（重み・ペナルティ）のデータモデル。"""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from bosun.models.validation import Dimension, Severity

# デフォルトのディメンション重み
DEFAULT_DIMENSION_WEIGHTS: dict[Dimension, float] = {
    "security": 0.35,
    "structure": 0.25,
    "compliance": 0.20,
    "performance": 0.10,
    "cost": 0.10,
}

# デフォルトの重大度別ペナルティ（error >> warning > info）
DEFAULT_SEVERITY_PENALTIES: dict[Severity, int] = {
    "error": 50,
    "warning": 10,
    "info": 2,
}

DEFAULT_PASS_THRESHOLD = 85


class PolicyConfig(BaseModel):
    """ディメンション重みと重大度ペナルティ。

    プロセス内で一度だけ構築し、QualityScorerに明示的に渡す。
    グローバルな参照経路は持たない。
    """

    model_config = ConfigDict(frozen=True)

    dimension_weights: dict[Dimension, float] = Field(default_factory=lambda: dict(DEFAULT_DIMENSION_WEIGHTS))
    severity_penalties: dict[Severity, int] = Field(default_factory=lambda: dict(DEFAULT_SEVERITY_PENALTIES))
    pass_threshold: int = Field(default=DEFAULT_PASS_THRESHOLD, ge=0, le=100)

    @field_validator("dimension_weights")
    @classmethod
    def _check_weights(cls, value: dict[Dimension, float]) -> dict[Dimension, float]:
        if any(w < 0 for w in value.values()):
            raise ValueError("dimension weights must be non-negative")
        if sum(value.values()) <= 0:
            raise ValueError("at least one dimension weight must be positive")
        return value

    @field_validator("severity_penalties")
    @classmethod
    def _check_penalties(cls, value: dict[Severity, int]) -> dict[Severity, int]:
        missing = {"error", "warning", "info"} - set(value)
        if missing:
            raise ValueError(f"missing severity penalties: {sorted(missing)}")
        if not value["error"] > value["warning"] > value["info"] >= 0:
            raise ValueError("penalties must satisfy error > warning > info >= 0")
        return value

    @classmethod
    def default(cls) -> "PolicyConfig":
        """ドキュメント化されたデフォルトポリシーを返す。"""
        return cls()


def load_policy(path: Path | None) -> PolicyConfig:
    """YAMLファイルからポリシーを読み込む。

    Args:
        path: ポリシーYAMLのパス。Noneまたは存在しない場合はデフォルトを返す。

    Returns:
        検証済みのPolicyConfig。
    """
    if path is None or not path.exists():
        return PolicyConfig.default()
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return PolicyConfig.model_validate(data.get("policy", data))
