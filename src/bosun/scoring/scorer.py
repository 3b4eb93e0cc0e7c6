"""品質・コンプライアンススコアの算出。"""

import math
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

from bosun.models.policy import PolicyConfig
from bosun.models.validation import ALL_DIMENSIONS, Dimension, Finding

MAX_SCORE = 100


class ScoreCard(BaseModel):
    """ディメンション別スコアと総合スコア。"""

    model_config = ConfigDict(frozen=True)

    dimension_scores: dict[Dimension, int]
    overall_score: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class QualityScorer:
    """Findingの集合からスコアを算出する。

    同じFinding集合・カバー範囲・ポリシーに対して常に同じ結果を返す。
    内部状態は持たない。
    """

    def __init__(self, policy: PolicyConfig) -> None:
        self._policy = policy

    @property
    def policy(self) -> PolicyConfig:
        return self._policy

    def compute_score(self, findings: Iterable[Finding], covered_dimensions: Iterable[Dimension]) -> ScoreCard:
        """ディメンション別スコアと総合スコアを算出する。

        Args:
            findings: 検証ランで得られたFinding。
            covered_dimensions: 実行されたチェックがカバーするディメンション。
                Findingを受けたディメンションは常にカバー済みとして扱う。

        Returns:
            カバーされたディメンションのみを含むScoreCard。
        """
        findings = list(findings)
        covered = set(covered_dimensions) | {f.dimension for f in findings}

        penalties: dict[Dimension, int] = dict.fromkeys(covered, 0)
        for finding in findings:
            penalties[finding.dimension] += self._policy.severity_penalties[finding.severity]

        # ALL_DIMENSIONS順に並べて出力を決定的にする
        dimension_scores: dict[Dimension, int] = {
            d: max(0, MAX_SCORE - penalties[d]) for d in ALL_DIMENSIONS if d in covered
        }
        return ScoreCard(dimension_scores=dimension_scores, overall_score=self._overall(dimension_scores))

    def _overall(self, dimension_scores: dict[Dimension, int]) -> int:
        """カバーされたディメンションで重みを再正規化した加重平均。"""
        if not dimension_scores:
            return MAX_SCORE
        weights = {d: self._policy.dimension_weights.get(d, 0.0) for d in dimension_scores}
        total = sum(weights.values())
        if total <= 0:
            # カバーされたディメンションがすべて重み0の場合は単純平均
            return _round_half_up(sum(dimension_scores.values()) / len(dimension_scores))
        return _round_half_up(sum(score * weights[d] for d, score in dimension_scores.items()) / total)

    def verdict(self, scorecard: ScoreCard, findings: Iterable[Finding], threshold: int | None = None) -> bool:
        """総合スコアが閾値以上、かつerrorのFindingが0件のときに合格。"""
        limit = self._policy.pass_threshold if threshold is None else threshold
        return scorecard.overall_score >= limit and not any(f.severity == "error" for f in findings)
