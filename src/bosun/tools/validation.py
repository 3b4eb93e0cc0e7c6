"""検証・最適化のMCPツール定義。"""

from typing import Any

from fastmcp import FastMCP

from bosun.models.errors import BosunError
from bosun.models.validation import ArtifactKind, ValidationReport
from bosun.security.inputs import sanitize_for_display
from bosun.services.optimizer import OptimizationEngine
from bosun.services.pipeline import ValidationPipeline, ValidationRequest
from bosun.storage.service import ReportStore


def _error(e: BosunError) -> dict[str, Any]:
    return {"error": type(e).__name__, "message": sanitize_for_display(str(e))}


def _report_dict(report: ValidationReport) -> dict[str, Any]:
    data = report.model_dump(mode="json")
    data["error_count"] = len(report.errors())
    return data


def register_validation_tools(
    mcp: FastMCP,
    pipeline: ValidationPipeline,
    optimizer: OptimizationEngine,
    store: ReportStore,
) -> None:
    """検証関連のMCPツールを登録する。"""

    @mcp.tool()
    async def validate_artifact(
        path: str,
        kind: ArtifactKind = "template",
        skip_tests: list[str] | None = None,
        subscription_id: str | None = None,
        resource_group: str | None = None,
        threshold: int | None = None,
    ) -> dict[str, Any]:
        """マーケットプレイス向けアーティファクトを検証してスコアを算出する。

        有効な外部バリデータと組み込みルールで検証し、ディメンション別スコア、
        総合スコア、合否を含むレポートを返します。レポートはrun_idで後から取得できます。

        Args:
            path: 検証対象のパス（許可ルート内）。
            kind: アーティファクト種別（template / ui_definition / view_definition / package_root）。
            skip_tests: スキップするARM-TTKテスト名。
            subscription_id: az-deployment検証に使うサブスクリプションID。
            resource_group: az-deployment検証に使うリソースグループ名。
            threshold: 合格閾値（0〜100）。省略時はポリシーの値。
        """
        try:
            request = ValidationRequest(
                path=path,
                kind=kind,
                skip_tests=skip_tests or [],
                subscription_id=subscription_id,
                resource_group=resource_group,
                threshold=threshold,
            )
            report = await pipeline.validate(request)
            return _report_dict(report)
        except BosunError as e:
            return _error(e)

    @mcp.tool()
    async def optimize_artifact(
        path: str,
        kind: ArtifactKind = "template",
        apply: bool = False,
        threshold: int | None = None,
    ) -> dict[str, Any]:
        """安全な自動修正を提案し、applyがtrueなら適用して再検証する。

        修正はFindingを前提条件とする冪等なアクションのみです。適用後は必ず
        再検証し、before/afterのレポートと差分を返します。

        Args:
            path: 対象のパス（許可ルート内）。
            kind: アーティファクト種別。
            apply: Trueの場合は修正をファイルに書き込む。
            threshold: 合格閾値（0〜100）。
        """
        try:
            request = ValidationRequest(path=path, kind=kind, threshold=threshold)
            result = await optimizer.optimize(request, apply=apply)
            return {
                "state": result.state,
                "before": _report_dict(result.before),
                "after": _report_dict(result.after) if result.after is not None else None,
                "proposed": [p.model_dump() for p in result.proposed],
                "applied": [a.model_dump() for a in result.applied],
                "not_attempted": [p.model_dump() for p in result.not_attempted],
                "failure": result.failure.model_dump() if result.failure is not None else None,
                "delta": result.delta.model_dump() if result.delta is not None else None,
            }
        except BosunError as e:
            return _error(e)

    @mcp.tool()
    async def get_report(run_id: str) -> dict[str, Any]:
        """保存済みの検証レポートを取得する。

        Args:
            run_id: validate_artifactが返したrun_id。
        """
        try:
            report = await store.load_report(run_id)
            return _report_dict(report)
        except BosunError as e:
            return _error(e)

    @mcp.tool()
    async def compare_reports(before_run_id: str, after_run_id: str) -> dict[str, Any]:
        """2つの検証レポートを比較し、解消・新規のFindingとスコア差分を返す。

        Args:
            before_run_id: 比較元レポートのrun_id。
            after_run_id: 比較先レポートのrun_id。
        """
        try:
            before = await store.load_report(before_run_id)
            after = await store.load_report(after_run_id)
            return before.compare(after).model_dump()
        except BosunError as e:
            return _error(e)

    @mcp.tool()
    async def list_reports() -> dict[str, Any]:
        """保存済みの検証レポートのrun_id一覧を返す。"""
        return {"run_ids": await store.list_reports()}

    @mcp.tool()
    async def delete_report(run_id: str) -> dict[str, Any]:
        """保存済みの検証レポートを削除する。

        Args:
            run_id: 削除するレポートのrun_id。
        """
        try:
            await store.delete_report(run_id)
            return {"deleted": run_id}
        except BosunError as e:
            return _error(e)

    @mcp.tool()
    async def list_validators() -> dict[str, Any]:
        """有効な外部バリデータと最適化アクションの一覧を返す。"""
        return {
            "validators": [
                {
                    "name": spec.name,
                    "description": spec.description,
                    "dimensions": sorted(spec.dimensions),
                    "artifact_kinds": sorted(spec.artifact_kinds),
                    "secret_channel": spec.secret_channel,
                }
                for spec in pipeline.enabled_tools
            ],
            "optimization_actions": [
                {"name": a.name, "addresses": a.addresses, "description": a.description} for a in optimizer.actions
            ],
        }
