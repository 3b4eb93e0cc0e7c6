"""検証パイプライン。

入力検証 → 外部バリデータ実行 → 出力正規化 → 組み込みルール → スコアリング
の各ステージを順に実行し、ValidationReportを構築する。
"""

import asyncio
import logging
import uuid
from collections.abc import Sequence

from pydantic import BaseModel, Field

from bosun.config import BosunConfig
from bosun.models.errors import BosunError, InputRejectedError, RunCancelledError, UnparsableOutputError
from bosun.models.policy import PolicyConfig, load_policy
from bosun.models.process import ProcessResult, ToolSpec
from bosun.models.validation import (
    ALL_DIMENSIONS,
    TOOL_EXECUTION_FAILED,
    TOOL_TIMED_OUT,
    UNPARSABLE_OUTPUT,
    ArtifactKind,
    Dimension,
    Finding,
    ToolRunMetadata,
    ToolRunStatus,
    ValidationReport,
    ValidationTarget,
)
from bosun.parsers.base import combined_output, tool_finding
from bosun.parsers.registry import get_parser
from bosun.scoring.scorer import QualityScorer
from bosun.security.inputs import Identifier, PathValidator, sanitize_for_display, validate_identifier
from bosun.services.invoker import CancelToken, ProcessInvoker
from bosun.storage.service import ReportStore
from bosun.validators.external import BUILTIN_TOOLS, ToolContext, build_argv, select_tools
from bosun.validators.template import TemplateRuleChecker

logger = logging.getLogger(__name__)


class ValidationRequest(BaseModel):
    """1回の検証ランの入力。値はすべて未検証として扱う。"""

    path: str
    kind: ArtifactKind = "template"
    skip_tests: list[str] = Field(default_factory=list)
    subscription_id: str | None = None
    resource_group: str | None = None
    threshold: int | None = Field(default=None, ge=0, le=100)
    secrets: dict[str, str] = Field(default_factory=dict, repr=False)


class _ToolOutcome(BaseModel):
    findings: list[Finding]
    metadata: ToolRunMetadata
    covered: frozenset[Dimension] = frozenset()


def _primary_dimension(spec: ToolSpec) -> Dimension:
    for dimension in ALL_DIMENSIONS:
        if dimension in spec.dimensions:
            return dimension
    return "structure"


class ValidationPipeline:
    """アーティファクト1件を検証してValidationReportを返す。"""

    def __init__(
        self,
        *,
        path_validator: PathValidator,
        invoker: ProcessInvoker,
        scorer: QualityScorer,
        rule_checker: TemplateRuleChecker,
        enabled_tools: Sequence[str],
        tool_catalog: dict[str, ToolSpec] | None = None,
        tool_context: ToolContext | None = None,
        timeout: float | None = None,
        timeout_retry_backoff: float = 1.0,
        max_concurrency: int = 4,
        store: ReportStore | None = None,
    ) -> None:
        self._path_validator = path_validator
        self._invoker = invoker
        self._scorer = scorer
        self._rule_checker = rule_checker
        self._enabled_tools = list(enabled_tools)
        self._catalog = tool_catalog if tool_catalog is not None else BUILTIN_TOOLS
        self._tool_context = tool_context or ToolContext()
        self._timeout = timeout
        self._retry_backoff = timeout_retry_backoff
        self._max_concurrency = max_concurrency
        self._store = store

    @classmethod
    def from_config(cls, config: BosunConfig, policy: PolicyConfig | None = None) -> "ValidationPipeline":
        """設定値から各コンポーネントを組み立てる。"""
        catalog = {name: spec for name, spec in BUILTIN_TOOLS.items() if name in config.enabled_tools}
        return cls(
            path_validator=PathValidator(config.allowed_roots),
            invoker=ProcessInvoker(
                catalog.values(),
                default_timeout=config.default_timeout_seconds,
                max_output_bytes=config.max_output_bytes,
                env_allowlist=config.env_allowlist,
            ),
            scorer=QualityScorer(policy or load_policy(config.policy_file)),
            rule_checker=TemplateRuleChecker(config.config_dir),
            enabled_tools=config.enabled_tools,
            tool_catalog=catalog,
            tool_context=ToolContext(arm_ttk_module_dir=config.arm_ttk_module_dir),
            timeout=config.default_timeout_seconds,
            timeout_retry_backoff=config.timeout_retry_backoff_seconds,
            max_concurrency=config.max_concurrency,
            store=ReportStore(config.data_dir),
        )

    @property
    def scorer(self) -> QualityScorer:
        return self._scorer

    @property
    def path_validator(self) -> PathValidator:
        return self._path_validator

    @property
    def enabled_tools(self) -> list[ToolSpec]:
        return [self._catalog[name] for name in self._enabled_tools if name in self._catalog]

    async def validate(self, request: ValidationRequest, cancel_token: CancelToken | None = None) -> ValidationReport:
        """検証ランを実行する。

        Args:
            request: 検証対象と実行オプション。
            cancel_token: ラン単位のキャンセルシグナル。

        Returns:
            不変のValidationReport。

        Raises:
            InputRejectedError: パス・識別子が検証を通らない場合（サブプロセスは起動しない）。
            ToolUnavailableError: 有効なバリデータの実行ファイルが無い場合。
            RunCancelledError: ランがキャンセルされた場合（途中のFindingは破棄）。
        """
        run_id = uuid.uuid4().hex
        token = cancel_token or CancelToken()

        # 1. 入力検証
        target, context = self._prepare(request)
        logger.info(
            "Validation run %s started for %s (%s)",
            run_id,
            sanitize_for_display(target.path.name, max_length=128),
            target.kind,
        )
        self._check_cancelled(token, run_id)

        # 2. 外部バリデータ実行と正規化
        tools = select_tools(self._enabled_tools, target.kind, self._catalog)
        planned: list[tuple[ToolSpec, list[str]]] = []
        for spec in tools:
            argv = build_argv(spec, target.path, target.kind, context)
            if argv is None:
                logger.info("Skipping validator %s: required identifiers not supplied", spec.name)
                continue
            self._invoker.resolve(spec.name)
            planned.append((spec, argv))

        # 1件でも例外で終わったら残りのバリデータはキャンセルし、子プロセスごと終了させる
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [
                    group.create_task(self._run_tool(spec, argv, target, token, context, run_id))
                    for spec, argv in planned
                ]
        except ExceptionGroup as eg:
            for error in eg.exceptions:
                if isinstance(error, BosunError):
                    raise error from eg
            raise
        outcomes = [task.result() for task in tasks]
        self._check_cancelled(token, run_id)

        findings: list[Finding] = []
        covered: set[Dimension] = set()
        for outcome in outcomes:
            findings.extend(outcome.findings)
            covered |= outcome.covered

        # 3. 組み込みルール
        findings.extend(self._rule_checker.check(target))
        covered |= self._rule_checker.covered_dimensions(target)
        self._check_cancelled(token, run_id)

        # 4. スコアリング
        scorecard = self._scorer.compute_score(findings, covered)
        threshold = request.threshold if request.threshold is not None else self._scorer.policy.pass_threshold
        report = ValidationReport(
            run_id=run_id,
            target=target,
            findings=tuple(findings),
            dimension_scores=scorecard.dimension_scores,
            overall_score=scorecard.overall_score,
            threshold=threshold,
            passed=self._scorer.verdict(scorecard, findings, threshold),
            tool_runs=tuple(o.metadata for o in outcomes),
        )
        logger.info(
            "Validation run %s finished: score=%d passed=%s findings=%d",
            run_id,
            report.overall_score,
            report.passed,
            len(report.findings),
        )
        if self._store is not None:
            await self._store.save_report(report)
        return report

    async def validate_many(self, requests: Sequence[ValidationRequest]) -> list[ValidationReport | BosunError]:
        """独立した複数の検証ランを同時実行数を制限して実行する。

        1件の失敗は他のランに影響しない。失敗したランは例外オブジェクトを返す。
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run_one(request: ValidationRequest) -> ValidationReport | BosunError:
            async with semaphore:
                try:
                    return await self.validate(request)
                except BosunError as e:
                    logger.warning("Batch validation item failed: %s", type(e).__name__)
                    return e

        return list(await asyncio.gather(*(run_one(r) for r in requests)))

    def _prepare(self, request: ValidationRequest) -> tuple[ValidationTarget, ToolContext]:
        """パスと識別子を検証し、ValidationTargetと引数組み立て用の値を作る。"""
        canonical = self._path_validator.validate_path(request.path)
        try:
            target = ValidationTarget.from_path(canonical, request.kind)
        except ValueError as e:
            raise InputRejectedError(str(e), sanitize_for_display(request.path, max_length=256)) from e

        skip_tests: tuple[Identifier, ...] = tuple(validate_identifier(t, "test_name") for t in request.skip_tests)
        subscription_id = (
            validate_identifier(request.subscription_id, "subscription_id") if request.subscription_id else None
        )
        resource_group = (
            validate_identifier(request.resource_group, "resource_group") if request.resource_group else None
        )
        context = self._tool_context.model_copy(
            update={
                "skip_tests": skip_tests,
                "subscription_id": subscription_id,
                "resource_group": resource_group,
                "secrets": dict(request.secrets),
            }
        )
        return target, context

    @staticmethod
    def _check_cancelled(token: CancelToken, run_id: str) -> None:
        if token.cancelled:
            logger.info("Validation run %s cancelled", run_id)
            raise RunCancelledError(run_id)

    async def _run_tool(
        self,
        spec: ToolSpec,
        argv: list[str],
        target: ValidationTarget,
        token: CancelToken,
        context: ToolContext,
        run_id: str,
    ) -> _ToolOutcome:
        """バリデータ1件を実行し、エラー種別ごとの回復ポリシーを適用する。"""
        secrets = context.secrets if spec.secret_channel != "none" else None
        attempts = 1
        result = await self._invoke(spec, argv, token, secrets, run_id)
        # タイムアウトは1回だけ再試行する
        if result.timed_out:
            logger.warning("Validator %s timed out, retrying in %.1fs", spec.name, self._retry_backoff)
            await asyncio.sleep(self._retry_backoff)
            self._check_cancelled(token, run_id)
            attempts = 2
            result = await self._invoke(spec, argv, token, secrets, run_id)

        def metadata(status: ToolRunStatus) -> ToolRunMetadata:
            return ToolRunMetadata(
                tool=spec.name,
                status=status,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                timed_out=result.timed_out,
                truncated=result.truncated,
                attempts=attempts,
            )

        if result.timed_out:
            finding = tool_finding(
                spec.name,
                TOOL_TIMED_OUT,
                "error",
                _primary_dimension(spec),
                f"Validator {spec.name} did not finish within the timeout after {attempts} attempts",
                remediation="Increase the validator timeout or reduce the size of the artifact",
                context=combined_output(result) or None,
            )
            return _ToolOutcome(findings=[finding], metadata=metadata("timed_out"))

        if result.exit_code not in spec.ok_exit_codes:
            finding = tool_finding(
                spec.name,
                TOOL_EXECUTION_FAILED,
                "error",
                _primary_dimension(spec),
                f"Validator {spec.name} failed with exit code {result.exit_code}",
                remediation="Check the validator installation and the captured output",
                context=combined_output(result) or None,
            )
            return _ToolOutcome(findings=[finding], metadata=metadata("failed"))

        try:
            findings = get_parser(spec.parser)(result, target)
        except UnparsableOutputError as e:
            logger.warning("Validator %s produced unparsable output: %s", spec.name, e.reason)
            finding = tool_finding(
                spec.name,
                UNPARSABLE_OUTPUT,
                "warning",
                _primary_dimension(spec),
                f"Output of validator {spec.name} could not be normalized: {e.reason}",
                context=combined_output(result) or None,
            )
            return _ToolOutcome(findings=[finding], metadata=metadata("unparsable"))

        return _ToolOutcome(findings=findings, metadata=metadata("ok"), covered=spec.dimensions)

    async def _invoke(
        self,
        spec: ToolSpec,
        argv: list[str],
        token: CancelToken,
        secrets: dict[str, str] | None,
        run_id: str,
    ) -> ProcessResult:
        result = await self._invoker.run(spec.name, argv, self._timeout, cancel_token=token, secrets=secrets)
        if result.cancelled:
            raise RunCancelledError(run_id)
        return result
