"""最適化エンジン。

検証レポートのFindingを前提条件として安全な修正を提案し、許可された場合は
アトミックに適用してからパイプライン全体で再検証する。
"""

import json
import logging
import os
import stat
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from bosun.models.errors import InputRejectedError, OptimizationWriteFailedError
from bosun.models.optimization import (
    AppliedAction,
    OptimizationResult,
    ProposedAction,
    WriteFailure,
)
from bosun.models.validation import ValidationReport
from bosun.optimization.actions import DEFAULT_ACTIONS, OptimizationAction
from bosun.security.inputs import sanitize_for_display
from bosun.services.invoker import CancelToken
from bosun.services.pipeline import ValidationPipeline, ValidationRequest

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, document: dict[str, Any]) -> None:
    """同一ディレクトリの一時ファイルに書き込み、os.replaceで置き換える。

    途中で失敗した場合、元のファイルは変更されない。
    """
    payload = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
    mode = stat.S_IMODE(path.stat().st_mode)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class OptimizationEngine:
    """最適化アクションの提案・適用・再検証を行う。"""

    def __init__(self, pipeline: ValidationPipeline, actions: Sequence[OptimizationAction] = DEFAULT_ACTIONS) -> None:
        self._pipeline = pipeline
        self._actions = {action.name: action for action in actions}

    @property
    def actions(self) -> list[OptimizationAction]:
        return list(self._actions.values())

    def propose(self, report: ValidationReport) -> list[ProposedAction]:
        """レポートに前提条件のFindingが存在するアクションを列挙する。

        アクションはカタログ順、対象ファイルはFindingが指すファイルのみ。
        """
        proposed: list[ProposedAction] = []
        for action in self._actions.values():
            files: list[str] = []
            for finding in report.findings:
                if finding.id != action.addresses or finding.location is None:
                    continue
                if finding.location.file not in files:
                    files.append(finding.location.file)
            for file in files:
                proposed.append(
                    ProposedAction(
                        action=action.name,
                        addresses=action.addresses,
                        file=file,
                        description=action.description,
                    )
                )
        return proposed

    async def optimize(
        self,
        request: ValidationRequest,
        apply: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> OptimizationResult:
        """検証して修正を提案し、applyがTrueなら適用して再検証する。

        書き込みに失敗した場合は以降のアクションを中止し、適用済みの分だけを
        再検証したpartially_appliedの結果を返す。例外は送出しない。

        Raises:
            InputRejectedError: 入力検証に失敗した場合（初回検証時）。
            RunCancelledError: ランがキャンセルされた場合。
        """
        before = await self._pipeline.validate(request, cancel_token)
        proposed = self.propose(before)
        if not proposed:
            logger.info("No optimization available for run %s", before.run_id)
            return OptimizationResult(state="no_fix_available", before=before)
        if not apply:
            return OptimizationResult(state="proposed", before=before, proposed=proposed)

        applied: list[AppliedAction] = []
        not_attempted: list[ProposedAction] = []
        failure: WriteFailure | None = None
        for index, proposal in enumerate(proposed):
            try:
                path = self._resolve_file(before, proposal.file)
                changed = self._apply_action(self._actions[proposal.action], path)
            except OptimizationWriteFailedError as e:
                logger.warning("Optimization stopped: %s", e)
                failure = WriteFailure(action=proposal.action, file=proposal.file, reason=e.reason)
                not_attempted = proposed[index + 1 :]
                break
            applied.append(
                AppliedAction(action=proposal.action, addresses=proposal.addresses, file=proposal.file, changed=changed)
            )

        # 適用結果は必ず同じチェックで再検証する
        after = await self._pipeline.validate(request, cancel_token)
        applied = [a.model_copy(update={"confirmed": not _still_reported(after, a)}) for a in applied]
        for action in applied:
            if not action.confirmed:
                logger.warning("Action %s did not resolve %s in %s", action.action, action.addresses, action.file)
        return OptimizationResult(
            state="partially_applied" if failure is not None else "reverified",
            before=before,
            after=after,
            proposed=proposed,
            applied=applied,
            not_attempted=not_attempted,
            failure=failure,
            delta=before.compare(after),
        )

    def _resolve_file(self, report: ValidationReport, file: str) -> Path:
        """Findingのファイル表示名を、許可ルート内の実ファイルに解決する。

        単一ファイルの対象では表示名がサニタイズ済みのことがあるため、対象パスそのものを使う。
        """
        target = report.target
        candidate = target.path / file if target.kind == "package_root" else target.path
        try:
            return self._pipeline.path_validator.validate_path(candidate)
        except InputRejectedError as e:
            raise OptimizationWriteFailedError("resolve", sanitize_for_display(file), str(e)) from e

    @staticmethod
    def _apply_action(action: OptimizationAction, path: Path) -> bool:
        """JSONを読み込み、変換し、変更があればアトミックに書き戻す。"""
        try:
            document = json.loads(path.read_text(encoding="utf-8-sig"))
        except (OSError, ValueError) as e:
            raise OptimizationWriteFailedError(action.name, path.name, f"could not read JSON: {e}") from e
        if not isinstance(document, dict):
            raise OptimizationWriteFailedError(action.name, path.name, "document is not a JSON object")

        if not action.apply(document):
            logger.debug("Action %s made no changes to %s", action.name, path.name)
            return False
        try:
            write_json_atomic(path, document)
        except OSError as e:
            raise OptimizationWriteFailedError(action.name, path.name, e.strerror or type(e).__name__) from e
        logger.info("Applied optimization %s to %s", action.name, sanitize_for_display(path.name, max_length=128))
        return True


def _still_reported(report: ValidationReport, action: AppliedAction) -> bool:
    return any(
        f.id == action.addresses and f.location is not None and f.location.file == action.file
        for f in report.findings
    )
