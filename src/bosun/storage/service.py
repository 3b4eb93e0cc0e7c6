"""検証レポートのローカルファイルシステム永続化。"""

import json
import re
from pathlib import Path

from bosun.models.errors import ReportNotFoundError, StorageError
from bosun.models.validation import ValidationReport

# run_idはuuid4().hex
_RUN_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class ReportStore:
    """検証レポートをJSONファイルとして保存する。

    data_dir/reports/<run_id>.json に1レポート1ファイルで保存する。
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._reports_dir = data_dir / "reports"

    def _report_file(self, run_id: str) -> Path:
        # ディレクトリトラバーサル防止
        if not _RUN_ID_RE.match(run_id) or Path(run_id).name != run_id:
            raise StorageError(f"Invalid run ID: {run_id[:64]!r}")
        return self._reports_dir / f"{run_id}.json"

    async def save_report(self, report: ValidationReport) -> None:
        """レポートをファイルシステムに保存する。"""
        report_file = self._report_file(report.run_id)
        try:
            self._reports_dir.mkdir(parents=True, exist_ok=True)
            report_file.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Could not save report {report.run_id}: {e.strerror}") from e

    async def load_report(self, run_id: str) -> ValidationReport:
        """レポートをファイルシステムから読み込む。

        Raises:
            ReportNotFoundError: レポートが存在しない場合。
            StorageError: run_idが不正な場合。
        """
        report_file = self._report_file(run_id)
        if not report_file.exists():
            raise ReportNotFoundError(run_id)
        data = json.loads(report_file.read_text(encoding="utf-8"))
        return ValidationReport.model_validate(data)

    async def delete_report(self, run_id: str) -> None:
        """レポートを削除する。

        Raises:
            ReportNotFoundError: レポートが存在しない場合。
            StorageError: run_idが不正、または削除できない場合。
        """
        report_file = self._report_file(run_id)
        try:
            report_file.unlink()
        except FileNotFoundError as e:
            raise ReportNotFoundError(run_id) from e
        except OSError as e:
            raise StorageError(f"Could not delete report {run_id}: {e.strerror}") from e

    async def list_reports(self) -> list[str]:
        """保存されているレポートのrun_id一覧を返す。"""
        if not self._reports_dir.exists():
            return []
        return sorted(p.stem for p in self._reports_dir.glob("*.json") if _RUN_ID_RE.match(p.stem))
