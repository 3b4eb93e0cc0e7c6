"""パーサーテスト用フィクスチャ。"""

from collections.abc import Callable
from pathlib import Path

import pytest

from bosun.models.process import ProcessResult
from bosun.models.validation import ValidationTarget

ResultFactory = Callable[..., ProcessResult]


@pytest.fixture
def template_target(tmp_path: Path) -> ValidationTarget:
    path = tmp_path / "mainTemplate.json"
    path.write_text("{}", encoding="utf-8")
    return ValidationTarget.from_path(path, "template")


@pytest.fixture
def make_result() -> ResultFactory:
    """ツール名と出力からProcessResultを作るファクトリ。"""

    def factory(tool: str, stdout: str = "", stderr: str = "", exit_code: int | None = 0) -> ProcessResult:
        return ProcessResult(tool=tool, exit_code=exit_code, stdout=stdout, stderr=stderr, duration_ms=5)

    return factory
