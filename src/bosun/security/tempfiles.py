"""機密値・大きなペイロードを子プロセスへ渡すための一時ファイル管理。

一時ファイルはプロセス専用ディレクトリ(0o700)に所有者のみ読み書き可能(0o600)な
推測不能な名前で作成し、成功・失敗・タイムアウト・キャンセルのいずれの
経路でもコンテキストマネージャの終了時に削除する。
"""

import atexit
import json
import logging
import os
import secrets
import shutil
import tempfile
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

_process_dir: Path | None = None
_process_dir_lock = threading.Lock()


def _cleanup_process_dir() -> None:
    if _process_dir is not None:
        shutil.rmtree(_process_dir, ignore_errors=True)


def process_temp_dir() -> Path:
    """このプロセス専用の一時ディレクトリを返す（初回呼び出しで作成）。"""
    global _process_dir
    with _process_dir_lock:
        if _process_dir is None or not _process_dir.exists():
            # mkdtempは0o700で作成する
            _process_dir = Path(tempfile.mkdtemp(prefix=f"bosun-{os.getpid()}-"))
            atexit.register(_cleanup_process_dir)
        return _process_dir


@contextmanager
def private_temp_file(data: bytes, suffix: str = "") -> Iterator[Path]:
    """所有者のみアクセス可能な一時ファイルを作成し、終了時に削除する。

    Args:
        data: 書き込む内容。
        suffix: ファイル名のサフィックス。

    Yields:
        作成した一時ファイルのパス。
    """
    path = process_temp_dir() / f"{secrets.token_hex(16)}{suffix}"
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.error("Failed to remove temporary file %s", path.name)
            raise


@contextmanager
def secret_file(values: Mapping[str, str]) -> Iterator[Path]:
    """機密値をJSONとして一時ファイルに書き出す。値はログに出力しない。"""
    payload = json.dumps(dict(values)).encode("utf-8")
    with private_temp_file(payload, suffix=".secret.json") as path:
        yield path
