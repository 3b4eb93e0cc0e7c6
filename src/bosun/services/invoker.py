"""許可リストに登録された外部バリデータを安全に実行するサービス。"""

import asyncio
import logging
import os
import shutil
import signal
import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager, suppress
from pathlib import Path

from bosun.config import DEFAULT_ENV_ALLOWLIST
from bosun.models.errors import ToolNotAllowedError, ToolUnavailableError, UnsafeEmbeddedValueError
from bosun.models.process import ProcessResult, ToolSpec
from bosun.security.inputs import sanitize_for_display
from bosun.security.tempfiles import secret_file

logger = logging.getLogger(__name__)

# 出力キャプチャ上限のデフォルト（2 MiB）
DEFAULT_MAX_OUTPUT_BYTES = 2 * 1024 * 1024

# SIGTERM後、SIGKILLまでの猶予（秒）
_KILL_GRACE_SECONDS = 2.0

_READ_CHUNK = 64 * 1024


class CancelToken:
    """検証ラン単位のキャンセルシグナル。"""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class _OutputBuffer:
    """上限バイトまで出力を保持する。読み取りを打ち切っても、それまでの内容は残る。"""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._chunks: list[bytes] = []
        self._size = 0
        self.truncated = False

    def append(self, chunk: bytes) -> None:
        remaining = self._limit - self._size
        if remaining <= 0:
            self.truncated = True
            return
        kept = chunk[:remaining]
        self._chunks.append(kept)
        self._size += len(kept)
        if len(kept) < len(chunk):
            self.truncated = True

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)


async def _read_bounded(stream: asyncio.StreamReader | None, buffer: _OutputBuffer) -> None:
    """ストリームを上限バイトまでbufferに保持し、残りは読み捨てる。"""
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        buffer.append(chunk)


class ProcessInvoker:
    """外部バリデータをシェルを介さずに実行する。

    引数は常に個別のリスト要素としてexecに渡し、単一のコマンド文字列に
    連結することはない。許可リスト外のツールは実行しない。
    """

    def __init__(
        self,
        tools: Iterable[ToolSpec],
        *,
        default_timeout: float = 120.0,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        env_allowlist: Sequence[str] = DEFAULT_ENV_ALLOWLIST,
        kill_grace_seconds: float = _KILL_GRACE_SECONDS,
    ) -> None:
        self._tools: dict[str, ToolSpec] = {spec.name: spec for spec in tools}
        self._default_timeout = default_timeout
        self._max_output_bytes = max_output_bytes
        self._env_allowlist = tuple(env_allowlist)
        self._kill_grace = kill_grace_seconds

    @property
    def allowed_tools(self) -> list[str]:
        return sorted(self._tools)

    def get_spec(self, tool: str) -> ToolSpec:
        """許可リストからツール定義を取得する。

        Raises:
            ToolNotAllowedError: 許可リスト外のツールの場合。
        """
        spec = self._tools.get(tool)
        if spec is None:
            raise ToolNotAllowedError(sanitize_for_display(tool, max_length=64))
        return spec

    def resolve(self, tool: str) -> str:
        """ツールが許可リストにあり、実行ファイルが存在することを確認する。

        Returns:
            実行ファイルの絶対パス。
        """
        return self._resolve_executable(self.get_spec(tool))

    @staticmethod
    def _resolve_executable(spec: ToolSpec) -> str:
        """実行ファイルの絶対パスを解決する。

        Raises:
            ToolUnavailableError: 実行ファイルが見つからない場合。
        """
        resolved = shutil.which(spec.executable)
        if resolved is None:
            raise ToolUnavailableError(spec.name)
        return resolved

    def _build_env(self, spec: ToolSpec, secret_env: Mapping[str, str]) -> dict[str, str]:
        """許可リストに含まれる環境変数のみを引き継いだ子プロセス環境を構築する。"""
        env = {key: os.environ[key] for key in self._env_allowlist if key in os.environ}
        env.update(spec.extra_env)
        env.update(secret_env)
        return env

    @contextmanager
    def _secret_channel(self, spec: ToolSpec, secrets: Mapping[str, str] | None) -> Iterator[dict[str, str]]:
        """ツール定義に従い、機密値を環境変数または一時ファイル経由で渡す。"""
        if not secrets:
            yield {}
            return
        if spec.secret_channel == "none":
            raise ValueError(f"Validator {spec.name} does not accept secrets")
        if spec.secret_channel == "env":
            yield dict(secrets)
            return
        if spec.secret_file_env_var is None:
            raise ValueError(f"Validator {spec.name} has no secret file variable configured")
        with secret_file(secrets) as path:
            yield {spec.secret_file_env_var: str(path)}

    async def run(
        self,
        tool: str,
        argv: Sequence[str],
        timeout: float | None = None,
        working_dir: Path | None = None,
        cancel_token: CancelToken | None = None,
        secrets: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        """許可リストのバリデータを引数リストで実行する。

        Args:
            tool: 許可リストに登録されたツール名。
            argv: 検証済みの引数リスト（実行ファイル名は含まない）。
            timeout: タイムアウト秒数。Noneの場合はデフォルト値。
            working_dir: 作業ディレクトリ。
            cancel_token: キャンセルシグナル。
            secrets: ツールに渡す機密値。ToolSpec.secret_channelの経路で渡す。

        Returns:
            実行結果。タイムアウト・キャンセル時も例外ではなく結果として返す。

        Raises:
            ToolNotAllowedError: 許可リスト外のツールの場合。
            ToolUnavailableError: 実行ファイルが見つからない場合。
            TypeError: argvが文字列のリストでない場合。
            UnsafeEmbeddedValueError: 引数にNULバイトが含まれる場合。
        """
        spec = self.get_spec(tool)
        if isinstance(argv, (str, bytes)) or not all(isinstance(arg, str) for arg in argv):
            raise TypeError("argv must be a sequence of str")
        for arg in argv:
            if "\x00" in arg:
                raise UnsafeEmbeddedValueError(arg)
        executable = self._resolve_executable(spec)

        with self._secret_channel(spec, secrets) as secret_env:
            env = self._build_env(spec, secret_env)
            return await self._execute(
                spec.name,
                [executable, *argv],
                timeout if timeout is not None else self._default_timeout,
                working_dir,
                env,
                cancel_token,
            )

    async def _execute(
        self,
        name: str,
        args: list[str],
        timeout: float,
        working_dir: Path | None,
        env: dict[str, str],
        cancel_token: CancelToken | None,
    ) -> ProcessResult:
        logger.info("Running validator %s (%d args, timeout=%.1fs)", name, len(args) - 1, timeout)
        logger.debug("Validator %s argv: %s", name, [sanitize_for_display(a, max_length=128) for a in args[1:]])
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(working_dir) if working_dir is not None else None,
                env=env,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolUnavailableError(name, type(e).__name__) from e

        stdout_buffer = _OutputBuffer(self._max_output_bytes)
        stderr_buffer = _OutputBuffer(self._max_output_bytes)
        stdout_task = asyncio.create_task(_read_bounded(proc.stdout, stdout_buffer))
        stderr_task = asyncio.create_task(_read_bounded(proc.stderr, stderr_buffer))
        wait_task = asyncio.create_task(proc.wait())
        cancel_task = asyncio.create_task(cancel_token.wait()) if cancel_token is not None else None
        waiters: set[asyncio.Task[object]] = {wait_task}  # type: ignore[arg-type]
        if cancel_task is not None:
            waiters.add(cancel_task)  # type: ignore[arg-type]

        try:
            done, _pending = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
            finished = wait_task in done
            timed_out = not done
            cancelled = not finished and not timed_out
            if not finished:
                await self._terminate(proc)
            output_complete = await self._collect(stdout_task, stderr_task)
            if not output_complete:
                logger.warning("Validator %s left its output pipes open; keeping partial output", name)
        except asyncio.CancelledError:
            await self._terminate(proc)
            stdout_task.cancel()
            stderr_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            if not wait_task.done():
                wait_task.cancel()

        duration_ms = int((time.monotonic() - started) * 1000)
        if timed_out:
            logger.warning("Validator %s timed out after %dms", name, duration_ms)
        elif cancelled:
            logger.info("Validator %s cancelled after %dms", name, duration_ms)
        else:
            logger.info("Validator %s exited with %s in %dms", name, proc.returncode, duration_ms)

        return ProcessResult(
            tool=name,
            exit_code=None if (timed_out or cancelled) else proc.returncode,
            stdout=stdout_buffer.getvalue().decode("utf-8", errors="replace"),
            stderr=stderr_buffer.getvalue().decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
            timed_out=timed_out,
            truncated=stdout_buffer.truncated or stderr_buffer.truncated or not output_complete,
            cancelled=cancelled,
        )

    async def _collect(self, stdout_task: "asyncio.Task[None]", stderr_task: "asyncio.Task[None]") -> bool:
        """出力読み取りタスクの完了を待ち、最後まで読めたかを返す。

        パイプを保持する孫プロセスが残った場合は打ち切り、それまでに読んだ出力を使う。
        """
        try:
            await asyncio.wait_for(asyncio.gather(stdout_task, stderr_task), timeout=self._kill_grace + 1.0)
        except TimeoutError:
            stdout_task.cancel()
            stderr_task.cancel()
            return False
        return True

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """プロセスグループ全体をSIGTERM→SIGKILLの順で終了させる。"""
        if proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace)
        except TimeoutError:
            with suppress(ProcessLookupError):
                os.killpg(proc.pid, signal.SIGKILL)
            await proc.wait()
