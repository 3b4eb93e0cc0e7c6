"""外部バリデータ実行関連のデータモデル。"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from bosun.models.validation import ArtifactKind, Dimension

SecretChannel = Literal["none", "env", "file"]
ParserName = Literal["arm_ttk", "sarif", "az_deployment", "exit_code"]


class ToolSpec(BaseModel):
    """許可リストに登録された外部バリデータの定義。

    secret_channelはツールが機密値を受け取る経路を示す:
    - none: 機密値を受け取らない。
    - env: 子プロセスの環境変数にのみ注入する。
    - file: 所有者のみ読み取り可能な一時ファイルに書き出し、
      そのパスをsecret_file_env_varの環境変数で渡す。
    コマンドライン引数で機密値を渡す経路は存在しない。
    """

    model_config = ConfigDict(frozen=True)

    name: str
    executable: str
    parser: ParserName
    description: str = ""
    ok_exit_codes: frozenset[int] = frozenset({0})
    dimensions: frozenset[Dimension] = frozenset()
    artifact_kinds: frozenset[ArtifactKind] = frozenset({"template"})
    secret_channel: SecretChannel = "none"
    secret_file_env_var: str | None = None
    extra_env: dict[str, str] = Field(default_factory=dict)


class ProcessResult(BaseModel):
    """サブプロセス1回分の実行結果。

    timed_outまたはcancelledの場合、exit_codeはNoneになる。
    """

    model_config = ConfigDict(frozen=True)

    tool: str
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    truncated: bool = False
    cancelled: bool = False
