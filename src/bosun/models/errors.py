"""Bosunのカスタム例外クラス。

検証失敗はすべて型付きの例外として表現し、呼び出し側が種類ごとに
明示的にハンドリングできるようにする。
"""


class BosunError(Exception):
    """Bosunの基底例外クラス。"""


# --- 入力拒否（サブプロセスに到達する前に失敗する） ---


class InputRejectedError(BosunError):
    """パス・識別子などの入力検証に失敗した場合の基底例外。"""

    def __init__(self, message: str, value: str) -> None:
        super().__init__(message)
        self.value = value


class PathTraversalError(InputRejectedError):
    """パスにトラバーサルシーケンスが含まれる場合の例外。"""

    def __init__(self, value: str) -> None:
        super().__init__("Path contains a traversal sequence", value)


class OutsideAllowedRootError(InputRejectedError):
    """正規化後のパスが許可ルートの外にある場合の例外。"""

    def __init__(self, value: str) -> None:
        super().__init__("Path resolves outside the allowed roots", value)


class TargetNotFoundError(InputRejectedError):
    """検証対象が存在しない場合の例外。"""

    def __init__(self, value: str) -> None:
        super().__init__("Validation target does not exist", value)


class InvalidIdentifierError(InputRejectedError):
    """識別子がホワイトリストパターンに一致しない場合の例外。"""

    def __init__(self, kind: str, value: str) -> None:
        super().__init__(f"Invalid {kind}", value)
        self.kind = kind


class UnsafeEmbeddedValueError(InputRejectedError):
    """埋め込み文字列にできない値（NULバイト等）の例外。"""

    def __init__(self, value: str) -> None:
        super().__init__("Value cannot be embedded in a quoted literal", value)


# --- 外部ツール ---


class ToolUnavailableError(BosunError):
    """バリデータの実行ファイルが見つからない場合の例外。"""

    def __init__(self, tool: str, reason: str = "executable not found") -> None:
        super().__init__(f"Validator unavailable: {tool} ({reason})")
        self.tool = tool


class ToolNotAllowedError(ToolUnavailableError):
    """許可リスト外のツール実行を拒否する例外。"""

    def __init__(self, tool: str) -> None:
        super().__init__(tool, "not on the validator allow-list")


class UnparsableOutputError(BosunError):
    """ツール出力を共通モデルに正規化できない場合の例外。"""

    def __init__(self, tool: str, reason: str) -> None:
        super().__init__(f"Unparsable output from {tool}: {reason}")
        self.tool = tool
        self.reason = reason


# --- パイプライン / 最適化 ---


class OptimizationWriteFailedError(BosunError):
    """最適化アクションのファイル書き込みに失敗した場合の例外。"""

    def __init__(self, action: str, file_path: str, reason: str) -> None:
        super().__init__(f"Optimization action {action} could not write {file_path}: {reason}")
        self.action = action
        self.file_path = file_path
        self.reason = reason


class RunCancelledError(BosunError):
    """検証ランがキャンセルされた場合の例外。"""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Validation run cancelled: {run_id}")
        self.run_id = run_id


# --- ストレージ ---


class StorageError(BosunError):
    """ストレージ操作のエラー。"""


class ReportNotFoundError(BosunError):
    """指定されたレポートが見つからない場合の例外。"""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Report not found: {run_id}")
        self.run_id = run_id
