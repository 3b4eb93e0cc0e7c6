"""プロセス境界・ファイルシステム境界を越える値の検証とサニタイズ。

サブプロセスやファイルパスに到達する値はすべて攻撃者由来とみなし、
ここでホワイトリスト検証を通してから使用する。検証失敗は常に
InputRejectedErrorのサブクラスとして送出され、警告のみで処理を
継続することはない。
"""

import re
import unicodedata
from collections.abc import Iterable
from pathlib import Path
from typing import Literal
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict

from bosun.models.errors import (
    InvalidIdentifierError,
    OutsideAllowedRootError,
    PathTraversalError,
    TargetNotFoundError,
    UnsafeEmbeddedValueError,
)

IdentifierKind = Literal[
    "subscription_id",
    "tenant_id",
    "resource_group",
    "policy_name",
    "resource_name",
    "email",
    "test_name",
]
EmbedDialect = Literal["powershell", "posix"]

_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# 識別子種別ごとのホワイトリストパターン
_IDENTIFIER_PATTERNS: dict[str, re.Pattern[str]] = {
    "subscription_id": _UUID_RE,
    "tenant_id": _UUID_RE,
    "resource_group": re.compile(r"^[a-zA-Z0-9._()-]{1,90}$"),
    "policy_name": re.compile(r"^[a-zA-Z0-9._-]{1,128}$"),
    "resource_name": re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]{0,62}[a-zA-Z0-9]$"),
    "email": _EMAIL_RE,
    "test_name": re.compile(r"^[a-zA-Z0-9_ -]{1,100}$"),
}

_MAX_EMAIL_LENGTH = 254

# 表示用サニタイズで除去するシェルメタ文字
_SHELL_METACHARACTERS = str.maketrans("", "", ";&|`$(){}[]'\"\\")
_TRAVERSAL_SEQUENCE_RE = re.compile(r"\.\.[\\/]")
_TRUNCATION_MARKER = "...[truncated]"

# PowerShellが単一引用符として扱う文字（ASCII + タイポグラフィック引用符）
_POWERSHELL_QUOTES_RE = re.compile("['\\u2018\\u2019\\u201a\\u201b]")


class Identifier(BaseModel):
    """検証済みの識別子。"""

    model_config = ConfigDict(frozen=True)

    kind: IdentifierKind
    value: str

    def __str__(self) -> str:
        return self.value


def validate_identifier(raw: str, kind: IdentifierKind) -> Identifier:
    """識別子を種別ごとのホワイトリストパターンで検証する。

    Args:
        raw: 検証対象の文字列。
        kind: 識別子種別。

    Returns:
        検証済みのIdentifier。

    Raises:
        InvalidIdentifierError: パターンに一致しない場合、または未知の種別の場合。
    """
    pattern = _IDENTIFIER_PATTERNS.get(kind)
    if pattern is None or not isinstance(raw, str):
        raise InvalidIdentifierError(str(kind), str(raw))
    if not pattern.fullmatch(raw):
        raise InvalidIdentifierError(kind, raw)
    if kind == "resource_group" and raw.endswith("."):
        raise InvalidIdentifierError(kind, raw)
    if kind == "email" and not _is_plausible_email(raw):
        raise InvalidIdentifierError(kind, raw)
    return Identifier(kind=kind, value=raw)


def _is_plausible_email(raw: str) -> bool:
    if len(raw) > _MAX_EMAIL_LENGTH:
        return False
    if ".." in raw or raw.startswith(".") or raw.endswith("."):
        return False
    return "@." not in raw and ".@" not in raw


def _has_traversal(raw: str) -> bool:
    """生の入力とURLデコード後の入力のどちらかに'..'セグメントがあるか。"""
    for candidate in (raw, unquote(raw)):
        segments = re.split(r"[\\/]", candidate)
        if any(segment == ".." for segment in segments):
            return True
    return False


class PathValidator:
    """許可ルート配下のパスのみを受け付けるパス検証器。"""

    def __init__(self, allowed_roots: Iterable[Path]) -> None:
        self._roots = [Path(root).resolve() for root in allowed_roots]
        if not self._roots:
            raise ValueError("At least one allowed root is required")

    @property
    def allowed_roots(self) -> list[Path]:
        return list(self._roots)

    def validate_path(self, raw: str | Path) -> Path:
        """パスを正規化し、許可ルート配下の既存パスであることを検証する。

        シンボリックリンクと'..'は解決した上で判定する。相対パスは
        最初の許可ルートを基準に解決する。

        Args:
            raw: 呼び出し元から渡されたパス。

        Returns:
            正規化済みの絶対パス。

        Raises:
            PathTraversalError: トラバーサルシーケンス・NULバイト・'~'を含む場合。
            OutsideAllowedRootError: 解決後のパスが許可ルート外の場合。
            TargetNotFoundError: 空文字列、またはパスが存在しない場合。
        """
        text = str(raw)
        if not text.strip():
            raise TargetNotFoundError(text)
        if "\x00" in text or "%00" in text.lower():
            raise PathTraversalError(text)
        if _has_traversal(text) or text.startswith("~"):
            raise PathTraversalError(text)

        candidate = Path(text)
        if not candidate.is_absolute():
            candidate = self._roots[0] / candidate
        resolved = candidate.resolve(strict=False)

        if not any(resolved.is_relative_to(root) for root in self._roots):
            raise OutsideAllowedRootError(text)
        if not resolved.exists():
            raise TargetNotFoundError(text)
        return resolved


def sanitize_for_display(raw: object, max_length: int = 512) -> str:
    """ログやレポートに出力する値から制御文字・シェルメタ文字を除去する。

    検証済みかどうかに関わらず、表示する値には常に適用する。
    """
    text = str(raw)
    text = "".join(ch for ch in text if unicodedata.category(ch) not in ("Cc", "Cf"))
    # "....//" のような入れ子を潰すため、変化がなくなるまで繰り返す
    previous = None
    while previous != text:
        previous = text
        text = _TRAVERSAL_SEQUENCE_RE.sub("", text)
    text = text.translate(_SHELL_METACHARACTERS)
    if len(text) > max_length:
        text = text[: max(0, max_length - len(_TRUNCATION_MARKER))] + _TRUNCATION_MARKER
    return text


def escape_for_embedded_string(raw: str, dialect: EmbedDialect) -> str:
    """外部ツールのスクリプト文字列に単一引用符リテラルとして埋め込む値をエスケープする。

    返り値は引用符の内側に置く文字列で、引用符自体は含まない。

    Args:
        raw: 埋め込む値。
        dialect: "powershell"（引用符を二重化）または"posix"（'\\''形式）。

    Returns:
        エスケープ済みの文字列。

    Raises:
        UnsafeEmbeddedValueError: NULバイトを含む場合。
        ValueError: 未知のdialectの場合。
    """
    if "\x00" in raw:
        raise UnsafeEmbeddedValueError(raw)
    if dialect == "powershell":
        return _POWERSHELL_QUOTES_RE.sub(lambda m: m.group(0) * 2, raw)
    if dialect == "posix":
        return raw.replace("'", "'\\''")
    raise ValueError(f"Unknown embedding dialect: {dialect}")
