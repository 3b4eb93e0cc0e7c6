"""Bosunの設定管理。"""

from pathlib import Path

from pydantic_settings import BaseSettings

_PACKAGE_ROOT = Path(__file__).parent
_REPO_ROOT = _PACKAGE_ROOT.parent.parent

# 子プロセスへ引き継ぐ環境変数のデフォルト許可リスト
DEFAULT_ENV_ALLOWLIST: tuple[str, ...] = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR", "SYSTEMROOT")


class BosunConfig(BaseSettings):
    """Bosun設定。環境変数(BOSUN_*)から読み込み可能。"""

    model_config = {"env_prefix": "BOSUN_"}

    data_dir: Path = _REPO_ROOT / ".bosun"
    config_dir: Path = _REPO_ROOT / "config"

    # 検証対象として許可するルートディレクトリ
    allowed_roots: list[Path] = [Path.cwd()]

    # 外部バリデータ実行
    default_timeout_seconds: float = 120.0
    timeout_retry_backoff_seconds: float = 1.0
    max_output_bytes: int = 2 * 1024 * 1024
    max_concurrency: int = 4
    env_allowlist: list[str] = list(DEFAULT_ENV_ALLOWLIST)
    enabled_tools: list[str] = ["arm-ttk", "template-analyzer"]
    arm_ttk_module_dir: Path = Path("/opt/arm-ttk/arm-ttk")

    # サーバー
    host: str = "127.0.0.1"
    port: int = 8000
    url_token: str = ""
    log_level: str = "INFO"

    @property
    def policy_file(self) -> Path:
        return self.config_dir / "policy.yaml"
