"""FastMCPベースのMCPサーバーエントリポイント。"""

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from bosun.config import BosunConfig
from bosun.models.policy import load_policy
from bosun.resources.policy import register_policy_resources
from bosun.services.optimizer import OptimizationEngine
from bosun.services.pipeline import ValidationPipeline
from bosun.storage.service import ReportStore
from bosun.tools.validation import register_validation_tools


def create_server(config: BosunConfig | None = None) -> FastMCP:
    """Bosun MCPサーバーを作成し、ツール・リソースを登録する。

    Args:
        config: サーバー設定。Noneの場合はデフォルト設定を使用。

    Returns:
        設定済みのFastMCPインスタンス。
    """
    if config is None:
        config = BosunConfig()

    mcp = FastMCP("bosun")

    # ポリシーはここで一度だけ読み込み、各コンポーネントへ明示的に渡す
    policy = load_policy(config.policy_file)

    # データアクセス層
    store = ReportStore(data_dir=config.data_dir)

    # サービス層
    pipeline = ValidationPipeline.from_config(config, policy)
    optimizer = OptimizationEngine(pipeline)

    # MCPインターフェース登録
    register_validation_tools(mcp, pipeline, optimizer, store)
    register_policy_resources(mcp, config.config_dir, policy)

    # ヘルスチェックエンドポイント
    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return mcp
