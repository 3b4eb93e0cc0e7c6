"""Bosun MCPサーバーのコマンドラインエントリポイント。"""

import logging


def main() -> None:
    import uvicorn
    from starlette.middleware import Middleware

    from bosun.config import BosunConfig
    from bosun.middleware import TokenAuthMiddleware
    from bosun.server import create_server

    config = BosunConfig()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp = create_server(config)
    app = mcp.http_app(
        transport="streamable-http",
        middleware=[Middleware(TokenAuthMiddleware, url_token=config.url_token)],
    )
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
