"""TokenAuthMiddlewareのユニットテスト。"""

import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from bosun.middleware import TokenAuthMiddleware


async def _ok(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _client(url_token: str) -> TestClient:
    app = Starlette(
        routes=[Route("/mcp", _ok), Route("/health", _ok)],
        middleware=[Middleware(TokenAuthMiddleware, url_token=url_token)],
    )
    return TestClient(app)


class TestTokenAuthMiddleware:
    def test_no_token_configured_allows_all(self) -> None:
        assert _client("").get("/mcp").status_code == 200

    @pytest.mark.parametrize(
        ("headers", "params"),
        [
            ({"Authorization": "Bearer s3cret"}, {}),
            ({"Authorization": "bearer s3cret"}, {}),
            ({}, {"token": "s3cret"}),
        ],
    )
    def test_valid_token(self, headers: dict[str, str], params: dict[str, str]) -> None:
        response = _client("s3cret").get("/mcp", headers=headers, params=params)
        assert response.status_code == 200

    @pytest.mark.parametrize(
        ("headers", "params"),
        [
            ({}, {}),
            ({"Authorization": "Bearer wrong"}, {}),
            ({"Authorization": "Basic s3cret"}, {}),
            ({}, {"token": "s3cre"}),
        ],
    )
    def test_invalid_token(self, headers: dict[str, str], params: dict[str, str]) -> None:
        response = _client("s3cret").get("/mcp", headers=headers, params=params)
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_health_is_public(self) -> None:
        assert _client("s3cret").get("/health").status_code == 200
