import base64

import httpx
import pytest

from stocksync.services.errors import (
    AuthError,
    PlatformAPIError,
    RateLimitError,
    TransientNetworkError,
)
from stocksync.services.platform_client import PlatformClient, basic_auth_header


def _client(handler):
    return PlatformClient(
        base_url="https://api.test/v3",
        token_url="https://api.test/v3/oauth/token",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def test_basic_auth_header():
    header = basic_auth_header("id", "secret")
    assert header == "Basic " + base64.b64encode(b"id:secret").decode()


@pytest.mark.asyncio
async def test_list_orders_sends_pagination_and_bearer():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"data": [{"id": 1}, {"id": 2}]})

    orders = await _client(handler).list_orders("tok", page=3, limit=100, filters={"dataInicial": "2024-03-04"})

    assert orders == [{"id": 1}, {"id": 2}]
    assert seen["url"].path == "/v3/pedidos/vendas"
    assert seen["url"].params["pagina"] == "3"
    assert seen["url"].params["limite"] == "100"
    assert seen["url"].params["dataInicial"] == "2024-03-04"
    assert seen["auth"] == "Bearer tok"


@pytest.mark.asyncio
async def test_missing_data_is_an_empty_page():
    orders = await _client(lambda request: httpx.Response(200, json={})).list_orders("tok", 1, 100)
    assert orders == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code, error_cls", [
    (401, AuthError),
    (429, RateLimitError),
    (503, TransientNetworkError),
    (404, PlatformAPIError),
    (500, PlatformAPIError),
])
async def test_error_statuses_map_to_error_types(status_code, error_cls):
    def handler(request):
        return httpx.Response(status_code, json={"error": {"message": "nope"}})

    with pytest.raises(error_cls) as excinfo:
        await _client(handler).list_orders("tok", 1, 100)
    assert excinfo.value.status_code == status_code
    assert excinfo.value.message == "nope"


@pytest.mark.asyncio
async def test_connection_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection reset", request=request)

    with pytest.raises(TransientNetworkError):
        await _client(handler).list_orders("tok", 1, 100)


@pytest.mark.asyncio
async def test_get_order_returns_detail_payload():
    def handler(request):
        assert request.url.path == "/v3/pedidos/vendas/42"
        return httpx.Response(200, json={"data": {"id": 42, "itens": []}})

    assert await _client(handler).get_order("tok", "42") == {"id": 42, "itens": []}


@pytest.mark.asyncio
async def test_refresh_grant_posts_form_with_basic_auth():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"access_token": "new", "refresh_token": "r2", "expires_in": 21600})

    token = await _client(handler).refresh_token_grant("id", "secret", "r1")

    assert token.access_token == "new"
    assert token.expires_in == 21600
    assert seen["auth"] == basic_auth_header("id", "secret")
    assert "grant_type=refresh_token" in seen["body"]
    assert "refresh_token=r1" in seen["body"]


@pytest.mark.asyncio
async def test_rejected_grant_raises_auth_error():
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "refresh token revoked"})

    with pytest.raises(AuthError) as excinfo:
        await _client(handler).refresh_token_grant("id", "secret", "r1")
    assert "refresh token revoked" in excinfo.value.message
    assert excinfo.value.status_code == 400
