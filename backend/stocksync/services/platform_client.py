"""Async HTTP client for the external order platform's REST API.

Every call opens a short-lived ``httpx.AsyncClient``. Non-success responses
are mapped onto the pipeline error taxonomy so callers can decide between
retrying, refreshing the token or giving up:

    401            -> AuthError
    429            -> RateLimitError
    502/503/504    -> TransientNetworkError
    timeout/reset  -> TransientNetworkError
    anything else  -> PlatformAPIError
"""

import base64
from typing import Any, Dict, List, Optional

import httpx

from stocksync.config import settings
from stocksync.models.platform import PlatformTokenResponse
from stocksync.services.errors import (
    AuthError,
    PlatformAPIError,
    RateLimitError,
    TransientNetworkError,
)
from stocksync.utils.logger import logger, platform_logger

_TRANSIENT_STATUSES = {502, 503, 504}


def basic_auth_header(client_id: str, client_secret: str) -> str:
    credentials = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")
    return f"Basic {credentials}"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message") or error.get("description")
            if message:
                return str(message)
        if isinstance(error, str):
            return body.get("error_description") or error
    return f"HTTP {response.status_code}"


class PlatformClient:

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.PLATFORM_API_BASE_URL).rstrip("/")
        self.token_url = token_url or settings.PLATFORM_TOKEN_URL
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # OAuth2 token endpoint
    # ------------------------------------------------------------------

    async def _token_request(self, client_id: str, client_secret: str, data: Dict[str, str]) -> PlatformTokenResponse:
        grant_type = data.get("grant_type")
        platform_logger.log_event(
            "token_request",
            f"Requesting platform token (grant_type={grant_type})",
            request_data={**data, "client_id": client_id},
        )

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "Authorization": basic_auth_header(client_id, client_secret),
        }

        try:
            async with self._client() as client:
                response = await client.post(self.token_url, headers=headers, data=data)
        except httpx.RequestError as e:
            error_msg = f"HTTP request failed: {type(e).__name__}: {e}"
            platform_logger.log_event(
                "token_request_error",
                "HTTP error during token request",
                status="error",
                error=error_msg,
            )
            raise TransientNetworkError(error_msg)

        if response.status_code != 200:
            error_msg = _error_message(response)
            platform_logger.log_event(
                "token_request_failed",
                f"Token request failed with status {response.status_code}",
                status="error",
                error=error_msg,
            )
            raise AuthError(f"Token request rejected: {error_msg}", status_code=response.status_code)

        token = PlatformTokenResponse(**response.json())
        platform_logger.log_event(
            "token_request_success",
            f"Token issued (grant_type={grant_type})",
            response_data={"access_token": token.access_token, "expires_in": token.expires_in},
            status="success",
        )
        return token

    async def refresh_token_grant(self, client_id: str, client_secret: str, refresh_token: str) -> PlatformTokenResponse:
        return await self._token_request(
            client_id,
            client_secret,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    async def authorization_code_grant(
        self, client_id: str, client_secret: str, code: str, redirect_uri: str
    ) -> PlatformTokenResponse:
        return await self._token_request(
            client_id,
            client_secret,
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
        )

    # ------------------------------------------------------------------
    # Resource endpoints
    # ------------------------------------------------------------------

    async def _get(self, path: str, access_token: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

        try:
            async with self._client() as client:
                response = await client.get(url, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Timeout calling {path}: {e}")
        except httpx.RequestError as e:
            raise TransientNetworkError(f"Connection error calling {path}: {type(e).__name__}: {e}")

        if response.status_code == 200:
            return response.json()

        message = _error_message(response)
        logger.warning(f"Platform API {path} returned {response.status_code}: {message}")
        if response.status_code == 401:
            raise AuthError(message, status_code=401)
        if response.status_code == 429:
            raise RateLimitError(message, status_code=429)
        if response.status_code in _TRANSIENT_STATUSES:
            raise TransientNetworkError(message, status_code=response.status_code)
        raise PlatformAPIError(message, status_code=response.status_code)

    async def _get_page(self, path: str, access_token: str, page: int, limit: int, extra: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limite": limit, "pagina": page}
        if extra:
            params.update(extra)
        body = await self._get(path, access_token, params)
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, list) else []

    async def list_orders(self, access_token: str, page: int, limit: int, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self._get_page("/pedidos/vendas", access_token, page, limit, filters)

    async def get_order(self, access_token: str, order_id: str) -> Optional[Dict[str, Any]]:
        body = await self._get(f"/pedidos/vendas/{order_id}", access_token)
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, dict) else None

    async def list_products(self, access_token: str, page: int, limit: int) -> List[Dict[str, Any]]:
        return await self._get_page("/produtos", access_token, page, limit)

    async def list_stock_balances(self, access_token: str, page: int, limit: int) -> List[Dict[str, Any]]:
        return await self._get_page("/estoques/saldos", access_token, page, limit)


platform_client = PlatformClient()
