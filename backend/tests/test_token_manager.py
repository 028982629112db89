from datetime import datetime, timedelta, timezone

import httpx
import pytest

from stocksync.services.errors import AuthError
from stocksync.services.merchant_account_service import merchant_account_service
from stocksync.services.platform_client import PlatformClient
from stocksync.services.token_manager import RECONNECT_MESSAGE, TokenManager
from stocksync.utils import crypto


def _manager(handler, skew_seconds=60):
    client = PlatformClient(
        base_url="https://api.test/v3",
        token_url="https://api.test/v3/oauth/token",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )
    return TokenManager(client=client, skew_seconds=skew_seconds)


def _unexpected(request):
    raise AssertionError(f"unexpected HTTP call to {request.url}")


@pytest.mark.asyncio
async def test_valid_token_is_returned_without_refresh(db, account):
    token = await _manager(_unexpected).ensure_valid_token(db, account)
    assert token == "access-1"


@pytest.mark.asyncio
async def test_token_inside_skew_window_is_refreshed(db, make_account):
    account = make_account(expires_in=timedelta(seconds=30))
    seen = {}

    def handler(request):
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 21600})

    token = await _manager(handler).ensure_valid_token(db, account)

    assert token == "access-2"
    assert "refresh_token=refresh-1" in seen["body"]
    assert account.access_token == "access-2"
    assert account.refresh_token == "refresh-2"
    assert crypto.is_encrypted(account._access_token)
    assert merchant_account_service._to_utc(account.token_expires_at) > datetime.now(timezone.utc) + timedelta(hours=5)


@pytest.mark.asyncio
async def test_refresh_keeps_old_refresh_token_when_none_returned(db, make_account):
    account = make_account(expires_in=timedelta(minutes=-5))

    def handler(request):
        return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})

    await _manager(handler).ensure_valid_token(db, account)

    assert account.refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_rejected_refresh_disconnects_account(db, make_account):
    account = make_account(expires_in=timedelta(minutes=-5))

    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant"})

    with pytest.raises(AuthError) as excinfo:
        await _manager(handler).ensure_valid_token(db, account)

    assert excinfo.value.message == RECONNECT_MESSAGE
    assert account.sync_status == "disconnected"
    assert account.refresh_error


@pytest.mark.asyncio
async def test_network_failure_during_refresh_keeps_connection(db, make_account):
    account = make_account(expires_in=timedelta(minutes=-5))

    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(AuthError):
        await _manager(handler).ensure_valid_token(db, account)

    assert account.sync_status == "connected"
    assert "timed out" in account.refresh_error


@pytest.mark.asyncio
async def test_unconnected_account_raises(db, make_account):
    account = make_account(connected=False)

    with pytest.raises(AuthError):
        await _manager(_unexpected).ensure_valid_token(db, account)


@pytest.mark.asyncio
async def test_exchange_code_connects_account(db, make_account):
    account = make_account(connected=False, is_active=False)
    seen = {}

    def handler(request):
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"access_token": "a", "refresh_token": "r", "expires_in": 21600})

    await _manager(handler).exchange_code(db, account, "code-1", "https://app.test/platform/callback")

    assert "grant_type=authorization_code" in seen["body"]
    assert "code=code-1" in seen["body"]
    assert account.is_active is True
    assert account.sync_status == "connected"
    assert merchant_account_service.is_authenticated(account)
