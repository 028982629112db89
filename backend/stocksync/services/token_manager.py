"""Per-account OAuth2 token lifecycle for the external order platform.

All sync paths obtain their access token here:

    token = await token_manager.ensure_valid_token(db, account)

The returned string is always the freshest token; after a refresh the
MerchantAccount row has already been updated and committed, so callers must
use the return value instead of any token they read earlier.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from stocksync.config import settings
from stocksync.models_sqlalchemy.models import MerchantAccount
from stocksync.services.errors import AuthError, TransientNetworkError
from stocksync.services.merchant_account_service import merchant_account_service
from stocksync.services.platform_client import PlatformClient, platform_client
from stocksync.utils.logger import logger


RECONNECT_MESSAGE = "Token expired or revoked. Reconnect the account."


class TokenManager:

    def __init__(self, client: Optional[PlatformClient] = None, skew_seconds: Optional[int] = None):
        self.client = client or platform_client
        self.skew_seconds = settings.TOKEN_EXPIRY_SKEW_SECONDS if skew_seconds is None else skew_seconds

    async def ensure_valid_token(self, db: Session, account: MerchantAccount) -> str:
        access_token = account.access_token
        if not access_token:
            raise AuthError("Account is not connected")

        if merchant_account_service.is_token_expired(account, self.skew_seconds):
            logger.info(f"Access token for account {account.id} expired, refreshing")
            return await self.force_refresh(db, account)

        return access_token

    async def force_refresh(self, db: Session, account: MerchantAccount) -> str:
        """Run the refresh-token grant and persist the new credentials.

        Raises AuthError on any failure. When the platform itself rejected the
        grant the account is flagged ``disconnected`` so the UI asks for a new
        authorization; network failures only record the error.
        """
        refresh_token = account.refresh_token
        if not refresh_token:
            raise AuthError(RECONNECT_MESSAGE)
        if not account.client_id or not account.client_secret:
            raise AuthError("Client ID and Client Secret must be configured first")

        try:
            token = await self.client.refresh_token_grant(account.client_id, account.client_secret, refresh_token)
        except AuthError as e:
            logger.error(f"Token refresh rejected for account {account.id}: {e.message}")
            merchant_account_service.mark_refresh_failed(db, account, e.message, disconnect=True)
            raise AuthError(RECONNECT_MESSAGE, status_code=e.status_code)
        except TransientNetworkError as e:
            logger.error(f"Token refresh failed for account {account.id}: {e.message}")
            merchant_account_service.mark_refresh_failed(db, account, e.message, disconnect=False)
            raise AuthError(RECONNECT_MESSAGE)

        merchant_account_service.save_tokens(
            db,
            account,
            token.access_token,
            token.refresh_token or refresh_token,
            token.expires_in,
        )
        logger.info(f"Refreshed access token for account {account.id}")
        return token.access_token

    async def exchange_code(self, db: Session, account: MerchantAccount, code: str, redirect_uri: str) -> MerchantAccount:
        """Complete the authorization-code grant started by the OAuth flow."""
        if not account.client_id or not account.client_secret:
            raise AuthError("Client ID and Client Secret must be configured first")

        try:
            token = await self.client.authorization_code_grant(
                account.client_id, account.client_secret, code, redirect_uri
            )
        except TransientNetworkError as e:
            raise AuthError(e.message)

        return merchant_account_service.save_tokens(
            db,
            account,
            token.access_token,
            token.refresh_token,
            token.expires_in,
            connect=True,
        )


token_manager = TokenManager()
