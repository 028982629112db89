from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class PlatformTokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int
    token_type: Optional[str] = "Bearer"
    scope: Optional[str] = None


class StartOAuthRequest(BaseModel):
    account_id: str


class StartOAuthResponse(BaseModel):
    success: bool
    auth_url: Optional[str] = None
    error: Optional[str] = None


class ConnectionCheckResponse(BaseModel):
    authenticated: bool
    sync_status: Optional[str] = None
    token_expires_at: Optional[datetime] = None
