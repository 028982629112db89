from html import escape
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session
from typing import Optional

from stocksync.config import settings
from stocksync.models.platform import ConnectionCheckResponse, StartOAuthRequest, StartOAuthResponse
from stocksync.models_sqlalchemy import get_db
from stocksync.models_sqlalchemy.models import User
from stocksync.services.auth import get_current_user
from stocksync.services.errors import SyncError
from stocksync.services.merchant_account_service import merchant_account_service
from stocksync.services.oauth_state_store import oauth_state_store
from stocksync.services.token_manager import token_manager
from stocksync.utils.logger import logger, platform_logger

router = APIRouter(prefix="/platform", tags=["platform"])


def _first_header_value(value: Optional[str]) -> Optional[str]:
    # Proxy chains send comma-separated lists; the first hop is the client-facing one.
    if not value:
        return None
    return value.split(",")[0].strip() or None


def resolve_redirect_uri(request: Request) -> str:
    """OAuth redirect URI for this deployment.

    An explicit PLATFORM_REDIRECT_URI wins. Otherwise it is rebuilt from the
    forwarded proto/host headers of the current request, falling back to the
    Host header and finally to DEFAULT_REDIRECT_HOST.
    """
    if settings.PLATFORM_REDIRECT_URI:
        return settings.PLATFORM_REDIRECT_URI

    headers = request.headers
    proto = _first_header_value(headers.get("x-forwarded-proto")) or request.url.scheme or "https"
    host = (
        _first_header_value(headers.get("x-forwarded-host"))
        or headers.get("host")
        or settings.DEFAULT_REDIRECT_HOST
    )
    return f"{proto}://{host}{settings.PLATFORM_CALLBACK_PATH}"


def _callback_page(title: str, message: str, *, success: bool, account_id: Optional[str] = None) -> HTMLResponse:
    color = "#22c55e" if success else "#dc2626"
    script = ""
    if success:
        script = (
            "<script>setTimeout(function () {"
            f"if (window.opener) {{ window.opener.postMessage({{type: 'PLATFORM_OAUTH_SUCCESS', accountId: '{escape(account_id or '')}'}}, '*'); }}"
            "window.close();}, 2000);</script>"
        )
    body = (
        "<html><body style=\"font-family:Arial;text-align:center;padding:50px;\">"
        f"<h1 style=\"color:{color};\">{escape(title)}</h1>"
        f"<p>{escape(message)}</p>{script}</body></html>"
    )
    return HTMLResponse(content=body, status_code=200)


@router.post("/start-oauth", response_model=StartOAuthResponse)
async def start_oauth(
    payload: StartOAuthRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    account = merchant_account_service.get_account_for_user(db, payload.account_id, current_user.id)
    if account is None:
        return StartOAuthResponse(success=False, error="Account not found")
    if not account.client_id or not account.client_secret:
        return StartOAuthResponse(success=False, error="Client ID and Client Secret must be configured first")

    state = oauth_state_store.issue(account.id, current_user.id)
    redirect_uri = resolve_redirect_uri(request)
    auth_url = f"{settings.PLATFORM_AUTH_URL}?" + urlencode({
        "response_type": "code",
        "client_id": account.client_id,
        "redirect_uri": redirect_uri,
        "state": state,
    })

    platform_logger.log_event(
        "start_oauth",
        f"Authorization started for account {account.id}",
        request_data={"redirect_uri": redirect_uri, "client_id": account.client_id},
    )
    logger.info(f"Starting platform OAuth for account {account.id} (redirect_uri={redirect_uri})")
    return StartOAuthResponse(success=True, auth_url=auth_url)


@router.get("/callback", response_class=HTMLResponse)
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Browser landing page for the platform's authorization redirect."""
    if error:
        logger.warning(f"Platform authorization denied: {error}")
        return _callback_page("Error", error, success=False)

    pending = oauth_state_store.pop(state) if state else None
    if pending is None:
        return _callback_page("Error", "Invalid or expired state", success=False)
    if not code:
        return _callback_page("Error", "Authorization code missing", success=False)

    account = merchant_account_service.get_account(db, pending.account_id)
    if account is None:
        return _callback_page("Error", "Account not found", success=False)

    try:
        await token_manager.exchange_code(db, account, code, resolve_redirect_uri(request))
    except SyncError as e:
        db.rollback()
        logger.error(f"Authorization code exchange failed for account {pending.account_id}: {e.message}")
        return _callback_page("Error", e.message, success=False)

    platform_logger.log_event("oauth_connected", f"Account {account.id} connected", status="success")
    return _callback_page(
        "Connected!",
        "You can close this window and return to the app.",
        success=True,
        account_id=account.id,
    )


@router.get("/check-auth/{account_id}", response_model=ConnectionCheckResponse)
async def check_auth(
    account_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    account = merchant_account_service.get_account_for_user(db, account_id, current_user.id)
    if account is None:
        return ConnectionCheckResponse(authenticated=False)

    return ConnectionCheckResponse(
        authenticated=merchant_account_service.is_authenticated(account),
        sync_status=account.sync_status,
        token_expires_at=account.token_expires_at,
    )


@router.get("/logs")
async def get_platform_logs(
    limit: Optional[int] = Query(100, description="Number of logs to retrieve"),
    event_type: Optional[str] = Query(None, description="Only events of this type"),
    status: Optional[str] = Query(None, description="Only events with this status (info, success, error)"),
    current_user: User = Depends(get_current_user),
):
    logs = platform_logger.get_logs(limit=limit, event_type=event_type, status=status)
    return {
        "logs": logs,
        "total": len(logs)
    }


@router.delete("/logs")
async def clear_platform_logs(current_user: User = Depends(get_current_user)):
    cleared = platform_logger.clear_logs()
    return {"message": "Logs cleared successfully", "cleared": cleared}
