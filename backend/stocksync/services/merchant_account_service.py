from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from stocksync.models_sqlalchemy.models import ConnectionStatus, MerchantAccount
from stocksync.utils.logger import logger


class MerchantAccountService:

    @staticmethod
    def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
        """Normalize a datetime to timezone-aware UTC.

        SQLite hands back naive datetimes even for timezone-aware columns, so
        comparisons against ``datetime.now(timezone.utc)`` go through here.
        """
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    def get_account(self, db: Session, account_id: str) -> Optional[MerchantAccount]:
        return db.query(MerchantAccount).filter(MerchantAccount.id == account_id).first()

    def get_account_for_user(self, db: Session, account_id: str, user_id: str) -> Optional[MerchantAccount]:
        return (
            db.query(MerchantAccount)
            .filter(MerchantAccount.id == account_id, MerchantAccount.user_id == user_id)
            .first()
        )

    def get_syncable_accounts(self, db: Session) -> List[MerchantAccount]:
        """Active, connected accounts holding both tokens, oldest sync first."""
        accounts = (
            db.query(MerchantAccount)
            .filter(
                MerchantAccount.is_active == True,  # noqa: E712
                MerchantAccount.sync_status == ConnectionStatus.connected.value,
                MerchantAccount._access_token.isnot(None),
                MerchantAccount._refresh_token.isnot(None),
            )
            .order_by(MerchantAccount.last_sync.asc(), MerchantAccount.created_at.asc())
            .all()
        )
        return accounts

    def is_token_expired(self, account: MerchantAccount, skew_seconds: int = 0) -> bool:
        expires_at = self._to_utc(account.token_expires_at)
        if expires_at is None:
            return False
        return expires_at <= datetime.now(timezone.utc) + timedelta(seconds=skew_seconds)

    def is_authenticated(self, account: MerchantAccount) -> bool:
        expires_at = self._to_utc(account.token_expires_at)
        return bool(
            account.is_active
            and account.access_token
            and expires_at
            and expires_at > datetime.now(timezone.utc)
        )

    def save_tokens(
        self,
        db: Session,
        account: MerchantAccount,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: int,
        *,
        connect: bool = False,
    ) -> MerchantAccount:
        now = datetime.now(timezone.utc)
        account.access_token = access_token
        if refresh_token:
            account.refresh_token = refresh_token
        account.token_expires_at = now + timedelta(seconds=int(expires_in))
        account.refresh_error = None
        account.updated_at = now
        if connect:
            account.is_active = True
            account.sync_status = ConnectionStatus.connected.value
        db.commit()
        db.refresh(account)
        logger.info(f"Saved tokens for account {account.id} (expires_at={account.token_expires_at})")
        return account

    def mark_refresh_failed(self, db: Session, account: MerchantAccount, error: str, *, disconnect: bool) -> None:
        account.refresh_error = error[:2000]
        if disconnect:
            account.sync_status = ConnectionStatus.disconnected.value
        account.updated_at = datetime.now(timezone.utc)
        db.commit()

    def touch_last_sync(self, db: Session, account: MerchantAccount) -> None:
        now = datetime.now(timezone.utc)
        account.last_sync = now
        account.sync_status = ConnectionStatus.connected.value
        account.updated_at = now
        db.commit()


merchant_account_service = MerchantAccountService()
